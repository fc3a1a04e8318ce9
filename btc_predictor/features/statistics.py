"""
归一化统计模块
================================
从最近365天历史计算各序列的 min/max/mean/std，
训练时保存到磁盘，推理时重新加载（不重新计算），保证训练与推理使用同一套统计量
"""

import hashlib
import json
import logging
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Any, Optional, Sequence, Callable

import numpy as np

from config import FeatureConfig, FallbackConfig, TradingConfig, DAY_MS
from ..errors import ArtifactLoadError, PredictorError, UpstreamDataError
from ..data_collection.base import HistorySource

logger = logging.getLogger(__name__)

SERIES_NAMES = ("price", "hashrate", "difficulty", "volume")

STATS_FILENAME = "feature-stats.json"


@dataclass(frozen=True)
class SeriesStats:
    """单个序列的统计量，std 永远不为0"""
    min: float = 0.0
    max: float = 0.0
    mean: float = 0.0
    std: float = FallbackConfig.DEFAULT_STD
    count: int = 0

    @classmethod
    def from_values(cls, values: Sequence[float]) -> "SeriesStats":
        """计算总体统计量，空序列返回默认值"""
        if len(values) == 0:
            return cls()

        arr = np.asarray(values, dtype=np.float64)
        std = float(arr.std())
        if std == 0 or not np.isfinite(std):
            std = FallbackConfig.DEFAULT_STD

        return cls(
            min=float(arr.min()),
            max=float(arr.max()),
            mean=float(arr.mean()),
            std=std,
            count=int(arr.size)
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SeriesStats":
        # 兼容旧版本中未计算的序列 (null)
        def _value(key: str, default: float) -> float:
            value = data.get(key)
            return default if value is None else float(value)

        std = _value("std", FallbackConfig.DEFAULT_STD) or FallbackConfig.DEFAULT_STD
        return cls(
            min=_value("min", 0.0),
            max=_value("max", 0.0),
            mean=_value("mean", 0.0),
            std=std,
            count=int(data.get("count") or 0)
        )


@dataclass(frozen=True)
class NormalizationStats:
    """各序列的归一化统计量，加载后只读共享"""
    price: SeriesStats = field(default_factory=SeriesStats)
    hashrate: SeriesStats = field(default_factory=SeriesStats)
    difficulty: SeriesStats = field(default_factory=SeriesStats)
    volume: SeriesStats = field(default_factory=SeriesStats)
    computed_at: int = 0    # 毫秒

    def series(self) -> Dict[str, Dict[str, Any]]:
        return {name: asdict(getattr(self, name)) for name in SERIES_NAMES}

    def fingerprint(self) -> str:
        """统计量指纹，随模型一起保存，用于检测训练/推理不一致"""
        payload = json.dumps(self.series(), sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = self.series()
        data["computed_at"] = self.computed_at
        data["fingerprint"] = self.fingerprint()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NormalizationStats":
        return cls(
            computed_at=int(data.get("computed_at") or 0),
            **{name: SeriesStats.from_dict(data.get(name) or {}) for name in SERIES_NAMES}
        )


class StatisticsComputer:
    """
    归一化统计计算器

    价格取最近365天（最多10000条），算力/难度各取最多1000条
    数据源失败时抛出 UpstreamDataError；链上序列为空时保持默认值
    """

    def __init__(
        self,
        source: HistorySource,
        window_days: int = FeatureConfig.STATS_WINDOW_DAYS,
        clock: Optional[Callable[[], int]] = None
    ):
        self.source = source
        self.window_days = window_days
        self.clock = clock or (lambda: int(datetime.now(timezone.utc).timestamp() * 1000))

    def compute_stats(self, symbol: str = TradingConfig.SYMBOL) -> NormalizationStats:
        logger.info("计算归一化统计量...")

        now = self.clock()
        start = now - self.window_days * DAY_MS

        try:
            prices = self.source.get_price_history(symbol, start, now, FeatureConfig.STATS_PRICE_LIMIT)
            hashrates = self.source.get_hashrate_history(start, now, FeatureConfig.STATS_ONCHAIN_LIMIT)
            difficulties = self.source.get_difficulty_history(start, now, FeatureConfig.STATS_ONCHAIN_LIMIT)
        except PredictorError:
            raise
        except Exception as e:
            raise UpstreamDataError(f"获取统计数据失败: {e}") from e

        stats = NormalizationStats(
            price=SeriesStats.from_values([p.price for p in prices]),
            hashrate=SeriesStats.from_values([h.value for h in hashrates]),
            difficulty=SeriesStats.from_values([d.value for d in difficulties]),
            computed_at=now
        )

        logger.info(f"  价格: {stats.price.count} 条, ${stats.price.min:,.0f} - ${stats.price.max:,.0f}")
        if stats.hashrate.count:
            logger.info(f"  算力: {stats.hashrate.count} 条, {stats.hashrate.min / 1e18:.2f} - {stats.hashrate.max / 1e18:.2f} EH/s")
        else:
            logger.warning("  算力数据为空，使用默认统计量")
        if stats.difficulty.count:
            logger.info(f"  难度: {stats.difficulty.count} 条, {stats.difficulty.min / 1e12:.2f}T - {stats.difficulty.max / 1e12:.2f}T")
        else:
            logger.warning("  难度数据为空，使用默认统计量")

        return stats


def save_stats(stats: NormalizationStats, directory: Path, filename: str = STATS_FILENAME) -> Path:
    """
    保存统计量

    同时写入按计算日期命名的文件和 filename (最新，默认 feature-stats.json)

    Returns:
        最新统计量文件路径
    """
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)

    payload = json.dumps(stats.to_dict(), indent=2)
    computed = datetime.fromtimestamp(stats.computed_at / 1000, tz=timezone.utc)

    dated_path = directory / f"feature-stats-{computed.strftime('%Y%m%d')}.json"
    dated_path.write_text(payload, encoding="utf-8")

    latest_path = directory / filename
    latest_path.write_text(payload, encoding="utf-8")

    logger.info(f"统计量已保存: {latest_path} (指纹 {stats.fingerprint()[:12]})")
    return latest_path


def load_stats(path: Path) -> NormalizationStats:
    """加载统计量，文件缺失、损坏或指纹不一致时抛出 ArtifactLoadError"""
    path = Path(path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise ArtifactLoadError(f"无法读取统计量文件 {path}: {e}") from e

    stats = NormalizationStats.from_dict(data)

    stored = data.get("fingerprint")
    if stored and stored != stats.fingerprint():
        raise ArtifactLoadError(f"统计量文件指纹不一致: {path}")

    logger.info(f"统计量已加载: {path}")
    return stats

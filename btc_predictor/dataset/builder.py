"""
训练数据集构建 (离线)
================================
遍历历史价格，对每个时间点调用与推理相同的 FeatureExtractor 生成
(60步特征窗口, 下一周期价格变化比例) 样本，Fisher-Yates 洗牌后按 70/15/15 划分，
与所用的归一化统计量一起保存

目标: (price[i + horizon] - price[i]) / price[i]
"""

import json
import logging
import random
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, MutableSequence, Optional, Sequence, Tuple, TypeVar

import joblib
import numpy as np
import pandas as pd
from tqdm import tqdm

from config import DatasetConfig, FeatureConfig, TradingConfig
from ..data_collection.base import PricePoint
from ..errors import DatasetTooSmallError, InsufficientDataError
from ..features.engineer import FeatureExtractor, features_to_matrix
from ..features.statistics import save_stats

logger = logging.getLogger(__name__)

T = TypeVar("T")

MANIFEST_FILENAME = "dataset-manifest.json"


@dataclass
class TrainingSample:
    """单个训练样本"""
    features: np.ndarray        # (lookback, 10)
    target: float
    timestamp: int
    current_price: float
    target_price: float


@dataclass
class BuildReport:
    """样本生成统计"""
    corpus_size: int
    attempted: int = 0
    generated: int = 0
    skipped: int = 0


@dataclass
class DatasetSplits:
    """train / val / test 划分结果"""
    train: List[TrainingSample]
    val: List[TrainingSample]
    test: List[TrainingSample]
    report: BuildReport
    seed: Optional[int] = None

    def sizes(self) -> Dict[str, int]:
        return {"train": len(self.train), "val": len(self.val), "test": len(self.test)}

    def get(self, name: str) -> List[TrainingSample]:
        if name not in DatasetConfig.SPLIT_NAMES:
            raise ValueError(f"未知的数据集划分: {name}")
        return getattr(self, name)


def samples_to_arrays(samples: Sequence[TrainingSample], lookback: int = FeatureConfig.LOOKBACK) -> Tuple[np.ndarray, np.ndarray]:
    """转换为 X (samples, lookback, 10) 和 y (samples,)"""
    if not samples:
        return (
            np.zeros((0, lookback, FeatureConfig.N_FEATURES), dtype=np.float32),
            np.zeros(0, dtype=np.float32)
        )
    X = np.stack([s.features for s in samples]).astype(np.float32)
    y = np.array([s.target for s in samples], dtype=np.float32)
    return X, y


def fisher_yates_shuffle(items: MutableSequence[T], rng: random.Random) -> MutableSequence[T]:
    """原地洗牌"""
    for i in range(len(items) - 1, 0, -1):
        j = rng.randint(0, i)
        items[i], items[j] = items[j], items[i]
    return items


def split_sizes(n: int) -> Tuple[int, int, int]:
    """70/15/15 (向下取整，测试集取剩余部分)"""
    train_size = int(n * DatasetConfig.TRAIN_RATIO)
    val_size = int(n * DatasetConfig.VAL_RATIO)
    return train_size, val_size, n - train_size - val_size


class DatasetBuilder:
    """
    训练数据集构建器

    功能:
    1. 检查原始序列规模 (至少 lookback + horizon + 100 个点)
    2. 逐点生成样本，数据不足的样本跳过并计数
    3. 洗牌、划分并保存
    """

    def __init__(
        self,
        extractor: FeatureExtractor,
        symbol: str = TradingConfig.SYMBOL,
        lookback: int = FeatureConfig.LOOKBACK,
        horizon: int = DatasetConfig.HORIZON,
        seed: Optional[int] = DatasetConfig.SHUFFLE_SEED,
        min_split_samples: int = DatasetConfig.MIN_SPLIT_SAMPLES,
        show_progress: bool = True
    ):
        self.extractor = extractor
        self.symbol = symbol
        self.lookback = lookback
        self.horizon = horizon
        self.seed = seed
        self.min_split_samples = min_split_samples
        self.show_progress = show_progress

    @property
    def min_corpus_size(self) -> int:
        return self.lookback + self.horizon + DatasetConfig.MIN_EXTRA_POINTS

    def check_corpus(self, prices: Sequence[PricePoint]) -> None:
        if len(prices) < self.min_corpus_size:
            raise DatasetTooSmallError(
                f"数据不足: 至少需要 {self.min_corpus_size} 条价格记录，实际 {len(prices)} 条"
            )

    def build_samples(self, prices: Sequence[PricePoint]) -> Tuple[List[TrainingSample], BuildReport]:
        """
        对 i ∈ [lookback, N - horizon) 生成样本

        InsufficientDataError 的样本跳过并计数，其他错误向上抛出
        """
        report = BuildReport(corpus_size=len(prices))
        samples: List[TrainingSample] = []

        indices = range(self.lookback, len(prices) - self.horizon)
        iterator = tqdm(indices, desc="计算样本特征", unit="sample") if self.show_progress else indices

        for i in iterator:
            report.attempted += 1
            current = prices[i]
            target_point = prices[i + self.horizon]

            if current.price <= 0:
                report.skipped += 1
                logger.warning(f"  ⚠️ 跳过索引 {i} 的样本: 价格非正 ({current.price})")
                continue

            try:
                features = self.extractor.compute_features(self.symbol, current.timestamp, self.lookback)
            except InsufficientDataError as e:
                report.skipped += 1
                if report.skipped <= 5:
                    logger.warning(f"  ⚠️ 跳过索引 {i} 的样本: {e}")
                continue

            samples.append(TrainingSample(
                features=features_to_matrix(features),
                target=(target_point.price - current.price) / current.price,
                timestamp=current.timestamp,
                current_price=current.price,
                target_price=target_point.price
            ))

        report.generated = len(samples)
        logger.info(f"✅ 样本生成完成: {report.generated} 个 (尝试 {report.attempted}，跳过 {report.skipped})")
        return samples, report

    def split(self, samples: List[TrainingSample]) -> Tuple[List[TrainingSample], List[TrainingSample], List[TrainingSample]]:
        """洗牌后按比例切分，各划分不再单独洗牌"""
        train_size, val_size, test_size = split_sizes(len(samples))

        too_small = {
            name: size for name, size in zip(DatasetConfig.SPLIT_NAMES, (train_size, val_size, test_size))
            if size < self.min_split_samples
        }
        if too_small:
            raise DatasetTooSmallError(
                f"样本数 {len(samples)} 不足以划分数据集: {too_small} (每个划分至少 {self.min_split_samples} 个)"
            )

        fisher_yates_shuffle(samples, random.Random(self.seed))

        train = samples[:train_size]
        val = samples[train_size:train_size + val_size]
        test = samples[train_size + val_size:]
        return train, val, test

    def build(self, prices: Sequence[PricePoint]) -> DatasetSplits:
        """完整流程: 检查 -> 生成 -> 洗牌划分"""
        logger.info(f"🏗️ 构建训练数据集: {len(prices)} 条价格, lookback={self.lookback}, horizon={self.horizon}")
        self.check_corpus(prices)

        samples, report = self.build_samples(prices)
        train, val, test = self.split(samples)

        splits = DatasetSplits(train=train, val=val, test=test, report=report, seed=self.seed)
        sizes = splits.sizes()
        logger.info(f"📊 数据集划分: 训练 {sizes['train']} | 验证 {sizes['val']} | 测试 {sizes['test']}")
        return splits

    def save(self, splits: DatasetSplits, output_dir: Path) -> Path:
        """
        保存划分文件、归一化统计量和清单

        Returns:
            清单文件路径
        """
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)

        stats = self.extractor.stats
        fingerprint = stats.fingerprint()

        for name in DatasetConfig.SPLIT_NAMES:
            samples = splits.get(name)
            X, y = samples_to_arrays(samples, self.lookback)
            path = output_dir / f"{name}-dataset.joblib"
            joblib.dump({
                "X": X,
                "y": y,
                "timestamps": np.array([s.timestamp for s in samples], dtype=np.int64),
                "current_price": np.array([s.current_price for s in samples], dtype=np.float64),
                "target_price": np.array([s.target_price for s in samples], dtype=np.float64),
                "stats_fingerprint": fingerprint
            }, path)
            logger.info(f"   ✅ {path.name} 已保存 ({len(samples)} 个样本)")

        stats_path = save_stats(stats, output_dir)

        manifest = {
            "created_at": datetime.now(timezone.utc).isoformat(),
            "symbol": self.symbol,
            "lookback": self.lookback,
            "horizon": self.horizon,
            "feature_names": list(FeatureConfig.FEATURE_NAMES),
            "sizes": splits.sizes(),
            "corpus_size": splits.report.corpus_size,
            "attempted": splits.report.attempted,
            "skipped": splits.report.skipped,
            "seed": splits.seed,
            "stats_file": stats_path.name,
            "stats_fingerprint": fingerprint,
            "train_target_summary": target_summary(splits.train)
        }
        manifest_path = output_dir / MANIFEST_FILENAME
        manifest_path.write_text(json.dumps(manifest, indent=2), encoding="utf-8")
        logger.info(f"💾 数据集清单已保存: {manifest_path}")
        return manifest_path


def target_summary(samples: Sequence[TrainingSample]) -> Dict[str, float]:
    """目标值 (价格变化比例) 的描述统计"""
    if not samples:
        return {}
    targets = pd.Series([s.target for s in samples])
    summary = targets.describe()
    return {
        "mean": float(summary["mean"]),
        "std": float(summary["std"]) if len(targets) > 1 else 0.0,
        "min": float(summary["min"]),
        "max": float(summary["max"]),
        "positive_ratio": float((targets > 0).mean())
    }


def load_manifest(directory: Path) -> Dict[str, Any]:
    path = Path(directory) / MANIFEST_FILENAME
    return json.loads(path.read_text(encoding="utf-8"))


def load_split(directory: Path, name: str) -> Dict[str, Any]:
    """加载划分文件，返回包含 X / y / timestamps 等键的字典"""
    if name not in DatasetConfig.SPLIT_NAMES:
        raise ValueError(f"未知的数据集划分: {name}")
    return joblib.load(Path(directory) / f"{name}-dataset.joblib")

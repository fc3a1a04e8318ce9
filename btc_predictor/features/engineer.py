"""
特征工程主模块
================================
把原始价格/算力/难度序列转换为每个时间步固定10维的特征向量，
推理 (PredictionService) 和离线数据集构建 (DatasetBuilder) 共用同一段代码

特征 (按张量列顺序):
    log_return_1h, log_return_4h, log_return_24h, sma_24h, volatility_24h,
    rsi_14, hashrate_normalized, difficulty_normalized, hour_sin, day_cos
"""

import logging
from dataclasses import dataclass, asdict
from typing import List, Sequence, Dict, Any, Callable, TypeVar

import numpy as np
import pandas as pd

from config import FeatureConfig, FallbackConfig, TradingConfig
from ..errors import InsufficientDataError, PredictorError, UpstreamDataError
from ..data_collection.base import HistorySource, NetworkMetricPoint
from .statistics import NormalizationStats, SeriesStats
from . import technical

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class FeatureVector:
    """单个时间步的特征，timestamp/price 仅用于反归一化，不输入模型"""
    timestamp: int
    price: float
    log_return_1h: float
    log_return_4h: float
    log_return_24h: float
    sma_24h: float
    volatility_24h: float
    rsi_14: float
    hashrate_normalized: float
    difficulty_normalized: float
    hour_sin: float
    day_cos: float

    def to_array(self) -> np.ndarray:
        return np.array([getattr(self, name) for name in FeatureConfig.FEATURE_NAMES], dtype=np.float64)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def features_to_matrix(features: Sequence[FeatureVector]) -> np.ndarray:
    """(timesteps, 10) 特征矩阵，按时间步顺序"""
    if not features:
        return np.zeros((0, FeatureConfig.N_FEATURES), dtype=np.float64)
    return np.vstack([f.to_array() for f in features])


def features_to_dataframe(features: Sequence[FeatureVector]) -> pd.DataFrame:
    """转换为以UTC时间为索引的DataFrame"""
    df = pd.DataFrame([f.to_dict() for f in features])
    if df.empty:
        return df
    df.index = pd.to_datetime(df.pop("timestamp"), unit="ms", utc=True)
    return df


class FeatureExtractor:
    """
    特征提取器

    功能:
    1. 获取 max(lookback*2, lookback+24) 个周期的价格与链上历史
    2. 计算最后 lookback 个时间步的10维特征
    3. 数据不足时抛出 InsufficientDataError，不返回截断结果
    """

    def __init__(
        self,
        source: HistorySource,
        stats: NormalizationStats,
        period_ms: int = TradingConfig.PERIOD_MS
    ):
        self.source = source
        self.stats = stats
        self.period_ms = period_ms

    @staticmethod
    def required_points(lookback: int) -> int:
        """计算 lookback 个时间步需要的最少价格点数"""
        return lookback + FeatureConfig.LONGEST_INDICATOR

    def compute_features(
        self,
        symbol: str,
        timestamp: int,
        lookback: int = FeatureConfig.LOOKBACK
    ) -> List[FeatureVector]:
        """
        计算截至 timestamp 的 lookback 个时间步特征

        Args:
            symbol: 资产符号 (如 BTC)
            timestamp: 目标时间戳 (毫秒)
            lookback: 回溯时间步数

        Returns:
            长度恰好为 lookback 的特征列表，按时间升序
        """
        required = self.required_points(lookback)

        # 回溯较短时 lookback*2 个周期不足以覆盖最长指标
        limit = max(lookback * 2, required)
        end_ts = timestamp
        start_ts = timestamp - limit * self.period_ms

        prices = self._fetch(
            "价格", self.source.get_price_history, symbol, start_ts, end_ts, limit
        )

        if len(prices) < required:
            raise InsufficientDataError(
                f"价格数据不足: 需要 {required} 条，实际 {len(prices)} 条",
                required=required,
                available=len(prices)
            )

        # 链上数据可能稀疏，为空时特征取0
        hashrates = self._fetch("算力", self.source.get_hashrate_history, start_ts, end_ts, limit)
        difficulties = self._fetch("难度", self.source.get_difficulty_history, start_ts, end_ts, limit)

        price_values = np.array([p.price for p in prices], dtype=np.float64)
        returns = technical.one_step_log_returns(price_values)

        features = []
        for i in range(len(prices) - lookback, len(prices)):
            ts = prices[i].timestamp
            features.append(FeatureVector(
                timestamp=ts,
                price=float(price_values[i]),
                log_return_1h=technical.log_return(price_values, i, 1),
                log_return_4h=technical.log_return(price_values, i, 4),
                log_return_24h=technical.log_return(price_values, i, 24),
                sma_24h=technical.sma_deviation(price_values, i),
                volatility_24h=technical.volatility(price_values, i, returns=returns),
                rsi_14=technical.rsi_normalized(price_values, i),
                hashrate_normalized=self._onchain_feature(hashrates, ts, self.stats.hashrate),
                difficulty_normalized=self._onchain_feature(difficulties, ts, self.stats.difficulty),
                hour_sin=technical.hour_sin(ts),
                day_cos=technical.day_cos(ts)
            ))

        return features

    @staticmethod
    def _onchain_feature(points: Sequence[NetworkMetricPoint], timestamp: int, stats: SeriesStats) -> float:
        """最近邻匹配后按统计量 min-max 缩放"""
        closest = technical.nearest_metric(points, timestamp)
        if closest is None:
            return FallbackConfig.ZERO_FEATURE
        return technical.min_max_scale(closest.value, stats.min, stats.max)

    @staticmethod
    def _fetch(label: str, fn: Callable[..., T], *args) -> T:
        """调用外部数据源，非本模块的异常统一包装为 UpstreamDataError"""
        try:
            return fn(*args)
        except PredictorError:
            raise
        except Exception as e:
            raise UpstreamDataError(f"获取{label}历史失败: {e}") from e

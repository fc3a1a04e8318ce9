"""
技术指标计算模块
================================
逐时间步计算单个指标值: 对数收益率、SMA偏离、已实现波动率、RSI、
链上指标最近邻匹配与min-max缩放、时间周期编码

所有函数对无法计算的情况返回 FallbackConfig 中的有限值，不返回 NaN/inf
参考: John Murphy《Technical Analysis of the Financial Markets》
"""

import math
from datetime import datetime, timezone
from typing import Sequence, Optional

import numpy as np
import pandas as pd

from config import FeatureConfig, FallbackConfig
from ..data_collection.base import NetworkMetricPoint


def log_return(prices: np.ndarray, idx: int, periods: int) -> float:
    """ln(price[idx] / price[idx - periods])"""
    if idx < periods:
        return FallbackConfig.ZERO_FEATURE

    current = prices[idx]
    past = prices[idx - periods]
    if current <= 0 or past <= 0:
        return FallbackConfig.ZERO_FEATURE

    return float(math.log(current / past))


def sma_deviation(prices: np.ndarray, idx: int, window: int = FeatureConfig.SMA_WINDOW) -> float:
    """当前价格相对于 window 期简单移动平均的偏离: (price - sma) / price"""
    if idx < window - 1:
        return FallbackConfig.ZERO_FEATURE

    current = prices[idx]
    if current <= 0:
        return FallbackConfig.ZERO_FEATURE

    sma = float(np.mean(prices[idx - window + 1: idx + 1]))
    return float((current - sma) / current)


def sma_value(prices: np.ndarray, idx: int, window: int = FeatureConfig.SMA_WINDOW) -> Optional[float]:
    """window 期简单移动平均，数据不足时返回 None"""
    if idx < window - 1:
        return None
    return float(np.mean(prices[idx - window + 1: idx + 1]))


def one_step_log_returns(prices: np.ndarray) -> np.ndarray:
    """
    整条序列的单步对数收益率，returns[i] = ln(price[i] / price[i-1])

    第一个点以及涉及非正价格的位置为 0，与 log_return(prices, i, 1) 一致
    """
    close = pd.Series(np.asarray(prices, dtype=np.float64))
    prev = close.shift(1)
    valid = (close > 0) & (prev > 0)
    returns = np.log(close.where(valid) / prev.where(valid))
    return returns.fillna(FallbackConfig.ZERO_FEATURE).to_numpy()


def volatility(
    prices: np.ndarray,
    idx: int,
    window: int = FeatureConfig.VOLATILITY_WINDOW,
    returns: Optional[np.ndarray] = None
) -> float:
    """
    最近 window 个单步对数收益率的标准差 (总体标准差)

    returns 为 one_step_log_returns(prices) 的预计算结果，逐步计算时传入以避免重复计算
    """
    if idx < window:
        return FallbackConfig.ZERO_FEATURE

    if returns is None:
        returns = one_step_log_returns(prices[:idx + 1])

    window_returns = returns[idx - window + 1: idx + 1]
    return float(np.std(window_returns))


def rsi_raw(prices: np.ndarray, idx: int, period: int = FeatureConfig.RSI_PERIOD) -> Optional[float]:
    """
    经典RSI (0-100): 平均涨幅 / 平均跌幅，简单平均而非Wilder平滑

    数据不足 period 步时返回 None
    """
    if idx < period:
        return None

    changes = np.diff(prices[idx - period: idx + 1])
    gains = float(changes[changes > 0].sum())
    losses = float(-changes[changes < 0].sum())

    avg_gain = gains / period
    avg_loss = losses / period

    if avg_loss == 0:
        return FallbackConfig.RSI_NO_LOSS

    rs = avg_gain / avg_loss
    return 100.0 - (100.0 / (1.0 + rs))


def rsi_normalized(prices: np.ndarray, idx: int, period: int = FeatureConfig.RSI_PERIOD) -> float:
    """RSI 缩放到 [-1, 1]: (rsi - 50) / 50"""
    rsi = rsi_raw(prices, idx, period)
    if rsi is None:
        return FallbackConfig.RSI_NEUTRAL_NORMALIZED
    return float((rsi - 50.0) / 50.0)


def denormalize_rsi(value: float) -> float:
    """[-1, 1] 还原为 0-100"""
    return value * 50.0 + 50.0


def nearest_metric(points: Sequence[NetworkMetricPoint], timestamp: int) -> Optional[NetworkMetricPoint]:
    """按时间差绝对值查找最近的链上数据点，相同距离取较早的"""
    if not points:
        return None
    return min(points, key=lambda p: abs(p.timestamp - timestamp))


def min_max_scale(value: float, lower: float, upper: float) -> float:
    """min-max缩放，区间为0时返回回退值"""
    value_range = upper - lower
    if value_range == 0 or not math.isfinite(value_range):
        return FallbackConfig.ZERO_RANGE_SCALED

    scaled = (value - lower) / value_range
    if not math.isfinite(scaled):
        return FallbackConfig.ZERO_RANGE_SCALED
    return float(scaled)


def _utc(timestamp: int) -> datetime:
    return datetime.fromtimestamp(timestamp / 1000, tz=timezone.utc)


def hour_sin(timestamp: int) -> float:
    """sin(2π · 小时 / 24)，UTC"""
    return math.sin(2 * math.pi * _utc(timestamp).hour / 24)


def day_of_week(timestamp: int) -> int:
    """UTC星期几，周日=0 ... 周六=6"""
    return (_utc(timestamp).weekday() + 1) % 7


def day_cos(timestamp: int) -> float:
    """cos(2π · 星期 / 7)，UTC"""
    return math.cos(2 * math.pi * day_of_week(timestamp) / 7)

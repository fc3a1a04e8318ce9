"""
置信度与不确定区间校准
================================
1小时收益率复利外推、基于近期波动率的置信度与区间半宽

常量来自 CalibrationConfig:
    1h:  置信度 clamp(1 - vol*10, 0.1, 0.95)，半宽 current*vol*2
    24h: 置信度 clamp(1 - vol*15, 0.1, 0.80)，半宽 current*vol*4
    7d:  置信度 clamp(1 - vol*20, 0.1, 0.60)，半宽 current*vol*8
"""

import math
from dataclasses import dataclass

from config import CalibrationConfig, TradingConfig
from ..errors import InferenceError


def compound_return(return_1h: float, steps: int) -> float:
    """
    (1 + r)^steps - 1

    r <= -1 (价格归零或为负)、复利溢出或结果非有限值时抛出 InferenceError
    """
    if return_1h <= -1.0:
        raise InferenceError(f"1小时收益率 {return_1h} <= -1，无法复利外推")
    if steps == 1:
        return return_1h
    try:
        value = (1.0 + return_1h) ** steps - 1.0
    except OverflowError as e:
        raise InferenceError(f"收益率 {return_1h} 复利 {steps} 步溢出") from e
    if not math.isfinite(value):
        raise InferenceError(f"收益率 {return_1h} 复利 {steps} 步结果非有限值: {value}")
    return value


def clamp(value: float, lower: float, upper: float) -> float:
    return max(lower, min(upper, value))


def round2(value: float) -> float:
    """保留两位小数，0.5 向上取整"""
    return math.floor(value * 100.0 + 0.5) / 100.0


def validate_horizon(horizon: str) -> str:
    if horizon not in TradingConfig.HORIZONS:
        raise ValueError(f"不支持的预测窗口: {horizon}，可选 {TradingConfig.HORIZONS}")
    return horizon


@dataclass(frozen=True)
class Band:
    """未取整的预测价格、区间与置信度"""
    predicted_price: float
    low: float
    high: float
    confidence: float


def calibrate(current_price: float, predicted_return: float, volatility: float, horizon: str) -> Band:
    """按预测窗口计算价格区间与置信度"""
    vol_multiplier, width_multiplier, max_confidence = CalibrationConfig.HORIZON_CALIBRATION[horizon]

    predicted = current_price * (1.0 + predicted_return)
    half_width = current_price * volatility * width_multiplier
    confidence = clamp(1.0 - volatility * vol_multiplier, CalibrationConfig.MIN_CONFIDENCE, max_confidence)

    if not (math.isfinite(predicted) and math.isfinite(half_width)):
        raise InferenceError(f"预测价格或区间非有限值: predicted={predicted}, half_width={half_width}")

    return Band(
        predicted_price=predicted,
        low=max(0.0, predicted - half_width),
        high=predicted + half_width,
        confidence=confidence
    )

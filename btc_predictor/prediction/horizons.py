"""
多周期预测外推
================================
只做一次推理，把1小时收益率复利外推到24小时与7天，并附带市场状态:
RSI区间、趋势方向与强度、波动率区间

24h/7d 结果是启发式外推而不是独立模型，method 标记为 heuristic_extrapolation
"""

import logging
from dataclasses import dataclass, asdict
from typing import Any, Dict

from config import CalibrationConfig
from ..features import technical
from .calibration import compound_return, round2
from .predictor import (
    EXTRAPOLATION_METHOD,
    MODEL_METHOD,
    InferenceResult,
    Prediction,
    PredictionService
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MarketContext:
    """由最后一个时间步计算的市场状态"""
    rsi: float                  # 0-100
    rsi_state: str              # overbought / oversold / neutral
    trend: str                  # bullish / bearish
    trend_strength: float       # |current - sma24| / sma24 * 100
    volatility: float           # 24小时波动率，百分比
    volatility_regime: str      # high / low / normal

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class MultiHorizonForecast:
    """1h / 24h / 7d 预测及市场状态"""
    hour: Prediction
    day: Prediction
    week: Prediction
    context: MarketContext
    timestamp: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "1h": self.hour.to_dict(),
            "24h": self.day.to_dict(),
            "7d": self.week.to_dict(),
            "context": self.context.to_dict(),
            "timestamp": self.timestamp
        }

    def __getitem__(self, horizon: str) -> Prediction:
        return {"1h": self.hour, "24h": self.day, "7d": self.week}[horizon]


def rsi_state(rsi: float) -> str:
    if rsi > CalibrationConfig.RSI_OVERBOUGHT:
        return "overbought"
    if rsi < CalibrationConfig.RSI_OVERSOLD:
        return "oversold"
    return "neutral"


def volatility_regime(volatility: float) -> str:
    if volatility > CalibrationConfig.HIGH_VOLATILITY:
        return "high"
    if volatility < CalibrationConfig.LOW_VOLATILITY:
        return "low"
    return "normal"


def market_context(result: InferenceResult) -> MarketContext:
    """
    从最后一个时间步的特征还原市场状态

    sma_24h 特征为 (price - sma) / price，sma = price * (1 - sma_24h)
    """
    latest = result.latest
    current = result.current_price

    rsi = technical.denormalize_rsi(latest.rsi_14)
    sma = latest.price * (1.0 - latest.sma_24h)

    diff = current - sma
    trend = "bullish" if diff > 0 else "bearish"
    trend_strength = abs(diff) / sma * 100.0 if sma > 0 else 0.0

    return MarketContext(
        rsi=round2(rsi),
        rsi_state=rsi_state(rsi),
        trend=trend,
        trend_strength=round2(trend_strength),
        volatility=round2(latest.volatility_24h * 100.0),
        volatility_regime=volatility_regime(latest.volatility_24h)
    )


class HorizonExtrapolator:
    """多周期预测器，复用 PredictionService 的单次推理"""

    def __init__(self, service: PredictionService):
        self.service = service

    def predict_multiple_horizons(self, auto_init: bool = False) -> MultiHorizonForecast:
        """
        生成 1h / 24h / 7d 预测

        Raises:
            与 PredictionService.run_inference 相同
        """
        result = self.service.run_inference(auto_init=auto_init)
        r = result.model_output

        predictions = {}
        for horizon, steps in CalibrationConfig.HORIZON_STEPS.items():
            method = MODEL_METHOD if steps == 1 else EXTRAPOLATION_METHOD
            predictions[horizon] = self.service.build_prediction(
                result, horizon, compound_return(r, steps), method
            )

        context = market_context(result)
        forecast = MultiHorizonForecast(
            hour=predictions["1h"],
            day=predictions["24h"],
            week=predictions["7d"],
            context=context,
            timestamp=result.timestamp
        )

        logger.info(
            f"📊 多周期预测: 1h ${forecast.hour.predicted_price:,.2f} | "
            f"24h ${forecast.day.predicted_price:,.2f} | 7d ${forecast.week.predicted_price:,.2f} | "
            f"RSI {context.rsi:.1f} ({context.rsi_state}) 趋势 {context.trend}"
        )
        return forecast

"""预测模块"""
from .calibration import compound_return, calibrate
from .predictor import (
    ServiceState,
    Prediction,
    InferenceResult,
    PredictionService,
    InferenceBuffer,
    inference_tensor
)
from .horizons import MarketContext, MultiHorizonForecast, HorizonExtrapolator

__all__ = [
    "compound_return",
    "calibrate",
    "ServiceState",
    "Prediction",
    "InferenceResult",
    "PredictionService",
    "InferenceBuffer",
    "inference_tensor",
    "MarketContext",
    "MultiHorizonForecast",
    "HorizonExtrapolator"
]

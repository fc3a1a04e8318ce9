"""模型评估模块"""
from .metrics import RegressionMetrics

__all__ = [
    "RegressionMetrics"
]

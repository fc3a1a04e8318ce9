"""数据接口与历史存储模块"""
from .base import (
    PricePoint,
    NetworkMetricPoint,
    InsertStatus,
    InsertResult,
    HistorySource,
    PredictionSink
)
from .cache import HistoryStore
from .loaders import load_price_csv, load_metric_csv

__all__ = [
    # Base classes
    "PricePoint",
    "NetworkMetricPoint",
    "InsertStatus",
    "InsertResult",
    "HistorySource",
    "PredictionSink",
    # Store
    "HistoryStore",
    # Loaders
    "load_price_csv",
    "load_metric_csv"
]

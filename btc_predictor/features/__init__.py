"""特征工程模块"""
from .statistics import (
    SeriesStats,
    NormalizationStats,
    StatisticsComputer,
    save_stats,
    load_stats
)
from .engineer import (
    FeatureVector,
    FeatureExtractor,
    features_to_matrix,
    features_to_dataframe
)

__all__ = [
    "SeriesStats",
    "NormalizationStats",
    "StatisticsComputer",
    "save_stats",
    "load_stats",
    "FeatureVector",
    "FeatureExtractor",
    "features_to_matrix",
    "features_to_dataframe"
]

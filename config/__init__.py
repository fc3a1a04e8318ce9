"""配置模块"""
from .settings import (
    BASE_DIR,
    DATA_DIR,
    MODELS_DIR,
    DATASET_DIR,
    STATS_DIR,
    LOGS_DIR,
    DATABASE_PATH,
    HOUR_MS,
    DAY_MS,
    TradingConfig,
    FeatureConfig,
    FallbackConfig,
    ModelConfig,
    CalibrationConfig,
    DatasetConfig,
    LogConfig
)

__all__ = [
    "BASE_DIR",
    "DATA_DIR",
    "MODELS_DIR",
    "DATASET_DIR",
    "STATS_DIR",
    "LOGS_DIR",
    "DATABASE_PATH",
    "HOUR_MS",
    "DAY_MS",
    "TradingConfig",
    "FeatureConfig",
    "FallbackConfig",
    "ModelConfig",
    "CalibrationConfig",
    "DatasetConfig",
    "LogConfig"
]

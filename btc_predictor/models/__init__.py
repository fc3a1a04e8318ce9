"""模型模块"""
from .base import PyTorchRegressor
from .bilstm import BiLSTMRegressor, BiLSTMRegressorNet
from .model_manager import (
    LoadedModel,
    ModelInfo,
    load_sequence_model,
    read_model_info,
    write_model_metadata
)

__all__ = [
    # 基类
    "PyTorchRegressor",
    # BiLSTM
    "BiLSTMRegressor",
    "BiLSTMRegressorNet",
    # 模型管理
    "LoadedModel",
    "ModelInfo",
    "load_sequence_model",
    "read_model_info",
    "write_model_metadata"
]

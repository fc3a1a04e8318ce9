"""
模型管理器
================================
加载已训练的序列模型checkpoint及其元数据 (training-metadata.json)

checkpoint 内记录训练时使用的统计量指纹，服务端据此检查与推理统计量是否一致
"""

import json
import pickle
import torch
import torch.nn as nn
from pathlib import Path
from typing import Dict, Optional, Any, Tuple
from dataclasses import dataclass, field
import logging

from config import ModelConfig
from ..errors import ArtifactLoadError

logger = logging.getLogger(__name__)


@dataclass
class LoadedModel:
    """已加载的推理模型 (eval模式，只读共享)"""
    model: nn.Module
    input_shape: Tuple[int, int]
    model_id: str = ModelConfig.MODEL_ID
    model_type: str = ModelConfig.MODEL_TYPE
    stats_fingerprint: Optional[str] = None
    device: str = "cpu"
    path: Optional[Path] = None


@dataclass
class ModelInfo:
    """模型信息"""
    model_id: str
    model_type: str
    architecture: str = "Unknown"
    trained_at: str = "Unknown"
    training_time: str = "Unknown"
    input_shape: Optional[Tuple[int, int]] = None
    stats_fingerprint: Optional[str] = None

    # 训练信息
    performance: Dict[str, Any] = field(default_factory=dict)
    dataset: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典"""
        return {
            'model': {
                'id': self.model_id,
                'type': self.model_type,
                'architecture': self.architecture,
                'trained_at': self.trained_at,
                'training_time': self.training_time,
                'input_shape': list(self.input_shape) if self.input_shape else None,
                'stats_fingerprint': self.stats_fingerprint
            },
            'performance': self.performance,
            'dataset': self.dataset
        }

    def get_summary(self) -> str:
        """获取摘要字符串"""
        parts = [f"类型: {self.model_type}", f"架构: {self.architecture}"]
        if self.input_shape:
            parts.append(f"输入: {self.input_shape}")
        if 'direction_accuracy' in self.performance:
            parts.append(f"方向准确率: {self.performance['direction_accuracy']:.2%}")
        parts.append(f"训练时间: {self.trained_at}")
        return " | ".join(parts)


def _resolve_device(device: Optional[str]) -> str:
    if device:
        return device
    return "cuda" if torch.cuda.is_available() else "cpu"


def load_sequence_model(path: Optional[Path] = None, device: Optional[str] = None) -> LoadedModel:
    """
    加载BiLSTM回归模型

    Args:
        path: checkpoint路径，默认 ModelConfig.MODEL_PATH
        device: 推理设备，默认自动选择

    Raises:
        ArtifactLoadError: 文件缺失或无法解析
    """
    from .bilstm import BiLSTMRegressor

    path = Path(path or ModelConfig.MODEL_PATH)
    if not path.exists():
        raise ArtifactLoadError(f"找不到模型文件: {path}")

    device = _resolve_device(device or ModelConfig.DEVICE)
    regressor = BiLSTMRegressor(device=device)

    try:
        checkpoint = regressor.load(path)
    except (OSError, EOFError, pickle.UnpicklingError, RuntimeError, KeyError, ValueError, TypeError, AttributeError) as e:
        raise ArtifactLoadError(f"无法加载模型 {path}: {e}") from e

    model = regressor.model
    model.to(regressor.device)
    model.eval()

    loaded = LoadedModel(
        model=model,
        input_shape=regressor.input_shape,
        model_id=checkpoint.get('model_id', ModelConfig.MODEL_ID),
        model_type=checkpoint.get('model_type', ModelConfig.MODEL_TYPE),
        stats_fingerprint=checkpoint.get('stats_fingerprint'),
        device=str(regressor.device),
        path=path
    )
    logger.info(f"序列模型就绪: {loaded.model_id} 输入 {loaded.input_shape} @ {loaded.device}")
    return loaded


def write_model_metadata(metadata: Dict[str, Any], path: Optional[Path] = None) -> Path:
    """写入 training-metadata.json"""
    path = Path(path or ModelConfig.METADATA_PATH)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(metadata, indent=2, default=str), encoding="utf-8")
    logger.info(f"训练元数据已保存: {path}")
    return path


def read_model_info(loaded: Optional[LoadedModel] = None, metadata_path: Optional[Path] = None) -> ModelInfo:
    """
    读取模型信息

    元数据文件缺失或损坏时各字段保持 Unknown，不抛出异常
    """
    metadata_path = Path(metadata_path or ModelConfig.METADATA_PATH)
    metadata: Dict[str, Any] = {}
    if metadata_path.exists():
        try:
            metadata = json.loads(metadata_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning(f"无法读取训练元数据 {metadata_path}: {e}")

    hyperparameters = metadata.get('hyperparameters') or {}
    info = ModelInfo(
        model_id=loaded.model_id if loaded else metadata.get('model_id', ModelConfig.MODEL_ID),
        model_type=loaded.model_type if loaded else ModelConfig.MODEL_TYPE,
        architecture=hyperparameters.get('architecture', 'Unknown'),
        trained_at=metadata.get('trained_at', 'Unknown'),
        training_time=metadata.get('training_time', 'Unknown'),
        input_shape=loaded.input_shape if loaded else None,
        stats_fingerprint=loaded.stats_fingerprint if loaded else metadata.get('stats_fingerprint'),
        performance=metadata.get('performance') or {},
        dataset=metadata.get('dataset') or {}
    )
    return info

"""
错误类型定义
================================
区分"暂无预测"与"预测计算失败"，调用方按类型处理:

- InsufficientDataError: 历史数据不足以覆盖回溯窗口
- ModelNotReadyError: 模型/统计量尚未加载完成
- InferenceError: 张量形状不匹配或推理运行时错误
- UpstreamDataError: 外部历史/价格数据源失败（由调用方重试）
- ArtifactLoadError: 模型或统计量文件缺失、损坏或互不匹配
- DatasetTooSmallError: 离线数据集规模不足以划分 train/val/test
"""


class PredictorError(Exception):
    """预测引擎错误基类"""


class InsufficientDataError(PredictorError):
    """历史数据点不足"""

    def __init__(self, message: str, required: int = 0, available: int = 0):
        super().__init__(message)
        self.required = required
        self.available = available


class ModelNotReadyError(PredictorError):
    """服务未处于 ready 状态"""


class InferenceError(PredictorError):
    """推理失败"""


class UpstreamDataError(PredictorError):
    """外部数据源失败"""


class ArtifactLoadError(PredictorError):
    """模型/统计量加载失败"""


class DatasetTooSmallError(PredictorError):
    """数据集样本不足"""

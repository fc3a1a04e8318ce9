"""
序列模型预测服务
================================
加载BiLSTM模型与归一化统计量，计算最近60个时间步的特征并推理，
把模型输出的价格变化比例还原为绝对价格、置信度与不确定区间

生命周期:
    uninitialized -> loading_model -> ready
                          └──────-> error (模型/统计量加载失败，可重试 initialize)
"""

import logging
import math
import threading
from contextlib import contextmanager, nullcontext
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Iterator, Optional, Tuple

import numpy as np
import torch

from config import FeatureConfig, ModelConfig, TradingConfig, CalibrationConfig
from ..data_collection.base import HistorySource, PredictionSink, InsertResult, InsertStatus
from ..errors import (
    ArtifactLoadError,
    InferenceError,
    InsufficientDataError,
    ModelNotReadyError,
    PredictorError,
    UpstreamDataError
)
from ..features.engineer import FeatureExtractor, FeatureVector, features_to_matrix
from ..features.statistics import NormalizationStats, load_stats
from ..models.model_manager import LoadedModel, ModelInfo, load_sequence_model, read_model_info
from .calibration import calibrate, compound_return, round2, validate_horizon

logger = logging.getLogger(__name__)

MODEL_METHOD = "model"
EXTRAPOLATION_METHOD = "heuristic_extrapolation"


class ServiceState(Enum):
    """预测服务状态"""
    UNINITIALIZED = "uninitialized"
    LOADING_MODEL = "loading_model"
    READY = "ready"
    ERROR = "error"


@dataclass(frozen=True)
class Prediction:
    """
    价格预测结果

    method 区分模型直接输出 (model) 与复利外推 (heuristic_extrapolation)，
    两者的置信度不可直接比较
    """
    model_id: str
    symbol: str
    predicted_price: float
    predicted_low: float
    predicted_high: float
    current_price: float
    predicted_change: float
    predicted_change_percent: float
    confidence: float
    horizon: str
    timestamp: int
    predicted_for_ts: int
    method: str = MODEL_METHOD
    predicted_return: float = 0.0   # 未取整的价格变化比例

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class InferenceResult:
    """一次推理的原始结果，供各预测窗口共用"""
    model_output: float
    current_price: float
    features: Tuple[FeatureVector, ...]
    timestamp: int

    @property
    def latest(self) -> FeatureVector:
        return self.features[-1]

    @property
    def recent_volatility(self) -> float:
        """最后一个时间步的24小时波动率 (原始标准差)"""
        return self.latest.volatility_24h


class InferenceBuffer:
    """持有单次推理的输入张量，退出 inference_tensor 后 tensor 为 None"""

    def __init__(self, tensor: torch.Tensor):
        self.tensor: Optional[torch.Tensor] = tensor

    def release(self) -> None:
        self.tensor = None


@contextmanager
def inference_tensor(matrix: np.ndarray, device: str = "cpu") -> Iterator[InferenceBuffer]:
    """
    构建 [1, timesteps, features] 输入张量，退出时 (包括异常) 释放

    每次调用独立分配，不与并发调用共享缓冲区。
    调用方只能通过 buffer.tensor 访问张量，不应另存引用
    """
    buffer = InferenceBuffer(torch.tensor(np.asarray(matrix, dtype=np.float32)).unsqueeze(0).to(device))
    try:
        yield buffer
    finally:
        buffer.release()
        if torch.device(device).type == "cuda":
            torch.cuda.empty_cache()


def _now_ms() -> int:
    return int(datetime.now(timezone.utc).timestamp() * 1000)


class PredictionService:
    """
    BTC价格预测服务

    显式构造并注入数据源与加载函数，由调用方持有实例:

        service = PredictionService(HistoryStore(), sink=store)
        service.initialize()
        prediction = service.predict_price("1h")
    """

    def __init__(
        self,
        source: HistorySource,
        model_loader: Optional[Callable[[], LoadedModel]] = None,
        stats_loader: Optional[Callable[[], NormalizationStats]] = None,
        sink: Optional[PredictionSink] = None,
        symbol: str = TradingConfig.SYMBOL,
        lookback: int = FeatureConfig.LOOKBACK,
        clock: Optional[Callable[[], int]] = None,
        serialize_inference: bool = ModelConfig.SERIALIZE_INFERENCE
    ):
        self.source = source
        self.sink = sink
        self.symbol = symbol
        self.lookback = lookback
        self.clock = clock or _now_ms

        self._model_loader = model_loader or (lambda: load_sequence_model(ModelConfig.MODEL_PATH, ModelConfig.DEVICE))
        self._stats_loader = stats_loader or (lambda: load_stats(ModelConfig.STATS_PATH))

        self._state = ServiceState.UNINITIALIZED
        self._last_error: Optional[Exception] = None
        self._model: Optional[LoadedModel] = None
        self._stats: Optional[NormalizationStats] = None
        self._extractor: Optional[FeatureExtractor] = None

        # 初始化的单飞保护
        self._init_lock = threading.Lock()
        # 仅包住推理调用本身，不包住数据获取
        self._inference_lock = threading.Lock() if serialize_inference else None

    # ==================== 生命周期 ====================

    @property
    def state(self) -> ServiceState:
        return self._state

    @property
    def last_error(self) -> Optional[Exception]:
        return self._last_error

    @property
    def stats(self) -> Optional[NormalizationStats]:
        return self._stats

    def is_ready(self) -> bool:
        return self._state is ServiceState.READY and self._model is not None

    def initialize(self) -> None:
        """
        加载模型与统计量

        已就绪时为空操作；并发调用只会触发一次加载。
        加载失败进入 error 状态并抛出 ArtifactLoadError，之后可再次调用重试
        """
        with self._init_lock:
            if self._state is ServiceState.READY:
                logger.debug("预测服务已初始化")
                return

            logger.info("🤖 初始化预测服务...")
            self._state = ServiceState.LOADING_MODEL

            try:
                loaded = self._model_loader()
                stats = self._stats_loader()
                self._check_fingerprint(loaded, stats)
            except ArtifactLoadError as e:
                self._fail(e)
                raise
            except Exception as e:
                error = ArtifactLoadError(f"加载模型或统计量失败: {e}")
                self._fail(error)
                raise error from e

            self._model = loaded
            self._stats = stats
            self._extractor = FeatureExtractor(self.source, stats)
            self._last_error = None
            self._state = ServiceState.READY

            logger.info(f"✅ 预测服务就绪: {loaded.model_id} ({loaded.model_type}) 输入 {loaded.input_shape}")

    def _fail(self, error: Exception) -> None:
        self._state = ServiceState.ERROR
        self._last_error = error
        self._model = None
        self._stats = None
        self._extractor = None
        logger.error(f"❌ 预测服务初始化失败: {error}")

    @staticmethod
    def _check_fingerprint(loaded: LoadedModel, stats: NormalizationStats) -> None:
        """训练时的统计量指纹必须与当前统计量一致"""
        if loaded.stats_fingerprint is None:
            logger.warning("模型未记录统计量指纹，无法校验训练/推理统计量一致性")
            return
        if loaded.stats_fingerprint != stats.fingerprint():
            raise ArtifactLoadError(
                f"统计量指纹不一致: 模型 {loaded.stats_fingerprint[:12]}，"
                f"统计量 {stats.fingerprint()[:12]}"
            )

    def dispose(self) -> None:
        """释放模型，回到 uninitialized"""
        with self._init_lock:
            device = self._model.device if self._model else "cpu"
            self._model = None
            self._stats = None
            self._extractor = None
            self._state = ServiceState.UNINITIALIZED
            if torch.device(device).type == "cuda":
                torch.cuda.empty_cache()
            logger.info("预测服务已释放")

    def _ensure_ready(self, auto_init: bool) -> Tuple[LoadedModel, FeatureExtractor]:
        if not self.is_ready():
            if not auto_init:
                raise ModelNotReadyError(f"预测服务未就绪 (状态: {self._state.value})")
            self.initialize()
        return self._model, self._extractor

    # ==================== 推理 ====================

    def run_inference(self, timestamp: Optional[int] = None, auto_init: bool = False) -> InferenceResult:
        """
        计算截至 timestamp 的特征并推理一次

        Raises:
            ModelNotReadyError: 服务未就绪
            InsufficientDataError: 历史数据不足或没有最新价格
            UpstreamDataError: 数据源失败
            InferenceError: 输入形状不匹配、推理出错或输出非有限值
        """
        model, extractor = self._ensure_ready(auto_init)
        now = self.clock() if timestamp is None else timestamp

        features = extractor.compute_features(self.symbol, now, self.lookback)
        matrix = features_to_matrix(features)
        output = self._forward(model, matrix)

        current_price = self._current_price()

        return InferenceResult(
            model_output=output,
            current_price=current_price,
            features=tuple(features),
            timestamp=now
        )

    def _forward(self, loaded: LoadedModel, matrix: np.ndarray) -> float:
        expected = (1,) + tuple(loaded.input_shape)

        with inference_tensor(matrix, loaded.device) as buffer:
            actual = tuple(buffer.tensor.shape)
            if actual != expected:
                raise InferenceError(f"输入形状不匹配: 期望 {expected}，实际 {actual}")

            guard = self._inference_lock if self._inference_lock is not None else nullcontext()
            try:
                with guard, torch.no_grad():
                    output = loaded.model(buffer.tensor)
                values = output.detach().reshape(-1).cpu()
            except RuntimeError as e:
                raise InferenceError(f"推理失败: {e}") from e

        if values.numel() != 1:
            raise InferenceError(f"模型输出应为单个数值，实际 {values.numel()} 个")

        value = float(values[0])
        if not math.isfinite(value):
            raise InferenceError(f"模型输出非有限值: {value}")
        # 收益率 <= -1 对应价格归零或为负
        if value <= -1.0:
            raise InferenceError(f"模型输出收益率 {value} <= -1")
        return value

    def _current_price(self) -> float:
        try:
            latest = self.source.get_latest_price(self.symbol)
        except PredictorError:
            raise
        except Exception as e:
            raise UpstreamDataError(f"获取最新价格失败: {e}") from e

        if latest is None:
            raise InsufficientDataError(f"没有 {self.symbol} 的最新价格", required=1, available=0)
        return float(latest.price)

    # ==================== 预测 ====================

    def build_prediction(
        self,
        result: InferenceResult,
        horizon: str,
        predicted_return: float,
        method: str
    ) -> Prediction:
        """把价格变化比例转换为带区间和置信度的预测"""
        current = result.current_price
        band = calibrate(current, predicted_return, result.recent_volatility, horizon)

        change = band.predicted_price - current
        change_percent = change / current * 100.0 if current > 0 else 0.0

        return Prediction(
            model_id=self._model.model_id if self._model else ModelConfig.MODEL_ID,
            symbol=self.symbol,
            predicted_price=round2(band.predicted_price),
            predicted_low=round2(band.low),
            predicted_high=round2(band.high),
            current_price=round2(current),
            predicted_change=round2(change),
            predicted_change_percent=round2(change_percent),
            confidence=round2(band.confidence),
            horizon=horizon,
            timestamp=result.timestamp,
            predicted_for_ts=result.timestamp + TradingConfig.HORIZON_MS[horizon],
            method=method,
            predicted_return=predicted_return
        )

    def predict_price(self, horizon: str = "1h", auto_init: bool = False) -> Prediction:
        """
        生成价格预测

        1h 直接使用模型输出；其他窗口由1小时收益率复利外推并标记为 heuristic_extrapolation

        Args:
            horizon: 1h / 24h / 7d
            auto_init: 未就绪时是否自动初始化 (否则抛出 ModelNotReadyError)
        """
        validate_horizon(horizon)
        result = self.run_inference(auto_init=auto_init)

        steps = CalibrationConfig.HORIZON_STEPS[horizon]
        method = MODEL_METHOD if steps == 1 else EXTRAPOLATION_METHOD
        prediction = self.build_prediction(result, horizon, compound_return(result.model_output, steps), method)

        logger.info(
            f"🔮 {horizon} 预测: ${prediction.predicted_price:,.2f} "
            f"({prediction.predicted_change_percent:+.2f}%) 当前 ${prediction.current_price:,.2f} "
            f"置信度 {prediction.confidence:.0%}"
        )
        return prediction

    # ==================== 持久化 ====================

    def record(self, prediction: Prediction) -> InsertResult:
        """保存预测；写入失败不影响调用方拿到预测结果"""
        if self.sink is None:
            return InsertResult.failed("未配置预测存储")

        try:
            result = self.sink.insert_prediction(
                prediction.model_id,
                prediction.symbol,
                prediction.predicted_price,
                prediction.confidence,
                prediction.horizon,
                prediction.timestamp,
                prediction.predicted_for_ts
            )
        except Exception as e:
            logger.error(f"保存预测失败: {e}")
            return InsertResult.failed(str(e))

        if result.status is InsertStatus.INSERTED:
            logger.info(f"💾 预测已保存: {prediction.model_id} {prediction.horizon} @ {prediction.timestamp}")
        elif result.status is InsertStatus.DUPLICATE_SKIPPED:
            logger.info(f"预测已存在，跳过: {prediction.model_id} {prediction.horizon} @ {prediction.timestamp}")
        else:
            logger.error(f"保存预测失败: {result.reason}")
        return result

    def predict_and_store(self, horizon: str = "1h", auto_init: bool = True) -> Tuple[Prediction, InsertResult]:
        """定时任务入口: 预测并保存"""
        prediction = self.predict_price(horizon, auto_init=auto_init)
        return prediction, self.record(prediction)

    # ==================== 信息 ====================

    def get_model_info(self) -> Dict[str, Any]:
        """模型与训练信息，未就绪时只返回状态"""
        if not self.is_ready():
            info: Dict[str, Any] = {"status": "not_initialized" if self._state is not ServiceState.ERROR else "error"}
            if self._last_error is not None:
                info["error"] = str(self._last_error)
            return info

        model_info: ModelInfo = read_model_info(self._model)
        data = model_info.to_dict()
        data["status"] = "ready"
        data["features"] = {
            "count": FeatureConfig.N_FEATURES,
            "names": list(FeatureConfig.FEATURE_NAMES),
            "timesteps": self.lookback,
            "normalization": "min-max (on-chain), log returns, rescaled RSI"
        }
        data["stats_computed_at"] = self._stats.computed_at if self._stats else None
        return data

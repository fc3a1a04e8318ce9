"""
预测服务测试: 生命周期、推理、校准与持久化
"""
import threading
import time

import numpy as np
import pytest
import torch
import torch.nn as nn

from config import HOUR_MS
from btc_predictor.data_collection import HistoryStore, InsertStatus, InsertResult
from btc_predictor.errors import (
    ArtifactLoadError,
    InferenceError,
    InsufficientDataError,
    ModelNotReadyError,
    UpstreamDataError
)
from btc_predictor.models.model_manager import LoadedModel
from btc_predictor.prediction import PredictionService, ServiceState, inference_tensor

from conftest import RETURN_1H, ConstantReturnNet, InMemorySource, make_prices


class NaNNet(nn.Module):
    def forward(self, x):
        return torch.full((x.shape[0], 1), float("nan"))


class WideNet(nn.Module):
    def forward(self, x):
        return torch.zeros((x.shape[0], 2))


class BrokenNet(nn.Module):
    def forward(self, x):
        raise RuntimeError("mat1 and mat2 shapes cannot be multiplied")


# ─── Lifecycle ─────────────────────────────────────────────────

class TestLifecycle:
    def test_initial_state(self, make_service, flat_source):
        service = make_service(flat_source)
        assert service.state is ServiceState.UNINITIALIZED
        assert not service.is_ready()

    def test_predict_before_init_raises(self, make_service, flat_source):
        service = make_service(flat_source)
        with pytest.raises(ModelNotReadyError):
            service.predict_price()

    def test_auto_init(self, make_service, flat_source):
        service = make_service(flat_source)
        prediction = service.predict_price(auto_init=True)
        assert service.is_ready()
        assert prediction.horizon == "1h"

    def test_initialize_is_idempotent(self, default_stats, flat_source):
        calls = []

        def loader():
            calls.append(1)
            return LoadedModel(model=ConstantReturnNet(), input_shape=(60, 10))

        service = PredictionService(flat_source, model_loader=loader, stats_loader=lambda: default_stats)
        service.initialize()
        service.initialize()

        assert len(calls) == 1
        assert service.state is ServiceState.READY

    def test_concurrent_initialize_loads_once(self, default_stats, flat_source):
        calls = []

        def slow_loader():
            calls.append(1)
            time.sleep(0.05)
            return LoadedModel(model=ConstantReturnNet(), input_shape=(60, 10))

        service = PredictionService(flat_source, model_loader=slow_loader, stats_loader=lambda: default_stats)
        threads = [threading.Thread(target=service.initialize) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(calls) == 1
        assert service.is_ready()

    def test_load_failure_moves_to_error(self, default_stats, flat_source):
        def missing():
            raise FileNotFoundError("lstm_btc_best.pth")

        service = PredictionService(flat_source, model_loader=missing, stats_loader=lambda: default_stats)
        with pytest.raises(ArtifactLoadError):
            service.initialize()

        assert service.state is ServiceState.ERROR
        with pytest.raises(ModelNotReadyError):
            service.predict_price()

    def test_retry_after_error(self, default_stats, flat_source):
        attempts = []

        def flaky():
            attempts.append(1)
            if len(attempts) == 1:
                raise ArtifactLoadError("corrupt")
            return LoadedModel(model=ConstantReturnNet(), input_shape=(60, 10))

        service = PredictionService(flat_source, model_loader=flaky, stats_loader=lambda: default_stats)
        with pytest.raises(ArtifactLoadError):
            service.initialize()
        service.initialize()
        assert service.is_ready()

    def test_fingerprint_mismatch(self, make_service, flat_source):
        service = make_service(flat_source, fingerprint="0" * 64)
        with pytest.raises(ArtifactLoadError):
            service.initialize()
        assert service.state is ServiceState.ERROR

    def test_fingerprint_match(self, make_service, flat_source, default_stats):
        service = make_service(flat_source, fingerprint=default_stats.fingerprint())
        service.initialize()
        assert service.is_ready()

    def test_dispose(self, make_service, flat_source):
        service = make_service(flat_source)
        service.initialize()
        service.dispose()
        assert service.state is ServiceState.UNINITIALIZED
        with pytest.raises(ModelNotReadyError):
            service.predict_price()


# ─── 1h prediction ─────────────────────────────────────────────

class TestPredictPrice:
    def test_flat_series_max_confidence(self, make_service, flat_source):
        service = make_service(flat_source)
        service.initialize()
        p = service.predict_price("1h")

        assert p.current_price == 50000.0
        assert p.predicted_price == 50781.25
        assert p.predicted_change == 781.25
        assert p.predicted_change_percent == 1.56
        assert p.confidence == 0.95
        # 波动率为0，区间收缩为一个点
        assert p.predicted_low == p.predicted_high == p.predicted_price
        assert p.method == "model"
        assert p.predicted_return == RETURN_1H

    def test_predicted_for_ts(self, make_service, flat_source):
        service = make_service(flat_source)
        service.initialize()
        p = service.predict_price()
        assert p.timestamp == flat_source.prices[-1].timestamp
        assert p.predicted_for_ts == p.timestamp + HOUR_MS

    def test_band_and_confidence_from_volatility(self, make_service, walk_source):
        service = make_service(walk_source)
        service.initialize()
        result = service.run_inference()
        p = service.predict_price()

        vol = result.recent_volatility
        current = result.current_price
        predicted = current * (1 + RETURN_1H)
        half_width = current * vol * 2

        assert vol > 0
        assert p.confidence == pytest.approx(max(0.1, min(0.95, 1 - vol * 10)), abs=0.005)
        assert p.predicted_low == pytest.approx(max(0.0, predicted - half_width), abs=0.01)
        assert p.predicted_high == pytest.approx(predicted + half_width, abs=0.01)
        assert p.predicted_low <= p.predicted_price <= p.predicted_high
        assert 0.0 <= p.confidence <= 1.0

    def test_low_never_negative(self, make_service, walk_source):
        service = make_service(walk_source, net=ConstantReturnNet(value=-0.99))
        service.initialize()
        p = service.predict_price()
        assert p.predicted_low >= 0.0

    def test_deterministic(self, make_service, walk_source):
        service = make_service(walk_source)
        service.initialize()
        first = service.predict_price()
        second = service.predict_price()

        assert first.predicted_price == second.predicted_price
        assert first.confidence == second.confidence
        assert first.predicted_low == second.predicted_low
        assert first.predicted_high == second.predicted_high

    def test_monetary_values_rounded(self, make_service, walk_source):
        service = make_service(walk_source)
        service.initialize()
        p = service.predict_price()
        for value in (p.predicted_price, p.predicted_low, p.predicted_high, p.current_price, p.confidence):
            assert round(value, 2) == pytest.approx(value, abs=1e-9)

    def test_invalid_horizon(self, make_service, flat_source):
        service = make_service(flat_source)
        service.initialize()
        with pytest.raises(ValueError):
            service.predict_price("3h")

    def test_insufficient_history(self, make_service):
        source = InMemorySource(prices=make_prices([50000.0] * 10))
        service = make_service(source)
        service.initialize()
        with pytest.raises(InsufficientDataError):
            service.predict_price()

    def test_upstream_failure_propagates(self, make_service, flat_prices):
        source = InMemorySource(prices=flat_prices)
        service = make_service(source)
        service.initialize()
        source.fail = True
        with pytest.raises(UpstreamDataError):
            service.predict_price()


# ─── Inference errors ──────────────────────────────────────────

class TestInferenceErrors:
    def test_shape_mismatch(self, make_service, flat_source):
        service = make_service(flat_source, input_shape=(30, 10))
        service.initialize()
        with pytest.raises(InferenceError):
            service.predict_price()

    def test_non_finite_output(self, make_service, flat_source):
        service = make_service(flat_source, net=NaNNet())
        service.initialize()
        with pytest.raises(InferenceError):
            service.predict_price()

    def test_multiple_outputs(self, make_service, flat_source):
        service = make_service(flat_source, net=WideNet())
        service.initialize()
        with pytest.raises(InferenceError):
            service.predict_price()

    def test_runtime_fault(self, make_service, flat_source):
        service = make_service(flat_source, net=BrokenNet())
        service.initialize()
        with pytest.raises(InferenceError):
            service.predict_price()

    @pytest.mark.parametrize("value", [-1.0, -1.5])
    def test_return_at_or_below_minus_one(self, make_service, flat_source, value):
        service = make_service(flat_source, net=ConstantReturnNet(value=value))
        service.initialize()
        for horizon in ("1h", "24h", "7d"):
            with pytest.raises(InferenceError):
                service.predict_price(horizon)

    def test_week_compounding_overflow(self, make_service, flat_source):
        service = make_service(flat_source, net=ConstantReturnNet(value=80.0))
        service.initialize()
        assert service.predict_price("1h").predicted_price == pytest.approx(50000.0 * 81.0)
        with pytest.raises(InferenceError):
            service.predict_price("7d")

    def test_serialized_inference(self, make_service, walk_source):
        service = make_service(walk_source, serialize_inference=True)
        service.initialize()
        results = []

        def worker():
            results.append(service.predict_price().predicted_price)

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(results) == 4
        assert len(set(results)) == 1


class TestInferenceTensor:
    def test_shape_and_dtype(self):
        matrix = np.zeros((60, 10))
        with inference_tensor(matrix) as buffer:
            assert tuple(buffer.tensor.shape) == (1, 60, 10)
            assert buffer.tensor.dtype == torch.float32

    def test_error_inside_scope_propagates(self):
        with pytest.raises(InferenceError):
            with inference_tensor(np.zeros((60, 10))):
                raise InferenceError("boom")

    def test_fresh_buffer_per_call(self):
        matrix = np.zeros((60, 10))
        with inference_tensor(matrix) as first:
            first.tensor.add_(1.0)
        with inference_tensor(matrix) as second:
            assert float(second.tensor.sum()) == 0.0
        assert float(matrix.sum()) == 0.0

    def test_tensor_released_on_exit(self):
        with inference_tensor(np.zeros((60, 10))) as buffer:
            assert buffer.tensor is not None
        assert buffer.tensor is None

    def test_tensor_released_on_error(self):
        with pytest.raises(InferenceError):
            with inference_tensor(np.zeros((60, 10))) as buffer:
                raise InferenceError("boom")
        assert buffer.tensor is None


# ─── Persistence & info ────────────────────────────────────────

class FailingSink:
    def insert_prediction(self, *args, **kwargs):
        raise ConnectionError("database is locked")


class TestRecord:
    def test_insert_then_duplicate(self, make_service, flat_source, tmp_path):
        store = HistoryStore(tmp_path / "predictions.db")
        service = make_service(flat_source, sink=store)
        service.initialize()

        prediction, first = service.predict_and_store()
        _, second = service.predict_and_store()

        assert first.status is InsertStatus.INSERTED
        assert second.status is InsertStatus.DUPLICATE_SKIPPED
        assert second.ok

        df = store.get_predictions(prediction.model_id)
        assert len(df) == 1
        assert df.iloc[0]["predicted_for_ts"] == prediction.predicted_for_ts

    def test_sink_exception_is_failed_result(self, make_service, flat_source):
        service = make_service(flat_source, sink=FailingSink())
        prediction, result = service.predict_and_store()

        assert prediction.predicted_price == 50781.25
        assert result.status is InsertStatus.FAILED
        assert "locked" in result.reason

    def test_no_sink(self, make_service, flat_source):
        service = make_service(flat_source)
        service.initialize()
        result = service.record(service.predict_price())
        assert result == InsertResult.failed("未配置预测存储")


class TestModelInfo:
    def test_not_initialized(self, make_service, flat_source):
        assert make_service(flat_source).get_model_info() == {"status": "not_initialized"}

    def test_error_state(self, make_service, flat_source):
        service = make_service(flat_source, fingerprint="bad")
        with pytest.raises(ArtifactLoadError):
            service.initialize()
        info = service.get_model_info()
        assert info["status"] == "error"
        assert "指纹" in info["error"]

    def test_ready(self, make_service, flat_source):
        service = make_service(flat_source)
        service.initialize()
        info = service.get_model_info()

        assert info["status"] == "ready"
        assert info["model"]["id"] == "lstm_btc_1h_v1"
        assert info["features"]["count"] == 10
        assert info["features"]["timesteps"] == 60

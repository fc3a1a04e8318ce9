"""
命令行入口测试: 统计量发布路径、训练前指纹校验与服务释放
"""
import json

import pytest

import main
import train
from config import ModelConfig
from btc_predictor.dataset.builder import MANIFEST_FILENAME
from btc_predictor.errors import InferenceError, PredictorError, UpstreamDataError
from btc_predictor.features import load_stats, save_stats


class FakeService:
    """记录生命周期调用的预测服务替身"""

    ERRORS = {"initialize": UpstreamDataError, "predict": InferenceError}

    def __init__(self, store, sink=None, symbol="BTC", fail_on=None):
        self.fail_on = fail_on
        self.disposed = False

    def _maybe_fail(self, stage):
        if self.fail_on == stage:
            raise self.ERRORS[stage](f"{stage} failed")

    def initialize(self):
        self._maybe_fail("initialize")

    def predict_price(self, horizon="1h", auto_init=False):
        self._maybe_fail("predict")

    def predict_and_store(self, horizon="1h", auto_init=True):
        self._maybe_fail("predict")

    def get_model_info(self):
        return {"state": "failed"}

    def dispose(self):
        self.disposed = True


@pytest.fixture
def fake_services(monkeypatch):
    """替换 main.PredictionService，返回创建过的实例列表"""
    created = []

    def install(fail_on=None):
        def factory(store, **kwargs):
            service = FakeService(store, fail_on=fail_on, **kwargs)
            created.append(service)
            return service

        monkeypatch.setattr(main, "PredictionService", factory)
        return created

    return install


def _write_dataset(directory, stats, fingerprint=None):
    directory.mkdir(parents=True, exist_ok=True)
    stats_path = save_stats(stats, directory)
    manifest = {
        "stats_file": stats_path.name,
        "stats_fingerprint": fingerprint or stats.fingerprint()
    }
    (directory / MANIFEST_FILENAME).write_text(json.dumps(manifest), encoding="utf-8")
    return manifest


# ─── Service disposal ──────────────────────────────────────────

class TestServiceDisposal:
    def test_prediction_error_still_disposes(self, fake_services):
        created = fake_services(fail_on="predict")
        with pytest.raises(InferenceError):
            main.run_prediction(None, "BTC", "1h", persist=False)
        assert created[0].disposed

    def test_persisted_prediction_error_still_disposes(self, fake_services):
        created = fake_services(fail_on="predict")
        with pytest.raises(InferenceError):
            main.run_prediction(None, "BTC", "24h", persist=True)
        assert created[0].disposed

    def test_initialize_error_still_disposes(self, fake_services):
        created = fake_services(fail_on="initialize")
        with pytest.raises(UpstreamDataError):
            main.run_multi_horizon(None, "BTC")
        assert created[0].disposed

    def test_multi_horizon_error_still_disposes(self, fake_services, monkeypatch):
        created = fake_services()

        class FailingExtrapolator:
            def __init__(self, service):
                pass

            def predict_multiple_horizons(self, auto_init=False):
                raise InferenceError("收益率复利溢出")

        monkeypatch.setattr(main, "HorizonExtrapolator", FailingExtrapolator)
        with pytest.raises(InferenceError):
            main.run_multi_horizon(None, "BTC")
        assert created[0].disposed

    def test_info_disposes(self, fake_services, capsys):
        created = fake_services(fail_on="initialize")
        main.run_info(None, "BTC")
        assert created[0].disposed
        assert json.loads(capsys.readouterr().out) == {"state": "failed"}


# ─── Statistics paths ──────────────────────────────────────────

class TestStatsPaths:
    def test_compute_stats_leaves_served_file(self, tmp_path, monkeypatch, default_stats):
        served = tmp_path / "models" / "served-stats.json"
        monkeypatch.setattr(ModelConfig, "STATS_PATH", served)

        class FixedComputer:
            def __init__(self, store):
                pass

            def compute_stats(self, symbol):
                return default_stats

        monkeypatch.setattr(main, "StatisticsComputer", FixedComputer)

        path = main.run_compute_stats(None, "BTC", output_dir=tmp_path / "stats")
        assert path.parent == tmp_path / "stats"
        assert load_stats(path) == default_stats
        assert not served.exists()

    def test_publish_uses_configured_filename(self, tmp_path, monkeypatch, default_stats):
        served = tmp_path / "models" / "served-stats.json"
        monkeypatch.setattr(ModelConfig, "STATS_PATH", served)

        path = train.publish_stats(default_stats)
        assert path == served
        assert load_stats(served).fingerprint() == default_stats.fingerprint()


# ─── Training preconditions ────────────────────────────────────

class TestDatasetStatsVerification:
    def test_matching_fingerprint(self, tmp_path, default_stats):
        manifest = _write_dataset(tmp_path, default_stats)
        assert train.verify_dataset_stats(tmp_path, manifest) == default_stats

    def test_mismatched_fingerprint(self, tmp_path, default_stats):
        manifest = _write_dataset(tmp_path, default_stats, fingerprint="0" * 64)
        with pytest.raises(PredictorError):
            train.verify_dataset_stats(tmp_path, manifest)

    def test_train_rejects_before_saving_checkpoint(self, tmp_path, monkeypatch, default_stats):
        model_path = tmp_path / "models" / "model.pth"
        stats_path = tmp_path / "models" / "feature-stats.json"
        monkeypatch.setattr(ModelConfig, "MODEL_PATH", model_path)
        monkeypatch.setattr(ModelConfig, "STATS_PATH", stats_path)

        dataset_dir = tmp_path / "dataset"
        _write_dataset(dataset_dir, default_stats, fingerprint="0" * 64)

        # 划分文件不存在: 若先训练会以 OSError 失败
        with pytest.raises(PredictorError):
            train.train_model(dataset_dir, epochs=1, batch_size=4)
        assert not model_path.exists()
        assert not stats_path.exists()

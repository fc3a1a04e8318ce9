"""
多周期外推与市场状态测试
"""
import pytest

from btc_predictor.errors import InferenceError, ModelNotReadyError
from btc_predictor.prediction import HorizonExtrapolator
from btc_predictor.prediction.calibration import calibrate, compound_return, round2, validate_horizon
from btc_predictor.prediction.horizons import rsi_state, volatility_regime

from conftest import RETURN_1H, ConstantReturnNet


# ─── Calibration helpers ───────────────────────────────────────

class TestCalibration:
    def test_compound_return(self):
        assert compound_return(0.01, 1) == 0.01
        assert compound_return(0.01, 24) == pytest.approx(1.01 ** 24 - 1, abs=1e-12)
        assert compound_return(-0.01, 168) == pytest.approx(0.99 ** 168 - 1, abs=1e-12)

    def test_compound_return_overflow(self):
        with pytest.raises(InferenceError):
            compound_return(80.0, 168)

    @pytest.mark.parametrize("value", [-1.0, -2.5])
    def test_compound_return_rejects_total_loss(self, value):
        with pytest.raises(InferenceError):
            compound_return(value, 24)

    def test_calibrate_rejects_non_finite(self):
        with pytest.raises(InferenceError):
            calibrate(50000.0, 1e308, 0.0, "24h")

    def test_round2_half_up(self):
        assert round2(1.5625) == 1.56
        assert round2(0.125) == 0.13
        assert round2(-0.125) == -0.12

    def test_confidence_caps(self):
        assert calibrate(100.0, 0.0, 0.0, "1h").confidence == 0.95
        assert calibrate(100.0, 0.0, 0.0, "24h").confidence == 0.8
        assert calibrate(100.0, 0.0, 0.0, "7d").confidence == 0.6

    def test_confidence_floor(self):
        assert calibrate(100.0, 0.0, 1.0, "1h").confidence == 0.1

    def test_band_widths(self):
        band = calibrate(100.0, 0.0, 0.01, "24h")
        assert band.low == pytest.approx(96.0)
        assert band.high == pytest.approx(104.0)
        # 1 - 0.01*15 = 0.85，被24h上限截断
        assert band.confidence == 0.8

    def test_low_clamped_at_zero(self):
        assert calibrate(100.0, 0.0, 0.5, "7d").low == 0.0

    def test_unknown_horizon(self):
        with pytest.raises(ValueError):
            validate_horizon("30d")


class TestMarketStateThresholds:
    def test_rsi_state(self):
        assert rsi_state(70.01) == "overbought"
        assert rsi_state(70.0) == "neutral"
        assert rsi_state(30.0) == "neutral"
        assert rsi_state(29.99) == "oversold"

    def test_volatility_regime(self):
        assert volatility_regime(0.031) == "high"
        assert volatility_regime(0.03) == "normal"
        assert volatility_regime(0.01) == "normal"
        assert volatility_regime(0.009) == "low"


# ─── HorizonExtrapolator ───────────────────────────────────────

class TestHorizonExtrapolator:
    def test_not_ready(self, make_service, flat_source):
        with pytest.raises(ModelNotReadyError):
            HorizonExtrapolator(make_service(flat_source)).predict_multiple_horizons()

    def test_single_forward_pass(self, make_service, flat_source):
        net = ConstantReturnNet()
        service = make_service(flat_source, net=net)
        HorizonExtrapolator(service).predict_multiple_horizons(auto_init=True)
        assert net.calls == 1

    def test_week_overflow_raises(self, make_service, flat_source):
        service = make_service(flat_source, net=ConstantReturnNet(value=80.0))
        with pytest.raises(InferenceError):
            HorizonExtrapolator(service).predict_multiple_horizons(auto_init=True)

    def test_flat_series(self, make_service, flat_source):
        forecast = HorizonExtrapolator(make_service(flat_source)).predict_multiple_horizons(auto_init=True)

        assert forecast.hour.predicted_price == 50781.25
        assert forecast.day.predicted_price == pytest.approx(50000.0 * (1 + RETURN_1H) ** 24, abs=0.01)
        assert forecast.week.predicted_price == pytest.approx(50000.0 * (1 + RETURN_1H) ** 168, abs=0.01)

        assert forecast.hour.confidence == 0.95
        assert forecast.day.confidence == 0.8
        assert forecast.week.confidence == 0.6

        context = forecast.context
        assert context.rsi == 100.0
        assert context.rsi_state == "overbought"
        assert context.trend == "bearish"
        assert context.trend_strength == 0.0
        assert context.volatility == 0.0
        assert context.volatility_regime == "low"

    def test_method_labels(self, make_service, walk_source):
        forecast = HorizonExtrapolator(make_service(walk_source)).predict_multiple_horizons(auto_init=True)
        assert forecast["1h"].method == "model"
        assert forecast["24h"].method == "heuristic_extrapolation"
        assert forecast["7d"].method == "heuristic_extrapolation"

    def test_compounding_matches_1h_return(self, make_service, walk_source):
        forecast = HorizonExtrapolator(make_service(walk_source)).predict_multiple_horizons(auto_init=True)
        r = forecast.hour.predicted_return
        assert forecast.day.predicted_return == pytest.approx((1 + r) ** 24 - 1, abs=1e-9)
        assert forecast.week.predicted_return == pytest.approx((1 + r) ** 168 - 1, abs=1e-9)

    def test_matches_single_horizon_prediction(self, make_service, walk_source):
        service = make_service(walk_source)
        forecast = HorizonExtrapolator(service).predict_multiple_horizons(auto_init=True)
        for horizon in ("1h", "24h", "7d"):
            single = service.predict_price(horizon)
            assert single.predicted_price == forecast[horizon].predicted_price
            assert single.confidence == forecast[horizon].confidence

    def test_confidence_decreases_with_horizon(self, make_service, walk_source):
        forecast = HorizonExtrapolator(make_service(walk_source)).predict_multiple_horizons(auto_init=True)
        assert forecast.hour.confidence >= forecast.day.confidence >= forecast.week.confidence

    def test_context_from_walk(self, make_service, walk_source):
        forecast = HorizonExtrapolator(make_service(walk_source)).predict_multiple_horizons(auto_init=True)
        context = forecast.context
        assert 0.0 <= context.rsi <= 100.0
        assert context.trend in ("bullish", "bearish")
        assert context.volatility > 0.0
        assert context.trend_strength >= 0.0

    def test_to_dict_keys(self, make_service, flat_source):
        forecast = HorizonExtrapolator(make_service(flat_source)).predict_multiple_horizons(auto_init=True)
        data = forecast.to_dict()
        assert set(data) == {"1h", "24h", "7d", "context", "timestamp"}
        assert data["24h"]["horizon"] == "24h"
        assert data["context"]["rsi_state"] == "overbought"
        assert data["timestamp"] == flat_source.prices[-1].timestamp

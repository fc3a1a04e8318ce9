"""
测试配置与共享fixtures
内存历史数据源、固定收益率的模型、统计量与预测服务工厂
"""
import bisect
from typing import List, Optional, Sequence

import numpy as np
import pytest
import torch
import torch.nn as nn

from config import HOUR_MS
from btc_predictor.data_collection.base import HistorySource, PricePoint, NetworkMetricPoint
from btc_predictor.features.statistics import NormalizationStats, SeriesStats
from btc_predictor.models.model_manager import LoadedModel
from btc_predictor.prediction.predictor import PredictionService

# 2024-01-07 00:00 UTC，周日
BASE_TS = 1704585600000

# 可被 float32 精确表示的收益率
RETURN_1H = 0.015625


def make_prices(values: Sequence[float], start_ts: int = BASE_TS, symbol: str = "BTC") -> List[PricePoint]:
    return [
        PricePoint(symbol=symbol, price=float(v), timestamp=start_ts + i * HOUR_MS, source="test")
        for i, v in enumerate(values)
    ]


def make_metrics(values: Sequence[float], start_ts: int = BASE_TS, step_ms: int = 24 * HOUR_MS) -> List[NetworkMetricPoint]:
    return [NetworkMetricPoint(value=float(v), timestamp=start_ts + i * step_ms) for i, v in enumerate(values)]


class InMemorySource(HistorySource):
    """按时间戳排序的内存数据源，区间查询保留最新的 limit 条"""

    def __init__(
        self,
        prices: Sequence[PricePoint] = (),
        hashrates: Sequence[NetworkMetricPoint] = (),
        difficulties: Sequence[NetworkMetricPoint] = (),
        fail: bool = False
    ):
        self.prices = sorted(prices, key=lambda p: p.timestamp)
        self.hashrates = sorted(hashrates, key=lambda p: p.timestamp)
        self.difficulties = sorted(difficulties, key=lambda p: p.timestamp)
        self.fail = fail
        self.calls = 0

    @staticmethod
    def _window(points, start_ts: int, end_ts: int, limit: int):
        stamps = [p.timestamp for p in points]
        lo = bisect.bisect_left(stamps, start_ts)
        hi = bisect.bisect_right(stamps, end_ts)
        selected = points[lo:hi]
        return list(selected[-limit:]) if limit > 0 else []

    def _check(self):
        self.calls += 1
        if self.fail:
            raise ConnectionError("history backend unavailable")

    def get_price_history(self, symbol, start_ts, end_ts, limit):
        self._check()
        points = [p for p in self.prices if p.symbol == symbol]
        return self._window(points, start_ts, end_ts, limit)

    def get_hashrate_history(self, start_ts, end_ts, limit):
        self._check()
        return self._window(self.hashrates, start_ts, end_ts, limit)

    def get_difficulty_history(self, start_ts, end_ts, limit):
        self._check()
        return self._window(self.difficulties, start_ts, end_ts, limit)

    def get_latest_price(self, symbol) -> Optional[PricePoint]:
        self._check()
        points = [p for p in self.prices if p.symbol == symbol]
        return points[-1] if points else None


class ConstantReturnNet(nn.Module):
    """无论输入如何都输出固定价格变化比例"""

    def __init__(self, value: float = RETURN_1H, input_shape=(60, 10)):
        super().__init__()
        self.value = value
        self.input_shape = tuple(input_shape)
        self.calls = 0

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        self.calls += 1
        return torch.full((x.shape[0], 1), self.value, dtype=x.dtype)


def random_walk(n: int, start: float = 40000.0, seed: int = 42) -> np.ndarray:
    rng = np.random.default_rng(seed)
    returns = rng.normal(0.0, 0.01, n)
    return start * np.exp(np.cumsum(returns))


@pytest.fixture
def flat_prices():
    """200小时恒定 $50,000"""
    return make_prices([50000.0] * 200)


@pytest.fixture
def flat_source(flat_prices):
    return InMemorySource(prices=flat_prices)


@pytest.fixture
def walk_prices():
    return make_prices(random_walk(200))


@pytest.fixture
def walk_source(walk_prices):
    hashrates = make_metrics(np.linspace(5e20, 6e20, 9))
    difficulties = make_metrics(np.linspace(7e13, 8e13, 9))
    return InMemorySource(prices=walk_prices, hashrates=hashrates, difficulties=difficulties)


@pytest.fixture
def default_stats():
    return NormalizationStats(
        price=SeriesStats.from_values([40000.0, 50000.0, 60000.0]),
        hashrate=SeriesStats.from_values([5e20, 6e20]),
        difficulty=SeriesStats.from_values([7e13, 8e13]),
        computed_at=BASE_TS
    )


@pytest.fixture
def make_service(default_stats):
    """
    预测服务工厂

    now 默认为数据源最后一个价格点的时间
    """

    def _make(
        source: InMemorySource,
        net: Optional[nn.Module] = None,
        fingerprint: Optional[str] = None,
        stats: Optional[NormalizationStats] = None,
        input_shape=(60, 10),
        sink=None,
        now: Optional[int] = None,
        **kwargs
    ) -> PredictionService:
        stats = stats or default_stats
        net = net if net is not None else ConstantReturnNet(input_shape=input_shape)
        loaded = LoadedModel(model=net, input_shape=tuple(input_shape), stats_fingerprint=fingerprint)
        clock_ts = now if now is not None else source.prices[-1].timestamp
        return PredictionService(
            source,
            model_loader=lambda: loaded,
            stats_loader=lambda: stats,
            sink=sink,
            clock=lambda: clock_ts,
            **kwargs
        )

    return _make

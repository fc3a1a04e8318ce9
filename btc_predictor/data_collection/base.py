"""
数据接口抽象基类
================================
定义预测引擎依赖的外部数据接口:
- HistorySource: 价格/算力/难度历史查询
- PredictionSink: 预测结果持久化

具体实现见 cache.HistoryStore (SQLite)
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Dict, Any


@dataclass(frozen=True)
class PricePoint:
    """价格数据点，按时间戳升序排列"""
    symbol: str
    price: float
    timestamp: int          # 毫秒
    source: str = "api"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "price": self.price,
            "timestamp": self.timestamp,
            "source": self.source
        }


@dataclass(frozen=True)
class NetworkMetricPoint:
    """链上指标数据点 (算力或难度)"""
    value: float
    timestamp: int          # 毫秒


class InsertStatus(Enum):
    """持久化结果"""
    INSERTED = "inserted"
    DUPLICATE_SKIPPED = "duplicate_skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class InsertResult:
    """带标签的插入结果，区分重复跳过与写入失败"""
    status: InsertStatus
    reason: Optional[str] = None

    @classmethod
    def inserted(cls) -> "InsertResult":
        return cls(InsertStatus.INSERTED)

    @classmethod
    def duplicate(cls, reason: Optional[str] = None) -> "InsertResult":
        return cls(InsertStatus.DUPLICATE_SKIPPED, reason)

    @classmethod
    def failed(cls, reason: str) -> "InsertResult":
        return cls(InsertStatus.FAILED, reason)

    @property
    def ok(self) -> bool:
        return self.status is not InsertStatus.FAILED


class HistorySource(ABC):
    """
    历史数据源抽象基类

    所有查询返回按时间戳升序排列的列表；数据源故障应抛出 UpstreamDataError
    """

    @abstractmethod
    def get_price_history(
        self,
        symbol: str,
        start_ts: int,
        end_ts: int,
        limit: int
    ) -> List[PricePoint]:
        """获取 [start_ts, end_ts] 内的价格，超过 limit 时保留最新的 limit 条"""
        pass

    @abstractmethod
    def get_hashrate_history(self, start_ts: int, end_ts: int, limit: int) -> List[NetworkMetricPoint]:
        """获取算力历史"""
        pass

    @abstractmethod
    def get_difficulty_history(self, start_ts: int, end_ts: int, limit: int) -> List[NetworkMetricPoint]:
        """获取难度历史"""
        pass

    @abstractmethod
    def get_latest_price(self, symbol: str) -> Optional[PricePoint]:
        """获取最新价格，没有数据时返回 None"""
        pass


class PredictionSink(ABC):
    """预测结果持久化接口"""

    @abstractmethod
    def insert_prediction(
        self,
        model_id: str,
        symbol: str,
        predicted_price: float,
        confidence: float,
        horizon: str,
        ts: int,
        predicted_for_ts: Optional[int] = None
    ) -> InsertResult:
        """保存一条预测"""
        pass

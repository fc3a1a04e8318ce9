"""
本地历史数据导入
================================
从CSV读取价格/算力/难度历史，转换为数据点列表后写入 HistoryStore

CSV 至少包含 timestamp 列 (毫秒时间戳或可解析的日期字符串) 和数值列
"""

import logging
from pathlib import Path
from typing import List

import pandas as pd

from config import TradingConfig
from .base import PricePoint, NetworkMetricPoint

logger = logging.getLogger(__name__)


def _read_series(path: Path, value_column: str) -> pd.Series:
    """读取CSV为按时间升序、去重后的 Series (索引为毫秒时间戳)"""
    path = Path(path)
    df = pd.read_csv(path)

    missing = {"timestamp", value_column} - set(df.columns)
    if missing:
        raise ValueError(f"{path} 缺少列: {sorted(missing)}")

    ts = df["timestamp"]
    if pd.api.types.is_numeric_dtype(ts):
        ts_ms = ts.astype("int64")
    else:
        parsed = pd.to_datetime(ts, utc=True)
        ts_ms = (parsed - pd.Timestamp(0, tz="UTC")) // pd.Timedelta(milliseconds=1)

    series = pd.Series(pd.to_numeric(df[value_column], errors="coerce").values, index=ts_ms.values)
    series = series.dropna()
    series = series[~series.index.duplicated(keep="first")].sort_index()

    logger.info(f"📁 加载 {path}: {len(series)} 条记录")
    return series


def load_price_csv(
    path: Path,
    symbol: str = TradingConfig.SYMBOL,
    price_column: str = "close",
    source: str = "csv"
) -> List[PricePoint]:
    """读取价格CSV (默认使用 close 列)"""
    series = _read_series(path, price_column)
    return [
        PricePoint(symbol=symbol, price=float(value), timestamp=int(ts), source=source)
        for ts, value in series.items()
    ]


def load_metric_csv(path: Path, value_column: str = "value") -> List[NetworkMetricPoint]:
    """读取算力或难度CSV"""
    series = _read_series(path, value_column)
    return [NetworkMetricPoint(value=float(value), timestamp=int(ts)) for ts, value in series.items()]

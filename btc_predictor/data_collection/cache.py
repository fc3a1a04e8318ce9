"""
SQLite历史数据存储
================================
缓存价格、算力、难度历史以及预测结果，实现 HistorySource / PredictionSink 接口
"""

import sqlite3
from contextlib import closing
from datetime import datetime
from typing import Optional, List, Iterable, Tuple
from pathlib import Path
import logging

import pandas as pd

from config import DATABASE_PATH, TradingConfig
from ..errors import UpstreamDataError
from .base import (
    HistorySource,
    PredictionSink,
    PricePoint,
    NetworkMetricPoint,
    InsertResult
)

logger = logging.getLogger(__name__)


class HistoryStore(HistorySource, PredictionSink):
    """
    SQLite历史数据存储
    价格按 (symbol, timestamp) 唯一，预测按 (model_id, horizon, ts) 唯一
    """

    _METRIC_TABLES = {
        "hashrate": "hashrate_history",
        "difficulty": "difficulty_history",
    }

    def __init__(self, db_path: Optional[Path] = None):
        self.db_path = Path(db_path or DATABASE_PATH)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_database()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path)

    def _init_database(self):
        """初始化数据库表"""
        with closing(self._connect()) as conn, conn:
            cursor = conn.cursor()

            # 价格历史表
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS prices (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    symbol TEXT NOT NULL,
                    source TEXT NOT NULL DEFAULT 'api',
                    price REAL NOT NULL,
                    ts INTEGER NOT NULL,
                    UNIQUE(symbol, ts)
                )
            """)

            # 链上指标表
            for table in self._METRIC_TABLES.values():
                cursor.execute(f"""
                    CREATE TABLE IF NOT EXISTS {table} (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        value REAL NOT NULL,
                        timestamp INTEGER NOT NULL UNIQUE,
                        fetched_at INTEGER
                    )
                """)

            # 预测结果表
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS predictions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    model_id TEXT NOT NULL,
                    symbol TEXT NOT NULL,
                    predicted_price REAL NOT NULL,
                    confidence REAL,
                    horizon TEXT NOT NULL,
                    ts INTEGER NOT NULL,
                    predicted_for_ts INTEGER,
                    UNIQUE(model_id, horizon, ts)
                )
            """)

            # 创建索引
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_prices_symbol_ts
                ON prices(symbol, ts)
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_predictions_model
                ON predictions(model_id, ts)
            """)

        logger.info(f"数据库初始化完成: {self.db_path}")

    def _query(self, sql: str, params: Tuple) -> List[tuple]:
        """执行查询，数据库错误统一转换为 UpstreamDataError"""
        try:
            with closing(self._connect()) as conn:
                return conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise UpstreamDataError(f"查询历史数据失败: {e}") from e

    # ===== 写入 =====

    def save_prices(self, points: Iterable[PricePoint]) -> int:
        """
        批量保存价格，重复的 (symbol, ts) 会被忽略

        Returns:
            新写入的条数
        """
        rows = [(p.symbol, p.source, p.price, p.timestamp) for p in points]
        if not rows:
            return 0

        with closing(self._connect()) as conn, conn:
            before = conn.total_changes
            conn.executemany("""
                INSERT OR IGNORE INTO prices (symbol, source, price, ts)
                VALUES (?, ?, ?, ?)
            """, rows)
            inserted = conn.total_changes - before

        logger.info(f"保存 {inserted}/{len(rows)} 条价格数据")
        return inserted

    def save_metrics(self, kind: str, points: Iterable[NetworkMetricPoint]) -> int:
        """批量保存算力/难度数据 (kind: hashrate | difficulty)"""
        table = self._metric_table(kind)
        now = int(datetime.now().timestamp() * 1000)
        rows = [(p.value, p.timestamp, now) for p in points]
        if not rows:
            return 0

        with closing(self._connect()) as conn, conn:
            before = conn.total_changes
            conn.executemany(f"""
                INSERT OR IGNORE INTO {table} (value, timestamp, fetched_at)
                VALUES (?, ?, ?)
            """, rows)
            inserted = conn.total_changes - before

        logger.info(f"保存 {inserted}/{len(rows)} 条{kind}数据")
        return inserted

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
        """
        保存一条预测

        Returns:
            InsertResult: 写入成功 / 重复跳过 / 失败原因
        """
        if predicted_for_ts is None:
            predicted_for_ts = ts + TradingConfig.HORIZON_MS.get(horizon, TradingConfig.HORIZON_MS["1h"])

        try:
            with closing(self._connect()) as conn, conn:
                conn.execute("""
                    INSERT INTO predictions
                    (model_id, symbol, predicted_price, confidence, horizon, ts, predicted_for_ts)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                """, (model_id, symbol, predicted_price, confidence, horizon, ts, predicted_for_ts))
        except sqlite3.IntegrityError as e:
            # NOT NULL 等约束失败不算重复
            if "UNIQUE" not in str(e).upper():
                logger.warning(f"保存预测失败: {e}")
                return InsertResult.failed(str(e))
            logger.debug(f"预测已存在，跳过: {model_id} {horizon} @ {ts}")
            return InsertResult.duplicate(str(e))
        except sqlite3.Error as e:
            logger.warning(f"保存预测失败: {e}")
            return InsertResult.failed(str(e))

        return InsertResult.inserted()

    # ===== 查询 =====

    def get_price_history(
        self,
        symbol: str,
        start_ts: int,
        end_ts: int,
        limit: int
    ) -> List[PricePoint]:
        # 取区间内最新的 limit 条，再按时间升序返回
        rows = self._query("""
            SELECT symbol, price, ts, source FROM (
                SELECT symbol, price, ts, source
                FROM prices
                WHERE symbol = ? AND ts BETWEEN ? AND ?
                ORDER BY ts DESC
                LIMIT ?
            ) ORDER BY ts ASC
        """, (symbol, start_ts, end_ts, limit))
        return [PricePoint(symbol=r[0], price=r[1], timestamp=r[2], source=r[3]) for r in rows]

    def get_hashrate_history(self, start_ts: int, end_ts: int, limit: int) -> List[NetworkMetricPoint]:
        return self._metric_history("hashrate", start_ts, end_ts, limit)

    def get_difficulty_history(self, start_ts: int, end_ts: int, limit: int) -> List[NetworkMetricPoint]:
        return self._metric_history("difficulty", start_ts, end_ts, limit)

    def get_latest_price(self, symbol: str) -> Optional[PricePoint]:
        rows = self._query("""
            SELECT symbol, price, ts, source FROM prices
            WHERE symbol = ?
            ORDER BY ts DESC
            LIMIT 1
        """, (symbol,))
        if not rows:
            return None
        r = rows[0]
        return PricePoint(symbol=r[0], price=r[1], timestamp=r[2], source=r[3])

    def get_predictions(self, model_id: str, horizon: Optional[str] = None) -> pd.DataFrame:
        """获取某个模型的历史预测"""
        query = """
            SELECT model_id, symbol, predicted_price, confidence, horizon, ts, predicted_for_ts
            FROM predictions
            WHERE model_id = ?
        """
        params = [model_id]

        if horizon:
            query += " AND horizon = ?"
            params.append(horizon)

        query += " ORDER BY ts ASC"

        with closing(self._connect()) as conn:
            df = pd.read_sql_query(query, conn, params=tuple(params))

        return df

    def _metric_table(self, kind: str) -> str:
        if kind not in self._METRIC_TABLES:
            raise ValueError(f"未知的链上指标: {kind}")
        return self._METRIC_TABLES[kind]

    def _metric_history(self, kind: str, start_ts: int, end_ts: int, limit: int) -> List[NetworkMetricPoint]:
        table = self._metric_table(kind)
        rows = self._query(f"""
            SELECT value, timestamp FROM (
                SELECT value, timestamp
                FROM {table}
                WHERE timestamp BETWEEN ? AND ?
                ORDER BY timestamp DESC
                LIMIT ?
            ) ORDER BY timestamp ASC
        """, (start_ts, end_ts, limit))
        return [NetworkMetricPoint(value=r[0], timestamp=r[1]) for r in rows]

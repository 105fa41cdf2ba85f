"""
订单持久化 (SQLite)

- insert: 新订单
- update: 部分字段合并, 同时刷新 updated_at, 未提供的字段不覆盖
- get / list_recent: 查询

同步 SQLite 调用通过 asyncio.to_thread 放到线程池, 每次调用独立连接。
"""

import asyncio
import logging
import sqlite3
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

from .models import Order, OrderStatus, OrderType

logger = logging.getLogger(__name__)

# Order 字段 -> 列名
COLUMNS = {
    "type": "type",
    "token_in": "token_in",
    "token_out": "token_out",
    "amount_in": "amount_in",
    "slippage": "slippage",
    "status": "status",
    "attempts": "attempts",
    "dex": "dex",
    "tx_hash": "tx_hash",
    "executed_price": "executed_price",
    "error": "error",
    "created_at": "created_at",
    "updated_at": "updated_at",
}

SELECT_COLUMNS = ("id", *COLUMNS.values())


def _to_db(value: Any) -> Any:
    if isinstance(value, (OrderStatus, OrderType)):
        return value.value
    return value


class OrderStore:
    """SQLite 订单表"""

    def __init__(self, db_path: str):
        self.db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path)

    def _init_db(self):
        """初始化数据库表"""
        conn = self._connect()
        cursor = conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS orders (
                id TEXT PRIMARY KEY,
                type TEXT NOT NULL,
                token_in TEXT NOT NULL,
                token_out TEXT NOT NULL,
                amount_in REAL NOT NULL,
                slippage REAL NOT NULL,
                status TEXT NOT NULL,
                attempts INTEGER DEFAULT 0,
                dex TEXT,
                tx_hash TEXT,
                executed_price REAL,
                error TEXT,
                created_at REAL NOT NULL,
                updated_at REAL NOT NULL
            )
        """)
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_orders_status ON orders(status)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_orders_created ON orders(created_at)")

        conn.commit()
        conn.close()
        logger.info(f"Order database initialized: {self.db_path}")

    # ========== 同步实现 ==========

    def _insert(self, order: Order) -> None:
        conn = self._connect()
        try:
            conn.execute(
                """
                INSERT INTO orders (id, type, token_in, token_out, amount_in, slippage, status,
                                    attempts, dex, tx_hash, executed_price, error, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    order.id, order.type.value, order.token_in, order.token_out,
                    order.amount_in, order.slippage, order.status.value, order.attempts,
                    order.dex, order.tx_hash, order.executed_price, order.error,
                    order.created_at, order.updated_at,
                ),
            )
            conn.commit()
        finally:
            conn.close()

    def _update(self, order_id: str, fields: Dict[str, Any]) -> bool:
        sets: List[str] = []
        values: List[Any] = []

        for key, value in fields.items():
            if key not in COLUMNS:
                raise KeyError(f"Unknown order field: {key}")
            if key == "updated_at":
                continue
            sets.append(f"{COLUMNS[key]} = ?")
            values.append(_to_db(value))

        if not sets:
            return False

        sets.append("updated_at = ?")
        values.append(time.time())
        values.append(order_id)

        conn = self._connect()
        try:
            cursor = conn.execute(
                f"UPDATE orders SET {', '.join(sets)} WHERE id = ?", values
            )
            conn.commit()
            return cursor.rowcount > 0
        finally:
            conn.close()

    def _get(self, order_id: str) -> Optional[Order]:
        conn = self._connect()
        try:
            row = conn.execute(
                f"SELECT {', '.join(SELECT_COLUMNS)} FROM orders WHERE id = ?",
                (order_id,),
            ).fetchone()
        finally:
            conn.close()
        return self._row_to_order(row) if row else None

    def _list_recent(self, limit: int) -> List[Order]:
        conn = self._connect()
        try:
            rows = conn.execute(
                f"SELECT {', '.join(SELECT_COLUMNS)} FROM orders ORDER BY created_at DESC LIMIT ?",
                (limit,),
            ).fetchall()
        finally:
            conn.close()
        return [self._row_to_order(row) for row in rows]

    @staticmethod
    def _row_to_order(row) -> Order:
        data = dict(zip(SELECT_COLUMNS, row))
        return Order(
            id=data["id"],
            type=OrderType(data["type"]),
            token_in=data["token_in"],
            token_out=data["token_out"],
            amount_in=data["amount_in"],
            slippage=data["slippage"],
            status=OrderStatus(data["status"]),
            attempts=data["attempts"] or 0,
            dex=data["dex"],
            tx_hash=data["tx_hash"],
            executed_price=data["executed_price"],
            error=data["error"],
            created_at=data["created_at"],
            updated_at=data["updated_at"],
        )

    # ========== 异步接口 ==========

    async def insert(self, order: Order) -> None:
        """插入新订单"""
        await asyncio.to_thread(self._insert, order)

    async def update(self, order_id: str, **fields: Any) -> bool:
        """部分字段更新 (显式传 None 表示清空该字段)"""
        return await asyncio.to_thread(self._update, order_id, fields)

    async def get(self, order_id: str) -> Optional[Order]:
        """查询订单"""
        return await asyncio.to_thread(self._get, order_id)

    async def list_recent(self, limit: int = 50) -> List[Order]:
        """最近订单"""
        return await asyncio.to_thread(self._list_recent, limit)

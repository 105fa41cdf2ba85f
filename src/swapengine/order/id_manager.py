"""
订单 ID / 交易哈希生成

OrderId 格式: UUID4 (带连字符), 同时作为主键与队列去重键
TxHash 格式: "5" + 32 位十六进制 (模拟 Solana 签名前缀)
"""

import re
import uuid

ORDER_ID_PATTERN = re.compile(r"[A-Za-z0-9-]+")
TX_HASH_PREFIX = "5"
TX_HASH_LENGTH = 32


def generate_order_id() -> str:
    """生成新的订单 ID"""
    return str(uuid.uuid4())


def generate_tx_hash() -> str:
    """生成模拟交易哈希"""
    return f"{TX_HASH_PREFIX}{uuid.uuid4().hex[:TX_HASH_LENGTH]}"


def is_valid_order_id(order_id) -> bool:
    """状态通道路径中的订单 ID 校验"""
    return isinstance(order_id, str) and bool(ORDER_ID_PATTERN.fullmatch(order_id))

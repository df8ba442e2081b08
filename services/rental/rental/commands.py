"""
Rental Service — コマンドハンドラ (CQRS の Write 側)

外部に公開する書き込み操作は 2 つだけ:
  - place_order: カート検証 → アトミックな永続化 → OrderPlaced 発行
  - set_status : 支払いレコードと注文のステータスを揃えて更新 → OrderStatusChanged 発行

どちらも Result を返し、自動リトライはしない（リトライ方針は呼び出し側の責任）。
"""

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.orm import sessionmaker

from .catalog import CatalogReader
from .events import EventPublisher, OrderStatusChanged
from .lifecycle import parse_status, synchronize_status
from .models import PaymentRecord, PlacedOrder
from .persistence import persist_order
from .results import Ok, Result
from .validator import validate_order

logger = logging.getLogger(__name__)


async def place_order(
    session_factory: sessionmaker,
    catalog: CatalogReader,
    publisher: EventPublisher,
    user_id: str | None,
    items: Any,
    personal_info: Any,
    payment_method: str | None,
    shipping_method: str | None,
) -> Result[PlacedOrder]:
    """
    注文作成コマンド

    1. 検証（読み取りのみ・参考値）で OrderDraft を作る
    2. 注文・明細・在庫減算・支払いレコードを 1 単位でコミット
    3. コミット後に OrderPlaced を発行
    """
    draft = await validate_order(
        catalog, user_id, items, personal_info, payment_method, shipping_method
    )
    if not isinstance(draft, Ok):
        logger.info("Order rejected for user %s: %s", user_id, draft.message)
        return draft

    placed = await persist_order(session_factory, draft.value)
    if not isinstance(placed, Ok):
        return placed

    logger.info(
        "Order %s placed by user %s (transaction %s, total=%s)",
        placed.value.order.id,
        user_id,
        placed.value.transaction.id,
        placed.value.order.total,
    )
    await publisher.order_placed(placed.value)
    return placed


async def set_status(
    session_factory: sessionmaker,
    publisher: EventPublisher,
    record_id: str,
    status: Any,
) -> Result[PaymentRecord]:
    """
    ステータス変更コマンド（管理者操作）

    支払いレコードと注文の status を同じ値にそろえる。
    同じステータスを再度指定した場合は何も書き込まずに現在のレコードを返す。
    """
    new_status = parse_status(status)
    if not isinstance(new_status, Ok):
        return new_status

    synced = await synchronize_status(session_factory, record_id, new_status.value)
    if not isinstance(synced, Ok):
        return synced

    record, previous = synced.value
    if previous != record.status:
        logger.info(
            "Transaction %s and order %s moved %s -> %s",
            record.id,
            record.order_id,
            previous.value,
            record.status.value,
        )
        await publisher.publish(
            OrderStatusChanged(
                order_id=record.order_id,
                transaction_id=record.id,
                old_status=previous,
                new_status=record.status,
                timestamp=datetime.now(timezone.utc),
            )
        )
    return Ok(record)

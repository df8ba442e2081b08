"""
Rental Service — ステータス同期 (Status Synchronizer)

状態遷移:
    PENDING → ACTIVE → COMPLETED
    PENDING | ACTIVE → CANCELLED
COMPLETED と CANCELLED は終端で、そこから出る遷移はない。
以前のシステムでは管理者が 4 つのどの status にも自由に変更できたが、
ここでは表にない遷移（例: PENDING → COMPLETED）は ValidationError になる。

支払いレコードの status と、それに紐づく注文の status は
1 つのアトミックな単位の中で同じ値に書き換える。どちらかの書き込みが
失敗すれば両方とも残らない。キャンセル時に在庫は戻さない。
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import sessionmaker

from .db import run_atomic
from .models import OrderStatus, PaymentRecord
from .results import NotFoundError, Ok, Result, ValidationError
from .schema import orders, transactions

logger = logging.getLogger(__name__)

TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.ACTIVE, OrderStatus.CANCELLED}),
    OrderStatus.ACTIVE: frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED}),
    OrderStatus.COMPLETED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

VALID_STATUSES = ", ".join(status.value for status in OrderStatus)


def parse_status(value) -> Result[OrderStatus]:
    try:
        return Ok(OrderStatus(value))
    except ValueError:
        return ValidationError(f"Valid status is required ({VALID_STATUSES})")


def can_transition(current: OrderStatus, new: OrderStatus) -> bool:
    """同じ状態への変更は何もしない操作として許可する。"""
    return current == new or new in TRANSITIONS[current]


def row_to_payment_record(row) -> PaymentRecord:
    return PaymentRecord(
        id=row.id,
        order_id=row.order_id,
        customer_name=row.customer_name,
        customer_email=row.customer_email,
        total=row.total,
        status=OrderStatus(row.status),
        created_at=row.created_at,
        updated_at=row.updated_at,
        due_date=row.due_date,
    )


async def write_status(
    session: AsyncSession, record_id: str, new_status: OrderStatus
) -> Result[tuple[PaymentRecord, OrderStatus]]:
    """
    アトミックな単位の中身。更新後のレコードと変更前のステータスを返す。

    対象の支払いレコード行をロックしてから書き込むので、
    同じ id への更新同士は直列化される。
    """
    row = (
        await session.execute(
            select(transactions)
            .where(transactions.c.id == record_id)
            .with_for_update()
        )
    ).fetchone()
    if row is None:
        return NotFoundError(f"Transaction {record_id} not found")

    record = row_to_payment_record(row)
    previous = record.status

    if previous == new_status:
        return Ok((record, previous))

    if not can_transition(previous, new_status):
        return ValidationError(
            f"Cannot change status from {previous.value} to {new_status.value}"
        )

    now = datetime.now(timezone.utc)
    await session.execute(
        update(transactions)
        .where(transactions.c.id == record_id)
        .values(status=new_status.value, updated_at=now)
    )
    linked = await session.execute(
        update(orders)
        .where(orders.c.id == record.order_id)
        .values(status=new_status.value, updated_at=now)
    )
    if linked.rowcount != 1:
        return NotFoundError(
            f"Order {record.order_id} linked to transaction {record_id} not found"
        )

    updated = record.model_copy(update={"status": new_status, "updated_at": now})
    return Ok((updated, previous))


async def synchronize_status(
    session_factory: sessionmaker, record_id: str, new_status: OrderStatus
) -> Result[tuple[PaymentRecord, OrderStatus]]:
    return await run_atomic(
        session_factory, lambda session: write_status(session, record_id, new_status)
    )

"""
Rental Service — クエリハンドラ (CQRS の Read 側)

利用者の注文履歴と、管理者向けの支払いレコード一覧。
一覧はいずれも新しい順でページングする。
"""

import math

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from .lifecycle import row_to_payment_record
from .models import Order, OrderItem, OrderStatus, Pagination, PaymentRecord, PersonalInfo
from .schema import order_items, orders, transactions


def _pagination(page: int, limit: int, total_items: int) -> Pagination:
    return Pagination(
        current_page=page,
        total_pages=math.ceil(total_items / limit) if limit else 0,
        total_items=total_items,
        items_per_page=limit,
    )


def _row_to_order(row, items: list[OrderItem]) -> Order:
    return Order(
        id=row.id,
        user_id=row.user_id,
        personal_info=PersonalInfo.model_validate(row.personal_info),
        payment_method=row.payment_method,
        shipping_method=row.shipping_method,
        total=row.total,
        status=OrderStatus(row.status),
        created_at=row.created_at,
        updated_at=row.updated_at,
        due_date=row.due_date,
        items=tuple(items),
    )


async def _load_items(session: AsyncSession, order_ids: list[str]) -> dict[str, list[OrderItem]]:
    grouped: dict[str, list[OrderItem]] = {order_id: [] for order_id in order_ids}
    if not order_ids:
        return grouped
    result = await session.execute(
        select(order_items)
        .where(order_items.c.order_id.in_(order_ids))
        .order_by(order_items.c.id)
    )
    for row in result.fetchall():
        grouped[row.order_id].append(
            OrderItem(
                order_id=row.order_id,
                product_id=row.product_id,
                quantity=row.quantity,
                rental_days=row.rental_days,
                price=row.price,
                subtotal=row.subtotal,
            )
        )
    return grouped


async def get_order(session: AsyncSession, order_id: str) -> Order | None:
    """注文ヘッダと明細を取得する。"""
    row = (
        await session.execute(select(orders).where(orders.c.id == order_id))
    ).fetchone()
    if not row:
        return None
    items = await _load_items(session, [row.id])
    return _row_to_order(row, items[row.id])


async def list_orders(
    session: AsyncSession,
    user_id: str,
    status: OrderStatus | None = None,
    page: int = 1,
    limit: int = 10,
) -> dict:
    """利用者本人の注文一覧（新しい順）"""
    condition = orders.c.user_id == user_id
    if status is not None:
        condition = condition & (orders.c.status == status.value)

    total_items = (
        await session.execute(select(func.count()).select_from(orders).where(condition))
    ).scalar_one()
    result = await session.execute(
        select(orders)
        .where(condition)
        .order_by(orders.c.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    rows = result.fetchall()
    items = await _load_items(session, [row.id for row in rows])
    return {
        "orders": [_row_to_order(row, items[row.id]) for row in rows],
        "pagination": _pagination(page, limit, total_items),
    }


async def get_payment_record(session: AsyncSession, record_id: str) -> PaymentRecord | None:
    row = (
        await session.execute(select(transactions).where(transactions.c.id == record_id))
    ).fetchone()
    if not row:
        return None
    return row_to_payment_record(row)


async def _summary(session: AsyncSession) -> dict:
    result = await session.execute(
        select(
            transactions.c.status,
            func.count().label("records"),
            func.coalesce(func.sum(transactions.c.total), 0).label("revenue"),
        ).group_by(transactions.c.status)
    )
    counts = {status: 0 for status in OrderStatus}
    revenue = 0
    for row in result.fetchall():
        status = OrderStatus(row.status)
        counts[status] = row.records
        if status is OrderStatus.COMPLETED:
            revenue = int(row.revenue)
    return {
        # 売上は完了した支払いレコードのみ
        "total_revenue": revenue,
        "total_transactions": sum(counts.values()),
        "completed_transactions": counts[OrderStatus.COMPLETED],
        "pending_transactions": counts[OrderStatus.PENDING],
        "active_transactions": counts[OrderStatus.ACTIVE],
        "cancelled_transactions": counts[OrderStatus.CANCELLED],
    }


async def list_payment_records(
    session: AsyncSession,
    status: OrderStatus | None = None,
    page: int = 1,
    limit: int = 10,
) -> dict:
    """管理者向け支払いレコード一覧と集計"""
    query = select(transactions)
    count_query = select(func.count()).select_from(transactions)
    if status is not None:
        query = query.where(transactions.c.status == status.value)
        count_query = count_query.where(transactions.c.status == status.value)

    total_items = (await session.execute(count_query)).scalar_one()
    result = await session.execute(
        query.order_by(transactions.c.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return {
        "transactions": [row_to_payment_record(row) for row in result.fetchall()],
        "pagination": _pagination(page, limit, total_items),
        "summary": await _summary(session),
    }

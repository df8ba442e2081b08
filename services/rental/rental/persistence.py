"""
Rental Service — 永続化コーディネーター (Persistence Coordinator)

OrderDraft を 1 つのアトミックな単位としてコミットする。

  1. 注文ヘッダを INSERT
  2. 明細ごとに在庫を条件付き UPDATE で減らし、OrderItem を INSERT
     (stock >= quantity を書き込み時点の行に対して評価する)
  3. 在庫が 0 以下になった商品は同じ UPDATE で available = false
  4. 注文に紐づく支払いレコードを INSERT

どこかで失敗すれば、それまでの在庫減算も含めてすべて rollback される。
注文のない在庫減算や、明細・支払いレコードの欠けた注文は外から見えない。
"""

import logging
import secrets
from uuid import uuid4

from sqlalchemy import case, false, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import sessionmaker

from .db import run_atomic
from .models import Order, OrderDraft, OrderItem, OrderStatus, PaymentRecord, PlacedOrder
from .results import InsufficientStockError, NotFoundError, Ok, Result
from .schema import order_items, orders, products, transactions

logger = logging.getLogger(__name__)


def new_order_id() -> str:
    return str(uuid4())


def new_transaction_id() -> str:
    return f"TXN{secrets.token_hex(8).upper()}"


async def decrement_stock(
    session: AsyncSession, product_id: str, quantity: int
) -> Result[int]:
    """
    在庫を quantity だけ減らす。

    WHERE stock >= :quantity が書き込み時点の行で評価されるので、
    同じ商品を取り合う並行注文の合計が開始時の在庫を超えることはない。
    SET 句の右辺はすべて更新前の値を参照する。
    """
    result = await session.execute(
        update(products)
        .where(products.c.id == product_id, products.c.stock >= quantity)
        .values(
            stock=products.c.stock - quantity,
            available=case(
                (products.c.stock - quantity <= 0, false()),
                else_=products.c.available,
            ),
        )
    )
    if result.rowcount == 1:
        return Ok(quantity)

    # ガード失敗: 商品が消えたのか在庫が足りないのかを同じ単位の中で確認
    row = (
        await session.execute(
            select(products.c.stock).where(products.c.id == product_id)
        )
    ).fetchone()
    if row is None:
        return NotFoundError(f"Product with ID {product_id} not found")
    return InsufficientStockError(
        f"Insufficient stock for product {product_id}: "
        f"requested={quantity}, available={row.stock}",
        product_id=product_id,
    )


async def write_order(session: AsyncSession, draft: OrderDraft) -> Result[PlacedOrder]:
    """アトミックな単位の中身。commit / rollback は呼び出し側 (run_atomic) が行う。"""
    order_id = new_order_id()
    now = draft.created_at

    # 1. 注文ヘッダ
    await session.execute(
        insert(orders).values(
            id=order_id,
            user_id=draft.user_id,
            personal_info=draft.personal_info.model_dump(),
            payment_method=draft.payment_method,
            shipping_method=draft.shipping_method,
            total=draft.total,
            status=OrderStatus.PENDING.value,
            created_at=now,
            updated_at=now,
            due_date=draft.due_date,
        )
    )

    # 2-3. 明細と在庫減算
    items: list[OrderItem] = []
    for draft_item in draft.items:
        decremented = await decrement_stock(
            session, draft_item.product_id, draft_item.quantity
        )
        if not isinstance(decremented, Ok):
            logger.warning(
                "Order for user %s rejected at commit: %s",
                draft.user_id,
                decremented.message,
            )
            return decremented

        item = OrderItem(order_id=order_id, **draft_item.model_dump())
        await session.execute(insert(order_items).values(**item.model_dump()))
        items.append(item)

    # 4. 支払いレコード
    record = PaymentRecord(
        id=new_transaction_id(),
        order_id=order_id,
        customer_name=draft.personal_info.full_name,
        customer_email=draft.personal_info.email,
        total=draft.total,
        status=OrderStatus.PENDING,
        created_at=now,
        updated_at=now,
        due_date=draft.due_date,
    )
    await session.execute(
        insert(transactions).values(
            **record.model_dump(exclude={"status"}),
            status=record.status.value,
        )
    )

    order = Order(
        id=order_id,
        user_id=draft.user_id,
        personal_info=draft.personal_info,
        payment_method=draft.payment_method,
        shipping_method=draft.shipping_method,
        total=draft.total,
        status=OrderStatus.PENDING,
        created_at=now,
        updated_at=now,
        due_date=draft.due_date,
        items=tuple(items),
    )
    return Ok(PlacedOrder(order=order, transaction=record))


async def persist_order(
    session_factory: sessionmaker, draft: OrderDraft
) -> Result[PlacedOrder]:
    return await run_atomic(session_factory, lambda session: write_order(session, draft))

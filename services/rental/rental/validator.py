"""
Rental Service — 注文検証 (Order Validator)

生のカートリクエストを、価格を取り込み在庫を確認した OrderDraft に変換する。
副作用はない。ここでの在庫確認は読み取り時点の参考値で、
コミットまでに在庫が変わることはあり得る（persistence 側で再確認する）。
"""

from collections.abc import Mapping, Sequence
from datetime import datetime, timedelta, timezone
from typing import Any

import pydantic

from .catalog import CatalogReader
from .models import DraftItem, OrderDraft, OrderRequestItem, PersonalInfo
from .results import (
    InsufficientStockError,
    NotFoundError,
    Ok,
    Result,
    ValidationError,
)

# 返却期限の計算が datetime の範囲に収まるよう上限を設ける
MAX_RENTAL_DAYS = 365


def _first_error(exc: pydantic.ValidationError) -> str:
    err = exc.errors()[0]
    location = ".".join(str(part) for part in err["loc"])
    return f"{location}: {err['msg']}" if location else err["msg"]


def _parse_items(raw_items: Any) -> Result[list[OrderRequestItem]]:
    if not raw_items or isinstance(raw_items, (str, bytes, Mapping)) or not isinstance(raw_items, Sequence):
        return ValidationError("Order items are required")

    items: list[OrderRequestItem] = []
    for index, raw in enumerate(raw_items):
        try:
            item = (
                raw
                if isinstance(raw, OrderRequestItem)
                else OrderRequestItem.model_validate(raw)
            )
        except pydantic.ValidationError as exc:
            return ValidationError(f"items[{index}] is malformed ({_first_error(exc)})")
        if item.quantity < 1:
            return ValidationError(f"items[{index}].quantity must be at least 1")
        if item.rental_days < 1:
            return ValidationError(f"items[{index}].rental_days must be at least 1")
        if item.rental_days > MAX_RENTAL_DAYS:
            return ValidationError(
                f"items[{index}].rental_days must be at most {MAX_RENTAL_DAYS}"
            )
        items.append(item)
    return Ok(items)


def _parse_personal_info(raw: Any) -> Result[PersonalInfo]:
    if isinstance(raw, PersonalInfo):
        return Ok(raw)
    try:
        return Ok(PersonalInfo.model_validate(raw))
    except pydantic.ValidationError as exc:
        return ValidationError(f"personal_info is malformed ({_first_error(exc)})")


async def validate_order(
    catalog: CatalogReader,
    user_id: Any,
    items: Any,
    personal_info: Any,
    payment_method: Any,
    shipping_method: Any,
    now: datetime | None = None,
) -> Result[OrderDraft]:
    """
    注文ドラフトを組み立てる。

    1. 必須項目（ユーザー・明細・個人情報・支払方法・配送方法）の確認
    2. 各明細の quantity が 1 以上、rental_days が 1 以上 MAX_RENTAL_DAYS 以下か確認
    3. カタログから商品を読み、販売可否と在庫を確認
       同じ商品が複数行にある場合は数量を合算して比較する
    4. subtotal = price * quantity * rental_days、total はその合計
    5. due_date = now + max(rental_days) 日
    """
    if not user_id or not isinstance(user_id, str):
        return ValidationError("Authenticated user is required")

    parsed_items = _parse_items(items)
    if not isinstance(parsed_items, Ok):
        return parsed_items

    if not personal_info or not payment_method or not shipping_method:
        return ValidationError(
            "Personal info, payment method, and shipping method are required"
        )
    for name, value in (
        ("payment_method", payment_method),
        ("shipping_method", shipping_method),
    ):
        if not isinstance(value, str):
            return ValidationError(f"{name} must be a string")
    info = _parse_personal_info(personal_info)
    if not isinstance(info, Ok):
        return info

    requested: dict[str, int] = {}
    draft_items: list[DraftItem] = []
    total = 0

    for item in parsed_items.value:
        product = await catalog.get_product(item.product_id)
        if product is None:
            return NotFoundError(f"Product with ID {item.product_id} not found")

        requested[product.id] = requested.get(product.id, 0) + item.quantity
        if not product.available or product.stock < requested[product.id]:
            return InsufficientStockError(
                f"Product {product.name or product.id} is not available or insufficient stock",
                product_id=product.id,
            )

        subtotal = product.price * item.quantity * item.rental_days
        total += subtotal
        draft_items.append(
            DraftItem(
                product_id=product.id,
                quantity=item.quantity,
                rental_days=item.rental_days,
                price=product.price,
                subtotal=subtotal,
            )
        )

    created_at = now or datetime.now(timezone.utc)
    longest = max(item.rental_days for item in draft_items)

    return Ok(
        OrderDraft(
            user_id=user_id,
            items=tuple(draft_items),
            personal_info=info.value,
            payment_method=payment_method,
            shipping_method=shipping_method,
            total=total,
            created_at=created_at,
            due_date=created_at + timedelta(days=longest),
        )
    )

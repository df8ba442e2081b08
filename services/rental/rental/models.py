"""
Rental Service — ドメインモデル

注文 (Order)・明細 (OrderItem)・支払いレコード (PaymentRecord) は
1 つのアトミックな単位の中で同時に生まれる。
作成後に変更されるのは status だけで、変更するのはステータス同期だけ。
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class OrderStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class Product(BaseModel):
    """カタログ読み取りが返す商品の現在値"""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    price: int
    stock: int
    available: bool


# ── 入力 (永続化されない) ────────────────────────


class OrderRequestItem(BaseModel):
    model_config = ConfigDict(frozen=True, coerce_numbers_to_str=True)

    product_id: str
    quantity: int
    rental_days: int


class PersonalInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    full_name: str = Field(min_length=1)
    email: str = Field(min_length=1)
    phone: str = ""
    address: str = ""


# ── 検証済みドラフト ─────────────────────────────


class DraftItem(BaseModel):
    """価格を取り込んだ明細。subtotal = price * quantity * rental_days"""
    model_config = ConfigDict(frozen=True)

    product_id: str
    quantity: int
    rental_days: int
    price: int
    subtotal: int


class OrderDraft(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    items: tuple[DraftItem, ...]
    personal_info: PersonalInfo
    payment_method: str
    shipping_method: str
    total: int
    created_at: datetime
    due_date: datetime


# ── 永続化済みエンティティ ───────────────────────


class OrderItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    order_id: str
    product_id: str
    quantity: int
    rental_days: int
    price: int
    subtotal: int


class Order(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    personal_info: PersonalInfo
    payment_method: str
    shipping_method: str
    total: int
    status: OrderStatus
    created_at: datetime
    updated_at: datetime
    due_date: datetime
    items: tuple[OrderItem, ...] = ()


class PaymentRecord(BaseModel):
    """注文と 1:1 の支払い・貸出追跡レコード（DB トランザクションとは別物）"""
    model_config = ConfigDict(frozen=True)

    id: str
    order_id: str
    customer_name: str
    customer_email: str
    total: int
    status: OrderStatus
    created_at: datetime
    updated_at: datetime
    due_date: datetime


class PlacedOrder(BaseModel):
    model_config = ConfigDict(frozen=True)

    order: Order
    transaction: PaymentRecord


class Pagination(BaseModel):
    current_page: int
    total_pages: int
    total_items: int
    items_per_page: int

"""
Rental Service — FastAPI エントリーポイント

レンタル注文の作成と、管理者によるステータス変更を公開する。
CQRS パターンに従い、Command と Query のエンドポイントを分離。

認証は外部の Identity Provider が担当し、検証済みのユーザーは
X-User-Id / X-User-Role ヘッダでこのサービスに渡される。

┌──────────┐   place_order   ┌─────────────┐   commit   ┌────────────┐
│ Frontend │ ──────────────▶ │ Rental Svc  │ ─────────▶ │ PostgreSQL │
│ / Admin  │   set_status    │ (this app)  │            └────────────┘
└──────────┘                 └──────┬──────┘
                                    │ order_events (Pub/Sub)
                                    ▼
                                  Redis
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import Any, NoReturn

import redis.asyncio as aioredis
from fastapi import FastAPI, Header, HTTPException, Query
from pydantic import BaseModel

from . import commands, queries
from .catalog import SqlCatalogReader
from .db import create_engine, make_session_factory
from .events import EventPublisher
from .lifecycle import parse_status
from .models import OrderStatus
from .results import (
    ConflictError,
    Failure,
    InsufficientStockError,
    NotFoundError,
    Ok,
    StorageError,
    ValidationError,
)
from .schema import create_schema

DATABASE_URL = os.environ["DATABASE_URL"]
REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379")
ORDER_EVENTS_CHANNEL = os.environ.get("ORDER_EVENTS_CHANNEL", "order_events")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

engine = create_engine(DATABASE_URL)
async_session = make_session_factory(engine)
catalog = SqlCatalogReader(async_session)
publisher = EventPublisher(None, ORDER_EVENTS_CHANNEL)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await create_schema(engine)
    publisher.redis = aioredis.from_url(REDIS_URL, decode_responses=True)
    logger.info("Rental service started")
    yield
    await publisher.redis.aclose()
    publisher.redis = None
    await engine.dispose()


app = FastAPI(title="Rental Service", lifespan=lifespan)

STATUS_CODES = {
    ValidationError: 400,
    NotFoundError: 404,
    InsufficientStockError: 409,
    ConflictError: 409,
    StorageError: 503,
}


def raise_for_failure(failure: Failure) -> NoReturn:
    """Result の失敗バリアントを HTTP ステータスに変換する。"""
    raise HTTPException(
        status_code=STATUS_CODES.get(type(failure), 500),
        detail=failure.to_dict(),
    )


def require_user(user_id: str | None) -> str:
    if not user_id:
        raise HTTPException(401, "Access token required")
    return user_id


def require_admin(user_id: str | None, role: str | None) -> str:
    require_user(user_id)
    if role != "admin":
        raise HTTPException(403, "Admin access required")
    return user_id


def parse_status_filter(status: str | None) -> OrderStatus | None:
    if status is None:
        return None
    parsed = parse_status(status)
    if not isinstance(parsed, Ok):
        raise_for_failure(parsed)
    return parsed.value


# ── Request Models ───────────────────────────────
# 形の検証はコアの validator が行うので、ここでは緩く受け取る。


class PlaceOrderRequest(BaseModel):
    items: Any = None
    personal_info: Any = None
    payment_method: Any = None
    shipping_method: Any = None


class UpdateStatusRequest(BaseModel):
    status: Any = None


# ── Command Endpoints (Write 側) ─────────────────


@app.post("/commands/orders", status_code=201)
async def cmd_place_order(
    req: PlaceOrderRequest,
    x_user_id: str | None = Header(default=None),
):
    """注文作成コマンド"""
    user_id = require_user(x_user_id)
    result = await commands.place_order(
        async_session,
        catalog,
        publisher,
        user_id,
        req.items,
        req.personal_info,
        req.payment_method,
        req.shipping_method,
    )
    if not isinstance(result, Ok):
        raise_for_failure(result)
    return result.value


@app.put("/commands/transactions/{transaction_id}/status")
async def cmd_set_status(
    transaction_id: str,
    req: UpdateStatusRequest,
    x_user_id: str | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
):
    """ステータス変更コマンド（管理者のみ）"""
    require_admin(x_user_id, x_user_role)
    result = await commands.set_status(
        async_session, publisher, transaction_id, req.status
    )
    if not isinstance(result, Ok):
        raise_for_failure(result)
    return result.value


# ── Query Endpoints (Read 側) ────────────────────


@app.get("/queries/orders")
async def query_list_orders(
    status: str | None = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    x_user_id: str | None = Header(default=None),
):
    """自分の注文一覧"""
    user_id = require_user(x_user_id)
    async with async_session() as session:
        return await queries.list_orders(
            session, user_id, parse_status_filter(status), page, limit
        )


@app.get("/queries/orders/{order_id}")
async def query_get_order(
    order_id: str,
    x_user_id: str | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
):
    """注文詳細（本人または管理者のみ）"""
    user_id = require_user(x_user_id)
    async with async_session() as session:
        order = await queries.get_order(session, order_id)
    if not order:
        raise HTTPException(404, "Order not found")
    if order.user_id != user_id and x_user_role != "admin":
        raise HTTPException(403, "Access denied")
    return order


@app.get("/queries/transactions")
async def query_list_transactions(
    status: str | None = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    x_user_id: str | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
):
    """支払いレコード一覧と集計（管理者のみ）"""
    require_admin(x_user_id, x_user_role)
    async with async_session() as session:
        return await queries.list_payment_records(
            session, parse_status_filter(status), page, limit
        )


@app.get("/queries/transactions/{transaction_id}")
async def query_get_transaction(
    transaction_id: str,
    x_user_id: str | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
):
    require_admin(x_user_id, x_user_role)
    async with async_session() as session:
        record = await queries.get_payment_record(session, transaction_id)
    if not record:
        raise HTTPException(404, "Transaction not found")
    return record


@app.get("/queries/products/{product_id}")
async def query_get_product(product_id: str):
    product = await catalog.get_product(product_id)
    if not product:
        raise HTTPException(404, "Product not found")
    return product


@app.get("/health")
async def health():
    return {"status": "ok", "service": "rental-service"}

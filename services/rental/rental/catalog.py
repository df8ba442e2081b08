"""
Rental Service — カタログ読み取り (Catalog Reader)

商品の現在の価格・在庫・販売可否を読むだけの窓口。
ここで読んだ値は注文検証のヒントにすぎず、在庫の最終判断は
永続化時の条件付き UPDATE が行う。
"""

from typing import Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import sessionmaker

from .models import Product
from .schema import products


class CatalogReader(Protocol):
    async def get_product(self, product_id: str) -> Product | None: ...


async def fetch_product(session: AsyncSession, product_id: str) -> Product | None:
    result = await session.execute(
        select(products).where(products.c.id == product_id)
    )
    row = result.fetchone()
    if not row:
        return None
    return Product(
        id=row.id,
        name=row.name,
        price=row.price,
        stock=row.stock,
        available=bool(row.available),
    )


class SqlCatalogReader:
    """products テーブルから短いセッションで商品を読む。"""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    async def get_product(self, product_id: str) -> Product | None:
        async with self.session_factory() as session:
            return await fetch_product(session, product_id)

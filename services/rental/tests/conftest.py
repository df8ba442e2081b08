import os
import tempfile
from pathlib import Path

import fakeredis
import pytest
import pytest_asyncio
from sqlalchemy import func, insert, select

# rental.main はインポート時に DATABASE_URL を読む
os.environ["DATABASE_URL"] = (
    f"sqlite+aiosqlite:///{Path(tempfile.mkdtemp()) / 'rental-api.db'}"
)

from rental.catalog import SqlCatalogReader, fetch_product  # noqa: E402
from rental.db import create_engine, make_session_factory  # noqa: E402
from rental.events import EventPublisher  # noqa: E402
from rental.schema import create_schema, products  # noqa: E402

PERSONAL_INFO = {
    "full_name": "Budi Santoso",
    "email": "budi@example.com",
    "phone": "+62 812 0000 0000",
    "address": "Jl. Merdeka 1, Jakarta",
}


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'rental.db'}")
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def catalog(session_factory):
    return SqlCatalogReader(session_factory)


@pytest_asyncio.fixture
async def redis():
    client = fakeredis.FakeAsyncRedis(decode_responses=True)
    yield client
    await client.aclose()


@pytest.fixture
def publisher(redis):
    return EventPublisher(redis, "order_events")


async def add_product(session_factory, product_id, price, stock, available=True, name=""):
    async with session_factory() as session:
        await session.execute(
            insert(products).values(
                id=product_id,
                name=name or f"Product {product_id}",
                price=price,
                stock=stock,
                available=available,
            )
        )
        await session.commit()


async def read_product(session_factory, product_id):
    async with session_factory() as session:
        return await fetch_product(session, product_id)


async def count_rows(session_factory, table):
    async with session_factory() as session:
        return (
            await session.execute(select(func.count()).select_from(table))
        ).scalar_one()

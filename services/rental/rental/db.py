"""
Rental Service — エンジン・セッション・アトミックな単位

注文作成とステータス同期は、どちらも run_atomic() を通して
1 つのセッション = 1 つの DB トランザクションで実行する。
work が Ok を返したときだけ commit し、それ以外はすべて rollback する。
"""

import logging
from typing import Awaitable, Callable, TypeVar

from sqlalchemy import event
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool

from .results import ConflictError, Ok, Result, StorageError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# PostgreSQL: serialization_failure, deadlock_detected
_CONFLICT_SQLSTATES = {"40001", "40P01"}


def create_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """
    非同期エンジンを作る。

    SQLite (aiosqlite) はローカル実行とテスト用。書き込み同士を直列化するため
    すべてのトランザクションを BEGIN IMMEDIATE で開始し、ロック待ちは
    busy timeout に任せる。接続はイベントループをまたいで使い回さない。
    """
    if not database_url.startswith("sqlite"):
        return create_async_engine(database_url, echo=echo)

    engine = create_async_engine(
        database_url,
        echo=echo,
        poolclass=NullPool,
        connect_args={"timeout": 30},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def make_session_factory(engine: AsyncEngine) -> sessionmaker:
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


def _is_conflict(exc: SQLAlchemyError) -> bool:
    if not isinstance(exc, DBAPIError):
        return False
    code = getattr(exc.orig, "sqlstate", None) or getattr(exc.orig, "pgcode", None)
    return code in _CONFLICT_SQLSTATES


async def run_atomic(
    session_factory: sessionmaker,
    work: Callable[[AsyncSession], Awaitable[Result[T]]],
) -> Result[T]:
    """
    work(session) をアトミックな単位として実行する。

    - Ok             → commit
    - 失敗バリアント → rollback してそのまま返す
    - SQLAlchemyError → rollback して ConflictError / StorageError を返す

    キャンセル・タイムアウトで中断された場合は commit されないまま
    セッションが閉じられ、途中の書き込みは何も残らない。
    """
    async with session_factory() as session:
        try:
            outcome = await work(session)
            if not isinstance(outcome, Ok):
                await session.rollback()
                return outcome
            await session.commit()
            return outcome
        except SQLAlchemyError as exc:
            if _is_conflict(exc):
                logger.warning("Atomic unit lost a concurrent race: %s", exc)
                return ConflictError("concurrent update conflict, nothing was written")
            logger.exception("Atomic unit failed, rolled back")
            return StorageError(f"storage failure: {exc.__class__.__name__}")

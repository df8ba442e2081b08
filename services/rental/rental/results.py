"""
Rental Service — 結果型 (Result)

コアの操作は例外を投げずに Ok か失敗バリアントのどちらかを返す。
失敗の種類は閉じた集合で、呼び出し側は 1 回の呼び出しにつき
ちょうど 1 つの理由を受け取る。
"""

from dataclasses import dataclass
from typing import ClassVar, Generic, TypeVar, Union

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True)
class Failure:
    message: str
    code: ClassVar[str] = "failure"

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


@dataclass(frozen=True)
class ValidationError(Failure):
    """入力の欠落・不正、またはステータス値の不正"""
    code: ClassVar[str] = "validation_error"


@dataclass(frozen=True)
class NotFoundError(Failure):
    """商品または支払いレコードが存在しない"""
    code: ClassVar[str] = "not_found"


@dataclass(frozen=True)
class InsufficientStockError(Failure):
    """要求数量が在庫を超えている（検証時またはコミット時）"""
    product_id: str | None = None
    code: ClassVar[str] = "insufficient_stock"


@dataclass(frozen=True)
class ConflictError(Failure):
    """コミット時の同時実行競合に負けた"""
    code: ClassVar[str] = "conflict"


@dataclass(frozen=True)
class StorageError(Failure):
    """インフラ要因でアトミックな単位を完了できなかった"""
    code: ClassVar[str] = "storage_error"


Result = Union[Ok[T], Failure]

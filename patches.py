"""Three-state field updates used by every ``update`` operation.

A patch field is ``KEEP`` (not sent), ``CLEAR`` (sent as empty) or
``SetTo(value)``. The distinction is carried in the value itself, never in
``None`` versus missing, so a merge reads the same no matter how the patch was
built (HTTP body, importer, tests).
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from datetime import date
from typing import Any, ClassVar, Generic, Optional, TypeVar, Union

from models import (
    ExpenseNature,
    Movement,
    MovementKind,
    PaymentMethod,
    ReconciliationState,
)
from periods import month_key

T = TypeVar("T")


@dataclass(frozen=True)
class Keep:
    pass


@dataclass(frozen=True)
class Clear:
    pass


@dataclass(frozen=True)
class SetTo(Generic[T]):
    value: T


FieldUpdate = Union[Keep, Clear, SetTo[T]]

KEEP = Keep()
CLEAR = Clear()


def keep_field() -> Any:
    return field(default=KEEP)


class Patch:
    required_fields: ClassVar[frozenset[str]] = frozenset()

    def updates(self) -> dict[str, Any]:
        """Field name to new value for every non-``KEEP`` entry."""
        out: dict[str, Any] = {}
        for f in fields(self):  # type: ignore[arg-type]
            update = getattr(self, f.name)
            if isinstance(update, Keep):
                continue
            if isinstance(update, Clear):
                if f.name in self.required_fields:
                    raise ValueError(f"Field '{f.name}' cannot be cleared")
                out[f.name] = None
            elif isinstance(update, SetTo):
                out[f.name] = update.value
            else:
                raise TypeError(
                    f"Field '{f.name}' must be Keep, Clear or SetTo, got {update!r}"
                )
        return out

    def is_empty(self) -> bool:
        return not self.updates()

    def touches(self, name: str) -> bool:
        return not isinstance(getattr(self, name), Keep)


@dataclass(frozen=True)
class MovementData:
    """Every user-editable field of a movement."""

    date: date
    description: str
    kind: MovementKind
    category_id: int
    payment_method: PaymentMethod
    amount: int
    reconciliation_state: ReconciliationState = ReconciliationState.pending
    reconciliation_month: Optional[str] = None
    subcategory: Optional[str] = None
    expense_nature: Optional[ExpenseNature] = None
    installments: Optional[int] = None
    notes: Optional[str] = None
    origin_account_id: Optional[int] = None
    destination_account_id: Optional[int] = None
    credit_instrument_id: Optional[int] = None

    @classmethod
    def from_row(cls, movement: Movement) -> "MovementData":
        return cls(**{f.name: getattr(movement, f.name) for f in fields(cls)})

    def effective_month(self) -> str:
        # An absent tag follows the date; a supplied one is stored verbatim.
        return self.reconciliation_month or month_key(self.date)

    def column_values(self) -> dict[str, Any]:
        values = {f.name: getattr(self, f.name) for f in fields(self)}
        values["reconciliation_month"] = self.effective_month()
        return values


@dataclass(frozen=True)
class MovementPatch(Patch):
    required_fields: ClassVar[frozenset[str]] = frozenset(
        {
            "date",
            "description",
            "kind",
            "category_id",
            "payment_method",
            "amount",
            "reconciliation_state",
        }
    )

    date: FieldUpdate[date] = keep_field()
    description: FieldUpdate[str] = keep_field()
    kind: FieldUpdate[MovementKind] = keep_field()
    category_id: FieldUpdate[int] = keep_field()
    payment_method: FieldUpdate[PaymentMethod] = keep_field()
    amount: FieldUpdate[int] = keep_field()
    reconciliation_state: FieldUpdate[ReconciliationState] = keep_field()
    # Clearing the tag re-derives it from the (possibly new) date.
    reconciliation_month: FieldUpdate[str] = keep_field()
    subcategory: FieldUpdate[str] = keep_field()
    expense_nature: FieldUpdate[ExpenseNature] = keep_field()
    installments: FieldUpdate[int] = keep_field()
    notes: FieldUpdate[str] = keep_field()
    origin_account_id: FieldUpdate[int] = keep_field()
    destination_account_id: FieldUpdate[int] = keep_field()
    credit_instrument_id: FieldUpdate[int] = keep_field()

    def merge(self, old: MovementData) -> MovementData:
        return replace(old, **self.updates())


@dataclass(frozen=True)
class AccountPatch(Patch):
    required_fields: ClassVar[frozenset[str]] = frozenset(
        {"name", "bank", "initial_balance", "active"}
    )

    name: FieldUpdate[str] = keep_field()
    bank: FieldUpdate[str] = keep_field()
    initial_balance: FieldUpdate[int] = keep_field()
    active: FieldUpdate[bool] = keep_field()
    declared_final_balance: FieldUpdate[int] = keep_field()


@dataclass(frozen=True)
class CategoryPatch(Patch):
    required_fields: ClassVar[frozenset[str]] = frozenset(
        {"name", "kind", "color", "icon"}
    )

    name: FieldUpdate[str] = keep_field()
    kind: FieldUpdate[Any] = keep_field()
    color: FieldUpdate[str] = keep_field()
    icon: FieldUpdate[str] = keep_field()

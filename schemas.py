import datetime as dt
from datetime import date
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from models import (
    CategoryKind,
    ExpenseNature,
    MovementKind,
    PaymentMethod,
    ReconciliationState,
)
from patches import (
    CLEAR,
    AccountPatch,
    CategoryPatch,
    MovementData,
    MovementPatch,
    Patch,
    SetTo,
)

MONTH_PATTERN = r"^\d{4}-(0[1-9]|1[0-2])$"


def _patch_from(model: BaseModel, patch_cls: type[Patch]) -> Patch:
    # Fields the client never sent stay KEEP; an explicit null means CLEAR.
    updates = {}
    for name in model.model_fields_set:
        value = getattr(model, name)
        updates[name] = CLEAR if value is None else SetTo(value)
    return patch_cls(**updates)


def _reject_null_required(model: BaseModel, patch_cls: type[Patch]) -> None:
    for name in model.model_fields_set & patch_cls.required_fields:
        if getattr(model, name) is None:
            raise ValueError(f"{name} cannot be null")


class MovementIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    date: date
    description: str = Field(..., min_length=1, max_length=500)
    kind: MovementKind
    category_id: int
    payment_method: PaymentMethod
    amount: int = Field(..., gt=0)
    reconciliation_state: ReconciliationState = ReconciliationState.pending
    reconciliation_month: Optional[str] = Field(default=None, pattern=MONTH_PATTERN)
    subcategory: Optional[str] = Field(default=None, max_length=100)
    expense_nature: Optional[ExpenseNature] = None
    installments: Optional[int] = Field(default=None, ge=1)
    notes: Optional[str] = None
    origin_account_id: Optional[int] = None
    destination_account_id: Optional[int] = None
    credit_instrument_id: Optional[int] = None

    @model_validator(mode="after")
    def transfer_needs_both_accounts(self) -> "MovementIn":
        if self.kind == MovementKind.transfer and (
            self.origin_account_id is None or self.destination_account_id is None
        ):
            raise ValueError("Transfers need both an origin and a destination account")
        return self

    def to_data(self) -> MovementData:
        return MovementData(**self.model_dump())


class MovementPatchIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    date: Optional[dt.date] = None
    description: Optional[str] = Field(default=None, min_length=1, max_length=500)
    kind: Optional[MovementKind] = None
    category_id: Optional[int] = None
    payment_method: Optional[PaymentMethod] = None
    amount: Optional[int] = Field(default=None, gt=0)
    reconciliation_state: Optional[ReconciliationState] = None
    reconciliation_month: Optional[str] = Field(default=None, pattern=MONTH_PATTERN)
    subcategory: Optional[str] = Field(default=None, max_length=100)
    expense_nature: Optional[ExpenseNature] = None
    installments: Optional[int] = Field(default=None, ge=1)
    notes: Optional[str] = None
    origin_account_id: Optional[int] = None
    destination_account_id: Optional[int] = None
    credit_instrument_id: Optional[int] = None

    @model_validator(mode="after")
    def required_fields_not_null(self) -> "MovementPatchIn":
        _reject_null_required(self, MovementPatch)
        return self

    def to_patch(self) -> MovementPatch:
        return _patch_from(self, MovementPatch)  # type: ignore[return-value]


class MovementOut(BaseModel):
    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: int
    date: date
    description: str
    kind: MovementKind
    category_id: int
    payment_method: PaymentMethod
    amount: int
    reconciliation_state: ReconciliationState
    reconciliation_month: str
    subcategory: Optional[str] = None
    expense_nature: Optional[ExpenseNature] = None
    installments: Optional[int] = None
    notes: Optional[str] = None
    origin_account_id: Optional[int] = None
    destination_account_id: Optional[int] = None
    credit_instrument_id: Optional[int] = None


class AccountIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, max_length=100)
    bank: str = Field(..., min_length=1, max_length=100)
    initial_balance: int = 0
    declared_final_balance: Optional[int] = None


class AccountPatchIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    bank: Optional[str] = Field(default=None, min_length=1, max_length=100)
    initial_balance: Optional[int] = None
    active: Optional[bool] = None
    declared_final_balance: Optional[int] = None

    @model_validator(mode="after")
    def required_fields_not_null(self) -> "AccountPatchIn":
        _reject_null_required(self, AccountPatch)
        return self

    def to_patch(self) -> AccountPatch:
        return _patch_from(self, AccountPatch)  # type: ignore[return-value]


class AccountOut(BaseModel):
    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: int
    name: str
    bank: str
    initial_balance: int
    declared_final_balance: Optional[int] = None
    computed_balance: int
    active: bool


class CategoryIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, max_length=100)
    kind: CategoryKind
    color: str = Field(default="#64748b", max_length=9)
    icon: str = Field(default="Tag", max_length=40)


class CategoryPatchIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    kind: Optional[CategoryKind] = None
    color: Optional[str] = Field(default=None, max_length=9)
    icon: Optional[str] = Field(default=None, max_length=40)

    @model_validator(mode="after")
    def required_fields_not_null(self) -> "CategoryPatchIn":
        _reject_null_required(self, CategoryPatch)
        return self

    def to_patch(self) -> CategoryPatch:
        return _patch_from(self, CategoryPatch)  # type: ignore[return-value]


class CategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: int
    name: str
    kind: CategoryKind
    color: str
    icon: str


class BudgetIn(BaseModel):
    category_id: int
    month: str = Field(..., pattern=MONTH_PATTERN)
    amount: int = Field(..., ge=0)


class BudgetOut(BaseModel):
    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: int
    category_id: int
    month: str
    amount: int


class CSVRow(BaseModel):
    date: date
    description: str
    amount: int = Field(..., gt=0)
    kind: MovementKind
    category: Optional[str] = None
    notes: Optional[str] = None


class MonthlyStat(BaseModel):
    model_config = ConfigDict(frozen=True)

    month: str
    income: int
    expense: int


class CategoryStat(BaseModel):
    model_config = ConfigDict(frozen=True)

    category_id: int
    name: str
    color: str
    amount: int


class DashboardOut(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_balance: int
    current_month: str
    previous_month: str
    movements: list[MovementOut]
    movements_this_month: list[MovementOut]
    movements_previous_month: list[MovementOut]
    monthly_series: list[MonthlyStat]
    category_breakdown: list[CategoryStat]
    accounts: list[AccountOut]
    categories: list[CategoryOut]


class ImportOut(BaseModel):
    created: int
    errors: list[str]

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Callable, Optional, TypeVar
from zoneinfo import ZoneInfo

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from rapidfuzz.distance import Levenshtein

from aggregation import build_dashboard
from balances import BalanceEngine, expected_balances, is_half_transfer
from cache import ReadThroughCache, cache_key
from config import get_settings
from csv_utils import export_movements, parse_csv
from errors import (
    ConflictError,
    FailureReason,
    LedgerError,
    NotFound,
    Result,
    StorageError,
)
from models import (
    Account,
    Budget,
    Category,
    CategoryKind,
    Movement,
    MovementKind,
    PaymentMethod,
)
from patches import AccountPatch, CategoryPatch, MovementData, MovementPatch
from periods import month_key
from schemas import (
    AccountIn,
    AccountOut,
    BudgetIn,
    BudgetOut,
    CategoryIn,
    CategoryOut,
    CSVRow,
    DashboardOut,
    ImportOut,
    MovementOut,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_CATEGORIES = [
    CategoryIn(
        name="Food", kind=CategoryKind.expense, color="#f59e0b", icon="ShoppingCart"
    ),
    CategoryIn(
        name="Transport", kind=CategoryKind.expense, color="#3b82f6", icon="Bus"
    ),
    CategoryIn(
        name="Housing", kind=CategoryKind.expense, color="#ef4444", icon="Home"
    ),
    CategoryIn(
        name="Salary", kind=CategoryKind.income, color="#10b981", icon="DollarSign"
    ),
]

UNCATEGORIZED = "Uncategorized"


def get_current_user_id() -> int:
    return get_settings().default_user_id


def local_today() -> date:
    return datetime.now(ZoneInfo(get_settings().timezone)).date()


class LedgerService:
    def __init__(
        self,
        session: Session,
        cache: ReadThroughCache,
        user_id: Optional[int] = None,
    ) -> None:
        self.session = session
        self.cache = cache
        self.user_id = user_id if user_id is not None else get_current_user_id()

    def _atomic(
        self,
        action: str,
        work: Callable[[], T],
        *,
        integrity_reason: FailureReason = FailureReason.storage,
    ) -> Result[T]:
        """Run ``work`` as one transaction and invalidate the cache on commit."""
        try:
            value = work()
            self.session.commit()
        except LedgerError as exc:
            self.session.rollback()
            logger.info(
                f"{action}_rejected: user={self.user_id} "
                f"reason={exc.reason.value} error={exc}"
            )
            return Result.from_error(exc)
        except IntegrityError as exc:
            self.session.rollback()
            logger.warning(
                f"{action}_integrity_error: user={self.user_id} error={exc.orig}"
            )
            return Result.fail(integrity_reason, f"{action} violates a constraint")
        except SQLAlchemyError:
            self.session.rollback()
            logger.exception(f"{action}_failed: user={self.user_id}")
            return Result.from_error(
                StorageError(f"{action} failed; nothing was changed")
            )
        self.cache.invalidate(self.user_id)
        return Result.ok(value)


class MovementService(LedgerService):
    def __init__(
        self,
        session: Session,
        cache: ReadThroughCache,
        user_id: Optional[int] = None,
    ) -> None:
        super().__init__(session, cache, user_id)
        self.balances = BalanceEngine(session, self.user_id)

    def _load(self, movement_id: int) -> Movement:
        movement = self.session.get(Movement, movement_id)
        if not movement or movement.user_id != self.user_id:
            raise NotFound("Movement not found")
        return movement

    def _check_month_tag(self, data: MovementData) -> None:
        tag = data.reconciliation_month
        if tag and tag != month_key(data.date):
            logger.warning(
                f"reconciliation_month_mismatch: user={self.user_id} "
                f"date={data.date.isoformat()} tag={tag}"
            )

    def _check_references(self, data: MovementData) -> None:
        category = self.session.get(Category, data.category_id)
        if not category or category.user_id != self.user_id:
            raise NotFound("Category not found")
        for account_id in (data.origin_account_id, data.destination_account_id):
            if account_id is None:
                continue
            account = self.session.get(Account, account_id)
            if not account or account.user_id != self.user_id:
                raise NotFound(f"Account {account_id} not found")

    def get(self, movement_id: int) -> Result[MovementOut]:
        try:
            return Result.ok(MovementOut.model_validate(self._load(movement_id)))
        except NotFound as exc:
            return Result.from_error(exc)

    def create(self, data: MovementData) -> Result[int]:
        def work() -> int:
            self._check_references(data)
            self._check_month_tag(data)
            movement = Movement(user_id=self.user_id, **data.column_values())
            self.session.add(movement)
            self.session.flush()
            effects = self.balances.apply(movement)
            logger.info(
                f"movement_created: user={self.user_id} id={movement.id} "
                f"kind={movement.kind.value} effects={effects}"
            )
            return movement.id

        return self._atomic("movement_create", work)

    def update(self, movement_id: int, patch: MovementPatch) -> Result[int]:
        def work() -> int:
            movement = self._load(movement_id)
            old = MovementData.from_row(movement)
            try:
                new = patch.merge(old)
            except ValueError as exc:
                raise LedgerError(str(exc)) from exc
            if is_half_transfer(new):
                raise LedgerError(
                    "Transfers need both an origin and a destination account"
                )
            self._check_references(new)
            if patch.touches("reconciliation_month") or patch.touches("date"):
                self._check_month_tag(new)

            reversed_effects = self.balances.reverse(old)
            for name, value in new.column_values().items():
                setattr(movement, name, value)
            self.session.flush()
            applied = self.balances.apply(new)
            logger.info(
                f"movement_updated: user={self.user_id} id={movement.id} "
                f"reversed={reversed_effects} applied={applied}"
            )
            return movement.id

        return self._atomic("movement_update", work)

    def delete(self, movement_id: int) -> Result[int]:
        def work() -> int:
            movement = self._load(movement_id)
            reversed_effects = self.balances.reverse(movement)
            self.session.delete(movement)
            self.session.flush()
            logger.info(
                f"movement_deleted: user={self.user_id} id={movement_id} "
                f"reversed={reversed_effects}"
            )
            return movement_id

        return self._atomic("movement_delete", work)


class AccountService(LedgerService):
    def _load(self, account_id: int) -> Account:
        account = self.session.get(Account, account_id)
        if not account or account.user_id != self.user_id:
            raise NotFound("Account not found")
        return account

    def list_all(self) -> list[AccountOut]:
        stmt = (
            select(Account)
            .where(Account.user_id == self.user_id)
            .order_by(Account.name.asc(), Account.id.asc())
        )
        return [AccountOut.model_validate(a) for a in self.session.scalars(stmt)]

    def get(self, account_id: int) -> Result[AccountOut]:
        try:
            return Result.ok(AccountOut.model_validate(self._load(account_id)))
        except NotFound as exc:
            return Result.from_error(exc)

    def create(self, data: AccountIn) -> Result[int]:
        def work() -> int:
            account = Account(
                user_id=self.user_id,
                name=data.name,
                bank=data.bank,
                initial_balance=data.initial_balance,
                declared_final_balance=data.declared_final_balance,
                computed_balance=data.initial_balance,
            )
            self.session.add(account)
            self.session.flush()
            return account.id

        return self._atomic("account_create", work)

    def update(self, account_id: int, patch: AccountPatch) -> Result[int]:
        def work() -> int:
            account = self._load(account_id)
            try:
                values = patch.updates()
            except ValueError as exc:
                raise LedgerError(str(exc)) from exc
            if not values:
                return account.id
            if "initial_balance" in values:
                # Shift by (new - old) in SQL so movement effects are preserved.
                values["computed_balance"] = (
                    Account.computed_balance
                    + values["initial_balance"]
                    - Account.initial_balance
                )
            self.session.execute(
                update(Account)
                .where(Account.id == account.id, Account.user_id == self.user_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            self.session.expire(account)
            return account.id

        return self._atomic("account_update", work)

    def delete(self, account_id: int) -> Result[int]:
        def work() -> int:
            account = self._load(account_id)
            referenced = self.session.scalar(
                select(func.count(Movement.id)).where(
                    Movement.user_id == self.user_id,
                    or_(
                        Movement.origin_account_id == account.id,
                        Movement.destination_account_id == account.id,
                    ),
                )
            )
            if referenced:
                raise ConflictError(
                    "Account has movements; delete or reassign them first"
                )
            self.session.delete(account)
            self.session.flush()
            return account_id

        return self._atomic("account_delete", work)

    def audit(self) -> dict[int, tuple[int, int]]:
        """Accounts whose stored balance drifted: id -> (stored, expected)."""
        expected = expected_balances(self.session, self.user_id)
        stored = dict(
            self.session.execute(
                select(Account.id, Account.computed_balance).where(
                    Account.user_id == self.user_id
                )
            ).all()
        )
        return {
            account_id: (int(stored[account_id]), value)
            for account_id, value in expected.items()
            if int(stored[account_id]) != value
        }

    def rebuild_balances(self) -> Result[int]:
        def work() -> int:
            drift = self.audit()
            for account_id, (stored, expected) in drift.items():
                logger.warning(
                    f"balance_drift: user={self.user_id} account={account_id} "
                    f"stored={stored} expected={expected}"
                )
                self.session.execute(
                    update(Account)
                    .where(Account.id == account_id)
                    .values(computed_balance=expected)
                    .execution_options(synchronize_session=False)
                )
            self.session.expire_all()
            return len(drift)

        return self._atomic("balance_rebuild", work)


class CategoryService(LedgerService):
    def _load(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category or category.user_id != self.user_id:
            raise NotFound("Category not found")
        return category

    def list_all(self) -> list[CategoryOut]:
        stmt = (
            select(Category)
            .where(Category.user_id == self.user_id)
            .order_by(Category.name.asc())
        )
        return [CategoryOut.model_validate(c) for c in self.session.scalars(stmt)]

    def find_by_name(self, name: str) -> Optional[Category]:
        return self.session.scalar(
            select(Category).where(
                Category.user_id == self.user_id,
                func.lower(Category.name) == name.strip().lower(),
            )
        )

    def create(self, data: CategoryIn) -> Result[int]:
        def work() -> int:
            category = Category(
                user_id=self.user_id,
                name=data.name.strip(),
                kind=data.kind,
                color=data.color,
                icon=data.icon,
            )
            self.session.add(category)
            self.session.flush()
            return category.id

        return self._atomic(
            "category_create", work, integrity_reason=FailureReason.conflict
        )

    def update(self, category_id: int, patch: CategoryPatch) -> Result[int]:
        def work() -> int:
            category = self._load(category_id)
            try:
                values = patch.updates()
            except ValueError as exc:
                raise LedgerError(str(exc)) from exc
            for name, value in values.items():
                setattr(category, name, value)
            self.session.flush()
            return category.id

        return self._atomic(
            "category_update", work, integrity_reason=FailureReason.conflict
        )

    def delete(self, category_id: int) -> Result[int]:
        def work() -> int:
            category = self._load(category_id)
            in_use = self.session.scalar(
                select(func.count(Movement.id)).where(
                    Movement.user_id == self.user_id,
                    Movement.category_id == category.id,
                )
            )
            if in_use:
                raise ConflictError(
                    "Category has movements; reassign or delete them first"
                )
            budgets = self.session.scalars(
                select(Budget).where(
                    Budget.user_id == self.user_id, Budget.category_id == category.id
                )
            ).all()
            for budget in budgets:
                self.session.delete(budget)
            self.session.delete(category)
            self.session.flush()
            return category_id

        return self._atomic("category_delete", work)

    def ensure_defaults(self) -> int:
        count = self.session.scalar(
            select(func.count(Category.id)).where(Category.user_id == self.user_id)
        )
        if count:
            return 0
        created = 0
        for data in DEFAULT_CATEGORIES:
            if self.create(data).success:
                created += 1
        return created


class BudgetService(LedgerService):
    def _load(self, budget_id: int) -> Budget:
        budget = self.session.get(Budget, budget_id)
        if not budget or budget.user_id != self.user_id:
            raise NotFound("Budget not found")
        return budget

    def _check_category(self, category_id: int) -> None:
        category = self.session.get(Category, category_id)
        if not category or category.user_id != self.user_id:
            raise NotFound("Category not found")

    def list_for_month(self, month: str) -> list[BudgetOut]:
        stmt = (
            select(Budget)
            .where(Budget.user_id == self.user_id, Budget.month == month)
            .order_by(Budget.id.asc())
        )
        return [BudgetOut.model_validate(b) for b in self.session.scalars(stmt)]

    def create(self, data: BudgetIn) -> Result[int]:
        def work() -> int:
            self._check_category(data.category_id)
            budget = Budget(
                user_id=self.user_id,
                category_id=data.category_id,
                month=data.month,
                amount=data.amount,
            )
            self.session.add(budget)
            self.session.flush()
            return budget.id

        return self._atomic(
            "budget_create", work, integrity_reason=FailureReason.conflict
        )

    def update(self, budget_id: int, data: BudgetIn) -> Result[int]:
        def work() -> int:
            budget = self._load(budget_id)
            self._check_category(data.category_id)
            budget.category_id = data.category_id
            budget.month = data.month
            budget.amount = data.amount
            self.session.flush()
            return budget.id

        return self._atomic(
            "budget_update", work, integrity_reason=FailureReason.conflict
        )

    def delete(self, budget_id: int) -> Result[int]:
        def work() -> int:
            self.session.delete(self._load(budget_id))
            self.session.flush()
            return budget_id

        return self._atomic("budget_delete", work)


class AggregationService:
    """Read-only views, served through the per-user cache."""

    def __init__(
        self,
        session: Session,
        cache: ReadThroughCache,
        user_id: Optional[int] = None,
    ) -> None:
        self.session = session
        self.cache = cache
        self.user_id = user_id if user_id is not None else get_current_user_id()

    def _accounts(self) -> list[AccountOut]:
        return AccountService(self.session, self.cache, self.user_id).list_all()

    def _categories(self) -> list[CategoryOut]:
        return CategoryService(self.session, self.cache, self.user_id).list_all()

    def _movements(
        self,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        category_id: Optional[int] = None,
    ) -> list[MovementOut]:
        stmt = (
            select(Movement)
            .where(Movement.user_id == self.user_id)
            .order_by(Movement.date.desc(), Movement.id.desc())
        )
        if start_date:
            stmt = stmt.where(Movement.date >= start_date)
        if end_date:
            stmt = stmt.where(Movement.date <= end_date)
        if category_id:
            stmt = stmt.where(Movement.category_id == category_id)
        return [MovementOut.model_validate(m) for m in self.session.scalars(stmt)]

    def dashboard(self, today: Optional[date] = None) -> DashboardOut:
        today = today or local_today()
        key = cache_key(self.user_id, "dashboard", today=today.isoformat())
        return self.cache.get(
            key,
            lambda: build_dashboard(
                self._accounts(), self._movements(), self._categories(), today
            ),
        )

    def movements(
        self,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        category_id: Optional[int] = None,
    ) -> list[MovementOut]:
        key = cache_key(
            self.user_id,
            "movements",
            start_date=start_date,
            end_date=end_date,
            category_id=category_id,
        )
        return self.cache.get(
            key, lambda: self._movements(start_date, end_date, category_id)
        )


class CSVService:
    """Bulk importer: one ``MovementService.create`` per parsed row."""

    def __init__(
        self,
        session: Session,
        cache: ReadThroughCache,
        user_id: Optional[int] = None,
    ) -> None:
        self.session = session
        self.cache = cache
        self.user_id = user_id if user_id is not None else get_current_user_id()
        self.categories = CategoryService(session, cache, self.user_id)
        self.movements = MovementService(session, cache, self.user_id)

    def _candidates(self, kind: MovementKind) -> list[Category]:
        kinds = [CategoryKind.both, CategoryKind(kind.value)]
        return self.session.scalars(
            select(Category).where(
                Category.user_id == self.user_id, Category.kind.in_(kinds)
            )
        ).all()

    def resolve_category(self, name: Optional[str], kind: MovementKind) -> int:
        wanted = (name or "").strip() or UNCATEGORIZED
        wanted_lower = wanted.lower()
        candidates = self._candidates(kind)
        for category in candidates:
            if category.name.lower() == wanted_lower:
                return category.id

        best_distance: Optional[int] = None
        best: list[Category] = []
        for category in candidates:
            dist = int(Levenshtein.distance(wanted_lower, category.name.lower()))
            if best_distance is None or dist < best_distance:
                best_distance = dist
                best = [category]
            elif dist == best_distance:
                best.append(category)
        if best_distance is not None and best_distance <= 1:
            if len(best) > 1:
                options = ", ".join(sorted({c.name for c in best}))
                raise ConflictError(
                    f"Category '{wanted}' is ambiguous; matches: {options}"
                )
            return best[0].id

        created = self.categories.create(
            CategoryIn(name=wanted, kind=CategoryKind(kind.value))
        )
        if created.success:
            return created.unwrap()
        existing = self.categories.find_by_name(wanted)
        if existing:
            return existing.id
        raise NotFound(f"Category '{wanted}' could not be created")

    def preview(self, content: str) -> tuple[list[CSVRow], list[str]]:
        return parse_csv(content)

    def commit(self, content: str, account_id: int) -> ImportOut:
        rows, errors = parse_csv(content)
        created = 0
        for idx, row in enumerate(rows, start=1):
            try:
                category_id = self.resolve_category(row.category, row.kind)
            except LedgerError as exc:
                errors.append(f"Row {idx}: {exc}")
                continue
            is_income = row.kind == MovementKind.income
            data = MovementData(
                date=row.date,
                description=row.description,
                kind=row.kind,
                category_id=category_id,
                payment_method=(
                    PaymentMethod.transfer if is_income else PaymentMethod.debit
                ),
                amount=row.amount,
                notes=row.notes,
                origin_account_id=None if is_income else account_id,
                destination_account_id=account_id if is_income else None,
            )
            result = self.movements.create(data)
            if result.success:
                created += 1
            else:
                errors.append(f"Row {idx}: {result.error}")
        logger.info(
            f"csv_import: user={self.user_id} account={account_id} "
            f"created={created} errors={len(errors)}"
        )
        return ImportOut(created=created, errors=errors)

    def export(self) -> str:
        movements = self.session.scalars(
            select(Movement)
            .where(Movement.user_id == self.user_id)
            .order_by(Movement.date.asc(), Movement.id.asc())
        ).all()
        names = {c.id: c.name for c in self.categories.list_all()}
        return export_movements(movements, names)

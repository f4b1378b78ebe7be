"""Signed balance deltas for movements.

``effect_of`` is the single definition of what a movement does to account
balances. ``BalanceEngine`` turns those effects into atomic
``computed_balance = computed_balance + delta`` statements inside the caller's
transaction. It is not idempotent: applying the same movement twice counts it
twice, so callers pair every ``apply`` with exactly one ``reverse``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from sqlalchemy import case, func, select, update
from sqlalchemy.orm import Session

from errors import NotFound
from models import Account, Movement, MovementKind

logger = logging.getLogger(__name__)


class BalanceAffecting(Protocol):
    kind: MovementKind
    amount: int
    origin_account_id: Optional[int]
    destination_account_id: Optional[int]


@dataclass(frozen=True)
class Effect:
    account_id: int
    delta: int


def effect_of(
    kind: MovementKind,
    amount: int,
    origin_account_id: Optional[int] = None,
    destination_account_id: Optional[int] = None,
) -> list[Effect]:
    effects: list[Effect] = []
    if kind in (MovementKind.expense, MovementKind.transfer) and origin_account_id:
        effects.append(Effect(origin_account_id, -amount))
    if kind in (MovementKind.income, MovementKind.transfer) and destination_account_id:
        effects.append(Effect(destination_account_id, amount))
    return effects


def is_half_transfer(movement: BalanceAffecting) -> bool:
    return movement.kind == MovementKind.transfer and (
        not movement.origin_account_id or not movement.destination_account_id
    )


class BalanceEngine:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def effects(self, movement: BalanceAffecting) -> list[Effect]:
        return effect_of(
            movement.kind,
            movement.amount,
            movement.origin_account_id,
            movement.destination_account_id,
        )

    def apply(self, movement: BalanceAffecting) -> list[Effect]:
        return self._post(movement, sign=1)

    def reverse(self, movement: BalanceAffecting) -> list[Effect]:
        return self._post(movement, sign=-1)

    def _post(self, movement: BalanceAffecting, *, sign: int) -> list[Effect]:
        if is_half_transfer(movement):
            logger.warning(
                f"half_transfer: user={self.user_id} "
                f"origin={movement.origin_account_id} "
                f"destination={movement.destination_account_id} "
                f"amount={movement.amount}"
            )
        posted: list[Effect] = []
        for effect in self.effects(movement):
            signed = Effect(effect.account_id, effect.delta * sign)
            self._increment(signed)
            posted.append(signed)
        return posted

    def _increment(self, effect: Effect) -> None:
        result = self.session.execute(
            update(Account)
            .where(Account.id == effect.account_id, Account.user_id == self.user_id)
            .values(computed_balance=Account.computed_balance + effect.delta)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise NotFound(f"Account {effect.account_id} not found")
        loaded = self.session.identity_map.get(
            self.session.identity_key(Account, effect.account_id)
        )
        if loaded is not None:
            self.session.expire(loaded, ["computed_balance"])


def expected_balances(session: Session, user_id: int) -> dict[int, int]:
    """Initial balance plus the net effect of every persisted movement."""
    outflow_kinds = [MovementKind.expense, MovementKind.transfer]
    inflow_kinds = [MovementKind.income, MovementKind.transfer]
    expense_out = case((Movement.kind.in_(outflow_kinds), Movement.amount), else_=0)
    income_in = case((Movement.kind.in_(inflow_kinds), Movement.amount), else_=0)
    outflows = dict(
        session.execute(
            select(Movement.origin_account_id, func.sum(expense_out))
            .where(Movement.user_id == user_id, Movement.origin_account_id.isnot(None))
            .group_by(Movement.origin_account_id)
        ).all()
    )
    inflows = dict(
        session.execute(
            select(Movement.destination_account_id, func.sum(income_in))
            .where(
                Movement.user_id == user_id,
                Movement.destination_account_id.isnot(None),
            )
            .group_by(Movement.destination_account_id)
        ).all()
    )
    accounts = session.execute(
        select(Account.id, Account.initial_balance).where(Account.user_id == user_id)
    ).all()
    return {
        row.id: int(row.initial_balance)
        - int(outflows.get(row.id) or 0)
        + int(inflows.get(row.id) or 0)
        for row in accounts
    }

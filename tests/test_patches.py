from datetime import date

import pytest
from pydantic import ValidationError

from models import MovementKind, PaymentMethod
from patches import CLEAR, KEEP, AccountPatch, MovementData, MovementPatch, SetTo
from schemas import AccountPatchIn, MovementIn, MovementPatchIn


def base_data(**overrides) -> MovementData:
    values = dict(
        date=date(2025, 1, 15),
        description="Rent",
        kind=MovementKind.expense,
        category_id=3,
        payment_method=PaymentMethod.transfer,
        amount=400_000,
        notes="January",
        origin_account_id=1,
    )
    values.update(overrides)
    return MovementData(**values)


def test_keep_leaves_every_field_untouched() -> None:
    old = base_data()
    patch = MovementPatch()

    assert patch.is_empty()
    assert patch.merge(old) == old


def test_set_and_clear_apply_per_field() -> None:
    old = base_data()
    merged = MovementPatch(amount=SetTo(350_000), notes=CLEAR).merge(old)

    assert merged.amount == 350_000
    assert merged.notes is None
    assert merged.description == "Rent"
    assert merged.origin_account_id == 1


def test_clearing_required_field_raises() -> None:
    with pytest.raises(ValueError):
        MovementPatch(description=CLEAR).merge(base_data())
    with pytest.raises(ValueError):
        AccountPatch(name=CLEAR).updates()


def test_bare_value_is_rejected() -> None:
    with pytest.raises(TypeError):
        MovementPatch(amount=10).updates()  # type: ignore[arg-type]


def test_touches_reports_only_sent_fields() -> None:
    patch = MovementPatch(date=SetTo(date(2025, 2, 1)))

    assert patch.touches("date")
    assert not patch.touches("reconciliation_month")


def test_effective_month_prefers_stored_tag() -> None:
    assert base_data().effective_month() == "2025-01"
    assert base_data(reconciliation_month="2024-12").effective_month() == "2024-12"


def test_patch_schema_maps_missing_null_and_value() -> None:
    body = MovementPatchIn.model_validate({"amount": 10, "notes": None})
    patch = body.to_patch()

    assert patch.amount == SetTo(10)
    assert patch.notes == CLEAR
    assert patch.description == KEEP
    assert patch.origin_account_id == KEEP


def test_patch_schema_rejects_null_on_required_field() -> None:
    with pytest.raises(ValidationError):
        MovementPatchIn.model_validate({"amount": None})
    with pytest.raises(ValidationError):
        AccountPatchIn.model_validate({"bank": None})


def test_account_patch_schema_clears_declared_balance() -> None:
    patch = AccountPatchIn.model_validate({"declared_final_balance": None}).to_patch()

    assert patch.updates() == {"declared_final_balance": None}


def test_movement_schema_requires_both_transfer_accounts() -> None:
    payload = {
        "date": "2025-01-02",
        "description": "Savings",
        "kind": "transfer",
        "category_id": 1,
        "payment_method": "transfer",
        "amount": 100,
        "origin_account_id": 1,
    }
    with pytest.raises(ValidationError):
        MovementIn.model_validate(payload)

    payload["destination_account_id"] = 2
    data = MovementIn.model_validate(payload).to_data()
    assert data.kind == MovementKind.transfer
    assert data.reconciliation_month is None


def test_movement_schema_rejects_non_positive_amount() -> None:
    with pytest.raises(ValidationError):
        MovementIn.model_validate(
            {
                "date": "2025-01-02",
                "description": "Coffee",
                "kind": "expense",
                "category_id": 1,
                "payment_method": "cash",
                "amount": 0,
            }
        )

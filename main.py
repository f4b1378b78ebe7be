import logging
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import Response
from sqlalchemy.orm import Session

from cache import ReadThroughCache
from config import get_settings
from database import SessionLocal, session_scope
from errors import FailureReason, Result
from periods import resolve_period
from schemas import (
    AccountIn,
    AccountOut,
    AccountPatchIn,
    BudgetIn,
    BudgetOut,
    CategoryIn,
    CategoryOut,
    CategoryPatchIn,
    DashboardOut,
    ImportOut,
    MovementIn,
    MovementOut,
    MovementPatchIn,
)
from services import (
    AccountService,
    AggregationService,
    BudgetService,
    CategoryService,
    CSVService,
    MovementService,
    get_current_user_id,
)

settings = get_settings()
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Ledger")

ledger_cache = ReadThroughCache(ttl_seconds=settings.cache_ttl_secs)

STATUS_BY_REASON = {
    FailureReason.not_found: 404,
    FailureReason.conflict: 409,
    FailureReason.invalid: 400,
    FailureReason.storage: 500,
}


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_cache() -> ReadThroughCache:
    return ledger_cache


def current_user() -> int:
    return get_current_user_id()


@app.on_event("startup")
def startup_event():
    with session_scope() as session:
        created = CategoryService(session, ledger_cache).ensure_defaults()
    if created:
        logger.info(f"default_categories_seeded: count={created}")


def unwrap(result: Result):
    if not result.success:
        status = STATUS_BY_REASON.get(result.reason, 400)
        raise HTTPException(status_code=status, detail=result.error)
    return result.value


# Movements


@app.get("/api/v1/movements", response_model=list[MovementOut])
def list_movements(
    period: Optional[str] = None,
    start: Optional[str] = None,
    end: Optional[str] = None,
    category_id: Optional[int] = None,
    db: Session = Depends(get_db),
    cache: ReadThroughCache = Depends(get_cache),
    user_id: int = Depends(current_user),
):
    try:
        resolved = resolve_period(period, start, end)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return AggregationService(db, cache, user_id).movements(
        start_date=resolved.start if resolved else None,
        end_date=resolved.end if resolved else None,
        category_id=category_id,
    )


@app.get("/api/v1/movements/export.csv")
def export_movements_csv(
    db: Session = Depends(get_db),
    cache: ReadThroughCache = Depends(get_cache),
    user_id: int = Depends(current_user),
):
    content = CSVService(db, cache, user_id).export()
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": "attachment; filename=movements.csv"},
    )


@app.get("/api/v1/movements/{movement_id}", response_model=MovementOut)
def get_movement(
    movement_id: int,
    db: Session = Depends(get_db),
    cache: ReadThroughCache = Depends(get_cache),
    user_id: int = Depends(current_user),
):
    return unwrap(MovementService(db, cache, user_id).get(movement_id))


@app.post("/api/v1/movements", status_code=201)
def create_movement(
    payload: MovementIn,
    db: Session = Depends(get_db),
    cache: ReadThroughCache = Depends(get_cache),
    user_id: int = Depends(current_user),
):
    movement_id = unwrap(MovementService(db, cache, user_id).create(payload.to_data()))
    return {"id": movement_id}


@app.patch("/api/v1/movements/{movement_id}")
def update_movement(
    movement_id: int,
    payload: MovementPatchIn,
    db: Session = Depends(get_db),
    cache: ReadThroughCache = Depends(get_cache),
    user_id: int = Depends(current_user),
):
    service = MovementService(db, cache, user_id)
    return {"id": unwrap(service.update(movement_id, payload.to_patch()))}


@app.delete("/api/v1/movements/{movement_id}")
def delete_movement(
    movement_id: int,
    db: Session = Depends(get_db),
    cache: ReadThroughCache = Depends(get_cache),
    user_id: int = Depends(current_user),
):
    return {"id": unwrap(MovementService(db, cache, user_id).delete(movement_id))}


# Accounts


@app.get("/api/v1/accounts", response_model=list[AccountOut])
def list_accounts(
    db: Session = Depends(get_db),
    cache: ReadThroughCache = Depends(get_cache),
    user_id: int = Depends(current_user),
):
    return AccountService(db, cache, user_id).list_all()


@app.post("/api/v1/accounts", status_code=201)
def create_account(
    payload: AccountIn,
    db: Session = Depends(get_db),
    cache: ReadThroughCache = Depends(get_cache),
    user_id: int = Depends(current_user),
):
    return {"id": unwrap(AccountService(db, cache, user_id).create(payload))}


@app.patch("/api/v1/accounts/{account_id}")
def update_account(
    account_id: int,
    payload: AccountPatchIn,
    db: Session = Depends(get_db),
    cache: ReadThroughCache = Depends(get_cache),
    user_id: int = Depends(current_user),
):
    service = AccountService(db, cache, user_id)
    return {"id": unwrap(service.update(account_id, payload.to_patch()))}


@app.delete("/api/v1/accounts/{account_id}")
def delete_account(
    account_id: int,
    db: Session = Depends(get_db),
    cache: ReadThroughCache = Depends(get_cache),
    user_id: int = Depends(current_user),
):
    return {"id": unwrap(AccountService(db, cache, user_id).delete(account_id))}


@app.post("/api/v1/accounts/rebuild-balances")
def rebuild_balances(
    db: Session = Depends(get_db),
    cache: ReadThroughCache = Depends(get_cache),
    user_id: int = Depends(current_user),
):
    fixed = unwrap(AccountService(db, cache, user_id).rebuild_balances())
    logger.info(f"rebuild_balances: user={user_id} fixed={fixed}")
    return {"fixed": fixed}


# Categories


@app.get("/api/v1/categories", response_model=list[CategoryOut])
def list_categories(
    db: Session = Depends(get_db),
    cache: ReadThroughCache = Depends(get_cache),
    user_id: int = Depends(current_user),
):
    return CategoryService(db, cache, user_id).list_all()


@app.post("/api/v1/categories", status_code=201)
def create_category(
    payload: CategoryIn,
    db: Session = Depends(get_db),
    cache: ReadThroughCache = Depends(get_cache),
    user_id: int = Depends(current_user),
):
    return {"id": unwrap(CategoryService(db, cache, user_id).create(payload))}


@app.patch("/api/v1/categories/{category_id}")
def update_category(
    category_id: int,
    payload: CategoryPatchIn,
    db: Session = Depends(get_db),
    cache: ReadThroughCache = Depends(get_cache),
    user_id: int = Depends(current_user),
):
    service = CategoryService(db, cache, user_id)
    return {"id": unwrap(service.update(category_id, payload.to_patch()))}


@app.delete("/api/v1/categories/{category_id}")
def delete_category(
    category_id: int,
    db: Session = Depends(get_db),
    cache: ReadThroughCache = Depends(get_cache),
    user_id: int = Depends(current_user),
):
    return {"id": unwrap(CategoryService(db, cache, user_id).delete(category_id))}


# Budgets


@app.get("/api/v1/budgets", response_model=list[BudgetOut])
def list_budgets(
    month: str,
    db: Session = Depends(get_db),
    cache: ReadThroughCache = Depends(get_cache),
    user_id: int = Depends(current_user),
):
    return BudgetService(db, cache, user_id).list_for_month(month)


@app.post("/api/v1/budgets", status_code=201)
def create_budget(
    payload: BudgetIn,
    db: Session = Depends(get_db),
    cache: ReadThroughCache = Depends(get_cache),
    user_id: int = Depends(current_user),
):
    return {"id": unwrap(BudgetService(db, cache, user_id).create(payload))}


@app.put("/api/v1/budgets/{budget_id}")
def update_budget(
    budget_id: int,
    payload: BudgetIn,
    db: Session = Depends(get_db),
    cache: ReadThroughCache = Depends(get_cache),
    user_id: int = Depends(current_user),
):
    return {"id": unwrap(BudgetService(db, cache, user_id).update(budget_id, payload))}


@app.delete("/api/v1/budgets/{budget_id}")
def delete_budget(
    budget_id: int,
    db: Session = Depends(get_db),
    cache: ReadThroughCache = Depends(get_cache),
    user_id: int = Depends(current_user),
):
    return {"id": unwrap(BudgetService(db, cache, user_id).delete(budget_id))}


# Dashboard and import


@app.get("/api/v1/dashboard", response_model=DashboardOut)
def dashboard(
    db: Session = Depends(get_db),
    cache: ReadThroughCache = Depends(get_cache),
    user_id: int = Depends(current_user),
):
    CategoryService(db, cache, user_id).ensure_defaults()
    return AggregationService(db, cache, user_id).dashboard()


@app.post("/api/v1/import", response_model=ImportOut)
async def import_csv(
    request: Request,
    account_id: int,
    db: Session = Depends(get_db),
    cache: ReadThroughCache = Depends(get_cache),
    user_id: int = Depends(current_user),
):
    raw = await request.body()
    try:
        content = raw.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise HTTPException(status_code=400, detail="CSV must be UTF-8") from exc
    unwrap(AccountService(db, cache, user_id).get(account_id))
    return CSVService(db, cache, user_id).commit(content, account_id)

from datetime import datetime
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.orm import Session

from auth import owner_from_token
from database import get_db
from errors import ErrorKind, FinanceError, ValidationFailure
from models import (
    Budget,
    BudgetPeriod,
    Category,
    Notification,
    NotificationType,
    Pot,
    Transaction,
    TransactionType,
)
from scheduler import SchedulerManager
from schemas import (
    BudgetIn,
    BudgetUpdate,
    CategoryIn,
    CategoryUpdate,
    NotificationIn,
    Pagination,
    PotBalanceIn,
    PotIn,
    PotUpdate,
    TransactionIn,
    TransactionUpdate,
)
from services import (
    AccountService,
    BudgetFilters,
    BudgetService,
    BudgetUtilization,
    CategoryService,
    NotificationService,
    Page,
    PotService,
    RecurringBillService,
    TransactionFilters,
    TransactionService,
)

app = FastAPI(title="Finance API")

API = "/api/v1"

STATUS_BY_KIND = {
    ErrorKind.not_found: 404,
    ErrorKind.validation: 400,
    ErrorKind.limit_exceeded: 400,
    ErrorKind.insufficient_funds: 400,
    ErrorKind.conflict: 409,
}


@app.exception_handler(FinanceError)
async def finance_error_handler(request: Request, exc: FinanceError) -> JSONResponse:
    body = exc.payload()
    body["detail"] = exc.message
    return JSONResponse(status_code=STATUS_BY_KIND.get(exc.kind, 400), content=body)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = jsonable_encoder(exc.errors())
    message = errors[0]["msg"] if errors else "Invalid request"
    return JSONResponse(
        status_code=400,
        content={"kind": ErrorKind.validation.value, "message": message, "detail": errors},
    )


@app.on_event("startup")
def startup_event():
    manager = SchedulerManager()
    app.state.scheduler = manager
    manager.start()


@app.on_event("shutdown")
def shutdown_event():
    manager = getattr(app.state, "scheduler", None)
    if manager is not None:
        manager.stop()


def current_user_id(authorization: Optional[str] = Header(default=None)) -> int:
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise HTTPException(status_code=401, detail="Missing bearer token")
    user_id = owner_from_token(token.strip())
    if user_id is None:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    return user_id


def _parse_datetime(raw: Optional[str], name: str) -> Optional[datetime]:
    if not raw:
        return None
    try:
        return datetime.fromisoformat(raw)
    except ValueError as exc:
        raise ValidationFailure(f"Invalid {name}: {raw}") from exc


def _parse_int(raw: Optional[str], name: str) -> Optional[int]:
    if raw is None or raw == "":
        return None
    try:
        return int(raw)
    except ValueError as exc:
        raise ValidationFailure(f"Invalid {name}: {raw}") from exc


def _parse_bool(raw: Optional[str]) -> Optional[bool]:
    if raw is None or raw == "":
        return None
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _category_param(request: Request):
    values = request.query_params.getlist("category")
    if not values:
        return None
    if len(values) == 1:
        return values[0]
    return values


def pagination_from_request(request: Request) -> Pagination:
    params = request.query_params
    raw = {
        "page": _parse_int(params.get("page"), "page"),
        "limit": _parse_int(params.get("limit"), "limit"),
        "sort_by": params.get("sort_by") or None,
        "sort_order": _parse_int(params.get("sort_order"), "sort_order"),
    }
    try:
        return Pagination(**{key: value for key, value in raw.items() if value is not None})
    except ValidationError as exc:
        raise ValidationFailure(f"Invalid pagination: {exc.errors()[0]['msg']}") from exc


def transaction_filters_from_request(request: Request) -> TransactionFilters:
    params = request.query_params
    type_param = params.get("type")
    txn_type = None
    if type_param:
        try:
            txn_type = TransactionType(type_param)
        except ValueError as exc:
            raise ValidationFailure(f"Invalid type: {type_param}") from exc
    return TransactionFilters(
        start=_parse_datetime(params.get("start"), "start"),
        end=_parse_datetime(params.get("end"), "end"),
        category=_category_param(request),
        type=txn_type,
        min_amount_cents=_parse_int(params.get("min_amount_cents"), "min_amount_cents"),
        max_amount_cents=_parse_int(params.get("max_amount_cents"), "max_amount_cents"),
        search=params.get("q") or None,
        budget_id=_parse_int(params.get("budget_id"), "budget_id"),
        pot_id=_parse_int(params.get("pot_id"), "pot_id"),
        recurring=_parse_bool(params.get("recurring")),
    )


def budget_filters_from_request(request: Request) -> BudgetFilters:
    params = request.query_params
    period_param = params.get("period")
    period = None
    if period_param:
        try:
            period = BudgetPeriod(period_param)
        except ValueError as exc:
            raise ValidationFailure(f"Invalid period: {period_param}") from exc
    return BudgetFilters(
        category=_category_param(request),
        period=period,
        is_active=_parse_bool(params.get("is_active")),
        min_amount_cents=_parse_int(params.get("min_amount_cents"), "min_amount_cents"),
        max_amount_cents=_parse_int(params.get("max_amount_cents"), "max_amount_cents"),
        search=params.get("q") or None,
        start=_parse_datetime(params.get("start"), "start"),
        end=_parse_datetime(params.get("end"), "end"),
    )


def transaction_out(txn: Transaction) -> dict[str, object]:
    return {
        "id": txn.id,
        "name": txn.name,
        "amount_cents": txn.amount_cents,
        "type": txn.type.value,
        "category": txn.category,
        "description": txn.description,
        "date": txn.date.isoformat(),
        "recurring": txn.recurring,
        "recurring_frequency": txn.recurring_frequency.value
        if txn.recurring_frequency
        else None,
        "budget_id": txn.budget_id,
        "pot_id": txn.pot_id,
        "parent_transaction_id": txn.parent_transaction_id,
        "is_deleted": txn.is_deleted,
        "deleted_at": txn.deleted_at.isoformat() if txn.deleted_at else None,
        "created_at": txn.created_at.isoformat() if txn.created_at else None,
        "updated_at": txn.updated_at.isoformat() if txn.updated_at else None,
    }


def budget_out(budget: Budget) -> dict[str, object]:
    return {
        "id": budget.id,
        "category": budget.category,
        "amount_cents": budget.amount_cents,
        "theme": budget.theme,
        "period": budget.period.value,
        "start_date": budget.start_date.isoformat(),
        "is_active": budget.is_active,
    }


def utilization_out(usage: BudgetUtilization) -> dict[str, object]:
    return {
        "budget": budget_out(usage.budget),
        "spent_cents": usage.spent_cents,
        "remaining_cents": usage.remaining_cents,
        "percentage_used": usage.percentage_used,
        "period": {
            "slug": usage.period.slug,
            "start": usage.period.start.isoformat(),
            "end": usage.period.end.isoformat(),
        },
    }


def pot_out(pot: Pot) -> dict[str, object]:
    return {
        "id": pot.id,
        "name": pot.name,
        "goal_amount_cents": pot.goal_amount_cents,
        "current_amount_cents": pot.current_amount_cents,
        "progress": pot.progress,
        "target_date": pot.target_date.isoformat(),
        "description": pot.description,
        "category": pot.category,
    }


def category_out(category: Category) -> dict[str, object]:
    return {
        "id": category.id,
        "name": category.name,
        "theme": category.theme,
        "description": category.description,
        "is_active": category.is_active,
    }


def notification_out(notification: Notification) -> dict[str, object]:
    return {
        "id": notification.id,
        "message": notification.message,
        "type": notification.type.value,
        "is_read": notification.is_read,
        "category": notification.category,
        "related_id": notification.related_id,
        "created_at": notification.created_at.isoformat(),
    }


def page_out(page: Page, render) -> dict[str, object]:
    return {
        "items": [render(item) for item in page.items],
        "total": page.total,
        "page": page.page,
        "limit": page.limit,
        "total_pages": page.total_pages,
    }


@app.get(f"{API}/health")
def health():
    return {"status": "ok"}


# Transactions


@app.get(f"{API}/transactions")
def list_transactions(
    request: Request,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    page = TransactionService(db, user_id).list(
        transaction_filters_from_request(request), pagination_from_request(request)
    )
    return page_out(page, transaction_out)


@app.post(f"{API}/transactions", status_code=201)
def create_transaction(
    payload: TransactionIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    txn = TransactionService(db, user_id).create(payload)
    return transaction_out(txn)


@app.get(f"{API}/transactions/deleted")
def deleted_transactions(
    limit: int = 200,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    return [transaction_out(t) for t in TransactionService(db, user_id).deleted(limit)]


@app.get(f"{API}/transactions/recurring")
def recurring_transactions(
    db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    return [transaction_out(t) for t in TransactionService(db, user_id).recurring()]


@app.get(f"{API}/transactions/overview")
def transactions_overview(
    limit: int = 5,
    latest: bool = True,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    items = TransactionService(db, user_id).overview(limit, latest=latest)
    return [transaction_out(t) for t in items]


@app.get(f"{API}/transactions/analytics")
def transactions_analytics(
    range_slug: str = Query("last30days", alias="range"),
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    return TransactionService(db, user_id).analytics(range_slug)


@app.get(f"{API}/transactions/{{transaction_id}}")
def get_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    return transaction_out(TransactionService(db, user_id).get(transaction_id))


@app.patch(f"{API}/transactions/{{transaction_id}}")
def update_transaction(
    transaction_id: int,
    payload: TransactionUpdate,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    txn = TransactionService(db, user_id).update(transaction_id, payload)
    return transaction_out(txn)


@app.delete(f"{API}/transactions/{{transaction_id}}")
def delete_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    TransactionService(db, user_id).soft_delete(transaction_id)
    return {"deleted": True, "id": transaction_id}


@app.post(f"{API}/transactions/{{transaction_id}}/restore")
def restore_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    return transaction_out(TransactionService(db, user_id).restore(transaction_id))


@app.get(f"{API}/transactions/{{transaction_id}}/lineage")
def transaction_lineage(
    transaction_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    chain = TransactionService(db, user_id).lineage(transaction_id)
    return [transaction_out(t) for t in chain]


# Budgets


@app.get(f"{API}/budgets")
def list_budgets(
    request: Request,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    page = BudgetService(db, user_id).list(
        budget_filters_from_request(request), pagination_from_request(request)
    )
    return page_out(page, budget_out)


@app.post(f"{API}/budgets", status_code=201)
def create_budget(
    payload: BudgetIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    return budget_out(BudgetService(db, user_id).create(payload))


@app.get(f"{API}/budgets/near-limit")
def budgets_near_limit(
    threshold: Optional[float] = None,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    usages = BudgetService(db, user_id).near_limit(threshold)
    return [utilization_out(u) for u in usages]


@app.get(f"{API}/budgets/category/{{category}}")
def budget_by_category(
    category: str,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    budget = BudgetService(db, user_id).by_category(category)
    return {"budget": budget_out(budget) if budget else None}


@app.get(f"{API}/budgets/{{budget_id}}")
def get_budget(
    budget_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    return budget_out(BudgetService(db, user_id).get(budget_id))


@app.patch(f"{API}/budgets/{{budget_id}}")
def update_budget(
    budget_id: int,
    payload: BudgetUpdate,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    return budget_out(BudgetService(db, user_id).update(budget_id, payload))


@app.delete(f"{API}/budgets/{{budget_id}}")
def delete_budget(
    budget_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    BudgetService(db, user_id).delete(budget_id)
    return {"deleted": True, "id": budget_id}


@app.get(f"{API}/budgets/{{budget_id}}/utilization")
def budget_utilization(
    budget_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    return utilization_out(BudgetService(db, user_id).utilization(budget_id))


@app.get(f"{API}/budgets/{{budget_id}}/check")
def budget_check(
    budget_id: int,
    amount_cents: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    check = BudgetService(db, user_id).check_limit(budget_id, amount_cents)
    return {
        "within_limit": check.within_limit,
        "budget_id": check.budget.id,
        "spent_cents": check.spent_cents,
        "remaining_cents": check.remaining_cents,
    }


# Pots


@app.get(f"{API}/pots")
def list_pots(db: Session = Depends(get_db), user_id: int = Depends(current_user_id)):
    return [pot_out(p) for p in PotService(db, user_id).list()]


@app.post(f"{API}/pots", status_code=201)
def create_pot(
    payload: PotIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    return pot_out(PotService(db, user_id).create(payload))


@app.get(f"{API}/pots/{{pot_id}}")
def get_pot(
    pot_id: int, db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    return pot_out(PotService(db, user_id).get(pot_id))


@app.patch(f"{API}/pots/{{pot_id}}")
def update_pot(
    pot_id: int,
    payload: PotUpdate,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    return pot_out(PotService(db, user_id).update(pot_id, payload))


@app.patch(f"{API}/pots/{{pot_id}}/balance")
def update_pot_balance(
    pot_id: int,
    payload: PotBalanceIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    pot = PotService(db, user_id).adjust_balance(
        pot_id, payload.amount_cents, payload.operation
    )
    return pot_out(pot)


@app.delete(f"{API}/pots/{{pot_id}}")
def delete_pot(
    pot_id: int, db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    PotService(db, user_id).delete(pot_id)
    return {"deleted": True, "id": pot_id}


# Categories


@app.get(f"{API}/categories")
def list_categories(
    active_only: bool = True,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    return [category_out(c) for c in CategoryService(db).list_all(active_only)]


@app.get(f"{API}/categories/names")
def category_names(
    db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    return CategoryService(db).names()


@app.post(f"{API}/categories", status_code=201)
def create_category(
    payload: CategoryIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    return category_out(CategoryService(db).create(payload))


@app.patch(f"{API}/categories/{{category_id}}")
def update_category(
    category_id: int,
    payload: CategoryUpdate,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    return category_out(CategoryService(db).update(category_id, payload))


# Notifications


@app.get(f"{API}/notifications")
def list_notifications(
    limit: int = 20,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    service = NotificationService(db, user_id)
    return {
        "items": [notification_out(n) for n in service.list(limit)],
        "unread": service.unread_count(),
    }


@app.post(f"{API}/notifications", status_code=201)
def create_notification(
    payload: NotificationIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    notification = NotificationService(db, user_id).notify(
        payload.message,
        NotificationType(payload.type),
        related_id=payload.related_id,
        category=payload.category,
    )
    return notification_out(notification)


@app.patch(f"{API}/notifications/read-all")
def read_all_notifications(
    db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    updated = NotificationService(db, user_id).mark_all_as_read()
    return {"updated": updated}


@app.patch(f"{API}/notifications/{{notification_id}}/read")
def read_notification(
    notification_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    return notification_out(NotificationService(db, user_id).mark_as_read(notification_id))


# Summaries


@app.get(f"{API}/account/summary")
def account_summary(
    db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    return AccountService(db, user_id).summary()


@app.get(f"{API}/account/savings")
def account_savings(
    db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    return AccountService(db, user_id).savings_overview()


@app.get(f"{API}/account/budgets")
def account_budgets(
    db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    return AccountService(db, user_id).budget_overview()


@app.get(f"{API}/recurring-bills/summary")
def recurring_bills_summary(
    db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    summary = RecurringBillService(db, user_id).summary()
    summary["bills_due_soon"] = [
        {**bill, "due_date": bill["due_date"].isoformat()}
        for bill in summary["bills_due_soon"]
    ]
    return summary


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()

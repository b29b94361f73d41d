from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from fastapi import FastAPI, Header, HTTPException, Query, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .auth_utils import verify_bearer_secret
from .config import settings
from .currencies import CURRENCIES, EXPENSE_CATEGORIES, INCOME_CATEGORIES, RECURRING_CATEGORIES
from .logging_config import get_logger, setup_logging
from .persistence import PersistenceError, get_persistence
from .schemas import (
    ApiErrorDetail,
    ApiErrorPayload,
    ApiErrorResponse,
    BatchFailureResponse,
    BatchRunResponse,
    BudgetStatusResponse,
    CategoriesResponse,
    CurrencyResponse,
    DashboardStatsResponse,
    HealthResponse,
    RecurringChargeCreate,
    RecurringChargeResponse,
    RecurringChargeUpdate,
    RecurringSummaryResponse,
    SavingsProgressResponse,
    SavingsUpdate,
    SpendingInsightsResponse,
    TransactionCreate,
    TransactionDirection,
    TransactionFilter,
    TransactionListResponse,
    TransactionResponse,
    TransactionUpdate,
    UserSettings,
    UserSettingsUpdate,
)
from .services import insights
from .services.recurrence import BatchAlreadyRunningError, BatchResult, run_batch

setup_logging()
logger = get_logger("api")

app = FastAPI(
    title="Expense Tracker API",
    version="0.1.0",
    description="Expenses, income, recurring bills, savings goals and spending insights.",
)

persistence = get_persistence()
OWNER_HEADER = "X-User-Id"


def _today() -> date:
    return datetime.now(timezone.utc).date()


def build_error_response(
    details: list[ApiErrorDetail],
    message: str = "Invalid request payload",
    code: str = "VALIDATION_ERROR",
    status_code: int = status.HTTP_422_UNPROCESSABLE_ENTITY,
) -> JSONResponse:
    payload = ApiErrorResponse(error=ApiErrorPayload(code=code, message=message, details=details))
    return JSONResponse(status_code=status_code, content=payload.model_dump())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details: list[ApiErrorDetail] = []
    for err in exc.errors():
        loc = ".".join(str(item) for item in err.get("loc", []) if item != "body")
        details.append(ApiErrorDetail(field=loc or "body", message=err.get("msg", "validation error")))
    return build_error_response(details)


@app.exception_handler(ValueError)
async def value_error_exception_handler(request: Request, exc: ValueError) -> JSONResponse:
    return build_error_response([ApiErrorDetail(field="body", message=str(exc))])


@app.exception_handler(PersistenceError)
async def persistence_error_handler(request: Request, exc: PersistenceError) -> JSONResponse:
    logger.error("Storage failure", extra={"path": request.url.path, "error": str(exc)})
    return build_error_response(
        [],
        message=str(exc),
        code="STORAGE_ERROR",
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


def _require_owner(x_user_id: str | None) -> UUID:
    raw = x_user_id or settings.default_user_id
    try:
        return UUID(raw.strip())
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"invalid {OWNER_HEADER} header") from exc


def _transaction_response(row: dict[str, Any]) -> TransactionResponse:
    return TransactionResponse(
        id=row["id"],
        direction=row["direction"],
        amount=row["amount"],
        category=row["category"],
        description=row.get("description") or "",
        occurredOn=row["date"],
        recurringChargeId=row.get("recurring_charge_id"),
        createdAt=row["created_at"],
    )


def _recurring_response(row: dict[str, Any]) -> RecurringChargeResponse:
    return RecurringChargeResponse(
        id=row["id"],
        amount=row["amount"],
        category=row["category"],
        description=row.get("description") or "",
        frequency=row["frequency"],
        startDate=row["start_date"],
        nextDueDate=row["next_due_date"],
        isActive=row["is_active"],
        createdAt=row["created_at"],
    )


def _batch_response(result: BatchResult) -> BatchRunResponse:
    return BatchRunResponse(
        processed=result.processed,
        skipped=result.skipped,
        failures=[BatchFailureResponse(chargeId=f.charge_id, error=f.error) for f in result.failures],
    )


def _expenses(user_id: UUID) -> list[dict[str, Any]]:
    return persistence.list_transactions(user_id, TransactionFilter(direction=TransactionDirection.expense))


@app.get("/api/v1/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    return HealthResponse(status="ok", storage=persistence.backend_name)


@app.api_route("/api/cron/process-recurring", methods=["GET", "POST"], response_model=BatchRunResponse)
async def cron_process_recurring(
    as_of: Optional[str] = Query(default=None, alias="asOf"),
    authorization: str | None = Header(default=None),
) -> Any:
    # credentials are checked before any parameter is looked at
    if not verify_bearer_secret(authorization, settings.cron_secret):
        logger.warning("Rejected cron call with bad credentials")
        return JSONResponse(status_code=401, content={"error": "unauthorized"})
    try:
        run_date = date.fromisoformat(as_of) if as_of else _today()
    except ValueError:
        return build_error_response([ApiErrorDetail(field="query.asOf", message="asOf must be YYYY-MM-DD")])
    try:
        result = run_batch(persistence, run_date)
    except BatchAlreadyRunningError as exc:
        return JSONResponse(status_code=409, content={"error": str(exc)})
    except Exception as exc:
        logger.exception("Recurring batch aborted")
        return JSONResponse(status_code=500, content={"error": str(exc) or exc.__class__.__name__})
    return _batch_response(result)


@app.post("/api/v1/transactions", response_model=TransactionResponse, status_code=201)
async def create_transaction(
    payload: TransactionCreate,
    x_user_id: str | None = Header(default=None),
) -> TransactionResponse:
    user_id = _require_owner(x_user_id)
    row = persistence.create_transaction(user_id, payload)
    return _transaction_response(row)


@app.get("/api/v1/transactions", response_model=TransactionListResponse)
async def list_transactions(
    direction: Optional[TransactionDirection] = None,
    category: Optional[str] = None,
    month: Optional[str] = None,
    search: Optional[str] = None,
    date_from: Optional[date] = Query(default=None, alias="dateFrom"),
    date_to: Optional[date] = Query(default=None, alias="dateTo"),
    x_user_id: str | None = Header(default=None),
) -> TransactionListResponse:
    user_id = _require_owner(x_user_id)
    filters = TransactionFilter(
        direction=direction,
        category=category,
        month=month,
        search=search,
        dateFrom=date_from,
        dateTo=date_to,
    )
    rows = persistence.list_transactions(user_id, filters)
    items = [_transaction_response(row) for row in rows]
    income = sum((i.amount for i in items if i.direction == TransactionDirection.income), Decimal("0"))
    expense = sum((i.amount for i in items if i.direction == TransactionDirection.expense), Decimal("0"))
    total = income + expense if direction is not None else income - expense
    return TransactionListResponse(
        items=items,
        count=len(items),
        total=total,
        incomeTotal=income,
        expenseTotal=expense,
    )


@app.get("/api/v1/transactions/{transaction_id}", response_model=TransactionResponse)
async def get_transaction(transaction_id: UUID, x_user_id: str | None = Header(default=None)) -> TransactionResponse:
    user_id = _require_owner(x_user_id)
    return _transaction_response(persistence.get_transaction(user_id, transaction_id))


@app.put("/api/v1/transactions/{transaction_id}", response_model=TransactionResponse)
async def update_transaction(
    transaction_id: UUID,
    payload: TransactionUpdate,
    x_user_id: str | None = Header(default=None),
) -> TransactionResponse:
    user_id = _require_owner(x_user_id)
    row = persistence.update_transaction(user_id, transaction_id, payload)
    return _transaction_response(row)


@app.delete("/api/v1/transactions/{transaction_id}", status_code=204)
async def delete_transaction(transaction_id: UUID, x_user_id: str | None = Header(default=None)) -> Response:
    user_id = _require_owner(x_user_id)
    persistence.delete_transaction(user_id, transaction_id)
    return Response(status_code=204)


@app.post("/api/v1/recurring", response_model=RecurringChargeResponse, status_code=201)
async def create_recurring_charge(
    payload: RecurringChargeCreate,
    x_user_id: str | None = Header(default=None),
) -> RecurringChargeResponse:
    user_id = _require_owner(x_user_id)
    row = persistence.create_recurring_charge(user_id, payload)
    return _recurring_response(row)


@app.get("/api/v1/recurring", response_model=list[RecurringChargeResponse])
async def list_recurring_charges(x_user_id: str | None = Header(default=None)) -> list[RecurringChargeResponse]:
    user_id = _require_owner(x_user_id)
    return [_recurring_response(row) for row in persistence.list_recurring_charges(user_id)]


@app.get("/api/v1/recurring/summary", response_model=RecurringSummaryResponse)
async def recurring_summary(x_user_id: str | None = Header(default=None)) -> RecurringSummaryResponse:
    user_id = _require_owner(x_user_id)
    return insights.recurring_summary(persistence.list_recurring_charges(user_id), _today())


@app.post("/api/v1/recurring/process", response_model=BatchRunResponse)
async def process_my_recurring_charges(x_user_id: str | None = Header(default=None)) -> BatchRunResponse:
    user_id = _require_owner(x_user_id)
    try:
        result = run_batch(persistence, _today(), user_id=user_id)
    except BatchAlreadyRunningError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return _batch_response(result)


@app.get("/api/v1/recurring/{charge_id}", response_model=RecurringChargeResponse)
async def get_recurring_charge(charge_id: UUID, x_user_id: str | None = Header(default=None)) -> RecurringChargeResponse:
    user_id = _require_owner(x_user_id)
    return _recurring_response(persistence.get_recurring_charge(user_id, charge_id))


@app.put("/api/v1/recurring/{charge_id}", response_model=RecurringChargeResponse)
async def update_recurring_charge(
    charge_id: UUID,
    payload: RecurringChargeUpdate,
    x_user_id: str | None = Header(default=None),
) -> RecurringChargeResponse:
    user_id = _require_owner(x_user_id)
    row = persistence.update_recurring_charge(user_id, charge_id, payload)
    return _recurring_response(row)


@app.post("/api/v1/recurring/{charge_id}/toggle", response_model=RecurringChargeResponse)
async def toggle_recurring_charge(charge_id: UUID, x_user_id: str | None = Header(default=None)) -> RecurringChargeResponse:
    user_id = _require_owner(x_user_id)
    current = persistence.get_recurring_charge(user_id, charge_id)
    row = persistence.set_recurring_charge_active(user_id, charge_id, not current["is_active"])
    logger.info(
        "Recurring charge %s",
        "resumed" if row["is_active"] else "paused",
        extra={"charge_id": str(charge_id)},
    )
    return _recurring_response(row)


@app.delete("/api/v1/recurring/{charge_id}", status_code=204)
async def delete_recurring_charge(charge_id: UUID, x_user_id: str | None = Header(default=None)) -> Response:
    user_id = _require_owner(x_user_id)
    persistence.delete_recurring_charge(user_id, charge_id)
    return Response(status_code=204)


@app.get("/api/v1/settings", response_model=UserSettings)
async def get_user_settings(x_user_id: str | None = Header(default=None)) -> UserSettings:
    user_id = _require_owner(x_user_id)
    return persistence.get_user_settings(user_id)


@app.put("/api/v1/settings", response_model=UserSettings)
async def update_user_settings(payload: UserSettingsUpdate, x_user_id: str | None = Header(default=None)) -> UserSettings:
    user_id = _require_owner(x_user_id)
    return persistence.upsert_user_settings(user_id, payload)


@app.put("/api/v1/settings/savings", response_model=UserSettings)
async def update_savings(payload: SavingsUpdate, x_user_id: str | None = Header(default=None)) -> UserSettings:
    user_id = _require_owner(x_user_id)
    return persistence.upsert_user_settings(user_id, payload)


@app.get("/api/v1/insights/dashboard", response_model=DashboardStatsResponse)
async def dashboard_insights(x_user_id: str | None = Header(default=None)) -> DashboardStatsResponse:
    user_id = _require_owner(x_user_id)
    user_settings = persistence.get_user_settings(user_id)
    return insights.dashboard_stats(_expenses(user_id), _today(), user_settings.currency)


@app.get("/api/v1/insights/budget", response_model=BudgetStatusResponse)
async def budget_insights(x_user_id: str | None = Header(default=None)) -> BudgetStatusResponse:
    user_id = _require_owner(x_user_id)
    user_settings = persistence.get_user_settings(user_id)
    spent = insights.month_total(_expenses(user_id), _today())
    return insights.budget_status(spent, user_settings.monthlyBudget)


@app.get("/api/v1/insights/spending", response_model=SpendingInsightsResponse)
async def spending_insights(x_user_id: str | None = Header(default=None)) -> SpendingInsightsResponse:
    user_id = _require_owner(x_user_id)
    income = persistence.list_transactions(user_id, TransactionFilter(direction=TransactionDirection.income))
    return insights.spending_insights(_expenses(user_id), income, _today())


@app.get("/api/v1/insights/savings", response_model=SavingsProgressResponse)
async def savings_insights(x_user_id: str | None = Header(default=None)) -> SavingsProgressResponse:
    user_id = _require_owner(x_user_id)
    return insights.savings_progress(persistence.get_user_settings(user_id))


@app.get("/api/v1/currencies", response_model=list[CurrencyResponse])
async def list_currencies() -> list[CurrencyResponse]:
    return [CurrencyResponse(code=code, **info) for code, info in CURRENCIES.items()]


@app.get("/api/v1/categories", response_model=CategoriesResponse)
async def list_categories() -> CategoriesResponse:
    return CategoriesResponse(expense=EXPENSE_CATEGORIES, income=INCOME_CATEGORIES, recurring=RECURRING_CATEGORIES)

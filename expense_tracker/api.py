"""FastAPI application exposing the expense_tracker backend."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import date
from typing import Annotated, Optional
from uuid import UUID

from fastapi import BackgroundTasks, Depends, FastAPI, File, HTTPException, Query, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from pydantic import BaseModel

from .aggregation import Window, WindowSummary
from .config import configure_logging, load_config
from .currency import CurrencyManager, all_currencies
from .database import ExpenseRepository, SQLiteKeyValueStore
from .events import Event, EventBus, EventType
from .exceptions import (
    ExpenseNotFoundError,
    ExpenseValidationError,
    ImportFailedError,
    NothingToExportError,
    UnknownCurrencyError,
)
from .exporters import ExportFormat
from .models import Expense
from .price_service import ExchangeRateClient
from .services import DuplicatePolicy, ExpenseService, ExportRange, ImportMode

logger = logging.getLogger(__name__)

CurrencyCode = Annotated[str, Query(pattern="^[A-Za-z]{3}$")]


@asynccontextmanager
async def lifespan(_: FastAPI):
    """Initialise shared services once and reuse them across requests."""

    config = load_config()
    configure_logging(config.log_level)

    store = SQLiteKeyValueStore(config.database_file)
    store.initialise_schema()
    events = EventBus()
    rate_client = ExchangeRateClient(config, [currency.code for currency in all_currencies()])
    currency_manager = CurrencyManager(
        store,
        rate_client,
        events,
        default_currency=config.default_currency,
        max_rate_age=config.rates_max_age,
    )
    repository = ExpenseRepository(store, config.default_currency)
    expense_service = ExpenseService(config, repository, currency_manager, events)

    events.subscribe(EventType.RATES_FAILED, _log_rate_failure)

    app.state.config = config
    app.state.store = store
    app.state.events = events
    app.state.currency = currency_manager
    app.state.expenses = expense_service

    refresh_thread = None
    if config.auto_refresh_rates and currency_manager.should_auto_refresh():
        refresh_thread = currency_manager.refresh_rates_in_background()

    yield

    if refresh_thread is not None:
        # Every source may use its full timeout before the fallback is written.
        refresh_thread.join(timeout=config.rates_timeout * max(len(config.rates_urls), 1))
        if refresh_thread.is_alive():
            logger.warning("Exchange-rate refresh still running at shutdown; leaving the store open")
            return
    store.close()


app = FastAPI(lifespan=lifespan, title="expense_tracker backend", version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _log_rate_failure(event: Event) -> None:
    logger.warning("Using fallback exchange rates: %s", event.payload.get("error"))


# Dependency injection ------------------------------------------------------

def get_expense_service() -> ExpenseService:
    service: ExpenseService = app.state.expenses
    return service


def get_currency_manager() -> CurrencyManager:
    manager: CurrencyManager = app.state.currency
    return manager


Expenses = Annotated[ExpenseService, Depends(get_expense_service)]
Currencies = Annotated[CurrencyManager, Depends(get_currency_manager)]


# Schemas -------------------------------------------------------------------


class ExpenseIn(BaseModel):
    name: str
    price: str
    description: str = ""
    date: Optional[str] = None
    time: Optional[str] = None
    currency: Optional[str] = None


def expense_payload(expense: Expense, currency: CurrencyManager) -> dict[str, object]:
    payload = expense.to_dict()
    payload["price"] = str(expense.price)
    display_amount = currency.to_display(expense)
    payload["display_price"] = str(display_amount)
    payload["display_formatted"] = currency.format_amount(display_amount)
    return payload


def summary_payload(summary: WindowSummary, currency: CurrencyManager) -> dict[str, object]:
    return {
        "window": summary.window.value,
        "count": summary.count,
        "total": str(summary.total),
        "formatted_total": currency.format_amount(summary.total),
        "currency": currency.current_currency.code,
        "expenses": [expense_payload(expense, currency) for expense in summary.expenses],
    }


# Routes --------------------------------------------------------------------


@app.get("/health")
def health_check() -> dict[str, str]:
    """Return a basic heartbeat payload for monitoring purposes."""

    return {"status": "ok"}


@app.get("/expenses")
def list_expenses(service: Expenses, currency: Currencies) -> dict[str, object]:
    expenses = service.list_expenses()
    return {"expenses": [expense_payload(expense, currency) for expense in expenses], "count": len(expenses)}


@app.post("/expenses", status_code=201)
def create_expense(body: ExpenseIn, service: Expenses, currency: Currencies) -> dict[str, object]:
    try:
        expense = service.add_expense(
            body.name, body.price, body.description, body.date, body.time, body.currency
        )
    except ExpenseValidationError as exc:
        raise _validation_http_error(exc) from exc
    except UnknownCurrencyError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return expense_payload(expense, currency)


@app.get("/expenses/{expense_id}")
def get_expense(expense_id: UUID, service: Expenses, currency: Currencies) -> dict[str, object]:
    try:
        expense = service.get_expense(expense_id)
    except ExpenseNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return expense_payload(expense, currency)


@app.put("/expenses/{expense_id}")
def update_expense(
    expense_id: UUID,
    body: ExpenseIn,
    service: Expenses,
    currency: Currencies,
) -> dict[str, object]:
    try:
        expense = service.update_expense(
            expense_id, body.name, body.price, body.description, body.date, body.time, body.currency
        )
    except ExpenseValidationError as exc:
        raise _validation_http_error(exc) from exc
    except ExpenseNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except UnknownCurrencyError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return expense_payload(expense, currency)


@app.delete("/expenses/{expense_id}", status_code=204)
def delete_expense(expense_id: UUID, service: Expenses) -> Response:
    try:
        service.delete_expense(expense_id)
    except ExpenseNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return Response(status_code=204)


@app.get("/summary")
def window_summary(
    service: Expenses,
    currency: Currencies,
    window: Window = Window.ALL,
) -> dict[str, object]:
    return summary_payload(service.summary(window), currency)


@app.get("/summary/report")
def summary_report(service: Expenses) -> dict[str, object]:
    report = service.summary_report()
    return {
        "currency": report.currency,
        "counts": {
            "today": report.today.count,
            "week": report.week.count,
            "month": report.month.count,
            "all": report.all.count,
        },
        "average": str(report.average),
        "week_average_per_day": str(report.week_average_per_day),
        "formatted": report.formatted,
    }


@app.get("/currencies")
def list_currencies(currency: Currencies) -> dict[str, object]:
    return {
        "currencies": [
            {"code": item.code, "symbol": item.symbol, "name": item.name, "flag": item.flag}
            for item in all_currencies()
        ],
        "current": currency.current_currency.code,
    }


@app.get("/settings/display-currency")
def get_display_currency(currency: Currencies) -> dict[str, str]:
    return {"display_currency": currency.current_currency.code}


@app.put("/settings/display-currency")
def set_display_currency(code: CurrencyCode, currency: Currencies) -> dict[str, str]:
    try:
        selected = currency.set_currency(code)
    except UnknownCurrencyError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"display_currency": selected.code}


@app.get("/rates")
def get_rates(currency: Currencies) -> dict[str, object]:
    return {
        "rates": currency.exchange_rates,
        "last_update": currency.last_update.isoformat() if currency.last_update else None,
        "last_update_display": currency.last_update_display(),
        "is_updating": currency.is_updating,
    }


@app.post("/rates/refresh", status_code=202)
def refresh_rates(background_tasks: BackgroundTasks, currency: Currencies) -> dict[str, str]:
    """Schedule a rate refresh and return immediately."""

    currency.is_updating = True
    background_tasks.add_task(currency.refresh_rates)
    return {"status": "refreshing"}


@app.get("/convert")
def convert_amount(
    amount: float,
    from_code: Annotated[str, Query(alias="from", pattern="^[A-Za-z]{3}$")],
    to_code: Annotated[str, Query(alias="to", pattern="^[A-Za-z]{3}$")],
    currency: Currencies,
) -> dict[str, object]:
    result = currency.convert_checked(amount, from_code, to_code)
    return {
        "amount": result.amount,
        "from": from_code.upper(),
        "to": to_code.upper(),
        "converted": result.converted,
        "missing_rate": result.missing_code,
    }


@app.post("/import")
async def import_file(
    service: Expenses,
    file: UploadFile = File(...),
    mode: ImportMode = ImportMode.MERGE,
    policy: DuplicatePolicy = DuplicatePolicy.SKIP,
) -> dict[str, object]:
    data = await file.read()
    try:
        report = service.import_file(data, file.filename or "", mode, policy)
    except ImportFailedError as exc:
        raise HTTPException(status_code=400, detail=exc.reason) from exc
    return {
        "imported": report.imported,
        "skipped_duplicates": report.skipped_duplicates,
        "unreadable": report.unreadable,
        "total": report.total,
    }


@app.get("/export")
def export_expenses(
    service: Expenses,
    export_format: Annotated[ExportFormat, Query(alias="format")] = ExportFormat.JSON,
    export_range: Annotated[ExportRange, Query(alias="range")] = ExportRange.ALL,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> Response:
    try:
        bundle = service.export(export_format, export_range, start, end)
    except NothingToExportError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return Response(
        content=bundle.content,
        media_type=bundle.media_type,
        headers={
            "Content-Disposition": f'attachment; filename="{bundle.filename}"',
            "X-Expense-Count": str(bundle.count),
        },
    )


def _validation_http_error(exc: ExpenseValidationError) -> HTTPException:
    return HTTPException(
        status_code=422,
        detail={
            "message": str(exc),
            "focus": exc.focus_field,
            "issues": [{"field": issue.field, "message": issue.message} for issue in exc.issues],
        },
    )

from datetime import date, datetime
from decimal import Decimal
from typing import Annotated, Any, Literal
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from psycopg import AsyncConnection
from pydantic import BaseModel, Field, field_serializer, field_validator, model_validator

from .auth import get_current_user_id
from .database import get_db_connection
from .services.expenses_service import (
    categorize_expense,
    create_expense,
    delete_expense,
    dismiss_expense,
    list_expenses,
    list_uncategorized,
    update_expense,
)
from .services.period_calculator import expenses_in_range
from .services.profile_service import get_current_range
from .utils import local_now, money

router = APIRouter(prefix="/expenses", tags=["expenses"])

ExpenseScope = Literal["current", "all"]
# Field name "date" would shadow the type inside model bodies.
CalendarDate = date
Amount = Annotated[Decimal, Field(gt=Decimal("0"), max_digits=12, decimal_places=2)]


class ExpenseCreate(BaseModel):
    date: CalendarDate
    category: str = Field(min_length=1, max_length=80)
    category_id: str | None = None
    amount: Amount
    note: str | None = None

    @field_validator("category", "note", mode="before")
    @classmethod
    def clean_text(cls, value: str | None) -> str | None:
        if isinstance(value, str):
            return value.strip()
        return value


class ExpenseUpdate(BaseModel):
    date: CalendarDate | None = None
    category: str | None = Field(default=None, min_length=1, max_length=80)
    category_id: str | None = None
    amount: Amount | None = None
    note: str | None = None

    @model_validator(mode="after")
    def check_not_empty(self) -> "ExpenseUpdate":
        if not self.model_fields_set:
            raise ValueError("At least one field must be provided")

        return self


class CategorizeRequest(BaseModel):
    category_id: UUID


class ExpenseResponse(BaseModel):
    id: str
    date: CalendarDate
    category: str
    category_id: str | None = None
    amount: Decimal
    note: str
    currency: str | None = None
    entry_type: str | None = None
    status: str | None = None
    source: str
    imported_at: datetime | None = None
    categorized_at: datetime | None = None
    created_at: datetime

    @field_serializer("amount")
    def serialize_amount(self, value: Decimal) -> str:
        return money(value)


def _expense_out(row: dict[str, Any]) -> ExpenseResponse:
    return ExpenseResponse.model_validate(row)


@router.get("", response_model=list[ExpenseResponse])
async def list_expenses_endpoint(
    scope: ExpenseScope = Query(default="current"),
    user_id: UUID = Depends(get_current_user_id),
    connection: AsyncConnection = Depends(get_db_connection),
) -> list[ExpenseResponse]:
    """Active expenses; `scope=current` keeps only the current budget period."""
    rows = await list_expenses(connection, user_id)

    if scope == "current":
        _, period = await get_current_range(connection, user_id, local_now())
        rows = expenses_in_range(rows, period)

    return [_expense_out(row) for row in rows]


@router.post("", response_model=ExpenseResponse, status_code=201)
async def create_expense_endpoint(
    payload: ExpenseCreate,
    user_id: UUID = Depends(get_current_user_id),
    connection: AsyncConnection = Depends(get_db_connection),
) -> ExpenseResponse:
    try:
        row = await create_expense(
            connection,
            user_id,
            spent_on=payload.date,
            category=payload.category,
            amount=payload.amount,
            note=payload.note,
            category_id=payload.category_id,
        )
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    return _expense_out(row)


@router.get("/uncategorized", response_model=list[ExpenseResponse])
async def list_uncategorized_endpoint(
    user_id: UUID = Depends(get_current_user_id),
    connection: AsyncConnection = Depends(get_db_connection),
) -> list[ExpenseResponse]:
    """Imported bank transactions still waiting for a category."""
    rows = await list_uncategorized(connection, user_id)
    return [_expense_out(row) for row in rows]


@router.patch("/{expense_id}", response_model=ExpenseResponse)
async def update_expense_endpoint(
    expense_id: str,
    payload: ExpenseUpdate,
    user_id: UUID = Depends(get_current_user_id),
    connection: AsyncConnection = Depends(get_db_connection),
) -> ExpenseResponse:
    patch = payload.model_dump(exclude_unset=True)

    try:
        row = await update_expense(connection, user_id, expense_id, patch)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    return _expense_out(row)


@router.delete("/{expense_id}", status_code=204)
async def delete_expense_endpoint(
    expense_id: str,
    user_id: UUID = Depends(get_current_user_id),
    connection: AsyncConnection = Depends(get_db_connection),
) -> Response:
    try:
        await delete_expense(connection, user_id, expense_id)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc

    return Response(status_code=204)


@router.post("/{expense_id}/categorize", response_model=ExpenseResponse)
async def categorize_expense_endpoint(
    expense_id: str,
    payload: CategorizeRequest,
    user_id: UUID = Depends(get_current_user_id),
    connection: AsyncConnection = Depends(get_db_connection),
) -> ExpenseResponse:
    try:
        row = await categorize_expense(connection, user_id, expense_id, payload.category_id)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc

    return _expense_out(row)


@router.post("/{expense_id}/dismiss", response_model=ExpenseResponse)
async def dismiss_expense_endpoint(
    expense_id: str,
    user_id: UUID = Depends(get_current_user_id),
    connection: AsyncConnection = Depends(get_db_connection),
) -> ExpenseResponse:
    try:
        row = await dismiss_expense(connection, user_id, expense_id)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc

    return _expense_out(row)

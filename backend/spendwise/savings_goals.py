"""Savings goals router with logged balances and computed progress fields."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Response, status
from psycopg import AsyncConnection
from pydantic import BaseModel, Field, field_serializer

from .auth import get_current_user_id
from .database import get_db_connection
from .services.savings_service import (
    add_balance,
    create_goal,
    delete_balance,
    delete_goal,
    get_goal,
    list_goals,
    update_goal,
)
from .utils import local_now, money

router = APIRouter(prefix="/savings-goals", tags=["savings"])

# Field name "date" would shadow the type inside model bodies.
CalendarDate = date


def _today() -> date:
    return local_now().date()


class GoalCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    target_amount: Decimal = Field(gt=Decimal("0"), max_digits=12, decimal_places=2)
    deadline_date: CalendarDate | None = None


class GoalUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=120)
    target_amount: Decimal | None = Field(default=None, gt=Decimal("0"), max_digits=12, decimal_places=2)
    deadline_date: CalendarDate | None = None


class BalanceCreateRequest(BaseModel):
    amount: Decimal = Field(ge=Decimal("0"), max_digits=12, decimal_places=2)
    date: CalendarDate | None = None
    note: str | None = Field(default=None, max_length=500)


class BalanceOut(BaseModel):
    id: UUID
    date: CalendarDate
    amount: Decimal
    note: str
    created_at: datetime

    @field_serializer("amount")
    def serialize_amount(self, value: Decimal) -> str:
        return money(value)


class GoalResponse(BaseModel):
    id: UUID
    name: str
    target_amount: Decimal
    deadline_date: CalendarDate | None
    created_at: datetime
    updated_at: datetime
    saved_amount: Decimal
    remaining_amount: Decimal
    progress_pct: int
    months_left: int | None
    recommended_monthly_save_amount: Decimal | None
    balances: list[BalanceOut]

    @field_serializer(
        "target_amount",
        "saved_amount",
        "remaining_amount",
        "recommended_monthly_save_amount",
        when_used="always",
    )
    def serialize_decimal(self, value: Decimal | None) -> str | None:
        if value is None:
            return None
        return money(value)


@router.post("", response_model=GoalResponse, status_code=status.HTTP_201_CREATED)
async def create_goal_endpoint(
    payload: GoalCreateRequest,
    user_id: UUID = Depends(get_current_user_id),
    connection: AsyncConnection = Depends(get_db_connection),
) -> GoalResponse:
    """Create one savings goal for the current user."""
    try:
        result = await create_goal(connection, user_id, payload.model_dump(), _today())
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    return GoalResponse(**result)


@router.get("", response_model=list[GoalResponse])
async def list_goals_endpoint(
    user_id: UUID = Depends(get_current_user_id),
    connection: AsyncConnection = Depends(get_db_connection),
) -> list[GoalResponse]:
    rows = await list_goals(connection, user_id, _today())
    return [GoalResponse(**row) for row in rows]


@router.get("/{goal_id}", response_model=GoalResponse)
async def get_goal_endpoint(
    goal_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    connection: AsyncConnection = Depends(get_db_connection),
) -> GoalResponse:
    try:
        row = await get_goal(connection, user_id, goal_id, _today())
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc

    return GoalResponse(**row)


@router.patch("/{goal_id}", response_model=GoalResponse)
async def update_goal_endpoint(
    goal_id: UUID,
    payload: GoalUpdateRequest,
    user_id: UUID = Depends(get_current_user_id),
    connection: AsyncConnection = Depends(get_db_connection),
) -> GoalResponse:
    patch_data = payload.model_dump(exclude_unset=True)
    if not patch_data:
        raise HTTPException(status_code=422, detail="At least one field must be provided")

    try:
        row = await update_goal(connection, user_id, goal_id, patch_data, _today())
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    return GoalResponse(**row)


@router.delete("/{goal_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_goal_endpoint(
    goal_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    connection: AsyncConnection = Depends(get_db_connection),
) -> Response:
    """Delete one goal and its balance history."""
    try:
        await delete_goal(connection, user_id, goal_id)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc

    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{goal_id}/balances", response_model=GoalResponse, status_code=status.HTTP_201_CREATED)
async def add_balance_endpoint(
    goal_id: UUID,
    payload: BalanceCreateRequest,
    user_id: UUID = Depends(get_current_user_id),
    connection: AsyncConnection = Depends(get_db_connection),
) -> GoalResponse:
    """Log the goal's current savings balance; the latest entry is what counts."""
    try:
        row = await add_balance(connection, user_id, goal_id, payload.model_dump(), _today())
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    return GoalResponse(**row)


@router.delete("/{goal_id}/balances/{balance_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_balance_endpoint(
    goal_id: UUID,
    balance_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    connection: AsyncConnection = Depends(get_db_connection),
) -> Response:
    try:
        await delete_balance(connection, user_id, goal_id, balance_id)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc

    return Response(status_code=status.HTTP_204_NO_CONTENT)

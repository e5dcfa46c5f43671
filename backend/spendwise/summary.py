"""
Summary API router.

Planned vs. actual spend per budget category for the current period, with a
day-by-day spending series.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from fastapi import APIRouter, Depends
from psycopg import AsyncConnection
from pydantic import BaseModel, field_serializer

from .auth import get_current_user_id
from .database import get_db_connection
from .services.categories_service import build_daily_spending, build_period_summary, list_categories
from .services.expenses_service import list_expenses
from .services.period_calculator import expenses_in_range, format_range
from .services.profile_service import get_current_range
from .utils import local_now, money

router = APIRouter(prefix="/summary", tags=["summary"])

# Field name "date" would shadow the type inside model bodies.
CalendarDate = date


class CategorySummary(BaseModel):
    category_id: UUID
    category: str
    planned: Decimal
    actual: Decimal
    remaining: Decimal
    percentage: int

    @field_serializer("planned", "actual", "remaining")
    def serialize_decimal(self, value: Decimal) -> str:
        return money(value)


class DailySpending(BaseModel):
    date: CalendarDate
    amount: Decimal
    cumulative: Decimal

    @field_serializer("amount", "cumulative")
    def serialize_decimal(self, value: Decimal) -> str:
        return money(value)


class SummaryResponse(BaseModel):
    period_start: datetime
    period_end: datetime
    period_label: str
    categories: list[CategorySummary]
    total_planned: Decimal
    total_actual: Decimal
    total_remaining: Decimal
    percentage_used: int
    daily: list[DailySpending]

    @field_serializer("total_planned", "total_actual", "total_remaining")
    def serialize_decimal(self, value: Decimal) -> str:
        return money(value)


@router.get("", response_model=SummaryResponse)
async def get_summary(
    user_id: UUID = Depends(get_current_user_id),
    connection: AsyncConnection = Depends(get_db_connection),
) -> SummaryResponse:
    _, period = await get_current_range(connection, user_id, local_now())
    categories = await list_categories(connection, user_id)
    period_expenses = expenses_in_range(await list_expenses(connection, user_id), period)

    summary = build_period_summary(categories, period_expenses)
    return SummaryResponse(
        period_start=period.start,
        period_end=period.end,
        period_label=format_range(period),
        daily=build_daily_spending(period, period_expenses),
        **summary,
    )

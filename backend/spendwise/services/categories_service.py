"""Budget categories with planned amounts, the planned-vs-actual summary and daily spend."""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import TYPE_CHECKING, Any, Iterable
from uuid import UUID

from spendwise.services.period_calculator import PeriodRange
from spendwise.utils import quantize_amount

if TYPE_CHECKING:
    from psycopg import AsyncConnection
else:
    AsyncConnection = Any

CATEGORY_COLUMNS = "id, user_id, name, planned_amount, created_at"

DEFAULT_CATEGORIES: tuple[tuple[str, Decimal], ...] = (
    ("Food & Dining", Decimal("500.00")),
    ("Transport", Decimal("200.00")),
    ("Entertainment", Decimal("150.00")),
    ("Shopping", Decimal("300.00")),
)

# Imported transactions the user dismissed stay in the active set but never count.
DISMISSED_STATUS = "deleted"


def _clean_name(name: str | None) -> str:
    normalized = (name or "").strip()
    if not normalized:
        raise ValueError("name is required")
    return normalized


def _validate_planned(value: Decimal) -> Decimal:
    planned = quantize_amount(Decimal(str(value)))
    if planned < Decimal("0.00"):
        raise ValueError("planned_amount must be >= 0")
    return planned


async def _fetch_categories(connection: AsyncConnection, user_id: UUID) -> list[dict[str, Any]]:
    async with connection.cursor() as cursor:
        await cursor.execute(
            f"""
            SELECT {CATEGORY_COLUMNS}
            FROM budget_categories
            WHERE user_id = %s
            ORDER BY created_at ASC, name ASC
            """,
            (user_id,),
        )
        return await cursor.fetchall()


async def list_categories(connection: AsyncConnection, user_id: UUID) -> list[dict[str, Any]]:
    """List the user's categories, seeding the defaults the first time."""
    rows = await _fetch_categories(connection, user_id)
    if rows:
        return rows

    async with connection.cursor() as cursor:
        for name, planned_amount in DEFAULT_CATEGORIES:
            await cursor.execute(
                """
                INSERT INTO budget_categories (user_id, name, planned_amount)
                VALUES (%s, %s, %s)
                """,
                (user_id, name, planned_amount),
            )

    return await _fetch_categories(connection, user_id)


async def get_category(connection: AsyncConnection, user_id: UUID, category_id: UUID) -> dict[str, Any]:
    async with connection.cursor() as cursor:
        await cursor.execute(
            f"""
            SELECT {CATEGORY_COLUMNS}
            FROM budget_categories
            WHERE id = %s
              AND user_id = %s
            """,
            (category_id, user_id),
        )
        row = await cursor.fetchone()

    if row is None:
        raise LookupError("Category not found")

    return row


async def create_category(
    connection: AsyncConnection,
    user_id: UUID,
    name: str,
    planned_amount: Decimal,
) -> dict[str, Any]:
    async with connection.cursor() as cursor:
        await cursor.execute(
            f"""
            INSERT INTO budget_categories (user_id, name, planned_amount)
            VALUES (%s, %s, %s)
            RETURNING {CATEGORY_COLUMNS}
            """,
            (user_id, _clean_name(name), _validate_planned(planned_amount)),
        )
        return await cursor.fetchone()


async def update_category(
    connection: AsyncConnection,
    user_id: UUID,
    category_id: UUID,
    patch: dict[str, Any],
) -> dict[str, Any]:
    existing = await get_category(connection, user_id, category_id)

    name = _clean_name(patch["name"]) if "name" in patch else existing["name"]
    planned_amount = (
        _validate_planned(patch["planned_amount"]) if "planned_amount" in patch else existing["planned_amount"]
    )

    async with connection.cursor() as cursor:
        await cursor.execute(
            f"""
            UPDATE budget_categories
            SET name = %s,
                planned_amount = %s
            WHERE id = %s
              AND user_id = %s
            RETURNING {CATEGORY_COLUMNS}
            """,
            (name, planned_amount, category_id, user_id),
        )
        row = await cursor.fetchone()

    if row is None:
        raise LookupError("Category not found")

    return row


async def delete_category(connection: AsyncConnection, user_id: UUID, category_id: UUID) -> None:
    async with connection.cursor() as cursor:
        await cursor.execute(
            """
            DELETE FROM budget_categories
            WHERE id = %s
              AND user_id = %s
            RETURNING id
            """,
            (category_id, user_id),
        )
        row = await cursor.fetchone()

    if row is None:
        raise LookupError("Category not found")


def _pct(actual: Decimal, planned: Decimal) -> int:
    if planned <= Decimal("0.00"):
        return 0
    return int(((actual / planned) * Decimal("100")).to_integral_value(rounding=ROUND_HALF_UP))


def _counted(period_expenses: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
    return [expense for expense in period_expenses if expense.get("status") != DISMISSED_STATUS]


def build_period_summary(
    categories: Iterable[dict[str, Any]],
    period_expenses: Iterable[dict[str, Any]],
) -> dict[str, Any]:
    """
    Planned vs. actual spend per category for one period's expenses.

    An expense with a category id counts toward that category even after a
    rename; one without matches by name. Totals cover every counted expense
    in the period, including ones whose category has no budget line.
    """
    counted = _counted(period_expenses)

    spent_by_id: dict[str, Decimal] = {}
    spent_by_name: dict[str, Decimal] = {}
    for expense in counted:
        amount = Decimal(str(expense["amount"]))
        category_id = expense.get("category_id")
        if category_id:
            key = str(category_id)
            spent_by_id[key] = spent_by_id.get(key, Decimal("0")) + amount
        else:
            name = expense.get("category") or ""
            spent_by_name[name] = spent_by_name.get(name, Decimal("0")) + amount

    items: list[dict[str, Any]] = []
    total_planned = Decimal("0.00")
    for category in categories:
        planned = quantize_amount(Decimal(str(category["planned_amount"])))
        actual = quantize_amount(
            spent_by_id.get(str(category["id"]), Decimal("0"))
            + spent_by_name.get(category["name"], Decimal("0"))
        )
        total_planned += planned
        items.append(
            {
                "category_id": category["id"],
                "category": category["name"],
                "planned": planned,
                "actual": actual,
                "remaining": quantize_amount(planned - actual),
                "percentage": max(0, min(_pct(actual, planned), 100)),
            }
        )

    total_actual = quantize_amount(sum((Decimal(str(e["amount"])) for e in counted), Decimal("0")))
    return {
        "categories": items,
        "total_planned": quantize_amount(total_planned),
        "total_actual": total_actual,
        "total_remaining": quantize_amount(total_planned - total_actual),
        # Not capped: overspending shows as more than 100.
        "percentage_used": _pct(total_actual, total_planned),
    }


def build_daily_spending(period: PeriodRange, period_expenses: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
    """One entry per day of the period: that day's spend and the running total."""
    spent_by_day: dict[Any, Decimal] = {}
    for expense in _counted(period_expenses):
        day = expense["date"]
        spent_by_day[day] = spent_by_day.get(day, Decimal("0")) + Decimal(str(expense["amount"]))

    series: list[dict[str, Any]] = []
    cumulative = Decimal("0.00")
    day = period.start.date()
    last_day = period.end.date()
    while day <= last_day:
        amount = quantize_amount(spent_by_day.get(day, Decimal("0")))
        cumulative += amount
        series.append({"date": day, "amount": amount, "cumulative": cumulative})
        day += timedelta(days=1)

    return series

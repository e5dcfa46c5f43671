"""Service layer for savings goals and their logged balances."""

from __future__ import annotations

import math
from datetime import date
from decimal import Decimal, ROUND_CEILING, ROUND_FLOOR
from typing import TYPE_CHECKING, Any
from uuid import UUID

from spendwise.utils import MONEY_QUANT, quantize_amount

if TYPE_CHECKING:
    from psycopg import AsyncConnection
else:
    AsyncConnection = Any

GOAL_COLUMNS = "id, user_id, name, target_amount, deadline_date, created_at, updated_at"
BALANCE_COLUMNS = "id, goal_id, recorded_on AS date, amount, note, created_at"


def _ceil_to_cent(value: Decimal) -> Decimal:
    return value.quantize(MONEY_QUANT, rounding=ROUND_CEILING)


def _validate_goal(name: str | None, target_amount: Decimal) -> tuple[str, Decimal]:
    normalized_name = (name or "").strip()
    if not normalized_name:
        raise ValueError("name is required")

    target = quantize_amount(Decimal(str(target_amount)))
    if target <= Decimal("0.00"):
        raise ValueError("target_amount must be greater than 0")

    return normalized_name, target


def compute_goal_metrics(
    goal_row: dict[str, Any],
    balances: list[dict[str, Any]],
    today: date,
) -> dict[str, Any]:
    """
    Attach balance history and progress fields to one goal row.

    The most recent balance entry is the amount currently saved; balances
    are snapshots of the savings account, not deposits.
    """
    ordered = sorted(balances, key=lambda row: (row["date"], row["created_at"]), reverse=True)
    target_amount = quantize_amount(goal_row["target_amount"])
    saved_amount = quantize_amount(ordered[0]["amount"]) if ordered else Decimal("0.00")
    remaining_amount = quantize_amount(max(target_amount - saved_amount, Decimal("0.00")))

    progress_pct = int(((saved_amount / target_amount) * Decimal("100")).to_integral_value(rounding=ROUND_FLOOR))
    progress_pct = max(0, min(progress_pct, 100))

    deadline_date: date | None = goal_row["deadline_date"]
    months_left: int | None = None
    recommended_monthly_save_amount: Decimal | None = None
    if deadline_date is not None:
        days_left = max((deadline_date - today).days, 0)
        months_left = int(math.ceil(days_left / 30)) if days_left > 0 else 0
        if remaining_amount == Decimal("0.00"):
            recommended_monthly_save_amount = Decimal("0.00")
        elif months_left <= 0:
            recommended_monthly_save_amount = remaining_amount
        else:
            recommended_monthly_save_amount = _ceil_to_cent(remaining_amount / Decimal(months_left))

    return {
        **goal_row,
        "target_amount": target_amount,
        "saved_amount": saved_amount,
        "remaining_amount": remaining_amount,
        "progress_pct": progress_pct,
        "months_left": months_left,
        "recommended_monthly_save_amount": recommended_monthly_save_amount,
        "balances": ordered,
    }


async def _fetch_goal_row(connection: AsyncConnection, user_id: UUID, goal_id: UUID) -> dict[str, Any] | None:
    async with connection.cursor() as cursor:
        await cursor.execute(
            f"""
            SELECT {GOAL_COLUMNS}
            FROM savings_goals
            WHERE id = %s
              AND user_id = %s
            """,
            (goal_id, user_id),
        )
        return await cursor.fetchone()


async def _fetch_balances(connection: AsyncConnection, user_id: UUID, goal_id: UUID) -> list[dict[str, Any]]:
    async with connection.cursor() as cursor:
        await cursor.execute(
            f"""
            SELECT {BALANCE_COLUMNS}
            FROM savings_balances
            WHERE goal_id = %s
              AND user_id = %s
            ORDER BY recorded_on DESC, created_at DESC
            """,
            (goal_id, user_id),
        )
        return await cursor.fetchall()


async def create_goal(
    connection: AsyncConnection,
    user_id: UUID,
    data: dict[str, Any],
    today: date,
) -> dict[str, Any]:
    name, target_amount = _validate_goal(data.get("name"), data["target_amount"])
    deadline_date = data.get("deadline_date")
    if deadline_date is not None and deadline_date <= today:
        raise ValueError("deadline_date must be in the future")

    async with connection.cursor() as cursor:
        await cursor.execute(
            f"""
            INSERT INTO savings_goals (user_id, name, target_amount, deadline_date)
            VALUES (%s, %s, %s, %s)
            RETURNING {GOAL_COLUMNS}
            """,
            (user_id, name, target_amount, deadline_date),
        )
        row = await cursor.fetchone()

    return compute_goal_metrics(row, [], today)


async def list_goals(connection: AsyncConnection, user_id: UUID, today: date) -> list[dict[str, Any]]:
    async with connection.cursor() as cursor:
        await cursor.execute(
            f"""
            SELECT {GOAL_COLUMNS}
            FROM savings_goals
            WHERE user_id = %s
            ORDER BY created_at ASC
            """,
            (user_id,),
        )
        rows = await cursor.fetchall()

    results = []
    for row in rows:
        balances = await _fetch_balances(connection, user_id, row["id"])
        results.append(compute_goal_metrics(row, balances, today))
    return results


async def get_goal(connection: AsyncConnection, user_id: UUID, goal_id: UUID, today: date) -> dict[str, Any]:
    row = await _fetch_goal_row(connection, user_id, goal_id)
    if row is None:
        raise LookupError("Savings goal not found")

    balances = await _fetch_balances(connection, user_id, goal_id)
    return compute_goal_metrics(row, balances, today)


async def update_goal(
    connection: AsyncConnection,
    user_id: UUID,
    goal_id: UUID,
    patch: dict[str, Any],
    today: date,
) -> dict[str, Any]:
    existing = await _fetch_goal_row(connection, user_id, goal_id)
    if existing is None:
        raise LookupError("Savings goal not found")

    name, target_amount = _validate_goal(
        patch.get("name", existing["name"]),
        patch.get("target_amount", existing["target_amount"]),
    )
    deadline_date = patch.get("deadline_date", existing["deadline_date"])
    if "deadline_date" in patch and deadline_date is not None and deadline_date <= today:
        raise ValueError("deadline_date must be in the future")

    async with connection.cursor() as cursor:
        await cursor.execute(
            f"""
            UPDATE savings_goals
            SET name = %s,
                target_amount = %s,
                deadline_date = %s,
                updated_at = now()
            WHERE id = %s
              AND user_id = %s
            RETURNING {GOAL_COLUMNS}
            """,
            (name, target_amount, deadline_date, goal_id, user_id),
        )
        row = await cursor.fetchone()

    if row is None:
        raise LookupError("Savings goal not found")

    balances = await _fetch_balances(connection, user_id, goal_id)
    return compute_goal_metrics(row, balances, today)


async def delete_goal(connection: AsyncConnection, user_id: UUID, goal_id: UUID) -> None:
    """Hard-delete one goal; its balances go with it."""
    async with connection.cursor() as cursor:
        await cursor.execute(
            """
            DELETE FROM savings_goals
            WHERE id = %s
              AND user_id = %s
            RETURNING id
            """,
            (goal_id, user_id),
        )
        row = await cursor.fetchone()

    if row is None:
        raise LookupError("Savings goal not found")


async def add_balance(
    connection: AsyncConnection,
    user_id: UUID,
    goal_id: UUID,
    data: dict[str, Any],
    today: date,
) -> dict[str, Any]:
    """Log the current savings balance for a goal and return the updated goal."""
    if await _fetch_goal_row(connection, user_id, goal_id) is None:
        raise LookupError("Savings goal not found")

    amount = quantize_amount(Decimal(str(data["amount"])))
    if amount < Decimal("0.00"):
        raise ValueError("amount must be >= 0")

    async with connection.cursor() as cursor:
        await cursor.execute(
            """
            INSERT INTO savings_balances (goal_id, user_id, recorded_on, amount, note)
            VALUES (%s, %s, %s, %s, %s)
            """,
            (
                goal_id,
                user_id,
                data.get("date") or today,
                amount,
                (data.get("note") or "").strip(),
            ),
        )

    return await get_goal(connection, user_id, goal_id, today)


async def delete_balance(
    connection: AsyncConnection,
    user_id: UUID,
    goal_id: UUID,
    balance_id: UUID,
) -> None:
    async with connection.cursor() as cursor:
        await cursor.execute(
            """
            DELETE FROM savings_balances
            WHERE id = %s
              AND goal_id = %s
              AND user_id = %s
            RETURNING id
            """,
            (balance_id, goal_id, user_id),
        )
        row = await cursor.fetchone()

    if row is None:
        raise LookupError("Balance entry not found")

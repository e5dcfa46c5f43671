"""Service layer for money lent to friends."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Iterable
from uuid import UUID

from spendwise.utils import quantize_amount

if TYPE_CHECKING:
    from psycopg import AsyncConnection
else:
    AsyncConnection = Any

BORROWED_COLUMNS = (
    "id, user_id, lent_on AS date, friend_name, amount, description, "
    "return_date, is_returned, returned_date, created_at"
)


def _validate_entry(friend_name: str | None, amount: Decimal) -> tuple[str, Decimal]:
    name = (friend_name or "").strip()
    if not name:
        raise ValueError("friend_name is required")

    normalized_amount = quantize_amount(Decimal(str(amount)))
    if normalized_amount <= Decimal("0.00"):
        raise ValueError("Amount must be greater than 0")

    return name, normalized_amount


def summarize_borrowed(rows: Iterable[dict[str, Any]]) -> dict[str, Any]:
    """Split records into outstanding and returned, with a total for each."""
    rows = list(rows)
    active = [row for row in rows if not row["is_returned"]]
    returned = [row for row in rows if row["is_returned"]]
    return {
        "active": active,
        "returned": returned,
        "total_active": quantize_amount(sum((row["amount"] for row in active), Decimal("0"))),
        "total_returned": quantize_amount(sum((row["amount"] for row in returned), Decimal("0"))),
    }


async def list_borrowed(connection: AsyncConnection, user_id: UUID) -> list[dict[str, Any]]:
    async with connection.cursor() as cursor:
        await cursor.execute(
            f"""
            SELECT {BORROWED_COLUMNS}
            FROM borrowed_money
            WHERE user_id = %s
            ORDER BY lent_on DESC, created_at DESC
            """,
            (user_id,),
        )
        return await cursor.fetchall()


async def create_borrowed(
    connection: AsyncConnection,
    user_id: UUID,
    *,
    friend_name: str,
    amount: Decimal,
    description: str | None,
    return_date: date | None,
    today: date,
) -> dict[str, Any]:
    """Record money lent today; `return_date` is the optional promised date."""
    name, normalized_amount = _validate_entry(friend_name, amount)

    async with connection.cursor() as cursor:
        await cursor.execute(
            f"""
            INSERT INTO borrowed_money (user_id, lent_on, friend_name, amount, description, return_date)
            VALUES (%s, %s, %s, %s, %s, %s)
            RETURNING {BORROWED_COLUMNS}
            """,
            (
                user_id,
                today,
                name,
                normalized_amount,
                (description or "").strip(),
                return_date,
            ),
        )
        return await cursor.fetchone()


async def update_borrowed(
    connection: AsyncConnection,
    user_id: UUID,
    borrowed_id: UUID,
    patch: dict[str, Any],
) -> dict[str, Any]:
    async with connection.cursor() as cursor:
        await cursor.execute(
            f"""
            SELECT {BORROWED_COLUMNS}
            FROM borrowed_money
            WHERE id = %s
              AND user_id = %s
            """,
            (borrowed_id, user_id),
        )
        existing = await cursor.fetchone()

    if existing is None:
        raise LookupError("Borrowed money record not found")

    name, normalized_amount = _validate_entry(
        patch.get("friend_name", existing["friend_name"]),
        patch.get("amount", existing["amount"]),
    )
    description = (patch.get("description", existing["description"]) or "").strip()
    return_date = patch.get("return_date", existing["return_date"])

    async with connection.cursor() as cursor:
        await cursor.execute(
            f"""
            UPDATE borrowed_money
            SET friend_name = %s,
                amount = %s,
                description = %s,
                return_date = %s
            WHERE id = %s
              AND user_id = %s
            RETURNING {BORROWED_COLUMNS}
            """,
            (name, normalized_amount, description, return_date, borrowed_id, user_id),
        )
        row = await cursor.fetchone()

    if row is None:
        raise LookupError("Borrowed money record not found")

    return row


async def mark_returned(
    connection: AsyncConnection,
    user_id: UUID,
    borrowed_id: UUID,
    today: date,
) -> dict[str, Any]:
    async with connection.cursor() as cursor:
        await cursor.execute(
            f"""
            UPDATE borrowed_money
            SET is_returned = TRUE,
                returned_date = %s
            WHERE id = %s
              AND user_id = %s
            RETURNING {BORROWED_COLUMNS}
            """,
            (today, borrowed_id, user_id),
        )
        row = await cursor.fetchone()

    if row is None:
        raise LookupError("Borrowed money record not found")

    return row


async def delete_borrowed(connection: AsyncConnection, user_id: UUID, borrowed_id: UUID) -> None:
    async with connection.cursor() as cursor:
        await cursor.execute(
            """
            DELETE FROM borrowed_money
            WHERE id = %s
              AND user_id = %s
            RETURNING id
            """,
            (borrowed_id, user_id),
        )
        row = await cursor.fetchone()

    if row is None:
        raise LookupError("Borrowed money record not found")

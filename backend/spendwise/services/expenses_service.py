"""Service layer for the active expense set."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4

from spendwise.services.categories_service import get_category
from spendwise.utils import quantize_amount

if TYPE_CHECKING:
    from psycopg import AsyncConnection
else:
    AsyncConnection = Any

EXPENSE_COLUMNS = (
    "id, user_id, spent_on AS date, category, category_id, amount, note, "
    "currency, entry_type, status, source, imported_at, categorized_at, created_at"
)
UPDATABLE_FIELDS: dict[str, str] = {
    "date": "spent_on",
    "category": "category",
    "category_id": "category_id",
    "amount": "amount",
    "note": "note",
}


def _clean_text(value: str | None) -> str:
    return value.strip() if value else ""


async def list_expenses(connection: AsyncConnection, user_id: UUID) -> list[dict[str, Any]]:
    """Every active expense for the user, newest first."""
    async with connection.cursor() as cursor:
        await cursor.execute(
            f"""
            SELECT {EXPENSE_COLUMNS}
            FROM expenses
            WHERE user_id = %s
            ORDER BY spent_on DESC, created_at DESC
            """,
            (user_id,),
        )
        return await cursor.fetchall()


async def list_expenses_by_ids(
    connection: AsyncConnection,
    user_id: UUID,
    expense_ids: list[str],
) -> list[dict[str, Any]]:
    async with connection.cursor() as cursor:
        await cursor.execute(
            f"""
            SELECT {EXPENSE_COLUMNS}
            FROM expenses
            WHERE user_id = %s
              AND id = ANY(%s)
            ORDER BY spent_on DESC, created_at DESC
            """,
            (user_id, expense_ids),
        )
        return await cursor.fetchall()


async def expense_exists(connection: AsyncConnection, user_id: UUID, expense_id: str) -> bool:
    async with connection.cursor() as cursor:
        await cursor.execute(
            """
            SELECT 1 AS found
            FROM expenses
            WHERE user_id = %s
              AND id = %s
            """,
            (user_id, expense_id),
        )
        return await cursor.fetchone() is not None


async def create_expense(
    connection: AsyncConnection,
    user_id: UUID,
    *,
    spent_on: date,
    category: str,
    amount: Decimal,
    note: str | None = None,
    category_id: str | None = None,
) -> dict[str, Any]:
    """Log one manual expense into the active set."""
    normalized_amount = quantize_amount(amount)
    if normalized_amount <= Decimal("0.00"):
        raise ValueError("Amount must be greater than 0")

    category_name = _clean_text(category)
    if not category_name:
        raise ValueError("category is required")

    async with connection.cursor() as cursor:
        await cursor.execute(
            f"""
            INSERT INTO expenses (user_id, id, spent_on, category, category_id, amount, note, source)
            VALUES (%s, %s, %s, %s, %s, %s, %s, 'manual')
            RETURNING {EXPENSE_COLUMNS}
            """,
            (
                user_id,
                str(uuid4()),
                spent_on,
                category_name,
                category_id,
                normalized_amount,
                _clean_text(note),
            ),
        )
        return await cursor.fetchone()


async def update_expense(
    connection: AsyncConnection,
    user_id: UUID,
    expense_id: str,
    patch: dict[str, Any],
) -> dict[str, Any]:
    """Apply a partial update to one active expense."""
    updates: list[str] = []
    params: list[Any] = []

    for field, column in UPDATABLE_FIELDS.items():
        if field not in patch:
            continue

        value = patch[field]
        if field == "amount":
            value = quantize_amount(Decimal(str(value)))
            if value <= Decimal("0.00"):
                raise ValueError("Amount must be greater than 0")
        elif field in ("category", "note"):
            value = _clean_text(value)

        updates.append(f"{column} = %s")
        params.append(value)

    if not updates:
        raise ValueError("At least one field must be provided")

    params.extend([user_id, expense_id])

    async with connection.cursor() as cursor:
        await cursor.execute(
            f"""
            UPDATE expenses
            SET {', '.join(updates)}
            WHERE user_id = %s
              AND id = %s
            RETURNING {EXPENSE_COLUMNS}
            """,
            tuple(params),
        )
        row = await cursor.fetchone()

    if row is None:
        raise LookupError("Expense not found")

    return row


async def delete_expense(connection: AsyncConnection, user_id: UUID, expense_id: str) -> None:
    async with connection.cursor() as cursor:
        await cursor.execute(
            """
            DELETE FROM expenses
            WHERE user_id = %s
              AND id = %s
            RETURNING id
            """,
            (user_id, expense_id),
        )
        row = await cursor.fetchone()

    if row is None:
        raise LookupError("Expense not found")


async def list_uncategorized(connection: AsyncConnection, user_id: UUID) -> list[dict[str, Any]]:
    """Imported expenses still waiting for a category, newest first."""
    async with connection.cursor() as cursor:
        await cursor.execute(
            f"""
            SELECT {EXPENSE_COLUMNS}
            FROM expenses
            WHERE user_id = %s
              AND category = ''
              AND (status IS NULL OR status <> 'deleted')
            ORDER BY spent_on DESC, imported_at DESC NULLS LAST
            """,
            (user_id,),
        )
        return await cursor.fetchall()


async def categorize_expense(
    connection: AsyncConnection,
    user_id: UUID,
    expense_id: str,
    category_id: UUID,
) -> dict[str, Any]:
    """Assign a budget category to an imported expense; bank debits become positive."""
    category = await get_category(connection, user_id, category_id)

    async with connection.cursor() as cursor:
        await cursor.execute(
            f"""
            UPDATE expenses
            SET category = %s,
                category_id = %s,
                amount = ABS(amount),
                status = 'categorized',
                categorized_at = now()
            WHERE user_id = %s
              AND id = %s
            RETURNING {EXPENSE_COLUMNS}
            """,
            (category["name"], str(category["id"]), user_id, expense_id),
        )
        row = await cursor.fetchone()

    if row is None:
        raise LookupError("Expense not found")

    return row


async def dismiss_expense(connection: AsyncConnection, user_id: UUID, expense_id: str) -> dict[str, Any]:
    """Hide an imported transaction from categorization without deleting it."""
    async with connection.cursor() as cursor:
        await cursor.execute(
            f"""
            UPDATE expenses
            SET category = '',
                category_id = NULL,
                status = 'deleted',
                categorized_at = NULL
            WHERE user_id = %s
              AND id = %s
            RETURNING {EXPENSE_COLUMNS}
            """,
            (user_id, expense_id),
        )
        row = await cursor.fetchone()

    if row is None:
        raise LookupError("Expense not found")

    return row

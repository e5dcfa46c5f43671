"""Bank transaction import: convert each transaction into an uncategorized expense."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import TYPE_CHECKING, Any, Sequence
from uuid import UUID

import psycopg

from spendwise.services.expenses_service import expense_exists
from spendwise.utils import parse_amount_text

if TYPE_CHECKING:
    from psycopg import AsyncConnection
else:
    AsyncConnection = Any

logger = logging.getLogger(__name__)

IMPORT_SOURCE = "bank_import"


@dataclass
class ImportSummary:
    total_received: int
    saved_transactions: list[str] = field(default_factory=list)
    skipped_transactions: list[str] = field(default_factory=list)
    failed_transactions: list[str] = field(default_factory=list)

    @property
    def saved_count(self) -> int:
        return len(self.saved_transactions)

    @property
    def skipped_count(self) -> int:
        return len(self.skipped_transactions)


def _parse_date(value: Any) -> date:
    if isinstance(value, date):
        return value.date() if isinstance(value, datetime) else value

    text = str(value or "").strip()
    try:
        # Bank feeds send either YYYY-MM-DD or a full ISO timestamp.
        return date.fromisoformat(text[:10])
    except ValueError as exc:
        raise ValueError(f"Unparseable date: {value!r}") from exc


def normalize_transaction(transaction: Any, imported_at: datetime) -> dict[str, Any]:
    """Map one bank transaction onto expense columns; category is left empty."""
    if not isinstance(transaction, dict):
        raise ValueError("Transaction must be an object")

    transaction_id = str(transaction.get("id") or "").strip()
    if not transaction_id:
        raise ValueError("Transaction id is required")

    if transaction.get("amount") is None:
        raise ValueError("Transaction amount is required")

    return {
        "id": transaction_id,
        "spent_on": _parse_date(transaction.get("date")),
        "amount": parse_amount_text(transaction["amount"]),
        "note": str(transaction.get("description") or ""),
        "currency": transaction.get("currency"),
        "entry_type": transaction.get("entryType"),
        "status": transaction.get("status"),
        "imported_at": imported_at,
    }


async def _insert_imported(connection: AsyncConnection, user_id: UUID, expense: dict[str, Any]) -> bool:
    async with connection.cursor() as cursor:
        await cursor.execute(
            """
            INSERT INTO expenses (
                user_id, id, spent_on, category, amount, note,
                currency, entry_type, status, source, imported_at
            )
            VALUES (%s, %s, %s, '', %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (user_id, id) DO NOTHING
            RETURNING id
            """,
            (
                user_id,
                expense["id"],
                expense["spent_on"],
                expense["amount"],
                expense["note"],
                expense["currency"],
                expense["entry_type"],
                expense["status"],
                IMPORT_SOURCE,
                expense["imported_at"],
            ),
        )
        return await cursor.fetchone() is not None


def _transaction_label(transaction: Any) -> str:
    if isinstance(transaction, dict) and transaction.get("id") is not None:
        return str(transaction["id"])
    return "<missing id>"


async def import_transactions(
    connection: AsyncConnection,
    user_id: UUID,
    transactions: Sequence[Any],
    *,
    imported_at: datetime | None = None,
) -> ImportSummary:
    """
    Store each transaction not yet in the user's active set.

    Transactions whose id already exists are skipped, so re-sending a feed is
    harmless. A transaction that cannot be converted or stored is reported as
    failed and the loop moves on.
    """
    imported_at = imported_at or datetime.now(timezone.utc)
    summary = ImportSummary(total_received=len(transactions))

    for transaction in transactions:
        label = _transaction_label(transaction)
        try:
            expense = normalize_transaction(transaction, imported_at)

            if await expense_exists(connection, user_id, expense["id"]):
                logger.debug("Skipping existing transaction %s", expense["id"])
                summary.skipped_transactions.append(expense["id"])
                continue

            if await _insert_imported(connection, user_id, expense):
                summary.saved_transactions.append(expense["id"])
            else:
                # Inserted concurrently between the existence check and the write.
                summary.skipped_transactions.append(expense["id"])
        except (ValueError, psycopg.Error) as exc:
            logger.warning("Error processing transaction %s: %s", label, exc)
            summary.failed_transactions.append(label)

    logger.info(
        "Import for user %s: received=%d saved=%d skipped=%d failed=%d",
        user_id,
        summary.total_received,
        summary.saved_count,
        summary.skipped_count,
        len(summary.failed_transactions),
    )
    return summary

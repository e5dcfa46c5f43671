"""
Close a budget period: snapshot its expenses into an immutable archive row,
then remove them from the active set.

The archive write always happens before the deletion. A failure between the
two leaves the expenses duplicated (archived and still active), never lost;
`retry_archive_cleanup` finishes the deletion from the archive's own snapshot.
"""

from __future__ import annotations

import logging
import math
from collections import defaultdict
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import TYPE_CHECKING, Any, Sequence
from uuid import UUID, uuid4

import psycopg
from fastapi.encoders import jsonable_encoder
from psycopg.types.json import Jsonb

from spendwise.utils import quantize_amount

if TYPE_CHECKING:
    from psycopg import AsyncConnection
else:
    AsyncConnection = Any

logger = logging.getLogger(__name__)

ARCHIVE_COLUMNS = "id, user_id, period_start, period_end, expenses, total_spent, archived_at"


class ArchiveError(Exception):
    """Base class for archive transition failures."""


class ArchiveWriteError(ArchiveError):
    """The archive row could not be written; nothing was persisted or deleted."""


class PartialArchiveError(ArchiveError):
    """The archive row exists but the archived expenses are still active."""

    def __init__(self, archive: dict[str, Any], remaining_expense_ids: list[str]):
        super().__init__(
            f"Archive {archive['id']} was written but {len(remaining_expense_ids)} "
            "expense(s) could not be removed from the active set"
        )
        self.archive = archive
        self.remaining_expense_ids = remaining_expense_ids


def snapshot_expense(expense: dict[str, Any]) -> dict[str, Any]:
    """Detached, JSON-safe copy of one expense as it looked at archive time."""
    # Amounts stay exact decimal strings instead of floats.
    return jsonable_encoder(dict(expense), custom_encoder={Decimal: str})


def compute_total_spent(expenses: Sequence[dict[str, Any]]) -> Decimal:
    return sum((Decimal(str(expense["amount"])) for expense in expenses), Decimal("0"))


def _unique_ids(expenses: Sequence[dict[str, Any]]) -> list[str]:
    return list(dict.fromkeys(str(expense["id"]) for expense in expenses))


async def _delete_active_expenses(
    connection: AsyncConnection,
    user_id: UUID,
    expense_ids: list[str],
) -> list[str]:
    # Deleting by id set is idempotent: ids already gone are simply not returned.
    async with connection.cursor() as cursor:
        await cursor.execute(
            """
            DELETE FROM expenses
            WHERE user_id = %s
              AND id = ANY(%s)
            RETURNING id
            """,
            (user_id, expense_ids),
        )
        rows = await cursor.fetchall()

    return [row["id"] for row in rows]


async def archive_period(
    connection: AsyncConnection,
    user_id: UUID,
    expenses: Sequence[dict[str, Any]],
    period_start: datetime,
    period_end: datetime,
    *,
    archived_at: datetime | None = None,
) -> dict[str, Any] | None:
    """
    Archive `expenses` under the given bounds and clear them from the active set.

    Returns None without touching storage when `expenses` is empty. The caller
    selects which expenses belong to the closing period; nothing is re-filtered.
    """
    if not expenses:
        logger.info("Nothing to archive for user %s", user_id)
        return None

    snapshot = [snapshot_expense(expense) for expense in expenses]
    total_spent = compute_total_spent(expenses)
    archive_id = uuid4()
    archived_at = archived_at or datetime.now(timezone.utc)

    try:
        async with connection.cursor() as cursor:
            await cursor.execute(
                f"""
                INSERT INTO archived_periods ({ARCHIVE_COLUMNS})
                VALUES (%s, %s, %s, %s, %s, %s, %s)
                RETURNING {ARCHIVE_COLUMNS}
                """,
                (
                    archive_id,
                    user_id,
                    period_start,
                    period_end,
                    Jsonb(snapshot),
                    total_spent,
                    archived_at,
                ),
            )
            archive = await cursor.fetchone()
    except psycopg.Error as exc:
        logger.error("Archive write failed for user %s: %s", user_id, exc)
        raise ArchiveWriteError("Could not write the archive record") from exc

    expense_ids = _unique_ids(expenses)
    try:
        deleted_ids = await _delete_active_expenses(connection, user_id, expense_ids)
    except psycopg.Error as exc:
        logger.error(
            "Archive %s written but clearing %d active expense(s) failed: %s",
            archive_id,
            len(expense_ids),
            exc,
        )
        raise PartialArchiveError(archive, expense_ids) from exc

    logger.info(
        "Archived %d expense(s) totalling %s for user %s into %s (%d removed from active set)",
        len(snapshot),
        quantize_amount(total_spent),
        user_id,
        archive_id,
        len(deleted_ids),
    )
    return archive


async def get_archive(
    connection: AsyncConnection,
    user_id: UUID,
    archive_id: UUID,
) -> dict[str, Any]:
    async with connection.cursor() as cursor:
        await cursor.execute(
            f"""
            SELECT {ARCHIVE_COLUMNS}
            FROM archived_periods
            WHERE id = %s
              AND user_id = %s
            """,
            (archive_id, user_id),
        )
        row = await cursor.fetchone()

    if row is None:
        raise LookupError("Archived period not found")

    return row


async def list_archives(connection: AsyncConnection, user_id: UUID) -> list[dict[str, Any]]:
    """Archived periods for the user, most recent period first."""
    async with connection.cursor() as cursor:
        await cursor.execute(
            f"""
            SELECT {ARCHIVE_COLUMNS}
            FROM archived_periods
            WHERE user_id = %s
            ORDER BY period_start DESC, archived_at DESC
            """,
            (user_id,),
        )
        return await cursor.fetchall()


async def retry_archive_cleanup(
    connection: AsyncConnection,
    user_id: UUID,
    archive_id: UUID,
) -> list[str]:
    """Remove every expense recorded in an archive from the active set again."""
    archive = await get_archive(connection, user_id, archive_id)
    expense_ids = _unique_ids(archive["expenses"])
    if not expense_ids:
        return []

    deleted_ids = await _delete_active_expenses(connection, user_id, expense_ids)
    logger.info("Cleanup for archive %s removed %d active expense(s)", archive_id, len(deleted_ids))
    return deleted_ids


def _period_days(period_start: datetime, period_end: datetime) -> int:
    # The end is 23:59:59.999, so a 25th-24th period counts its last day in full.
    return max(math.ceil((period_end - period_start).total_seconds() / 86400), 1)


def _share_pct(part: Decimal, whole: Decimal) -> Decimal:
    if whole == 0:
        return Decimal("0.0")
    return (part / whole * Decimal("100")).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)


def build_archive_export(archive: dict[str, Any], *, exported_at: datetime) -> dict[str, Any]:
    """
    Portable export of one archived period.

    Holds the period info, the expenses, and a summary with the average spend
    per day and each category's total, count and share of the period total.
    """
    expenses = archive["expenses"]
    total_spent = Decimal(str(archive["total_spent"]))
    totals: dict[str, Decimal] = defaultdict(lambda: Decimal("0"))
    counts: dict[str, int] = defaultdict(int)

    for expense in expenses:
        category = expense.get("category") or ""
        totals[category] += Decimal(str(expense["amount"]))
        counts[category] += 1

    breakdown = [
        {
            "category": category,
            "total": total,
            "count": counts[category],
            "percentage": _share_pct(total, total_spent),
        }
        for category, total in totals.items()
    ]
    breakdown.sort(key=lambda item: item["total"], reverse=True)
    days = _period_days(archive["period_start"], archive["period_end"])

    return {
        "period_info": {
            "id": archive["id"],
            "period_start": archive["period_start"],
            "period_end": archive["period_end"],
            "total_spent": archive["total_spent"],
            "archived_at": archive["archived_at"],
            "transaction_count": len(expenses),
        },
        "expenses": [
            {
                "id": expense["id"],
                "date": expense["date"],
                "category": expense.get("category") or "",
                "amount": Decimal(str(expense["amount"])),
                "note": expense.get("note") or "",
            }
            for expense in expenses
        ],
        "summary": {
            "total_spent": total_spent,
            "days": days,
            "average_per_day": quantize_amount(total_spent / days),
            "category_breakdown": breakdown,
        },
        "export_info": {"exported_at": exported_at, "app": "SpendWise"},
    }

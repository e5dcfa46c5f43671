from __future__ import annotations

import asyncio
import copy
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID, uuid4

import psycopg
import pytest

from spendwise.services import period_archiver
from spendwise.services.period_calculator import PeriodConfig, compute_current_range


def _run(coro):
    return asyncio.run(coro)


class FakeArchiveCursor:
    def __init__(self, connection):
        self.connection = connection
        self._rows = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def execute(self, query, params=None):
        params = params or ()
        normalized = " ".join(query.split())
        self._rows = []
        self.connection.queries.append(normalized)
        # Yield so concurrent archive calls interleave like real round trips.
        await asyncio.sleep(0)

        if normalized.startswith("INSERT INTO archived_periods"):
            if self.connection.fail_on == "insert":
                raise psycopg.OperationalError("server closed the connection unexpectedly")
            archive_id, user_id, period_start, period_end, expenses, total_spent, archived_at = params
            row = {
                "id": archive_id,
                "user_id": user_id,
                "period_start": period_start,
                "period_end": period_end,
                "expenses": copy.deepcopy(expenses.obj),
                "total_spent": total_spent,
                "archived_at": archived_at,
            }
            self.connection.archives[archive_id] = row
            self._rows = [row]
            return

        if normalized.startswith("DELETE FROM expenses WHERE user_id = %s AND id = ANY(%s)"):
            if self.connection.fail_on == "delete":
                raise psycopg.OperationalError("canceling statement due to statement timeout")
            user_id, expense_ids = params
            deleted = []
            for expense_id in expense_ids:
                if self.connection.expenses.pop((user_id, expense_id), None) is not None:
                    deleted.append({"id": expense_id})
            self._rows = deleted
            return

        if normalized.startswith("SELECT id, user_id, period_start") and "WHERE id = %s AND user_id = %s" in normalized:
            archive_id, user_id = params
            row = self.connection.archives.get(archive_id)
            if row and row["user_id"] == user_id:
                self._rows = [row]
            return

        if normalized.startswith("SELECT id, user_id, period_start") and "WHERE user_id = %s" in normalized:
            user_id = params[0]
            rows = [row for row in self.connection.archives.values() if row["user_id"] == user_id]
            rows.sort(key=lambda row: (row["period_start"], row["archived_at"]), reverse=True)
            self._rows = rows
            return

        raise AssertionError(f"Unhandled query: {normalized}")

    async def fetchone(self):
        if not self._rows:
            return None
        return self._rows[0]

    async def fetchall(self):
        return list(self._rows)


class FakeArchiveConnection:
    def __init__(self):
        self.expenses: dict[tuple[UUID, str], dict] = {}
        self.archives: dict[UUID, dict] = {}
        self.queries: list[str] = []
        self.fail_on: str | None = None

    def cursor(self):
        return FakeArchiveCursor(self)

    def add_expense(self, user_id: UUID, expense_id: str, spent_on: date, category: str, amount: str) -> dict:
        row = {
            "id": expense_id,
            "user_id": user_id,
            "date": spent_on,
            "category": category,
            "amount": Decimal(amount),
            "note": "",
            "created_at": datetime(2024, 3, 1, 9, 0),
        }
        self.expenses[(user_id, expense_id)] = row
        return row

    def active_ids(self, user_id: UUID) -> set[str]:
        return {expense_id for uid, expense_id in self.expenses if uid == user_id}


def _march_period():
    return compute_current_range(PeriodConfig(25, 24), date(2024, 3, 10))


def _seed_two(connection: FakeArchiveConnection, user_id: UUID) -> list[dict]:
    return [
        connection.add_expense(user_id, "e1", date(2024, 2, 26), "Food", "10.00"),
        connection.add_expense(user_id, "e2", date(2024, 3, 5), "Transport", "20.50"),
    ]


def test_archive_moves_expenses_into_snapshot() -> None:
    connection = FakeArchiveConnection()
    user_id = uuid4()
    expenses = _seed_two(connection, user_id)
    period = _march_period()

    archive = _run(period_archiver.archive_period(connection, user_id, list(expenses), period.start, period.end))

    assert archive is not None
    assert archive["total_spent"] == Decimal("30.50")
    assert [item["id"] for item in archive["expenses"]] == ["e1", "e2"]
    assert archive["period_start"] == datetime(2024, 2, 25)
    assert archive["period_end"] == datetime(2024, 3, 24, 23, 59, 59, 999000)
    assert connection.active_ids(user_id) == set()


def test_archive_totals_and_clears_exact_ids() -> None:
    connection = FakeArchiveConnection()
    user_id = uuid4()
    expenses = [
        connection.add_expense(user_id, "x", date(2024, 3, 1), "Food", "12.5"),
        connection.add_expense(user_id, "y", date(2024, 3, 2), "Food", "7.5"),
    ]
    keep = connection.add_expense(user_id, "z", date(2024, 3, 3), "Food", "1.0")
    period = _march_period()

    archive = _run(period_archiver.archive_period(connection, user_id, expenses, period.start, period.end))

    assert archive["total_spent"] == Decimal("20.0")
    assert connection.active_ids(user_id) == {keep["id"]}


def test_archive_write_happens_before_delete() -> None:
    connection = FakeArchiveConnection()
    user_id = uuid4()
    expenses = _seed_two(connection, user_id)
    period = _march_period()

    _run(period_archiver.archive_period(connection, user_id, expenses, period.start, period.end))

    assert connection.queries[0].startswith("INSERT INTO archived_periods")
    assert connection.queries[1].startswith("DELETE FROM expenses")


def test_empty_input_is_a_noop() -> None:
    connection = FakeArchiveConnection()
    user_id = uuid4()
    period = _march_period()

    result = _run(period_archiver.archive_period(connection, user_id, [], period.start, period.end))

    assert result is None
    assert connection.archives == {}
    assert connection.queries == []


def test_archive_does_not_refilter_by_period_bounds() -> None:
    connection = FakeArchiveConnection()
    user_id = uuid4()
    outside = connection.add_expense(user_id, "old", date(2023, 11, 2), "Food", "7.25")
    period = _march_period()

    archive = _run(period_archiver.archive_period(connection, user_id, [outside], period.start, period.end))

    assert [item["id"] for item in archive["expenses"]] == ["old"]
    assert archive["total_spent"] == Decimal("7.25")


def test_conservation_of_expenses_and_total() -> None:
    connection = FakeArchiveConnection()
    user_id = uuid4()
    expenses = [
        connection.add_expense(user_id, f"e{index}", date(2024, 3, 1), "Food", f"{index}.10")
        for index in range(1, 6)
    ]
    before = connection.active_ids(user_id)
    period = _march_period()

    archive = _run(period_archiver.archive_period(connection, user_id, expenses, period.start, period.end))

    snapshot_ids = {item["id"] for item in archive["expenses"]}
    assert snapshot_ids | connection.active_ids(user_id) == before
    assert archive["total_spent"] == sum(Decimal(item["amount"]) for item in archive["expenses"])


def test_snapshot_is_detached_from_later_mutation() -> None:
    connection = FakeArchiveConnection()
    user_id = uuid4()
    expenses = _seed_two(connection, user_id)
    period = _march_period()

    archive = _run(period_archiver.archive_period(connection, user_id, expenses, period.start, period.end))
    expenses[0]["amount"] = Decimal("999.00")
    expenses[0]["category"] = "Changed"

    stored = connection.archives[archive["id"]]
    assert stored["expenses"][0]["amount"] == "10.00"
    assert stored["expenses"][0]["category"] == "Food"
    assert stored["expenses"][0]["date"] == "2024-02-26"


def test_write_failure_leaves_active_set_untouched() -> None:
    connection = FakeArchiveConnection()
    connection.fail_on = "insert"
    user_id = uuid4()
    expenses = _seed_two(connection, user_id)
    period = _march_period()

    with pytest.raises(period_archiver.ArchiveWriteError):
        _run(period_archiver.archive_period(connection, user_id, expenses, period.start, period.end))

    assert connection.archives == {}
    assert connection.active_ids(user_id) == {"e1", "e2"}
    assert not any(query.startswith("DELETE") for query in connection.queries)


def test_delete_failure_reports_partial_archive() -> None:
    connection = FakeArchiveConnection()
    connection.fail_on = "delete"
    user_id = uuid4()
    expenses = _seed_two(connection, user_id)
    period = _march_period()

    with pytest.raises(period_archiver.PartialArchiveError) as excinfo:
        _run(period_archiver.archive_period(connection, user_id, expenses, period.start, period.end))

    error = excinfo.value
    assert error.remaining_expense_ids == ["e1", "e2"]
    assert error.archive["id"] in connection.archives
    # Duplicated, never lost.
    assert connection.active_ids(user_id) == {"e1", "e2"}


def test_retry_cleanup_finishes_partial_archive() -> None:
    connection = FakeArchiveConnection()
    connection.fail_on = "delete"
    user_id = uuid4()
    expenses = _seed_two(connection, user_id)
    period = _march_period()

    with pytest.raises(period_archiver.PartialArchiveError) as excinfo:
        _run(period_archiver.archive_period(connection, user_id, expenses, period.start, period.end))

    connection.fail_on = None
    archive_id = excinfo.value.archive["id"]
    deleted = _run(period_archiver.retry_archive_cleanup(connection, user_id, archive_id))

    assert sorted(deleted) == ["e1", "e2"]
    assert connection.active_ids(user_id) == set()

    again = _run(period_archiver.retry_archive_cleanup(connection, user_id, archive_id))
    assert again == []


def test_retry_cleanup_is_scoped_to_owner() -> None:
    connection = FakeArchiveConnection()
    user_id = uuid4()
    expenses = _seed_two(connection, user_id)
    period = _march_period()
    archive = _run(period_archiver.archive_period(connection, user_id, expenses, period.start, period.end))

    with pytest.raises(LookupError):
        _run(period_archiver.retry_archive_cleanup(connection, uuid4(), archive["id"]))


def test_concurrent_archives_are_not_deduplicated() -> None:
    connection = FakeArchiveConnection()
    user_id = uuid4()
    expenses = _seed_two(connection, user_id)
    period = _march_period()

    async def archive_twice():
        return await asyncio.gather(
            period_archiver.archive_period(connection, user_id, list(expenses), period.start, period.end),
            period_archiver.archive_period(connection, user_id, list(expenses), period.start, period.end),
        )

    first, second = _run(archive_twice())

    assert first["id"] != second["id"]
    assert len(connection.archives) == 2
    assert connection.active_ids(user_id) == set()


def test_list_archives_most_recent_period_first() -> None:
    connection = FakeArchiveConnection()
    user_id = uuid4()
    older = connection.add_expense(user_id, "jan", date(2024, 1, 5), "Food", "4.00")
    newer = connection.add_expense(user_id, "mar", date(2024, 3, 5), "Food", "6.00")

    january = compute_current_range(PeriodConfig(25, 24), date(2024, 1, 10))
    march = _march_period()
    _run(period_archiver.archive_period(connection, user_id, [older], january.start, january.end))
    _run(period_archiver.archive_period(connection, user_id, [newer], march.start, march.end))

    rows = _run(period_archiver.list_archives(connection, user_id))

    assert [row["period_start"] for row in rows] == [march.start, january.start]
    assert _run(period_archiver.list_archives(connection, uuid4())) == []


def test_build_archive_export_summarizes_categories() -> None:
    archive = {
        "id": uuid4(),
        "period_start": datetime(2024, 2, 25),
        "period_end": datetime(2024, 3, 24, 23, 59, 59, 999000),
        "total_spent": Decimal("45.00"),
        "archived_at": datetime(2024, 3, 25, 8, 0),
        "expenses": [
            {"id": "a", "date": "2024-02-26", "category": "Food", "amount": "10.00", "note": "lunch"},
            {"id": "b", "date": "2024-03-01", "category": "Transport", "amount": "25.00"},
            {"id": "c", "date": "2024-03-02", "category": "Food", "amount": "10.00", "note": None},
        ],
    }

    exported_at = datetime(2024, 3, 25, 9, 0)
    export = period_archiver.build_archive_export(archive, exported_at=exported_at)

    assert export["period_info"]["transaction_count"] == 3
    summary = export["summary"]
    assert summary["days"] == 29
    assert summary["average_per_day"] == Decimal("1.55")
    assert summary["category_breakdown"] == [
        {"category": "Transport", "total": Decimal("25.00"), "count": 1, "percentage": Decimal("55.6")},
        {"category": "Food", "total": Decimal("20.00"), "count": 2, "percentage": Decimal("44.4")},
    ]
    assert export["export_info"] == {"exported_at": exported_at, "app": "SpendWise"}
    assert export["expenses"][1]["note"] == ""


def test_build_archive_export_of_empty_total_has_zero_shares() -> None:
    archive = {
        "id": uuid4(),
        "period_start": datetime(2024, 3, 25),
        "period_end": datetime(2024, 4, 24, 23, 59, 59, 999000),
        "total_spent": Decimal("0.00"),
        "archived_at": datetime(2024, 4, 25, 8, 0),
        "expenses": [
            {"id": "r", "date": "2024-04-01", "category": "Shopping", "amount": "15.00"},
            {"id": "s", "date": "2024-04-02", "category": "Shopping", "amount": "-15.00"},
        ],
    }

    export = period_archiver.build_archive_export(archive, exported_at=datetime(2024, 4, 25, 9, 0))

    assert export["summary"]["days"] == 31
    assert export["summary"]["average_per_day"] == Decimal("0.00")
    assert export["summary"]["category_breakdown"][0]["percentage"] == Decimal("0.0")


def test_snapshot_expense_keeps_amounts_exact() -> None:
    category_id = uuid4()
    expense = {
        "id": "e1",
        "date": date(2024, 3, 1),
        "category": "Food & Dining",
        "category_id": category_id,
        "amount": Decimal("10.10"),
        "note": "",
        "created_at": datetime(2024, 3, 1, 9, 0),
    }

    snapshot = period_archiver.snapshot_expense(expense)

    assert snapshot == {
        "id": "e1",
        "date": "2024-03-01",
        "category": "Food & Dining",
        "category_id": str(category_id),
        "amount": "10.10",
        "note": "",
        "created_at": "2024-03-01T09:00:00",
    }
    assert snapshot is not expense

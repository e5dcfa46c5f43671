"""Archive router: close the current budget period and browse past ones."""

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Literal
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Response
from psycopg import AsyncConnection
from pydantic import BaseModel, field_serializer, field_validator, model_validator

from .auth import get_current_user_id
from .database import get_db_connection
from .services.expenses_service import list_expenses, list_expenses_by_ids
from .services.period_archiver import (
    ArchiveWriteError,
    PartialArchiveError,
    archive_period,
    build_archive_export,
    get_archive,
    list_archives,
    retry_archive_cleanup,
)
from .services.period_calculator import period_key, previous_range
from .services.profile_service import get_current_range, mark_period_checked
from .utils import local_now, money, to_local_naive

router = APIRouter(prefix="/archives", tags=["archives"])

ArchiveStatus = Literal["archived", "nothing_to_archive", "partial"]
# Field name "date" would shadow the type inside model bodies.
CalendarDate = date


class ArchiveRequest(BaseModel):
    period_start: datetime | None = None
    period_end: datetime | None = None
    expense_ids: list[str] | None = None

    @field_validator("period_start", "period_end")
    @classmethod
    def localize(cls, value: datetime | None) -> datetime | None:
        if value is None:
            return None
        return to_local_naive(value)

    @model_validator(mode="after")
    def check_bounds(self) -> "ArchiveRequest":
        if self.period_start and self.period_end and self.period_start > self.period_end:
            raise ValueError("period_start must be on or before period_end")

        return self


class ArchivedExpense(BaseModel):
    id: str
    date: CalendarDate
    category: str
    category_id: str | None = None
    amount: Decimal
    note: str = ""

    @field_serializer("amount")
    def serialize_amount(self, value: Decimal) -> str:
        return money(value)


class ArchivedPeriodOut(BaseModel):
    id: UUID
    period_start: datetime
    period_end: datetime
    expenses: list[ArchivedExpense]
    total_spent: Decimal
    archived_at: datetime

    @field_serializer("total_spent")
    def serialize_total(self, value: Decimal) -> str:
        return money(value)


class ArchiveOutcome(BaseModel):
    status: ArchiveStatus
    message: str
    archive: ArchivedPeriodOut | None = None
    remaining_expense_ids: list[str] = []


class ArchivePeriodInfo(BaseModel):
    id: UUID
    period_start: datetime
    period_end: datetime
    total_spent: Decimal
    archived_at: datetime
    transaction_count: int

    @field_serializer("total_spent")
    def serialize_total(self, value: Decimal) -> str:
        return money(value)


class CategoryBreakdown(BaseModel):
    category: str
    total: Decimal
    count: int
    percentage: Decimal

    @field_serializer("total")
    def serialize_total(self, value: Decimal) -> str:
        return money(value)

    @field_serializer("percentage")
    def serialize_percentage(self, value: Decimal) -> str:
        return str(value)


class ArchiveSummary(BaseModel):
    total_spent: Decimal
    days: int
    average_per_day: Decimal
    category_breakdown: list[CategoryBreakdown]

    @field_serializer("total_spent", "average_per_day")
    def serialize_decimal(self, value: Decimal) -> str:
        return money(value)


class ExportInfo(BaseModel):
    exported_at: datetime
    app: str


class ArchiveExport(BaseModel):
    period_info: ArchivePeriodInfo
    expenses: list[ArchivedExpense]
    summary: ArchiveSummary
    export_info: ExportInfo


class CleanupResponse(BaseModel):
    archive_id: UUID
    removed_expense_ids: list[str]


@router.post("", response_model=ArchiveOutcome, status_code=201)
async def archive_period_endpoint(
    response: Response,
    payload: ArchiveRequest | None = None,
    user_id: UUID = Depends(get_current_user_id),
    connection: AsyncConnection = Depends(get_db_connection),
) -> ArchiveOutcome:
    """
    Archive active expenses and clear them from the active set.

    Without `expense_ids` every active expense is archived. Bounds default to
    the period that just closed: archiving is offered once a new period has
    begun. Status codes: 201 archived, 200 nothing to archive, 207 archive
    written but some expenses are still active (retry with
    POST /archives/{id}/cleanup), 503 nothing was written.
    """
    payload = payload or ArchiveRequest()
    config, period = await get_current_range(connection, user_id, local_now())
    closed = previous_range(config, period)
    period_start = payload.period_start or closed.start
    period_end = payload.period_end or closed.end
    if period_start > period_end:
        raise HTTPException(status_code=422, detail="period_start must be on or before period_end")

    if payload.expense_ids is None:
        expenses = await list_expenses(connection, user_id)
    else:
        expenses = await list_expenses_by_ids(connection, user_id, payload.expense_ids)

    try:
        archive = await archive_period(connection, user_id, expenses, period_start, period_end)
    except ArchiveWriteError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    except PartialArchiveError as exc:
        response.status_code = 207
        return ArchiveOutcome(
            status="partial",
            message=str(exc),
            archive=ArchivedPeriodOut.model_validate(exc.archive),
            remaining_expense_ids=exc.remaining_expense_ids,
        )

    await mark_period_checked(connection, user_id, period_key(period))

    if archive is None:
        response.status_code = 200
        return ArchiveOutcome(status="nothing_to_archive", message="Nothing to archive")

    return ArchiveOutcome(
        status="archived",
        message="Period archived",
        archive=ArchivedPeriodOut.model_validate(archive),
    )


@router.get("", response_model=list[ArchivedPeriodOut])
async def list_archives_endpoint(
    user_id: UUID = Depends(get_current_user_id),
    connection: AsyncConnection = Depends(get_db_connection),
) -> list[ArchivedPeriodOut]:
    rows = await list_archives(connection, user_id)
    return [ArchivedPeriodOut.model_validate(row) for row in rows]


@router.get("/{archive_id}", response_model=ArchivedPeriodOut)
async def get_archive_endpoint(
    archive_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    connection: AsyncConnection = Depends(get_db_connection),
) -> ArchivedPeriodOut:
    try:
        row = await get_archive(connection, user_id, archive_id)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc

    return ArchivedPeriodOut.model_validate(row)


@router.get("/{archive_id}/export", response_model=ArchiveExport)
async def export_archive_endpoint(
    archive_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    connection: AsyncConnection = Depends(get_db_connection),
) -> ArchiveExport:
    try:
        row = await get_archive(connection, user_id, archive_id)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc

    export = build_archive_export(row, exported_at=datetime.now(timezone.utc))
    return ArchiveExport.model_validate(export)


@router.post("/{archive_id}/cleanup", response_model=CleanupResponse)
async def cleanup_archive_endpoint(
    archive_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    connection: AsyncConnection = Depends(get_db_connection),
) -> CleanupResponse:
    """Retry removing an archive's expenses from the active set."""
    try:
        removed = await retry_archive_cleanup(connection, user_id, archive_id)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc

    return CleanupResponse(archive_id=archive_id, removed_expense_ids=removed)

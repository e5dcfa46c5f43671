"""Money lent to friends: record, edit, mark returned."""

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Response, status
from psycopg import AsyncConnection
from pydantic import BaseModel, Field, field_serializer

from .auth import get_current_user_id
from .database import get_db_connection
from .services.borrowed_service import (
    create_borrowed,
    delete_borrowed,
    list_borrowed,
    mark_returned,
    summarize_borrowed,
    update_borrowed,
)
from .utils import local_now, money

router = APIRouter(prefix="/borrowed", tags=["borrowed"])

# Field name "date" would shadow the type inside model bodies.
CalendarDate = date


class BorrowedCreate(BaseModel):
    friend_name: str = Field(min_length=1, max_length=120)
    amount: Decimal = Field(gt=Decimal("0"), max_digits=12, decimal_places=2)
    description: str | None = None
    return_date: CalendarDate | None = None


class BorrowedUpdate(BaseModel):
    friend_name: str | None = Field(default=None, min_length=1, max_length=120)
    amount: Decimal | None = Field(default=None, gt=Decimal("0"), max_digits=12, decimal_places=2)
    description: str | None = None
    return_date: CalendarDate | None = None


class BorrowedOut(BaseModel):
    id: UUID
    date: CalendarDate
    friend_name: str
    amount: Decimal
    description: str
    return_date: CalendarDate | None
    is_returned: bool
    returned_date: CalendarDate | None
    created_at: datetime

    @field_serializer("amount")
    def serialize_amount(self, value: Decimal) -> str:
        return money(value)


class BorrowedListResponse(BaseModel):
    active: list[BorrowedOut]
    returned: list[BorrowedOut]
    total_active: Decimal
    total_returned: Decimal

    @field_serializer("total_active", "total_returned")
    def serialize_decimal(self, value: Decimal) -> str:
        return money(value)


def _dump_patch(payload: BorrowedUpdate) -> dict[str, Any]:
    patch = payload.model_dump(exclude_unset=True)
    if not patch:
        raise HTTPException(status_code=422, detail="At least one field must be provided")
    return patch


@router.get("", response_model=BorrowedListResponse)
async def list_borrowed_endpoint(
    user_id: UUID = Depends(get_current_user_id),
    connection: AsyncConnection = Depends(get_db_connection),
) -> BorrowedListResponse:
    rows = await list_borrowed(connection, user_id)
    return BorrowedListResponse.model_validate(summarize_borrowed(rows))


@router.post("", response_model=BorrowedOut, status_code=status.HTTP_201_CREATED)
async def create_borrowed_endpoint(
    payload: BorrowedCreate,
    user_id: UUID = Depends(get_current_user_id),
    connection: AsyncConnection = Depends(get_db_connection),
) -> BorrowedOut:
    try:
        row = await create_borrowed(
            connection,
            user_id,
            friend_name=payload.friend_name,
            amount=payload.amount,
            description=payload.description,
            return_date=payload.return_date,
            today=local_now().date(),
        )
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    return BorrowedOut.model_validate(row)


@router.patch("/{borrowed_id}", response_model=BorrowedOut)
async def update_borrowed_endpoint(
    borrowed_id: UUID,
    payload: BorrowedUpdate,
    user_id: UUID = Depends(get_current_user_id),
    connection: AsyncConnection = Depends(get_db_connection),
) -> BorrowedOut:
    try:
        row = await update_borrowed(connection, user_id, borrowed_id, _dump_patch(payload))
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    return BorrowedOut.model_validate(row)


@router.post("/{borrowed_id}/return", response_model=BorrowedOut)
async def mark_returned_endpoint(
    borrowed_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    connection: AsyncConnection = Depends(get_db_connection),
) -> BorrowedOut:
    try:
        row = await mark_returned(connection, user_id, borrowed_id, local_now().date())
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc

    return BorrowedOut.model_validate(row)


@router.delete("/{borrowed_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_borrowed_endpoint(
    borrowed_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    connection: AsyncConnection = Depends(get_db_connection),
) -> Response:
    try:
        await delete_borrowed(connection, user_id, borrowed_id)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc

    return Response(status_code=status.HTTP_204_NO_CONTENT)

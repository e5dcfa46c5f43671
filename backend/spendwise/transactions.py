"""Bank transaction import endpoint, authenticated by a per-user API key."""

from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Body, Depends, HTTPException
from psycopg import AsyncConnection
from pydantic import BaseModel

from .auth import get_api_key_user_id
from .database import get_db_connection
from .services.import_service import import_transactions

router = APIRouter(tags=["transactions"])


class ProcessedData(BaseModel):
    user_id: UUID
    total_received: int
    saved_count: int
    skipped_count: int
    saved_transactions: list[str]
    skipped_transactions: list[str]
    failed_transactions: list[str]


class ImportResponse(BaseModel):
    success: bool
    message: str
    received_at: datetime
    processed_data: ProcessedData


def _extract_transactions(body: Any) -> list[Any]:
    # Accept both a bare array and {"transactions": [...]}.
    if isinstance(body, list):
        transactions = body
    elif isinstance(body, dict) and isinstance(body.get("transactions"), list):
        transactions = body["transactions"]
    else:
        raise HTTPException(
            status_code=400,
            detail="transactions must be an array or an object with transactions property",
        )

    if not transactions:
        raise HTTPException(status_code=400, detail="transactions array cannot be empty")

    return transactions


@router.post("/transactions", response_model=ImportResponse)
async def import_transactions_endpoint(
    body: Any = Body(...),
    user_id: UUID = Depends(get_api_key_user_id),
    connection: AsyncConnection = Depends(get_db_connection),
) -> ImportResponse:
    transactions = _extract_transactions(body)
    summary = await import_transactions(connection, user_id, transactions)

    return ImportResponse(
        success=True,
        message="Transactions processed successfully",
        received_at=datetime.now(timezone.utc),
        processed_data=ProcessedData(
            user_id=user_id,
            total_received=summary.total_received,
            saved_count=summary.saved_count,
            skipped_count=summary.skipped_count,
            saved_transactions=summary.saved_transactions,
            skipped_transactions=summary.skipped_transactions,
            failed_transactions=summary.failed_transactions,
        ),
    )

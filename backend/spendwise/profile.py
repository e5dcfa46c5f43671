"""User settings: budget period days and the bank-import API key."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from psycopg import AsyncConnection
from pydantic import BaseModel

from .auth import generate_api_key, get_current_user_id, hash_api_key
from .database import get_db_connection
from .services.profile_service import get_period_config, set_api_key_hash, update_period_config

router = APIRouter(prefix="/settings", tags=["settings"])


class PeriodSettings(BaseModel):
    start_day: int
    end_day: int


class ApiKeyResponse(BaseModel):
    api_key: str
    prefix: str


@router.get("/period", response_model=PeriodSettings)
async def get_period_settings(
    user_id: UUID = Depends(get_current_user_id),
    connection: AsyncConnection = Depends(get_db_connection),
) -> PeriodSettings:
    config = await get_period_config(connection, user_id)
    return PeriodSettings(start_day=config.start_day, end_day=config.end_day)


@router.put("/period", response_model=PeriodSettings)
async def update_period_settings(
    payload: PeriodSettings,
    user_id: UUID = Depends(get_current_user_id),
    connection: AsyncConnection = Depends(get_db_connection),
) -> PeriodSettings:
    """Days must be between 1 and 31; start may exceed end for cross-month cycles."""
    try:
        config = await update_period_config(connection, user_id, payload.start_day, payload.end_day)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    return PeriodSettings(start_day=config.start_day, end_day=config.end_day)


@router.post("/api-key", response_model=ApiKeyResponse, status_code=201)
async def rotate_api_key(
    user_id: UUID = Depends(get_current_user_id),
    connection: AsyncConnection = Depends(get_db_connection),
) -> ApiKeyResponse:
    """Issue a new import key. It is shown once; any previous key stops working."""
    api_key = generate_api_key()
    await set_api_key_hash(connection, user_id, hash_api_key(api_key))
    return ApiKeyResponse(api_key=api_key, prefix=api_key[:8])

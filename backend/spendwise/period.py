"""Current budget period and new-period detection."""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends
from psycopg import AsyncConnection
from pydantic import BaseModel

from .auth import get_current_user_id
from .database import get_db_connection
from .services.period_calculator import PeriodConfig, compute_current_range, format_range, period_key
from .services.profile_service import ensure_profile, mark_period_checked
from .utils import local_now

router = APIRouter(prefix="/period", tags=["period"])


class CurrentPeriodResponse(BaseModel):
    start_day: int
    end_day: int
    start: datetime
    end: datetime
    label: str
    label_with_year: str
    key: str
    is_new_period: bool


class AcknowledgeResponse(BaseModel):
    key: str


@router.get("/current", response_model=CurrentPeriodResponse)
async def get_current_period(
    user_id: UUID = Depends(get_current_user_id),
    connection: AsyncConnection = Depends(get_db_connection),
) -> CurrentPeriodResponse:
    """
    The budget window containing today.

    `is_new_period` stays true until the client archives or acknowledges the
    period, which is when it should offer to archive the previous one.
    """
    profile = await ensure_profile(connection, user_id)
    config = PeriodConfig(start_day=profile["start_day"], end_day=profile["end_day"])
    period = compute_current_range(config, local_now())
    key = period_key(period)

    return CurrentPeriodResponse(
        start_day=config.start_day,
        end_day=config.end_day,
        start=period.start,
        end=period.end,
        label=format_range(period),
        label_with_year=format_range(period, include_year=True),
        key=key,
        is_new_period=profile["last_checked_period"] != key,
    )


@router.post("/acknowledge", response_model=AcknowledgeResponse)
async def acknowledge_period(
    user_id: UUID = Depends(get_current_user_id),
    connection: AsyncConnection = Depends(get_db_connection),
) -> AcknowledgeResponse:
    """Keep the current data and stop prompting for this period."""
    profile = await ensure_profile(connection, user_id)
    config = PeriodConfig(start_day=profile["start_day"], end_day=profile["end_day"])
    key = period_key(compute_current_range(config, local_now()))
    await mark_period_checked(connection, user_id, key)
    return AcknowledgeResponse(key=key)

"""Per-user profile row: budget period configuration, import key, period bookkeeping."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from spendwise.services.period_calculator import (
    DEFAULT_END_DAY,
    DEFAULT_START_DAY,
    PeriodConfig,
    PeriodRange,
    compute_current_range,
    validate_period_config,
)

if TYPE_CHECKING:
    from psycopg import AsyncConnection
else:
    AsyncConnection = Any

PROFILE_COLUMNS = "user_id, display_name, email, start_day, end_day, last_checked_period, api_key_hash IS NOT NULL AS has_api_key"


async def ensure_profile(connection: AsyncConnection, user_id: UUID) -> dict[str, Any]:
    """Return the user's profile, creating it with the default 25th-24th period."""
    async with connection.cursor() as cursor:
        await cursor.execute(
            """
            INSERT INTO profiles (user_id, start_day, end_day)
            VALUES (%s, %s, %s)
            ON CONFLICT (user_id) DO NOTHING
            """,
            (user_id, DEFAULT_START_DAY, DEFAULT_END_DAY),
        )
        await cursor.execute(
            f"""
            SELECT {PROFILE_COLUMNS}
            FROM profiles
            WHERE user_id = %s
            """,
            (user_id,),
        )
        return await cursor.fetchone()


async def get_period_config(connection: AsyncConnection, user_id: UUID) -> PeriodConfig:
    profile = await ensure_profile(connection, user_id)
    return PeriodConfig(start_day=profile["start_day"], end_day=profile["end_day"])


async def get_current_range(
    connection: AsyncConnection,
    user_id: UUID,
    now: datetime,
) -> tuple[PeriodConfig, PeriodRange]:
    """The user's stored configuration and the period containing `now`."""
    config = await get_period_config(connection, user_id)
    return config, compute_current_range(config, now)


async def update_period_config(
    connection: AsyncConnection,
    user_id: UUID,
    start_day: int,
    end_day: int,
) -> PeriodConfig:
    """Persist a new period configuration after range-checking both days."""
    config = validate_period_config(start_day, end_day)
    await ensure_profile(connection, user_id)

    async with connection.cursor() as cursor:
        await cursor.execute(
            """
            UPDATE profiles
            SET start_day = %s,
                end_day = %s,
                updated_at = now()
            WHERE user_id = %s
            """,
            (config.start_day, config.end_day, user_id),
        )

    return config


async def set_api_key_hash(connection: AsyncConnection, user_id: UUID, api_key_hash: str) -> None:
    await ensure_profile(connection, user_id)

    async with connection.cursor() as cursor:
        await cursor.execute(
            """
            UPDATE profiles
            SET api_key_hash = %s,
                updated_at = now()
            WHERE user_id = %s
            """,
            (api_key_hash, user_id),
        )


async def find_user_by_api_key_hash(connection: AsyncConnection, api_key_hash: str) -> UUID | None:
    async with connection.cursor() as cursor:
        await cursor.execute(
            """
            SELECT user_id
            FROM profiles
            WHERE api_key_hash = %s
            """,
            (api_key_hash,),
        )
        row = await cursor.fetchone()

    if row is None:
        return None

    return row["user_id"]


async def mark_period_checked(connection: AsyncConnection, user_id: UUID, key: str) -> None:
    await ensure_profile(connection, user_id)

    async with connection.cursor() as cursor:
        await cursor.execute(
            """
            UPDATE profiles
            SET last_checked_period = %s
            WHERE user_id = %s
            """,
            (key, user_id),
        )

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Response, status
from psycopg import AsyncConnection
from psycopg.errors import UniqueViolation
from pydantic import BaseModel, Field, field_serializer

from .auth import get_current_user_id
from .database import get_db_connection
from .services.categories_service import (
    create_category,
    delete_category,
    list_categories,
    update_category,
)
from .utils import money

router = APIRouter(prefix="/categories", tags=["categories"])


class CategoryOut(BaseModel):
    """Budget category with the amount planned for one period."""
    id: UUID
    name: str
    planned_amount: Decimal
    created_at: datetime

    @field_serializer("planned_amount")
    def serialize_amount(self, value: Decimal) -> str:
        return money(value)


class CategoryCreate(BaseModel):
    name: str = Field(min_length=1, max_length=80)
    planned_amount: Decimal = Field(ge=Decimal("0"), max_digits=12, decimal_places=2)


class CategoryUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=80)
    planned_amount: Decimal | None = Field(default=None, ge=Decimal("0"), max_digits=12, decimal_places=2)


@router.get("", response_model=list[CategoryOut])
async def list_categories_endpoint(
    user_id: UUID = Depends(get_current_user_id),
    connection: AsyncConnection = Depends(get_db_connection),
) -> list[CategoryOut]:
    """
    Returns the user's categories. A user with none gets the four defaults.
    """
    rows = await list_categories(connection, user_id)
    return [CategoryOut.model_validate(row) for row in rows]


@router.post("", response_model=CategoryOut, status_code=status.HTTP_201_CREATED)
async def create_category_endpoint(
    payload: CategoryCreate,
    user_id: UUID = Depends(get_current_user_id),
    connection: AsyncConnection = Depends(get_db_connection),
) -> CategoryOut:
    try:
        row = await create_category(connection, user_id, payload.name, payload.planned_amount)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except UniqueViolation as exc:
        raise HTTPException(status_code=409, detail="Category with the same name already exists.") from exc

    return CategoryOut.model_validate(row)


@router.patch("/{category_id}", response_model=CategoryOut)
async def update_category_endpoint(
    category_id: UUID,
    payload: CategoryUpdate,
    user_id: UUID = Depends(get_current_user_id),
    connection: AsyncConnection = Depends(get_db_connection),
) -> CategoryOut:
    patch = payload.model_dump(exclude_unset=True)
    if not patch:
        raise HTTPException(status_code=422, detail="At least one field must be provided")

    try:
        row = await update_category(connection, user_id, category_id, patch)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except UniqueViolation as exc:
        raise HTTPException(status_code=409, detail="Category with the same name already exists.") from exc

    return CategoryOut.model_validate(row)


@router.delete("/{category_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_category_endpoint(
    category_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    connection: AsyncConnection = Depends(get_db_connection),
) -> Response:
    """Delete a category. Expenses keep the category name they were logged with."""
    try:
        await delete_category(connection, user_id, category_id)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc

    return Response(status_code=status.HTTP_204_NO_CONTENT)

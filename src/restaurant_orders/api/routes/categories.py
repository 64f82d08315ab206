from typing import List

from fastapi import APIRouter, Depends, Response
from sqlalchemy.ext.asyncio import AsyncSession

from restaurant_orders.crud.category import create_category, delete_category, get_categories
from restaurant_orders.crud.category import get_category, update_category
from restaurant_orders.db.deps import get_async_session
from restaurant_orders.schemas.menu import CategoryCreate, CategoryRead, CategoryUpdate


router = APIRouter(prefix="/categories", tags=["categories"])


@router.get("/", response_model=List[CategoryRead])
async def list_categories(db: AsyncSession = Depends(get_async_session)):
    return await get_categories(db)


@router.get("/{category_id}", response_model=CategoryRead)
async def get_category_endpoint(category_id: int, db: AsyncSession = Depends(get_async_session)):
    return await get_category(db, category_id)


@router.post("/", response_model=CategoryRead, status_code=201)
async def create_category_endpoint(category_in: CategoryCreate, db: AsyncSession = Depends(get_async_session)):
    return await create_category(db, category_in)


@router.put("/{category_id}", response_model=CategoryRead)
async def update_category_endpoint(
    category_id: int,
    category_in: CategoryUpdate,
    db: AsyncSession = Depends(get_async_session),
):
    return await update_category(db, category_id, category_in)


@router.delete("/{category_id}", status_code=204)
async def remove_category(category_id: int, db: AsyncSession = Depends(get_async_session)):
    await delete_category(db, category_id)
    return Response(status_code=204)

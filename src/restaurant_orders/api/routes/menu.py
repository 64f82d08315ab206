from typing import List

from fastapi import APIRouter, Depends, Path, Response
from sqlalchemy.ext.asyncio import AsyncSession

from restaurant_orders.crud.menu import create_menu_item, delete_menu_item, get_menu_item
from restaurant_orders.crud.menu import get_menu_items, get_menu_items_by_category
from restaurant_orders.crud.menu import set_menu_item_availability, update_menu_item
from restaurant_orders.db.deps import get_async_session
from restaurant_orders.schemas.menu import MenuItemAvailability, MenuItemCreate, MenuItemRead, MenuItemUpdate


router = APIRouter(prefix="/menu", tags=["menu"])


@router.get("/", response_model=List[MenuItemRead])
async def list_menu_items(db: AsyncSession = Depends(get_async_session)):
    """
    Блюда, доступные для заказа.
    """
    return await get_menu_items(db)


@router.get("/all", response_model=List[MenuItemRead])
async def list_all_menu_items(db: AsyncSession = Depends(get_async_session)):
    """
    Все блюда, включая снятые с продажи (для админки).
    """
    return await get_menu_items(db, include_unavailable=True)


@router.get("/category/{category_id}", response_model=List[MenuItemRead])
async def list_menu_items_by_category(
    category_id: int = Path(..., description="ID категории"),
    db: AsyncSession = Depends(get_async_session),
):
    return await get_menu_items_by_category(db, category_id)


@router.get("/{menu_item_id}", response_model=MenuItemRead)
async def get_menu_item_endpoint(menu_item_id: int, db: AsyncSession = Depends(get_async_session)):
    return await get_menu_item(db, menu_item_id)


@router.post("/", response_model=MenuItemRead, status_code=201)
async def create_menu_item_endpoint(item_in: MenuItemCreate, db: AsyncSession = Depends(get_async_session)):
    return await create_menu_item(db, item_in)


@router.put("/{menu_item_id}", response_model=MenuItemRead)
async def update_menu_item_endpoint(
    menu_item_id: int,
    item_in: MenuItemUpdate,
    db: AsyncSession = Depends(get_async_session),
):
    """
    Обновление блюда. Поддерживаемые поля: name, description, price, category_id.
    """
    return await update_menu_item(db, menu_item_id, item_in)


@router.patch("/{menu_item_id}/availability", response_model=MenuItemRead)
async def set_availability_endpoint(
    menu_item_id: int,
    availability_in: MenuItemAvailability,
    db: AsyncSession = Depends(get_async_session),
):
    return await set_menu_item_availability(db, menu_item_id, availability_in.is_available)


@router.delete("/{menu_item_id}", status_code=204)
async def remove_menu_item(menu_item_id: int, db: AsyncSession = Depends(get_async_session)):
    """
    Удаляет блюдо.
    """
    await delete_menu_item(db, menu_item_id)
    return Response(status_code=204)

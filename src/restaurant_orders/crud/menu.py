"""
Каталог меню. Заказы читают отсюда только текущую цену (get_menu_item_price),
дальше в заказе живёт снимок цены.
"""
import logging
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from restaurant_orders.exceptions import NotFound, ValidationError
from restaurant_orders.models import Category, MenuItem, OrderItem
from restaurant_orders.schemas.menu import MenuItemCreate, MenuItemUpdate


logger = logging.getLogger(__name__)

# поля, которые разрешено менять через update_menu_item
UPDATABLE_FIELDS = ("name", "description", "price", "category_id")


async def get_menu_items(db: AsyncSession, include_unavailable: bool = False) -> List[MenuItem]:
    stmt = select(MenuItem).order_by(MenuItem.category_id, MenuItem.id)
    if not include_unavailable:
        stmt = stmt.where(MenuItem.is_available.is_(True))
    result = await db.execute(stmt)
    return result.scalars().all()


async def get_menu_items_by_category(db: AsyncSession, category_id: int) -> List[MenuItem]:
    result = await db.execute(
        select(MenuItem)
        .where(MenuItem.category_id == category_id, MenuItem.is_available.is_(True))
        .order_by(MenuItem.id)
    )
    return result.scalars().all()


async def get_menu_item(db: AsyncSession, menu_item_id: int) -> MenuItem:
    menu_item = await db.get(MenuItem, menu_item_id)
    if not menu_item:
        raise NotFound("Menu item", menu_item_id)
    return menu_item


async def get_menu_item_price(db: AsyncSession, menu_item_id: int) -> Decimal:
    menu_item = await get_menu_item(db, menu_item_id)
    return Decimal(menu_item.price)


def _validate_price(price: Optional[Decimal]) -> Decimal:
    if price is None or Decimal(price) < 0:
        raise ValidationError("Price must be a non-negative number")
    return Decimal(price).quantize(Decimal("0.01"))


async def _check_category(db: AsyncSession, category_id: Optional[int]) -> None:
    if category_id is not None and not await db.get(Category, category_id):
        raise NotFound("Category", category_id)


async def create_menu_item(db: AsyncSession, item_in: MenuItemCreate) -> MenuItem:
    name = (item_in.name or "").strip()
    if not name:
        raise ValidationError("Menu item name is required")
    price = _validate_price(item_in.price)
    await _check_category(db, item_in.category_id)

    menu_item = MenuItem(
        name=name,
        description=item_in.description,
        price=price,
        category_id=item_in.category_id,
        is_available=item_in.is_available,
    )
    db.add(menu_item)
    try:
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    await db.refresh(menu_item)
    logger.info("Menu item %s created", menu_item.id)
    return menu_item


async def update_menu_item(db: AsyncSession, menu_item_id: int, item_in: MenuItemUpdate) -> MenuItem:
    """
    Обновляет блюдо. Меняются только поля из UPDATABLE_FIELDS.
    Уже оформленные заказы новую цену не видят.
    """
    menu_item = await get_menu_item(db, menu_item_id)
    update_data = item_in.model_dump(exclude_unset=True)

    if "name" in update_data:
        update_data["name"] = (update_data["name"] or "").strip()
        if not update_data["name"]:
            raise ValidationError("Menu item name is required")
    if "price" in update_data:
        update_data["price"] = _validate_price(update_data["price"])
    if "category_id" in update_data:
        await _check_category(db, update_data["category_id"])

    for key in UPDATABLE_FIELDS:
        if key in update_data:
            setattr(menu_item, key, update_data[key])

    try:
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    await db.refresh(menu_item)
    return menu_item


async def set_menu_item_availability(db: AsyncSession, menu_item_id: int, is_available: bool) -> MenuItem:
    menu_item = await get_menu_item(db, menu_item_id)
    menu_item.is_available = is_available
    try:
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    logger.info("Menu item %s availability set to %s", menu_item_id, is_available)
    return menu_item


async def delete_menu_item(db: AsyncSession, menu_item_id: int) -> None:
    """
    Удаляет блюдо. Если оно уже есть в заказах, удалять нельзя:
    такое блюдо нужно просто снять с продажи.
    """
    menu_item = await get_menu_item(db, menu_item_id)

    used = await db.scalar(
        select(func.count(OrderItem.id)).where(OrderItem.menu_item_id == menu_item_id)
    )
    if used:
        raise ValidationError(
            f"Menu item {menu_item_id} is referenced by orders, mark it unavailable instead"
        )

    await db.delete(menu_item)
    try:
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    logger.info("Menu item %s deleted", menu_item_id)

import logging
from typing import List

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from restaurant_orders.exceptions import NotFound, ValidationError
from restaurant_orders.models import Category, MenuItem
from restaurant_orders.schemas.menu import CategoryCreate, CategoryUpdate


logger = logging.getLogger(__name__)


async def get_categories(db: AsyncSession) -> List[Category]:
    result = await db.execute(select(Category).order_by(Category.display_order, Category.id))
    return result.scalars().all()


async def get_category(db: AsyncSession, category_id: int) -> Category:
    category = await db.get(Category, category_id)
    if not category:
        raise NotFound("Category", category_id)
    return category


async def create_category(db: AsyncSession, category_in: CategoryCreate) -> Category:
    name = (category_in.name or "").strip()
    if not name:
        raise ValidationError("Category name is required")

    category = Category(name=name, display_order=category_in.display_order)
    db.add(category)
    try:
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    await db.refresh(category)
    logger.info("Category %s created", category.id)
    return category


async def update_category(db: AsyncSession, category_id: int, category_in: CategoryUpdate) -> Category:
    category = await get_category(db, category_id)
    update_data = category_in.model_dump(exclude_unset=True)

    if "name" in update_data:
        name = (update_data["name"] or "").strip()
        if not name:
            raise ValidationError("Category name is required")
        category.name = name
    if update_data.get("display_order") is not None:
        category.display_order = update_data["display_order"]

    try:
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    return category


async def delete_category(db: AsyncSession, category_id: int) -> None:
    """
    Удаляет категорию, если в ней нет блюд.
    """
    category = await get_category(db, category_id)

    in_use = await db.scalar(
        select(func.count(MenuItem.id)).where(MenuItem.category_id == category_id)
    )
    if in_use:
        raise ValidationError(f"Category {category_id} still has {in_use} menu item(s)")

    await db.delete(category)
    try:
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    logger.info("Category %s deleted", category_id)

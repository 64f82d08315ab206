from typing import List

from fastapi import APIRouter, Depends, Path, Response
from sqlalchemy.ext.asyncio import AsyncSession

from restaurant_orders.broadcast import BroadcastChannel
from restaurant_orders.crud.order import create_order, get_orders, get_order_by_id, get_orders_by_status
from restaurant_orders.crud.order import get_mergeable_orders, merge_orders
from restaurant_orders.crud.order import update_order_items, update_order_status
from restaurant_orders.db.deps import get_async_session, get_broadcast_channel
from restaurant_orders.schemas.order import OrderCreate, OrderItemsUpdate, OrderRead, OrderStatusUpdate


router = APIRouter(prefix="/orders", tags=["orders"])


@router.get("/", response_model=List[OrderRead])
async def list_orders(db: AsyncSession = Depends(get_async_session)):
    """
    Возвращает все активные заказы (влитые показываются внутри родителя).
    """
    orders = await get_orders(db)
    return [OrderRead.from_orm_with_name(o) for o in orders]


@router.get("/status/{status}", response_model=List[OrderRead])
async def list_orders_by_status(
    status: str = Path(..., description="Статус заказа"),
    db: AsyncSession = Depends(get_async_session),
):
    orders = await get_orders_by_status(db, status)
    return [OrderRead.from_orm_with_name(o) for o in orders]


@router.get("/mergeable/{table_number}", response_model=List[OrderRead])
async def list_mergeable_orders(
    table_number: int = Path(..., description="Номер стола"),
    db: AsyncSession = Depends(get_async_session),
):
    """
    Заказы стола, которые можно объединить.
    """
    orders = await get_mergeable_orders(db, table_number)
    return [OrderRead.from_orm_with_name(o) for o in orders]


@router.get("/{order_id}", response_model=OrderRead)
async def get_order(
    order_id: int = Path(..., description="ID заказа"),
    db: AsyncSession = Depends(get_async_session),
):
    """
    Возвращает детализацию заказа по id.
    """
    order = await get_order_by_id(db, order_id)
    return OrderRead.from_orm_with_name(order)


@router.post("/", response_model=OrderRead, status_code=201)
async def create_order_endpoint(
    order_in: OrderCreate,
    db: AsyncSession = Depends(get_async_session),
    channel: BroadcastChannel = Depends(get_broadcast_channel),
):
    """
    Возвращает созданный заказ.
    """
    order = await create_order(db, order_in, channel=channel)
    return OrderRead.from_orm_with_name(order)


@router.patch("/{order_id}/status", response_model=OrderRead)
async def update_order_status_endpoint(
    order_id: int,
    status_in: OrderStatusUpdate,
    db: AsyncSession = Depends(get_async_session),
    channel: BroadcastChannel = Depends(get_broadcast_channel),
):
    order = await update_order_status(db, order_id, status_in.status, channel=channel)
    return OrderRead.from_orm_with_name(order)


@router.patch("/{order_id}", response_model=OrderRead)
async def update_order_items_endpoint(
    order_id: int,
    order_in: OrderItemsUpdate,
    db: AsyncSession = Depends(get_async_session),
    channel: BroadcastChannel = Depends(get_broadcast_channel),
):
    """
    Заменяет позиции заказа.
    Пустой список позиций удаляет заказ, тогда ответ 204 без тела.
    """
    order = await update_order_items(db, order_id, order_in.items, channel=channel)
    if order is None:
        return Response(status_code=204)
    return OrderRead.from_orm_with_name(order)


@router.post("/{parent_id}/merge/{child_id}", response_model=OrderRead)
async def merge_orders_endpoint(
    parent_id: int,
    child_id: int,
    db: AsyncSession = Depends(get_async_session),
    channel: BroadcastChannel = Depends(get_broadcast_channel),
):
    """
    Вливает заказ child_id в parent_id и возвращает обновлённый родительский заказ.
    """
    order = await merge_orders(db, parent_id, child_id, channel=channel)
    return OrderRead.from_orm_with_name(order)

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, List, Optional

from sqlalchemy import select, update, delete, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from restaurant_orders.broadcast import BroadcastChannel, BroadcastEvent, EventType
from restaurant_orders.crud.menu import get_menu_item, get_menu_item_price
from restaurant_orders.exceptions import InvalidMerge, InvalidStatusTransition, NotFound, ValidationError
from restaurant_orders.models import MenuItem, Order, OrderItem, OrderStatusEnum
from restaurant_orders.schemas.order import OrderCreate, OrderItemAmend, OrderRead


logger = logging.getLogger(__name__)

S = OrderStatusEnum

# Разрешённые переходы статусов. merged достигается только через merge_orders.
STATUS_TRANSITIONS = {
    S.pending: {S.accepted, S.confirmed, S.preparing, S.cancelled},
    S.accepted: {S.confirmed, S.preparing, S.cancelled},
    S.confirmed: {S.preparing, S.cancelled},
    S.preparing: {S.completed, S.cancelled},
    S.completed: {S.paid},
    S.paid: set(),
    S.cancelled: set(),
    S.merged: set(),
}

# пары (статус родителя, статус дочернего), которые можно объединять
MERGEABLE_STATUS_PAIRS = {
    (S.pending, S.pending),
    (S.accepted, S.pending),
    (S.accepted, S.accepted),
}

MERGE_CANDIDATE_STATUSES = (S.pending, S.accepted)

CLOSING_STATUSES = {S.paid, S.cancelled}

CENT = Decimal("0.01")


def _order_options():
    return (
        selectinload(Order.items).selectinload(OrderItem.menu_item),
        selectinload(Order.children).selectinload(Order.items).selectinload(OrderItem.menu_item),
    )


def _money(value) -> Decimal:
    return Decimal(value).quantize(CENT)


def _items_total(items: Iterable) -> Decimal:
    return _money(sum((Decimal(i.price_at_time) * i.quantity for i in items), Decimal("0")))


def _stored_items_total(order_id: int):
    """
    Сумма позиций заказа, посчитанная самой БД в момент UPDATE.
    Так total_amount учитывает и позиции, закоммиченные параллельной транзакцией.
    """
    return (
        select(func.coalesce(func.sum(OrderItem.price_at_time * OrderItem.quantity), 0))
        .where(OrderItem.order_id == order_id)
        .scalar_subquery()
    )


def _parse_status(status) -> OrderStatusEnum:
    try:
        return OrderStatusEnum(status)
    except ValueError:
        raise ValidationError(f"Invalid status: {status}") from None


def _check_quantity(quantity) -> int:
    if quantity is None or int(quantity) < 1:
        raise ValidationError(f"Quantity must be a positive integer, got {quantity}")
    return int(quantity)


def _publish(channel: Optional[BroadcastChannel], event_type: EventType, payload: dict) -> None:
    if channel is None:
        return
    channel.publish(BroadcastEvent(type=event_type, payload=payload))


def _snapshot(order: Order) -> dict:
    return OrderRead.from_orm_with_name(order).model_dump(mode="json")


async def _load_order(db: AsyncSession, order_id: int) -> Optional[Order]:
    """
    Читает заказ заново из БД вместе с позициями и влитыми заказами.
    populate_existing нужен, чтобы не получить устаревший объект из identity map.
    """
    result = await db.execute(
        select(Order)
        .where(Order.id == order_id)
        .options(*_order_options())
        .execution_options(populate_existing=True)
    )
    return result.scalars().unique().first()


async def get_orders(db: AsyncSession) -> List[Order]:
    """
    Возвращает все активные заказы (не влитые в другие).
    Новые первыми.
    """
    result = await db.execute(
        select(Order)
        .where(Order.parent_order_id.is_(None))
        .options(*_order_options())
        .order_by(Order.id.desc())
        .execution_options(populate_existing=True)
    )
    return result.scalars().unique().all()


async def get_orders_by_status(db: AsyncSession, status: str) -> List[Order]:
    """
    Активные заказы в заданном статусе (для экранов кухни и кассы).
    """
    status = _parse_status(status)
    result = await db.execute(
        select(Order)
        .where(Order.parent_order_id.is_(None), Order.status == status)
        .options(*_order_options())
        .order_by(Order.id.desc())
        .execution_options(populate_existing=True)
    )
    return result.scalars().unique().all()


async def get_order_by_id(db: AsyncSession, order_id: int) -> Order:
    order = await _load_order(db, order_id)
    if not order:
        raise NotFound("Order", order_id)
    return order


async def get_mergeable_orders(db: AsyncSession, table_number: int) -> List[Order]:
    """
    Кандидаты на объединение за столом: без родителя, статус pending или accepted.
    """
    result = await db.execute(
        select(Order)
        .where(
            Order.table_number == table_number,
            Order.parent_order_id.is_(None),
            Order.status.in_(MERGE_CANDIDATE_STATUSES),
        )
        .options(*_order_options())
        .order_by(Order.created_at.desc(), Order.id.desc())
        .execution_options(populate_existing=True)
    )
    return result.scalars().unique().all()


async def create_order(
    db: AsyncSession,
    order_in: OrderCreate,
    channel: Optional[BroadcastChannel] = None,
) -> Order:
    """
    Создаёт заказ вместе с позициями одной транзакцией.
    Цены берутся из меню на момент заказа и сохраняются снимком.
    """
    if order_in.table_number is None:
        raise ValidationError("table_number is required")
    if not order_in.items:
        raise ValidationError("Order must contain at least one item")

    try:
        order = Order(table_number=order_in.table_number, status=S.pending)
        for item in order_in.items:
            quantity = _check_quantity(item.quantity)
            price = await get_menu_item_price(db, item.menu_item_id)
            # уже в identity map после чтения цены
            menu_item = await get_menu_item(db, item.menu_item_id)
            if not menu_item.is_available:
                raise ValidationError(f"Menu item {menu_item.id} is not available")
            order.items.append(
                OrderItem(
                    menu_item_id=menu_item.id,
                    quantity=quantity,
                    price_at_time=_money(price),
                    note=item.note,
                )
            )
        order.total_amount = _items_total(order.items)

        db.add(order)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    order = await get_order_by_id(db, order.id)
    logger.info("Order %s created for table %s, total %s", order.id, order.table_number, order.total_amount)
    _publish(channel, EventType.NEW_ORDER, {"order_id": order.id, "order": _snapshot(order)})
    return order


async def update_order_status(
    db: AsyncSession,
    order_id: int,
    status: str,
    channel: Optional[BroadcastChannel] = None,
) -> Order:
    """
    Меняет статус заказа по таблице STATUS_TRANSITIONS.
    Запись условная (WHERE status = прочитанный), поэтому параллельная смена
    статуса между чтением и записью не проходит незаметно.
    """
    new_status = _parse_status(status)

    try:
        order = await db.get(Order, order_id, populate_existing=True)
        if not order:
            raise NotFound("Order", order_id)
        if order.parent_order_id is not None:
            raise InvalidStatusTransition(
                f"Order {order_id} was merged into order {order.parent_order_id} and its status cannot change"
            )

        current = OrderStatusEnum(order.status)
        if new_status != current and new_status not in STATUS_TRANSITIONS[current]:
            raise InvalidStatusTransition(
                f"Cannot change order {order_id} status from {current.value} to {new_status.value}"
            )

        values = {"status": new_status}
        if new_status in CLOSING_STATUSES and new_status != current:
            values["closed_at"] = datetime.now(timezone.utc)

        result = await db.execute(
            update(Order)
            .where(Order.id == order_id, Order.status == current)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise InvalidStatusTransition(f"Order {order_id} status was changed concurrently")

        await db.commit()
    except Exception:
        await db.rollback()
        raise

    order = await get_order_by_id(db, order_id)
    logger.info("Order %s status: %s -> %s", order_id, current.value, new_status.value)
    _publish(
        channel,
        EventType.ORDER_STATUS_UPDATED,
        {"order_id": order_id, "status": new_status.value, "order": _snapshot(order)},
    )
    return order


async def update_order_items(
    db: AsyncSession,
    order_id: int,
    items: List[OrderItemAmend],
    channel: Optional[BroadcastChannel] = None,
) -> Optional[Order]:
    """
    Полностью заменяет позиции заказа и пересчитывает сумму.
    Цены берутся из запроса (правка счёта на кассе), а не из меню.
    Пустой список удаляет заказ целиком, тогда возвращается None.
    """
    try:
        order = await db.get(Order, order_id, populate_existing=True)
        if not order:
            raise NotFound("Order", order_id)
        if order.parent_order_id is not None:
            raise ValidationError(
                f"Order {order_id} was merged into order {order.parent_order_id} and cannot be edited"
            )

        if not items:
            await db.execute(delete(OrderItem).where(OrderItem.order_id == order_id))
            await db.execute(delete(Order).where(Order.parent_order_id == order_id))
            await db.execute(delete(Order).where(Order.id == order_id))
            await db.commit()
        else:
            new_items = []
            for item in items:
                quantity = _check_quantity(item.quantity)
                if item.price is None or Decimal(item.price) < 0:
                    raise ValidationError("Price must be a non-negative number")
                if not await db.get(MenuItem, item.menu_item_id):
                    raise NotFound("Menu item", item.menu_item_id)
                new_items.append(
                    OrderItem(
                        order_id=order_id,
                        menu_item_id=item.menu_item_id,
                        quantity=quantity,
                        price_at_time=_money(item.price),
                        note=item.note,
                    )
                )

            await db.execute(
                delete(OrderItem)
                .where(OrderItem.order_id == order_id)
                .execution_options(synchronize_session=False)
            )
            db.add_all(new_items)
            await db.flush()
            await db.execute(
                update(Order)
                .where(Order.id == order_id)
                .values(total_amount=_stored_items_total(order_id))
                .execution_options(synchronize_session=False)
            )
            await db.commit()
    except Exception:
        await db.rollback()
        raise

    if not items:
        logger.info("Order %s removed: item list is empty", order_id)
        _publish(channel, EventType.ORDER_UPDATED, {"order_id": order_id, "deleted": True, "order": None})
        return None

    order = await get_order_by_id(db, order_id)
    logger.info("Order %s items replaced, total %s", order_id, order.total_amount)
    _publish(
        channel,
        EventType.ORDER_UPDATED,
        {"order_id": order_id, "deleted": False, "order": _snapshot(order)},
    )
    return order


async def merge_orders(
    db: AsyncSession,
    parent_id: int,
    child_id: int,
    channel: Optional[BroadcastChannel] = None,
) -> Order:
    """
    Вливает дочерний заказ в родительский:
    - позиции дочернего переезжают к родителю (order_id меняется на месте);
    - дочерний получает статус merged и parent_order_id;
    - сумма родителя становится суммой всех позиций.
    Допустимые пары статусов: MERGEABLE_STATUS_PAIRS.
    """
    if parent_id == child_id:
        raise InvalidMerge("Cannot merge an order into itself")

    try:
        result = await db.execute(
            select(Order)
            .where(Order.id.in_((parent_id, child_id)))
            .execution_options(populate_existing=True)
        )
        orders = {o.id: o for o in result.scalars().all()}
        if parent_id not in orders:
            raise NotFound("Order", parent_id)
        if child_id not in orders:
            raise NotFound("Order", child_id)

        parent, child = orders[parent_id], orders[child_id]
        parent_status, child_status = OrderStatusEnum(parent.status), OrderStatusEnum(child.status)

        if parent.table_number != child.table_number:
            raise InvalidMerge("Can only merge orders from the same table")
        if parent.parent_order_id is not None or child.parent_order_id is not None:
            raise InvalidMerge("Orders that were already merged cannot be merged again")
        if (parent_status, child_status) not in MERGEABLE_STATUS_PAIRS:
            raise InvalidMerge(
                "Can only merge (pending+pending), (accepted+pending) or (accepted+accepted), "
                f"got ({parent_status.value}+{child_status.value})"
            )

        grandchildren = await db.scalar(
            select(func.count(Order.id)).where(Order.parent_order_id == child_id)
        )
        if grandchildren:
            raise InvalidMerge(f"Order {child_id} already has merged orders and cannot become a child")

        # условные записи: если статус успели поменять, ничего не пишем
        child_result = await db.execute(
            update(Order)
            .where(Order.id == child_id, Order.status == child_status, Order.parent_order_id.is_(None))
            .values(status=S.merged, parent_order_id=parent_id, total_amount=Decimal("0.00"))
            .execution_options(synchronize_session=False)
        )
        if child_result.rowcount != 1:
            raise InvalidMerge("Orders were changed concurrently, merge aborted")

        await db.execute(
            update(OrderItem)
            .where(OrderItem.order_id == child_id)
            .values(order_id=parent_id)
            .execution_options(synchronize_session=False)
        )
        # сумму считает БД уже после переноса позиций
        parent_result = await db.execute(
            update(Order)
            .where(Order.id == parent_id, Order.status == parent_status, Order.parent_order_id.is_(None))
            .values(total_amount=_stored_items_total(parent_id))
            .execution_options(synchronize_session=False)
        )
        if parent_result.rowcount != 1:
            raise InvalidMerge("Orders were changed concurrently, merge aborted")

        await db.commit()
    except Exception:
        await db.rollback()
        raise

    merged = await get_order_by_id(db, parent_id)
    logger.info("Order %s merged into order %s, total %s", child_id, parent_id, merged.total_amount)
    _publish(
        channel,
        EventType.ORDERS_MERGED,
        {"parent_order_id": parent_id, "child_order_id": child_id, "order": _snapshot(merged)},
    )
    return merged

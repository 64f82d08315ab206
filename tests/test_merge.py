"""
Tests for merging table orders into a single bill.
"""

from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from restaurant_orders.broadcast import EventType
from restaurant_orders.crud.order import (
    create_order,
    get_mergeable_orders,
    get_order_by_id,
    get_orders,
    merge_orders,
    update_order_items,
    update_order_status,
)
from restaurant_orders.exceptions import InvalidMerge, InvalidStatusTransition, NotFound, ValidationError
from restaurant_orders.models import Order, OrderItem
from restaurant_orders.schemas.order import OrderCreate, OrderItemAmend, OrderRead

from .conftest import assert_totals_consistent, drain

pytestmark = pytest.mark.asyncio


async def place(db, table_number, *lines, status=None):
    """Создаёт заказ (и при необходимости переводит в status), возвращает его id."""
    order = await create_order(
        db,
        OrderCreate(
            table_number=table_number,
            items=[{"menu_item_id": item_id, "quantity": qty} for item_id, qty in lines],
        ),
    )
    order_id = order.id
    if status:
        await update_order_status(db, order_id, status)
    return order_id


async def order_state(db, order_id):
    order = await get_order_by_id(db, order_id)
    return order.status, order.total_amount, order.parent_order_id, [i.id for i in order.items]


@pytest_asyncio.fixture
async def racer(engine):
    """Вторая сессия к той же БД, как у параллельного запроса."""
    session_factory = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session


def interleave_before_first(session, kind, action):
    """
    Подменяет session.execute: перед первым запросом вида kind (is_update, is_delete)
    выполняет action(). Возвращает список, который непуст, если action сработал.
    """
    execute = session.execute
    fired = []

    async def execute_with_interleave(statement, *args, **kwargs):
        if not fired and getattr(statement, kind, False):
            fired.append(True)
            await action()
        return await execute(statement, *args, **kwargs)

    session.execute = execute_with_interleave
    return fired


class TestMergeOrders:

    async def test_accepted_parent_absorbs_pending_child(self, db, menu, channel, events):
        parent_id = await place(db, 7, (menu["A"], 2), status="accepted")
        child_id = await place(db, 7, (menu["B"], 1), (menu["C"], 2))
        child_item_ids = [i.id for i in (await get_order_by_id(db, child_id)).items]
        parent_total_before = (await get_order_by_id(db, parent_id)).total_amount
        drain(events)

        merged = await merge_orders(db, parent_id, child_id, channel=channel)

        assert merged.id == parent_id
        assert merged.status == "accepted"
        assert merged.total_amount == parent_total_before + Decimal("8.00")
        assert len(merged.items) == 3

        child = await get_order_by_id(db, child_id)
        assert child.status == "merged"
        assert child.parent_order_id == parent_id
        assert child.total_amount == Decimal("0.00")

        moved = (await db.execute(
            select(OrderItem)
            .where(OrderItem.id.in_(child_item_ids))
            .execution_options(populate_existing=True)
        )).scalars().all()
        assert {i.order_id for i in moved} == {parent_id}
        await assert_totals_consistent(db)

        published = drain(events)
        assert [e.type for e in published] == [EventType.ORDERS_MERGED]
        assert published[0].payload["parent_order_id"] == parent_id
        assert published[0].payload["child_order_id"] == child_id
        assert published[0].payload["order"]["total_amount"] == "18.00"

    @pytest.mark.parametrize("parent_status,child_status", [
        (None, None),
        ("accepted", None),
        ("accepted", "accepted"),
    ])
    async def test_allowed_status_pairs(self, db, menu, parent_status, child_status):
        parent_id = await place(db, 1, (menu["A"], 1), status=parent_status)
        child_id = await place(db, 1, (menu["B"], 1), status=child_status)

        merged = await merge_orders(db, parent_id, child_id)

        assert merged.total_amount == Decimal("8.00")

    @pytest.mark.parametrize("parent_status,child_status", [
        (None, "accepted"),
        ("confirmed", None),
        ("preparing", None),
        ("accepted", "preparing"),
        ("cancelled", None),
    ])
    async def test_disallowed_status_pairs(self, db, menu, parent_status, child_status):
        parent_id = await place(db, 1, (menu["A"], 1), status=parent_status)
        child_id = await place(db, 1, (menu["B"], 1), status=child_status)
        before = (await order_state(db, parent_id), await order_state(db, child_id))

        with pytest.raises(InvalidMerge):
            await merge_orders(db, parent_id, child_id)

        assert (await order_state(db, parent_id), await order_state(db, child_id)) == before

    async def test_different_tables_mutate_nothing(self, db, menu, channel, events):
        parent_id = await place(db, 1, (menu["A"], 2), status="accepted")
        child_id = await place(db, 2, (menu["B"], 1))
        before = (await order_state(db, parent_id), await order_state(db, child_id))
        drain(events)

        with pytest.raises(InvalidMerge):
            await merge_orders(db, parent_id, child_id, channel=channel)

        assert (await order_state(db, parent_id), await order_state(db, child_id)) == before
        assert drain(events) == []

    async def test_merge_into_itself(self, db, menu):
        order_id = await place(db, 1, (menu["A"], 1))
        with pytest.raises(InvalidMerge):
            await merge_orders(db, order_id, order_id)

    async def test_missing_orders(self, db, menu):
        order_id = await place(db, 1, (menu["A"], 1))
        with pytest.raises(NotFound):
            await merge_orders(db, order_id, 999)
        with pytest.raises(NotFound):
            await merge_orders(db, 999, order_id)

    async def test_merged_child_cannot_be_merged_again(self, db, menu):
        parent_id = await place(db, 3, (menu["A"], 1))
        child_id = await place(db, 3, (menu["B"], 1))
        other_id = await place(db, 3, (menu["C"], 1))
        await merge_orders(db, parent_id, child_id)

        with pytest.raises(InvalidMerge):
            await merge_orders(db, other_id, child_id)
        with pytest.raises(InvalidMerge):
            await merge_orders(db, child_id, other_id)

    async def test_merge_target_cannot_become_child(self, db, menu):
        first_id = await place(db, 3, (menu["A"], 1))
        second_id = await place(db, 3, (menu["B"], 1))
        third_id = await place(db, 3, (menu["C"], 1))
        await merge_orders(db, second_id, third_id)

        with pytest.raises(InvalidMerge):
            await merge_orders(db, first_id, second_id)

        assert (await get_order_by_id(db, second_id)).parent_order_id is None

    async def test_parent_can_absorb_several_children(self, db, menu):
        parent_id = await place(db, 3, (menu["A"], 1))
        for key in ("B", "C"):
            child_id = await place(db, 3, (menu[key], 1))
            await merge_orders(db, parent_id, child_id)

        merged = await get_order_by_id(db, parent_id)
        assert merged.total_amount == Decimal("10.50")
        assert len(merged.children) == 2
        await assert_totals_consistent(db)


class TestMergedOrderViews:

    async def test_get_orders_excludes_merged_children(self, db, menu):
        parent_id = await place(db, 5, (menu["A"], 1))
        child_id = await place(db, 5, (menu["B"], 1))
        lone_id = await place(db, 6, (menu["C"], 1))
        await merge_orders(db, parent_id, child_id)

        orders = await get_orders(db)

        assert [o.id for o in orders] == [lone_id, parent_id]
        assert all(o.parent_order_id is None for o in orders)

    async def test_parent_view_nests_children(self, db, menu):
        parent_id = await place(db, 5, (menu["A"], 1))
        child_id = await place(db, 5, (menu["B"], 1))
        await merge_orders(db, parent_id, child_id)

        view = OrderRead.from_orm_with_name(await get_order_by_id(db, parent_id))

        assert [c.id for c in view.child_orders] == [child_id]
        assert view.child_orders[0].status == "merged"
        assert view.child_orders[0].items == []
        assert view.count_items == 2

    async def test_mergeable_orders(self, db, menu):
        pending_id = await place(db, 8, (menu["A"], 1))
        accepted_id = await place(db, 8, (menu["B"], 1), status="accepted")
        await place(db, 8, (menu["C"], 1), status="preparing")
        await place(db, 9, (menu["C"], 1))
        merged_child_id = await place(db, 8, (menu["A"], 1))
        await merge_orders(db, pending_id, merged_child_id)

        candidates = await get_mergeable_orders(db, 8)

        assert [o.id for o in candidates] == [accepted_id, pending_id]

    async def test_merged_child_items_cannot_be_edited(self, db, menu):
        parent_id = await place(db, 5, (menu["A"], 1))
        child_id = await place(db, 5, (menu["B"], 1))
        await merge_orders(db, parent_id, child_id)

        with pytest.raises(ValidationError):
            await update_order_items(
                db, child_id, [OrderItemAmend(menu_item_id=menu["A"], quantity=1, price=Decimal("5.00"))]
            )

    async def test_deleting_parent_removes_children(self, db, menu):
        parent_id = await place(db, 5, (menu["A"], 1))
        child_id = await place(db, 5, (menu["B"], 1))
        await merge_orders(db, parent_id, child_id)

        assert await update_order_items(db, parent_id, []) is None

        assert (await db.execute(select(Order))).scalars().all() == []
        assert (await db.execute(select(OrderItem))).scalars().all() == []

    @pytest.mark.parametrize("status", ["merged", "cancelled"])
    async def test_merged_child_status_is_frozen(self, db, menu, channel, events, status):
        parent_id = await place(db, 5, (menu["A"], 1))
        child_id = await place(db, 5, (menu["B"], 1))
        await merge_orders(db, parent_id, child_id)
        drain(events)

        with pytest.raises(InvalidStatusTransition):
            await update_order_status(db, child_id, status, channel=channel)

        assert (await get_order_by_id(db, child_id)).status == "merged"
        assert drain(events) == []


class TestConcurrentWrites:

    async def test_parallel_merges_into_same_parent_keep_total(self, db, racer, menu):
        parent_id = await place(db, 4, (menu["A"], 1), status="accepted")
        first_child_id = await place(db, 4, (menu["B"], 1))
        second_child_id = await place(db, 4, (menu["A"], 1))

        async def other_waiter_merges():
            await merge_orders(db, parent_id, second_child_id)

        fired = interleave_before_first(racer, "is_update", other_waiter_merges)
        merged = await merge_orders(racer, parent_id, first_child_id)

        assert fired
        assert merged.total_amount == Decimal("13.00")
        assert (await get_order_by_id(db, parent_id)).total_amount == Decimal("13.00")
        assert sorted(c.id for c in merged.children) == [first_child_id, second_child_id]
        await assert_totals_consistent(db)

    async def test_merge_during_item_replacement_keeps_total(self, db, racer, menu):
        parent_id = await place(db, 4, (menu["A"], 1))
        child_id = await place(db, 4, (menu["B"], 1))

        async def other_waiter_merges():
            await merge_orders(db, parent_id, child_id)

        fired = interleave_before_first(racer, "is_delete", other_waiter_merges)
        updated = await update_order_items(
            racer, parent_id, [OrderItemAmend(menu_item_id=menu["C"], quantity=2, price=Decimal("2.50"))]
        )

        assert fired
        assert updated.total_amount == Decimal("5.00")
        await assert_totals_consistent(db)

from pydantic import BaseModel
from typing import List, Optional
from datetime import datetime
from decimal import Decimal


class OrderItemRead(BaseModel):
    id: int
    order_id: int
    menu_item_id: int
    quantity: int
    price: Decimal
    note: Optional[str] = None
    menu_item_name: str | None = None

    @classmethod
    def from_orm_with_name(cls, item):
        return cls(
            id=item.id,
            order_id=item.order_id,
            menu_item_id=item.menu_item_id,
            quantity=item.quantity,
            price=item.price_at_time,
            note=item.note,
            menu_item_name=item.menu_item.name if item.menu_item else None
        )

    class Config:
        from_attributes = True


class ChildOrderRead(BaseModel):
    """Заказ, влитый в родительский: показывается вложенным."""
    id: int
    table_number: int
    status: str
    total_amount: Decimal
    created_at: Optional[datetime] = None
    items: List[OrderItemRead] = []


class OrderRead(BaseModel):
    id: int
    table_number: int
    status: str
    parent_order_id: Optional[int] = None
    total_amount: Decimal
    created_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    items: List[OrderItemRead] = []
    child_orders: List[ChildOrderRead] = []
    count_items: int

    @classmethod
    def from_orm_with_name(cls, order):
        count = sum(item.quantity for item in order.items)

        return cls(
            id=order.id,
            table_number=order.table_number,
            status=_status_value(order.status),
            parent_order_id=order.parent_order_id,
            total_amount=Decimal(order.total_amount).quantize(Decimal("0.01")),
            created_at=order.created_at,
            closed_at=order.closed_at,
            items=[OrderItemRead.from_orm_with_name(i) for i in order.items],
            child_orders=[
                ChildOrderRead(
                    id=child.id,
                    table_number=child.table_number,
                    status=_status_value(child.status),
                    total_amount=Decimal(child.total_amount).quantize(Decimal("0.01")),
                    created_at=child.created_at,
                    items=[OrderItemRead.from_orm_with_name(i) for i in child.items],
                )
                for child in order.children
            ],
            count_items=count,
        )

    class Config:
        from_attributes = True


def _status_value(status) -> str:
    return getattr(status, "value", status)


class OrderItemCreate(BaseModel):
    menu_item_id: int
    quantity: int = 1
    note: Optional[str] = None


class OrderCreate(BaseModel):
    table_number: Optional[int] = None
    items: List[OrderItemCreate] = []


class OrderItemAmend(BaseModel):
    """Позиция при правке счёта кассиром: цена приходит от клиента."""
    menu_item_id: int
    quantity: int = 1
    price: Decimal
    note: Optional[str] = None


class OrderItemsUpdate(BaseModel):
    items: List[OrderItemAmend] = []

    class Config:
        extra = "forbid"


class OrderStatusUpdate(BaseModel):
    status: str

    class Config:
        extra = "forbid"

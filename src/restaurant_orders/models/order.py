import enum
from decimal import Decimal
from sqlalchemy import Column, Integer, Numeric, DateTime, ForeignKey, Enum as SAEnum, func
from sqlalchemy.orm import relationship
from ..db.base import Base


class OrderStatusEnum(str, enum.Enum):
    pending = "pending"
    accepted = "accepted"
    confirmed = "confirmed"
    preparing = "preparing"
    completed = "completed"
    paid = "paid"
    cancelled = "cancelled"
    merged = "merged"


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    table_number = Column(Integer, nullable=False, index=True)
    status = Column(SAEnum(OrderStatusEnum, name="order_status"), nullable=False, default=OrderStatusEnum.pending)
    # заполнен только у заказа, влитого в другой (status == merged)
    parent_order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=True, index=True)
    total_amount = Column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    closed_at = Column(DateTime(timezone=True), nullable=True)

    # связи
    items = relationship(
        "OrderItem", back_populates="order", cascade="all, delete-orphan", order_by="OrderItem.id"
    )
    parent = relationship("Order", remote_side="Order.id", back_populates="children")
    children = relationship("Order", back_populates="parent", order_by="Order.id")

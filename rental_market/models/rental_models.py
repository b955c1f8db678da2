from enum import Enum

from sqlalchemy import CheckConstraint, Column, Date, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from rental_market.db.base import Base


class ItemStatus(str, Enum):
    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"


class OrderStatus(str, Enum):
    PENDING = "pending"
    CANCELLED = "cancelled"
    COMPLETED = "completed"

    @classmethod
    def parse(cls, raw: str | None) -> "OrderStatus":
        value = (raw or "").strip().lower()
        for status in cls:
            if status.value == value:
                return status
        raise ValueError(f"Unknown order status: {raw!r}")

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_ORDER_STATES


TERMINAL_ORDER_STATES = {OrderStatus.CANCELLED, OrderStatus.COMPLETED}
ORDER_STATE_TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.CANCELLED, OrderStatus.COMPLETED},
    OrderStatus.CANCELLED: set(),
    OrderStatus.COMPLETED: set(),
}
# Requesters may cancel; completion belongs to the expiry sweep.
USER_REQUESTABLE_STATES = {OrderStatus.CANCELLED}


class RentalItem(Base):
    __tablename__ = "RentalItems"
    __table_args__ = (CheckConstraint("Quantity >= 0", name="ck_rental_items_quantity_non_negative"),)

    RentalItemID = Column(Integer, primary_key=True)
    ItemName = Column(String(100), nullable=False)
    DailyPrice = Column(Integer, nullable=False)
    Quantity = Column(Integer, nullable=False, default=0)
    RentalStatus = Column(String(20), nullable=False, default=ItemStatus.AVAILABLE.value)
    Description = Column(Text)
    MinRentalDays = Column(Integer, nullable=False, default=1)
    MaxRentalDays = Column(Integer, nullable=False, default=30)
    OwnerID = Column(Integer, nullable=False, index=True)
    CreatedDate = Column(DateTime, server_default=func.now())
    UpdatedDate = Column(DateTime, server_default=func.now())
    DeletedAt = Column(DateTime)

    OrderLines = relationship("RentalOrderLine", back_populates="Item")


class RentalOrder(Base):
    __tablename__ = "RentalOrders"

    RentalOrderID = Column(Integer, primary_key=True)
    UserID = Column(Integer, nullable=False, index=True)
    Status = Column(String(20), nullable=False, default=OrderStatus.PENDING.value, index=True)
    Quantity = Column(Integer, nullable=False)
    UseStart = Column(Date, nullable=False)
    UseEnd = Column(Date, nullable=False, index=True)
    TotalPrice = Column(Integer, nullable=False, default=0)
    CreatedDate = Column(DateTime, server_default=func.now())
    UpdatedDate = Column(DateTime, server_default=func.now())
    DeletedAt = Column(DateTime)

    Lines = relationship(
        "RentalOrderLine",
        back_populates="Order",
        cascade="all, delete-orphan",
        order_by="RentalOrderLine.RentalOrderLineID",
    )


class RentalOrderLine(Base):
    __tablename__ = "RentalOrderLines"
    __table_args__ = (CheckConstraint("Quantity > 0", name="ck_rental_order_lines_quantity_positive"),)

    RentalOrderLineID = Column(Integer, primary_key=True)
    RentalOrderID = Column(Integer, ForeignKey("RentalOrders.RentalOrderID", ondelete="CASCADE"), nullable=False, index=True)
    RentalItemID = Column(Integer, ForeignKey("RentalItems.RentalItemID"), nullable=False, index=True)
    Quantity = Column(Integer, nullable=False)
    DailyPrice = Column(Integer, nullable=False, default=0)
    TotalPrice = Column(Integer, nullable=False, default=0)
    DeletedAt = Column(DateTime)

    Order = relationship("RentalOrder", back_populates="Lines")
    Item = relationship("RentalItem", back_populates="OrderLines")

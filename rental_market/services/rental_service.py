from __future__ import annotations

from datetime import date

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from rental_market.models.rental_models import RentalItem, RentalOrder, RentalOrderLine


def rental_days(use_start: date, use_end: date) -> int:
    return (use_end - use_start).days


def recalc_total_cost(order: RentalOrder) -> None:
    if not order.Lines:
        order.TotalPrice = 0
        order.Quantity = 0
        return

    days = rental_days(order.UseStart, order.UseEnd)
    if days < 1:
        days = 1

    total = 0
    quantity = 0
    for line in order.Lines:
        daily = int(line.DailyPrice or 0)
        line_quantity = int(line.Quantity or 0)
        line.TotalPrice = daily * days * line_quantity
        total += line.TotalPrice
        quantity += line_quantity
    order.TotalPrice = total
    order.Quantity = quantity


def load_order(db: Session, order_id: int, user_id: int | None = None) -> RentalOrder | None:
    stmt = (
        select(RentalOrder)
        .options(selectinload(RentalOrder.Lines).selectinload(RentalOrderLine.Item))
        .where(RentalOrder.RentalOrderID == order_id)
        .where(RentalOrder.DeletedAt.is_(None))
    )
    if user_id is not None:
        stmt = stmt.where(RentalOrder.UserID == user_id)
    return db.execute(stmt).scalars().first()


def list_user_orders(
    db: Session,
    user_id: int,
    page: int = 1,
    limit: int = 10,
    status: str | None = None,
) -> tuple[list[RentalOrder], int]:
    stmt = (
        select(RentalOrder)
        .where(RentalOrder.UserID == user_id)
        .where(RentalOrder.DeletedAt.is_(None))
    )
    if status:
        stmt = stmt.where(RentalOrder.Status == status.strip().lower())
    total = db.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()
    orders = db.execute(
        stmt.options(selectinload(RentalOrder.Lines).selectinload(RentalOrderLine.Item))
        .order_by(RentalOrder.CreatedDate.desc(), RentalOrder.RentalOrderID.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    ).scalars().all()
    return list(orders), int(total)


def serialize_rental_item(item: RentalItem) -> dict:
    return {
        "rentalItemID": item.RentalItemID,
        "itemName": item.ItemName,
        "dailyPrice": item.DailyPrice,
        "quantity": item.Quantity,
        "rentalStatus": item.RentalStatus,
        "description": item.Description,
        "minRentalDays": item.MinRentalDays,
        "maxRentalDays": item.MaxRentalDays,
        "ownerID": item.OwnerID,
        "createdDate": item.CreatedDate,
        "updatedDate": item.UpdatedDate,
    }


def serialize_rental_order(order: RentalOrder) -> dict:
    return {
        "rentalOrderID": order.RentalOrderID,
        "userID": order.UserID,
        "orderStatus": order.Status,
        "quantity": order.Quantity,
        "useStart": order.UseStart,
        "useEnd": order.UseEnd,
        "totalPrice": order.TotalPrice,
        "createdDate": order.CreatedDate,
        "updatedDate": order.UpdatedDate,
        "lines": [
            {
                "rentalOrderLineID": line.RentalOrderLineID,
                "rentalItemID": line.RentalItemID,
                "quantity": line.Quantity,
                "dailyPrice": line.DailyPrice,
                "totalPrice": line.TotalPrice,
                "item": {
                    "rentalItemID": line.Item.RentalItemID,
                    "itemName": line.Item.ItemName,
                    "dailyPrice": line.Item.DailyPrice,
                } if line.Item else None,
            }
            for line in order.Lines
        ],
    }

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Sequence

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from rental_market.models.rental_models import ItemStatus, OrderStatus, RentalItem, RentalOrder, RentalOrderLine
from rental_market.services.errors import (
    InsufficientStock,
    InvalidRequest,
    ItemNotFound,
    ItemUnavailable,
    StorageFailure,
)
from rental_market.services.rental_service import recalc_total_cost, rental_days
from rental_market.services.stock_service import read_available, reserve_stock

LOGGER = logging.getLogger("rental_market.orders")


@dataclass(frozen=True)
class LineRequest:
    rental_item_id: int
    quantity: int


def create_rental_order(
    db: Session,
    user_id: int,
    line_requests: Sequence[LineRequest],
    use_start: date | None,
    use_end: date | None,
    today: date | None = None,
) -> RentalOrder:
    """Validate a reservation against current stock, then commit it.

    Every line is checked before anything is written. The order, its lines
    and the stock decrements share one transaction; a decrement that loses
    a race with another reservation rolls the whole request back.
    """
    demand = _validate_request(line_requests, use_start, use_end, today or date.today())
    days = rental_days(use_start, use_end)

    items = _load_items(db, list(demand))
    for item_id, quantity in demand.items():
        item = items.get(item_id)
        if item is None:
            raise ItemNotFound(item_id)
        if item.RentalStatus != ItemStatus.AVAILABLE.value:
            raise ItemUnavailable(item_id)
        if days < int(item.MinRentalDays) or days > int(item.MaxRentalDays):
            raise InvalidRequest(
                f"Rental item {item_id} can be rented for {item.MinRentalDays} to {item.MaxRentalDays} days, {days} requested.",
                rentalItemID=item_id,
            )
        if quantity > int(item.Quantity or 0):
            raise InsufficientStock(item_id, quantity, int(item.Quantity or 0))

    now = datetime.now()
    order = RentalOrder(
        UserID=user_id,
        Status=OrderStatus.PENDING.value,
        UseStart=use_start,
        UseEnd=use_end,
        CreatedDate=now,
        UpdatedDate=now,
    )
    for item_id, quantity in demand.items():
        item = items[item_id]
        order.Lines.append(
            RentalOrderLine(
                RentalItemID=item_id,
                Item=item,
                Quantity=quantity,
                DailyPrice=int(item.DailyPrice or 0),
            )
        )
    recalc_total_cost(order)

    try:
        db.add(order)
        db.flush()
        for item_id in sorted(demand):
            if not reserve_stock(db, item_id, demand[item_id]):
                available = read_available(db, item_id)
                db.rollback()
                LOGGER.warning(
                    "Reservation lost stock race user_id=%s item_id=%s requested=%s available=%s",
                    user_id,
                    item_id,
                    demand[item_id],
                    available,
                )
                raise InsufficientStock(item_id, demand[item_id], available)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise StorageFailure("Could not create rental order.") from exc

    LOGGER.info(
        "Rental order created order_id=%s user_id=%s quantity=%s use_start=%s use_end=%s",
        order.RentalOrderID,
        user_id,
        order.Quantity,
        use_start,
        use_end,
    )
    return order


def _validate_request(
    line_requests: Sequence[LineRequest],
    use_start: date | None,
    use_end: date | None,
    today: date,
) -> dict[int, int]:
    if not line_requests:
        raise InvalidRequest("At least one rental item is required.")
    if use_start is None or use_end is None:
        raise InvalidRequest("useStart and useEnd are required.")
    if use_start < today:
        raise InvalidRequest("useStart must not be in the past.")
    if use_start >= use_end:
        raise InvalidRequest("useEnd must be after useStart.")

    demand: dict[int, int] = {}
    for index, line in enumerate(line_requests):
        quantity = line.quantity
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise InvalidRequest(f"items[{index}].quantity must be a positive integer.")
        demand[line.rental_item_id] = demand.get(line.rental_item_id, 0) + quantity
    return demand


def _load_items(db: Session, item_ids: list[int]) -> dict[int, RentalItem]:
    try:
        rows = db.execute(
            select(RentalItem)
            .where(RentalItem.RentalItemID.in_(item_ids))
            .where(RentalItem.DeletedAt.is_(None))
        ).scalars().all()
    except SQLAlchemyError as exc:
        db.rollback()
        raise StorageFailure("Could not load rental items.") from exc
    return {item.RentalItemID: item for item in rows}

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from rental_market.models.rental_models import OrderStatus, RentalItem, RentalOrder, RentalOrderLine
from rental_market.services.errors import DataIntegrityError

LOGGER = logging.getLogger("rental_market.stock")

# Stock is only ever changed by relative deltas evaluated inside the UPDATE
# statement. Never assign RentalItem.Quantity from a value read earlier.


def read_available(db: Session, item_id: int) -> int:
    value = db.execute(
        select(RentalItem.Quantity).where(RentalItem.RentalItemID == item_id)
    ).scalar_one_or_none()
    return int(value or 0)


def reserve_stock(db: Session, item_id: int, quantity: int) -> bool:
    """Take ``quantity`` units from an item if enough are left.

    Returns ``False`` without changing anything when the guarded update
    matched no row (stock too low, or the item was deleted meanwhile).
    """
    result = db.execute(
        update(RentalItem)
        .where(RentalItem.RentalItemID == item_id)
        .where(RentalItem.DeletedAt.is_(None))
        .where(RentalItem.Quantity >= quantity)
        .values(Quantity=RentalItem.Quantity - quantity, UpdatedDate=datetime.now())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def release_stock(db: Session, item_id: int, quantity: int) -> None:
    # Availability and soft deletion do not block a return.
    result = db.execute(
        update(RentalItem)
        .where(RentalItem.RentalItemID == item_id)
        .values(Quantity=RentalItem.Quantity + quantity, UpdatedDate=datetime.now())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        LOGGER.warning("Stock return matched no item item_id=%s quantity=%s", item_id, quantity)


def release_lines(db: Session, lines: Iterable[tuple[int, int]]) -> dict[int, int]:
    """Return reserved units given as ``(item_id, quantity)`` pairs.

    Quantities are summed per item and applied in item id order so that
    concurrent writers lock item rows in the same sequence.
    """
    credited: dict[int, int] = {}
    for item_id, quantity in lines:
        credited[item_id] = credited.get(item_id, 0) + int(quantity)
    for item_id in sorted(credited):
        release_stock(db, item_id, credited[item_id])
    return credited


def release_order_lines(db: Session, order_id: int) -> dict[int, int]:
    rows = db.execute(
        select(RentalOrderLine.RentalItemID, func.sum(RentalOrderLine.Quantity))
        .where(RentalOrderLine.RentalOrderID == order_id)
        .where(RentalOrderLine.DeletedAt.is_(None))
        .group_by(RentalOrderLine.RentalItemID)
    ).all()
    return release_lines(db, ((item_id, quantity) for item_id, quantity in rows))


def claim_order_status(
    db: Session,
    order_id: int,
    expected: OrderStatus,
    target: OrderStatus,
    soft_delete: bool = False,
) -> bool:
    """Compare-and-set an order's status.

    Only one concurrent caller can move an order out of ``expected``; the
    winner is the one whose update reports a matched row.
    """
    now = datetime.now()
    values: dict = {"Status": target.value, "UpdatedDate": now}
    if soft_delete:
        values["DeletedAt"] = now
    result = db.execute(
        update(RentalOrder)
        .where(RentalOrder.RentalOrderID == order_id)
        .where(RentalOrder.Status == expected.value)
        .where(RentalOrder.DeletedAt.is_(None))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def soft_delete_terminal_order(db: Session, order_id: int) -> bool:
    now = datetime.now()
    result = db.execute(
        update(RentalOrder)
        .where(RentalOrder.RentalOrderID == order_id)
        .where(RentalOrder.Status != OrderStatus.PENDING.value)
        .where(RentalOrder.DeletedAt.is_(None))
        .values(DeletedAt=now, UpdatedDate=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def soft_delete_order_lines(db: Session, order_id: int) -> None:
    db.execute(
        update(RentalOrderLine)
        .where(RentalOrderLine.RentalOrderID == order_id)
        .where(RentalOrderLine.DeletedAt.is_(None))
        .values(DeletedAt=datetime.now())
        .execution_options(synchronize_session=False)
    )


def current_status(order: RentalOrder) -> OrderStatus:
    try:
        return OrderStatus.parse(order.Status)
    except ValueError as exc:
        raise DataIntegrityError(
            f"Rental order {order.RentalOrderID} has unknown status {order.Status!r}.",
            rentalOrderID=order.RentalOrderID,
        ) from exc

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from rental_market.models.rental_models import (
    ORDER_STATE_TRANSITIONS,
    USER_REQUESTABLE_STATES,
    OrderStatus,
    RentalOrder,
)
from rental_market.services.errors import InvalidRequest, InvalidTransition, OrderNotFound, StorageFailure
from rental_market.services.rental_service import load_order
from rental_market.services.stock_service import (
    claim_order_status,
    current_status,
    release_order_lines,
    soft_delete_order_lines,
    soft_delete_terminal_order,
)

LOGGER = logging.getLogger("rental_market.orders")


def _load_owned_order(db: Session, order_id: int, requester_id: int) -> RentalOrder:
    try:
        order = load_order(db, order_id, requester_id)
    except SQLAlchemyError as exc:
        db.rollback()
        raise StorageFailure("Could not load rental order.") from exc
    if order is None:
        raise OrderNotFound(order_id)
    return order


def update_order_status(db: Session, order_id: int, requester_id: int, new_status: str | None) -> RentalOrder:
    order = _load_owned_order(db, order_id, requester_id)
    if new_status is None or not str(new_status).strip():
        raise InvalidRequest("orderStatus is required.")
    try:
        target = OrderStatus.parse(new_status)
    except ValueError as exc:
        raise InvalidRequest(f"Unknown orderStatus: {new_status}") from exc

    current = current_status(order)
    if target not in ORDER_STATE_TRANSITIONS[current] or target not in USER_REQUESTABLE_STATES:
        raise InvalidTransition(current.value, target.value)

    try:
        if not claim_order_status(db, order_id, current, target):
            db.rollback()
            latest = db.execute(
                select(RentalOrder.Status).where(RentalOrder.RentalOrderID == order_id)
            ).scalar_one_or_none()
            LOGGER.warning(
                "Status change lost race order_id=%s expected=%s latest=%s target=%s",
                order_id,
                current.value,
                latest,
                target.value,
            )
            raise InvalidTransition(str(latest or current.value), target.value)
        credited = release_order_lines(db, order_id)
        db.commit()
        db.refresh(order)
    except SQLAlchemyError as exc:
        db.rollback()
        raise StorageFailure("Could not update rental order status.") from exc

    LOGGER.info(
        "Rental order status changed order_id=%s user_id=%s %s->%s credited=%s",
        order_id,
        requester_id,
        current.value,
        target.value,
        credited,
    )
    return order


def delete_order(db: Session, order_id: int, requester_id: int) -> None:
    """Soft-delete an order together with its lines.

    A still pending order is cancelled in the same statement that deletes
    it, and its reserved stock goes back to the items. Orders that already
    reached a terminal status returned their stock earlier and get none.
    """
    order = _load_owned_order(db, order_id, requester_id)
    status = current_status(order)

    try:
        credited: dict[int, int] = {}
        if not status.is_terminal and claim_order_status(
            db, order_id, OrderStatus.PENDING, OrderStatus.CANCELLED, soft_delete=True
        ):
            credited = release_order_lines(db, order_id)
        elif not soft_delete_terminal_order(db, order_id):
            db.rollback()
            raise OrderNotFound(order_id)
        soft_delete_order_lines(db, order_id)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise StorageFailure("Could not delete rental order.") from exc

    LOGGER.info("Rental order deleted order_id=%s user_id=%s credited=%s", order_id, requester_id, credited)

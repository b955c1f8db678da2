from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from rental_market.models.rental_models import ItemStatus, RentalItem, RentalOrder, RentalOrderLine
from rental_market.services.errors import Forbidden, InsufficientStock, InvalidRequest, ItemNotFound, StorageFailure
from rental_market.services.stock_service import read_available, release_stock, reserve_stock

LOGGER = logging.getLogger("rental_market.items")

_EDITABLE_FIELDS = {
    "itemName": "ItemName",
    "dailyPrice": "DailyPrice",
    "description": "Description",
    "rentalStatus": "RentalStatus",
    "minRentalDays": "MinRentalDays",
    "maxRentalDays": "MaxRentalDays",
}


def _normalize_item_status(raw: str | None) -> str:
    value = (raw or ItemStatus.AVAILABLE.value).strip().lower()
    if value not in {status.value for status in ItemStatus}:
        raise InvalidRequest(f"rentalStatus must be one of: {', '.join(s.value for s in ItemStatus)}")
    return value


def _validate_rental_period(min_days: int, max_days: int) -> None:
    if min_days < 1:
        raise InvalidRequest("minRentalDays must be at least 1.")
    if max_days < min_days:
        raise InvalidRequest("maxRentalDays must be on or after minRentalDays.")


def get_rental_item(db: Session, item_id: int) -> RentalItem:
    item = db.execute(
        select(RentalItem)
        .where(RentalItem.RentalItemID == item_id)
        .where(RentalItem.DeletedAt.is_(None))
    ).scalars().first()
    if item is None:
        raise ItemNotFound(item_id)
    return item


def _get_managed_item(db: Session, item_id: int, requester_id: int, is_manager: bool) -> RentalItem:
    item = get_rental_item(db, item_id)
    if not is_manager and item.OwnerID != requester_id:
        raise Forbidden("Only the item owner or a manager may do this.")
    return item


def _commit(db: Session, message: str) -> None:
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise StorageFailure(message) from exc


def create_rental_item(
    db: Session,
    owner_id: int,
    item_name: str,
    daily_price: int,
    quantity: int,
    description: str | None = None,
    rental_status: str | None = None,
    min_rental_days: int = 1,
    max_rental_days: int = 30,
) -> RentalItem:
    if not (item_name or "").strip():
        raise InvalidRequest("itemName is required.")
    if daily_price < 0:
        raise InvalidRequest("dailyPrice must not be negative.")
    if quantity < 0:
        raise InvalidRequest("quantity must not be negative.")
    _validate_rental_period(min_rental_days, max_rental_days)

    now = datetime.now()
    item = RentalItem(
        ItemName=item_name.strip(),
        DailyPrice=daily_price,
        Quantity=quantity,
        Description=description,
        RentalStatus=_normalize_item_status(rental_status),
        MinRentalDays=min_rental_days,
        MaxRentalDays=max_rental_days,
        OwnerID=owner_id,
        CreatedDate=now,
        UpdatedDate=now,
    )
    db.add(item)
    _commit(db, "Could not create rental item.")
    db.refresh(item)
    return item


def update_rental_item(db: Session, item_id: int, requester_id: int, is_manager: bool, changes: dict) -> RentalItem:
    """Apply descriptive changes to an item. Stock is not editable here."""
    item = _get_managed_item(db, item_id, requester_id, is_manager)
    for field, column in _EDITABLE_FIELDS.items():
        if field not in changes or changes[field] is None:
            continue
        value = changes[field]
        if field == "rentalStatus":
            value = _normalize_item_status(value)
        if field == "itemName" and not str(value).strip():
            raise InvalidRequest("itemName must not be empty.")
        if field == "dailyPrice" and int(value) < 0:
            raise InvalidRequest("dailyPrice must not be negative.")
        setattr(item, column, value)
    _validate_rental_period(int(item.MinRentalDays), int(item.MaxRentalDays))
    item.UpdatedDate = datetime.now()
    _commit(db, "Could not update rental item.")
    db.refresh(item)
    return item


def adjust_stock(db: Session, item_id: int, requester_id: int, is_manager: bool, delta: int) -> RentalItem:
    item = _get_managed_item(db, item_id, requester_id, is_manager)
    if delta == 0:
        raise InvalidRequest("delta must not be zero.")
    try:
        if delta > 0:
            release_stock(db, item_id, delta)
        elif not reserve_stock(db, item_id, -delta):
            available = read_available(db, item_id)
            db.rollback()
            raise InsufficientStock(item_id, -delta, available)
        db.commit()
        db.refresh(item)
    except SQLAlchemyError as exc:
        db.rollback()
        raise StorageFailure("Could not adjust rental item stock.") from exc
    LOGGER.info("Stock adjusted item_id=%s delta=%s quantity=%s by=%s", item_id, delta, item.Quantity, requester_id)
    return item


def delete_rental_item(db: Session, item_id: int, requester_id: int, is_manager: bool) -> None:
    item = _get_managed_item(db, item_id, requester_id, is_manager)
    now = datetime.now()
    item.DeletedAt = now
    item.UpdatedDate = now
    _commit(db, "Could not delete rental item.")
    LOGGER.info("Rental item deleted item_id=%s by=%s", item_id, requester_id)


def list_orders_by_item(db: Session, item_id: int, requester_id: int, is_manager: bool) -> list[RentalOrder]:
    _get_managed_item(db, item_id, requester_id, is_manager)
    order_ids = (
        select(RentalOrderLine.RentalOrderID)
        .where(RentalOrderLine.RentalItemID == item_id)
        .where(RentalOrderLine.DeletedAt.is_(None))
    )
    return db.execute(
        select(RentalOrder)
        .options(selectinload(RentalOrder.Lines).selectinload(RentalOrderLine.Item))
        .where(RentalOrder.RentalOrderID.in_(order_ids))
        .where(RentalOrder.DeletedAt.is_(None))
        .order_by(RentalOrder.CreatedDate.desc(), RentalOrder.RentalOrderID.desc())
    ).scalars().all()

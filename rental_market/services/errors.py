from __future__ import annotations

from typing import Any


class RentalError(Exception):
    """Base class for failures raised by the rental order core.

    ``kind`` is the machine-readable error name returned to callers and
    ``status_code`` the HTTP status the API layer answers with.
    """

    kind = "RentalError"
    status_code = 400

    def __init__(self, message: str, **extra: Any):
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"detail": self.message, "kind": self.kind}
        payload.update(self.extra)
        return payload


class InvalidRequest(RentalError):
    kind = "InvalidRequest"
    status_code = 400


class Forbidden(RentalError):
    kind = "Forbidden"
    status_code = 403


class ItemNotFound(RentalError):
    kind = "ItemNotFound"
    status_code = 404

    def __init__(self, item_id: int):
        super().__init__(f"Rental item {item_id} not found.", rentalItemID=item_id)
        self.item_id = item_id


class ItemUnavailable(RentalError):
    kind = "ItemUnavailable"
    status_code = 409

    def __init__(self, item_id: int):
        super().__init__(f"Rental item {item_id} is not available for rent.", rentalItemID=item_id)
        self.item_id = item_id


class InsufficientStock(RentalError):
    kind = "InsufficientStock"
    status_code = 409

    def __init__(self, item_id: int, requested: int, available: int):
        super().__init__(
            f"Rental item {item_id} has {available} in stock, {requested} requested.",
            rentalItemID=item_id,
            requested=requested,
            available=available,
        )
        self.item_id = item_id
        self.requested = requested
        self.available = available


class OrderNotFound(RentalError):
    kind = "NotFound"
    status_code = 404

    def __init__(self, order_id: int):
        super().__init__(f"Rental order {order_id} not found.", rentalOrderID=order_id)
        self.order_id = order_id


class InvalidTransition(RentalError):
    kind = "InvalidTransition"
    status_code = 409

    def __init__(self, current: str, target: str):
        super().__init__(f"Invalid status transition: {current} -> {target}", current=current, target=target)
        self.current = current
        self.target = target


class StorageFailure(RentalError):
    kind = "StorageFailure"
    status_code = 503


class DataIntegrityError(StorageFailure):
    kind = "DataIntegrityError"
    status_code = 500

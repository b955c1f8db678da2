from __future__ import annotations

import logging
import math
import os
import threading
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable

from sqlalchemy import select
from sqlalchemy.orm import selectinload, sessionmaker

from rental_market.models.rental_models import OrderStatus, RentalOrder
from rental_market.services.stock_service import claim_order_status, release_lines

LOGGER = logging.getLogger("rental_market.sweeper")


@dataclass(frozen=True)
class ExpiredOrder:
    order_id: int
    use_end: date
    lines: tuple[tuple[int, int], ...]


@dataclass(frozen=True)
class SweeperSettings:
    enabled: bool = True
    interval_seconds: float = 30.0
    initial_delay_seconds: float = 5.0


def _env_seconds(name: str, default: float) -> float:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return default
    message = f"Invalid number of seconds in environment variable {name}: {raw!r}"
    try:
        value = float(raw)
    except ValueError as exc:
        raise RuntimeError(message) from exc
    if not math.isfinite(value):
        raise RuntimeError(message)
    return value


def load_sweeper_settings() -> SweeperSettings:
    enabled = str(os.environ.get("RENTAL_SWEEP_ENABLED", "true")).strip().lower() in {"1", "true", "yes", "on"}
    interval = _env_seconds("RENTAL_SWEEP_INTERVAL_SECONDS", 30.0)
    initial_delay = _env_seconds("RENTAL_SWEEP_INITIAL_DELAY_SECONDS", 5.0)
    return SweeperSettings(
        enabled=enabled,
        interval_seconds=max(interval, 1.0),
        initial_delay_seconds=max(initial_delay, 0.0),
    )


def find_expired_orders(session_factory: sessionmaker, today: date) -> list[ExpiredOrder]:
    with session_factory() as db:
        orders = db.execute(
            select(RentalOrder)
            .options(selectinload(RentalOrder.Lines))
            .where(RentalOrder.UseEnd < today)
            .where(RentalOrder.Status == OrderStatus.PENDING.value)
            .where(RentalOrder.DeletedAt.is_(None))
            .order_by(RentalOrder.RentalOrderID)
        ).scalars().all()
        return [
            ExpiredOrder(
                order_id=order.RentalOrderID,
                use_end=order.UseEnd,
                lines=tuple((line.RentalItemID, line.Quantity) for line in order.Lines if line.DeletedAt is None),
            )
            for order in orders
        ]


def complete_expired_order(session_factory: sessionmaker, expired: ExpiredOrder) -> bool:
    """Return one expired order's stock and mark it completed.

    Runs in its own transaction. ``False`` means the order was not
    reconciled, either because another actor moved it out of pending first
    or because the transaction failed and was rolled back.
    """
    db = session_factory()
    try:
        if not claim_order_status(db, expired.order_id, OrderStatus.PENDING, OrderStatus.COMPLETED):
            db.rollback()
            return False
        credited = release_lines(db, expired.lines)
        db.commit()
        LOGGER.info("Expired rental order completed order_id=%s use_end=%s credited=%s", expired.order_id, expired.use_end, credited)
        return True
    except Exception:
        db.rollback()
        LOGGER.exception("Expiry reconciliation failed order_id=%s", expired.order_id)
        return False
    finally:
        db.close()


def run_expiry_sweep(session_factory: sessionmaker, today: date | None = None) -> list[int]:
    today = today or date.today()
    completed: list[int] = []
    for expired in find_expired_orders(session_factory, today):
        if complete_expired_order(session_factory, expired):
            completed.append(expired.order_id)
    if completed:
        LOGGER.info("Rental expiry sweep finished today=%s completed=%s", today, len(completed))
    return completed


class RentalExpirySweeper:
    """Background thread that runs the expiry sweep on a fixed interval."""

    def __init__(
        self,
        session_factory: sessionmaker,
        interval_seconds: float = 30.0,
        initial_delay_seconds: float = 5.0,
        clock: Callable[[], date] = date.today,
    ):
        self._session_factory = session_factory
        self.interval_seconds = interval_seconds
        self.initial_delay_seconds = initial_delay_seconds
        self._clock = clock
        self._stop_event = threading.Event()
        self._lock = threading.Lock()
        self._thread: threading.Thread | None = None
        self.last_run_at: datetime | None = None
        self.runs = 0

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        with self._lock:
            if self.is_running:
                return
            self._stop_event.clear()
            self._thread = threading.Thread(target=self._run, name="rental-expiry-sweeper", daemon=True)
            self._thread.start()
        LOGGER.info(
            "Rental expiry sweeper started interval=%s initial_delay=%s",
            self.interval_seconds,
            self.initial_delay_seconds,
        )

    def stop(self, timeout: float = 5.0) -> None:
        self._stop_event.set()
        with self._lock:
            thread = self._thread
            self._thread = None
        if thread is not None:
            thread.join(timeout)
            LOGGER.info("Rental expiry sweeper stopped")

    def run_once(self) -> list[int]:
        try:
            completed = run_expiry_sweep(self._session_factory, self._clock())
        except Exception:
            LOGGER.exception("Rental expiry sweep failed")
            completed = []
        self.last_run_at = datetime.now()
        self.runs += 1
        return completed

    def _run(self) -> None:
        if self._stop_event.wait(self.initial_delay_seconds):
            return
        while True:
            self.run_once()
            if self._stop_event.wait(self.interval_seconds):
                return

import os
import threading
import unittest
from datetime import date, timedelta
from unittest import mock

from sqlalchemy.exc import OperationalError

from support import DatabaseTestCase

from rental_market.models.rental_models import RentalItem
from rental_market.services import expiry_sweeper
from rental_market.services.expiry_sweeper import (
    RentalExpirySweeper,
    find_expired_orders,
    load_sweeper_settings,
    run_expiry_sweep,
)
from rental_market.services.lifecycle_service import update_order_status
from rental_market.services.stock_service import release_lines

BOOKED_ON = date(2026, 6, 1)
YESTERDAY = date(2026, 6, 9)
TODAY = date(2026, 6, 10)


class ExpirySweepTests(DatabaseTestCase):
    def setUp(self):
        super().setUp()
        self.item_a = self.add_item(quantity=5)
        self.item_b = self.add_item(quantity=4, name="Paddle")

    def test_expired_pending_order_is_completed_and_credited(self):
        order_id = self.place_order(1, [(self.item_a, 3), (self.item_b, 2)], BOOKED_ON, YESTERDAY)
        self.assertEqual(self.quantity(self.item_a), 2)
        self.assertEqual(self.quantity(self.item_b), 2)

        completed = run_expiry_sweep(self.Session, today=TODAY)

        self.assertEqual(completed, [order_id])
        self.assertEqual(self.order_row(order_id).Status, "completed")
        self.assertEqual(self.quantity(self.item_a), 5)
        self.assertEqual(self.quantity(self.item_b), 4)

    def test_second_sweep_is_a_no_op(self):
        self.place_order(1, [(self.item_a, 3)], BOOKED_ON, YESTERDAY)
        run_expiry_sweep(self.Session, today=TODAY)

        self.assertEqual(find_expired_orders(self.Session, TODAY), [])
        self.assertEqual(run_expiry_sweep(self.Session, today=TODAY), [])
        self.assertEqual(self.quantity(self.item_a), 5)

    def test_orders_ending_today_or_later_are_left_alone(self):
        ends_today = self.place_order(1, [(self.item_a, 1)], BOOKED_ON, TODAY)
        ends_later = self.place_order(2, [(self.item_a, 1)], BOOKED_ON, TODAY + timedelta(days=3))

        self.assertEqual(run_expiry_sweep(self.Session, today=TODAY), [])
        self.assertEqual(self.order_row(ends_today).Status, "pending")
        self.assertEqual(self.order_row(ends_later).Status, "pending")
        self.assertEqual(self.quantity(self.item_a), 3)

    def test_cancelled_orders_are_not_credited_again(self):
        order_id = self.place_order(1, [(self.item_a, 3)], BOOKED_ON, YESTERDAY)
        update_order_status(self.db, order_id, 1, "cancelled")
        self.assertEqual(self.quantity(self.item_a), 5)

        self.assertEqual(run_expiry_sweep(self.Session, today=TODAY), [])
        self.assertEqual(self.order_row(order_id).Status, "cancelled")
        self.assertEqual(self.quantity(self.item_a), 5)

    def test_stock_returns_to_unavailable_items(self):
        order_id = self.place_order(1, [(self.item_a, 2)], BOOKED_ON, YESTERDAY)
        with self.Session() as db:
            db.get(RentalItem, self.item_a).RentalStatus = "unavailable"
            db.commit()

        self.assertEqual(run_expiry_sweep(self.Session, today=TODAY), [order_id])
        self.assertEqual(self.quantity(self.item_a), 5)

    def test_one_failing_order_does_not_block_the_rest(self):
        first = self.place_order(1, [(self.item_a, 1)], BOOKED_ON, YESTERDAY)
        broken = self.place_order(2, [(self.item_a, 2)], BOOKED_ON, YESTERDAY)
        last = self.place_order(3, [(self.item_b, 3)], BOOKED_ON, YESTERDAY)
        self.assertEqual(self.quantity(self.item_a), 2)

        def flaky_release(db, lines):
            lines = tuple(lines)
            if lines == ((self.item_a, 2),):
                raise OperationalError("UPDATE RentalItems", {}, Exception("database is locked"))
            return release_lines(db, lines)

        with mock.patch.object(expiry_sweeper, "release_lines", side_effect=flaky_release):
            with self.assertLogs("rental_market.sweeper", level="ERROR") as logs:
                completed = run_expiry_sweep(self.Session, today=TODAY)

        self.assertEqual(completed, [first, last])
        self.assertIn(f"order_id={broken}", "\n".join(logs.output))
        self.assertEqual(self.order_row(broken).Status, "pending")
        self.assertEqual(self.quantity(self.item_a), 3)
        self.assertEqual(self.quantity(self.item_b), 4)

        # The failed order is picked up again on the next cycle.
        self.assertEqual(run_expiry_sweep(self.Session, today=TODAY), [broken])
        self.assertEqual(self.quantity(self.item_a), 5)


class RentalExpirySweeperThreadTests(DatabaseTestCase):
    def test_thread_runs_passes_until_stopped(self):
        item_a = self.add_item(quantity=5)
        order_id = self.place_order(1, [(item_a, 3)], BOOKED_ON, YESTERDAY)
        passes = threading.Event()
        sweeper = RentalExpirySweeper(self.Session, interval_seconds=0.05, initial_delay_seconds=0, clock=lambda: TODAY)
        real_run_once = sweeper.run_once

        def counting_run_once():
            completed = real_run_once()
            if sweeper.runs >= 2:
                passes.set()
            return completed

        sweeper.run_once = counting_run_once
        sweeper.start()
        try:
            self.assertTrue(sweeper.is_running)
            self.assertTrue(passes.wait(5))
        finally:
            sweeper.stop()

        self.assertFalse(sweeper.is_running)
        self.assertIsNotNone(sweeper.last_run_at)
        self.assertEqual(self.order_row(order_id).Status, "completed")
        self.assertEqual(self.quantity(item_a), 5)

    def test_start_is_idempotent_and_stop_during_initial_delay_exits(self):
        sweeper = RentalExpirySweeper(self.Session, interval_seconds=60, initial_delay_seconds=60)
        sweeper.start()
        thread = sweeper._thread
        sweeper.start()
        self.assertIs(sweeper._thread, thread)
        sweeper.stop(timeout=5)
        self.assertFalse(thread.is_alive())
        self.assertEqual(sweeper.runs, 0)

    def test_failed_pass_is_logged_and_not_raised(self):
        sweeper = RentalExpirySweeper(self.Session, clock=lambda: TODAY)
        with mock.patch.object(expiry_sweeper, "run_expiry_sweep", side_effect=OperationalError("SELECT", {}, Exception("gone"))):
            with self.assertLogs("rental_market.sweeper", level="ERROR"):
                self.assertEqual(sweeper.run_once(), [])
        self.assertEqual(sweeper.runs, 1)


class SweeperSettingsTests(unittest.TestCase):
    def test_defaults(self):
        with mock.patch.dict(os.environ, {}, clear=True):
            settings = load_sweeper_settings()
        self.assertTrue(settings.enabled)
        self.assertEqual(settings.interval_seconds, 30.0)
        self.assertEqual(settings.initial_delay_seconds, 5.0)

    def test_environment_overrides(self):
        env = {
            "RENTAL_SWEEP_ENABLED": "off",
            "RENTAL_SWEEP_INTERVAL_SECONDS": "60",
            "RENTAL_SWEEP_INITIAL_DELAY_SECONDS": "0",
        }
        with mock.patch.dict(os.environ, env, clear=True):
            settings = load_sweeper_settings()
        self.assertFalse(settings.enabled)
        self.assertEqual(settings.interval_seconds, 60.0)
        self.assertEqual(settings.initial_delay_seconds, 0.0)

    def test_unparseable_durations_fail_fast_naming_the_variable(self):
        for name in ("RENTAL_SWEEP_INTERVAL_SECONDS", "RENTAL_SWEEP_INITIAL_DELAY_SECONDS"):
            for raw in ("soon", "nan"):
                with self.subTest(name=name, raw=raw):
                    with mock.patch.dict(os.environ, {name: raw}, clear=True):
                        with self.assertRaises(RuntimeError) as ctx:
                            load_sweeper_settings()
                    self.assertIn(name, str(ctx.exception))


if __name__ == "__main__":
    unittest.main()

import os
import shutil
import sys
import tempfile
import unittest
from datetime import date
from pathlib import Path

os.environ.setdefault("RENTAL_MARKET_DB_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("RENTAL_SWEEP_ENABLED", "false")

REPO_ROOT = Path(__file__).resolve().parents[2]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from rental_market.db.engine import build_engine, build_sessionmaker, init_db
from rental_market.models.rental_models import RentalItem, RentalOrder, RentalOrderLine
from rental_market.services.admission_service import LineRequest, create_rental_order


class DatabaseTestCase(unittest.TestCase):
    """Gives every test its own file-backed SQLite database."""

    def setUp(self):
        self._tmpdir = tempfile.mkdtemp(prefix="rental-market-")
        self.engine = build_engine(f"sqlite+pysqlite:///{self._tmpdir}/rental.db")
        init_db(self.engine)
        self.Session = build_sessionmaker(self.engine)
        self.db = self.Session()

    def tearDown(self):
        self.db.close()
        self.engine.dispose()
        shutil.rmtree(self._tmpdir, ignore_errors=True)

    def add_item(
        self,
        quantity: int = 5,
        owner_id: int = 900,
        status: str = "available",
        daily_price: int = 1000,
        min_days: int = 1,
        max_days: int = 30,
        name: str = "Camping tent",
    ) -> int:
        with self.Session() as db:
            item = RentalItem(
                ItemName=name,
                DailyPrice=daily_price,
                Quantity=quantity,
                RentalStatus=status,
                MinRentalDays=min_days,
                MaxRentalDays=max_days,
                OwnerID=owner_id,
            )
            db.add(item)
            db.commit()
            return item.RentalItemID

    def place_order(self, user_id: int, lines, use_start: date, use_end: date, today: date | None = None) -> int:
        with self.Session() as db:
            order = create_rental_order(
                db,
                user_id,
                [LineRequest(item_id, quantity) for item_id, quantity in lines],
                use_start,
                use_end,
                today=today or use_start,
            )
            return order.RentalOrderID

    def quantity(self, item_id: int) -> int:
        with self.Session() as db:
            return db.get(RentalItem, item_id).Quantity

    def order_row(self, order_id: int) -> RentalOrder:
        with self.Session() as db:
            return db.get(RentalOrder, order_id)

    def order_count(self) -> int:
        with self.Session() as db:
            return db.query(RentalOrder).count()

    def live_line_count(self, order_id: int) -> int:
        with self.Session() as db:
            return (
                db.query(RentalOrderLine)
                .filter(RentalOrderLine.RentalOrderID == order_id)
                .filter(RentalOrderLine.DeletedAt.is_(None))
                .count()
            )

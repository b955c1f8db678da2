import os

from dotenv import load_dotenv

from rental_market.db.engine import build_engine, build_sessionmaker

load_dotenv()


def _require_env(name: str) -> str:
    value = os.environ.get(name)
    if not value:
        raise RuntimeError(f"Missing required environment variable: {name}")
    return value


RENTAL_MARKET_DB_URL = _require_env("RENTAL_MARKET_DB_URL")

engine_rental = build_engine(RENTAL_MARKET_DB_URL)

SessionLocalRental = build_sessionmaker(engine_rental)

import logging
import os
from contextlib import asynccontextmanager
from dataclasses import dataclass

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.orm import Session, sessionmaker

from rental_market.db.deps import get_rental_db
from rental_market.db.engine import init_db
from rental_market.db.session import SessionLocalRental, engine_rental
from rental_market.schemas.rentals import (
    CreateRentalItemDto,
    CreateRentalOrderDto,
    StockAdjustmentRequest,
    UpdateOrderStatusRequest,
    UpdateRentalItemDto,
)
from rental_market.services.admission_service import LineRequest, create_rental_order
from rental_market.services.errors import InvalidRequest, OrderNotFound, RentalError
from rental_market.services.expiry_sweeper import RentalExpirySweeper, load_sweeper_settings, run_expiry_sweep
from rental_market.services.lifecycle_service import delete_order, update_order_status
from rental_market.services.rental_item_service import (
    adjust_stock,
    create_rental_item,
    delete_rental_item,
    get_rental_item,
    list_orders_by_item,
    update_rental_item,
)
from rental_market.services.rental_service import (
    list_user_orders,
    load_order,
    serialize_rental_item,
    serialize_rental_order,
)

LOGGER = logging.getLogger("rental_market.api")

MANAGER_ROLE = "MANAGER"
USER_ROLE = "USER"


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db(engine_rental)
    settings = load_sweeper_settings()
    sweeper = None
    if settings.enabled:
        sweeper = RentalExpirySweeper(
            SessionLocalRental,
            interval_seconds=settings.interval_seconds,
            initial_delay_seconds=settings.initial_delay_seconds,
        )
        sweeper.start()
    else:
        LOGGER.info("Rental expiry sweeper disabled by RENTAL_SWEEP_ENABLED")
    app.state.sweeper = sweeper
    try:
        yield
    finally:
        if sweeper is not None:
            sweeper.stop()


app = FastAPI(lifespan=lifespan)


def _parse_csv_env(name: str, default: str) -> list[str]:
    raw = os.environ.get(name, default)
    return [item.strip() for item in str(raw).split(",") if item.strip()]


_CORS_ALLOW_ORIGINS = _parse_csv_env(
    "CORS_ALLOW_ORIGINS",
    "http://127.0.0.1,http://localhost,http://127.0.0.1:3000,http://localhost:3000",
)
_CORS_ALLOW_CREDENTIALS = str(os.environ.get("CORS_ALLOW_CREDENTIALS", "true")).strip().lower() in {"1", "true", "yes", "on"}
if "*" in _CORS_ALLOW_ORIGINS:
    # Browsers reject wildcard origins with credentials; force safe behavior.
    _CORS_ALLOW_CREDENTIALS = False

app.add_middleware(
    CORSMiddleware,
    allow_origins=_CORS_ALLOW_ORIGINS,
    allow_credentials=_CORS_ALLOW_CREDENTIALS,
    allow_methods=["*"],
    allow_headers=["*"],
)


@dataclass(frozen=True)
class RequestUser:
    user_id: int
    role: str

    @property
    def is_manager(self) -> bool:
        return self.role == MANAGER_ROLE


@app.exception_handler(RentalError)
async def rental_error_handler(request: Request, exc: RentalError):
    if exc.status_code >= 500:
        LOGGER.error("Request failed path=%s kind=%s detail=%s", request.url.path, exc.kind, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def _describe_validation_error(error: dict) -> str:
    location = ".".join(str(part) for part in error.get("loc", ())[1:])
    message = error.get("msg", "invalid value")
    return f"{location}: {message}" if location else message


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    error = InvalidRequest(
        "; ".join(_describe_validation_error(item) for item in errors) or "Malformed request.",
        errors=jsonable_encoder(errors),
    )
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


def get_rental_session_factory() -> sessionmaker:
    return SessionLocalRental


def get_request_user(
    x_user_id: str | None = Header(None, alias="X-User-ID"),
    x_user_role: str | None = Header(None, alias="X-User-Role"),
) -> RequestUser:
    raw = (x_user_id or "").strip()
    if not raw or not raw.isdigit() or int(raw) <= 0:
        raise HTTPException(status_code=401, detail="Not logged in.")
    role = (x_user_role or USER_ROLE).strip().upper()
    if role not in {MANAGER_ROLE, USER_ROLE}:
        role = USER_ROLE
    return RequestUser(user_id=int(raw), role=role)


def _require_manager_or_403(user: RequestUser) -> None:
    if not user.is_manager:
        raise HTTPException(status_code=403, detail="Manager role required.")


@app.get("/healthz")
def healthcheck():
    return {"status": "ok"}


@app.get("/api/healthz")
def healthcheck_api(db: Session = Depends(get_rental_db)):
    try:
        db.execute(text("SELECT 1"))
        return {"status": "ok"}
    except Exception as exc:
        raise HTTPException(status_code=503, detail=f"db_unavailable: {exc}") from exc


@app.post("/api/rental-orders", status_code=201)
def create_order(
    payload: CreateRentalOrderDto,
    db: Session = Depends(get_rental_db),
    user: RequestUser = Depends(get_request_user),
):
    order = create_rental_order(
        db,
        user.user_id,
        [LineRequest(rental_item_id=line.rentalItemID, quantity=line.quantity) for line in payload.items],
        payload.useStart,
        payload.useEnd,
    )
    return serialize_rental_order(order)


@app.get("/api/rental-orders")
def list_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    order_status: str | None = Query(None, alias="orderStatus"),
    db: Session = Depends(get_rental_db),
    user: RequestUser = Depends(get_request_user),
):
    orders, total = list_user_orders(db, user.user_id, page=page, limit=limit, status=order_status)
    return {
        "data": [serialize_rental_order(order) for order in orders],
        "pagination": {
            "totalItems": total,
            "totalPages": (total + limit - 1) // limit,
            "currentPage": page,
            "limit": limit,
        },
    }


@app.get("/api/rental-orders/{order_id}")
def get_order(
    order_id: int,
    db: Session = Depends(get_rental_db),
    user: RequestUser = Depends(get_request_user),
):
    order = load_order(db, order_id, user.user_id)
    if not order:
        raise OrderNotFound(order_id)
    return serialize_rental_order(order)


@app.put("/api/rental-orders/{order_id}")
def change_order_status(
    order_id: int,
    payload: UpdateOrderStatusRequest,
    db: Session = Depends(get_rental_db),
    user: RequestUser = Depends(get_request_user),
):
    order = update_order_status(db, order_id, user.user_id, payload.orderStatus)
    return serialize_rental_order(order)


@app.delete("/api/rental-orders/{order_id}")
def remove_order(
    order_id: int,
    db: Session = Depends(get_rental_db),
    user: RequestUser = Depends(get_request_user),
):
    delete_order(db, order_id, user.user_id)
    return {"message": "Rental order deleted"}


@app.post("/api/rental-items", status_code=201)
def create_item(
    payload: CreateRentalItemDto,
    db: Session = Depends(get_rental_db),
    user: RequestUser = Depends(get_request_user),
):
    item = create_rental_item(
        db,
        user.user_id,
        payload.itemName,
        payload.dailyPrice,
        payload.quantity,
        description=payload.description,
        rental_status=payload.rentalStatus,
        min_rental_days=payload.minRentalDays,
        max_rental_days=payload.maxRentalDays,
    )
    return serialize_rental_item(item)


@app.get("/api/rental-items/{item_id}")
def get_item(item_id: int, db: Session = Depends(get_rental_db)):
    return serialize_rental_item(get_rental_item(db, item_id))


@app.put("/api/rental-items/{item_id}")
def update_item(
    item_id: int,
    payload: UpdateRentalItemDto,
    db: Session = Depends(get_rental_db),
    user: RequestUser = Depends(get_request_user),
):
    item = update_rental_item(db, item_id, user.user_id, user.is_manager, payload.model_dump(exclude_unset=True))
    return serialize_rental_item(item)


@app.post("/api/rental-items/{item_id}/stock")
def adjust_item_stock(
    item_id: int,
    payload: StockAdjustmentRequest,
    db: Session = Depends(get_rental_db),
    user: RequestUser = Depends(get_request_user),
):
    item = adjust_stock(db, item_id, user.user_id, user.is_manager, payload.delta)
    return serialize_rental_item(item)


@app.delete("/api/rental-items/{item_id}")
def delete_item(
    item_id: int,
    db: Session = Depends(get_rental_db),
    user: RequestUser = Depends(get_request_user),
):
    delete_rental_item(db, item_id, user.user_id, user.is_manager)
    return {"message": "Rental item deleted"}


@app.get("/api/rental-items/{item_id}/orders")
def get_item_orders(
    item_id: int,
    db: Session = Depends(get_rental_db),
    user: RequestUser = Depends(get_request_user),
):
    orders = list_orders_by_item(db, item_id, user.user_id, user.is_manager)
    return [serialize_rental_order(order) for order in orders]


@app.post("/api/admin/rental-sweep/run")
def run_rental_sweep(
    session_factory: sessionmaker = Depends(get_rental_session_factory),
    user: RequestUser = Depends(get_request_user),
):
    _require_manager_or_403(user)
    completed = run_expiry_sweep(session_factory)
    LOGGER.info("Manual rental sweep run by=%s completed=%s", user.user_id, len(completed))
    return {"completed": completed}

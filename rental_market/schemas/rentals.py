from datetime import date
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

# Largest value an INTEGER column holds on every supported backend.
MAX_DB_INT = 2**31 - 1


class RentalOrderLineDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    rentalItemID: int = Field(le=MAX_DB_INT)
    quantity: int = Field(le=MAX_DB_INT)


class CreateRentalOrderDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    items: List[RentalOrderLineDto] = []
    useStart: Optional[date] = None
    useEnd: Optional[date] = None


class UpdateOrderStatusRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    orderStatus: Optional[str] = None


class CreateRentalItemDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    itemName: str
    dailyPrice: int = Field(ge=0, le=MAX_DB_INT)
    quantity: int = Field(0, ge=0, le=MAX_DB_INT)
    description: Optional[str] = None
    rentalStatus: Optional[str] = "available"
    minRentalDays: int = Field(1, le=MAX_DB_INT)
    maxRentalDays: int = Field(30, le=MAX_DB_INT)


class UpdateRentalItemDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    itemName: Optional[str] = None
    dailyPrice: Optional[int] = Field(None, ge=0, le=MAX_DB_INT)
    description: Optional[str] = None
    rentalStatus: Optional[str] = None
    minRentalDays: Optional[int] = Field(None, le=MAX_DB_INT)
    maxRentalDays: Optional[int] = Field(None, le=MAX_DB_INT)


class StockAdjustmentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    delta: int = Field(ge=-MAX_DB_INT, le=MAX_DB_INT)

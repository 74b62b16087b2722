from datetime import date
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


RentalStatus = Literal["active", "returned", "overdue", "released"]
Custody = Literal["owner", "client"]


class CreateRentalDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    clientID: int
    equipmentID: int
    startDate: date
    endDate: date
    ratePerHour: Decimal = Field(ge=0)
    totalAmount: Decimal = Field(ge=0)
    quantity: int = 1
    status: RentalStatus = "active"
    overnightCustody: Custody = "owner"

    @model_validator(mode="after")
    def _check_dates(self):
        if self.endDate < self.startDate:
            raise ValueError("endDate must be on or after startDate.")
        return self


class UpdateRentalDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    clientID: Optional[int] = None
    startDate: Optional[date] = None
    endDate: Optional[date] = None
    ratePerHour: Optional[Decimal] = Field(default=None, ge=0)
    totalAmount: Optional[Decimal] = Field(default=None, ge=0)
    status: Optional[RentalStatus] = None
    overnightCustody: Optional[Custody] = None

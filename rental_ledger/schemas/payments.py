from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class AddPaymentDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    rentalID: int
    amount: Decimal = Field(gt=0)
    paymentDate: Optional[datetime] = None
    notes: Optional[str] = None


class UpdatePaymentDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    rentalID: Optional[int] = None
    amount: Optional[Decimal] = Field(default=None, gt=0)
    paymentType: Optional[Literal["full", "partial"]] = None
    paymentDate: Optional[datetime] = None
    notes: Optional[str] = None

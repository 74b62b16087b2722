from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


ReturnCondition = Literal["good", "damaged", "lost"]


class AddReturnDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    rentalID: int
    returnDate: Optional[datetime] = None
    condition: ReturnCondition
    damageDescription: Optional[str] = None
    additionalCharges: Decimal = Field(default=Decimal("0"), ge=0)
    damagedCount: Optional[int] = None
    notes: Optional[str] = None


class UpdateReturnDto(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    returnDate: Optional[datetime] = None
    condition: Optional[ReturnCondition] = None
    damageDescription: Optional[str] = None
    additionalCharges: Optional[Decimal] = Field(default=None, ge=0)
    notes: Optional[str] = None

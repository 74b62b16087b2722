from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class EquipmentUpsert(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: Optional[str] = None
    type: Optional[str] = None
    ratePerHour: Optional[Decimal] = Field(default=None, ge=0)
    description: Optional[str] = None
    quantityTotal: Optional[int] = Field(default=None, ge=0)
    quantityAvailable: Optional[int] = Field(default=None, ge=0)


class MaintenanceAdjustRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    quantity: int = 1
    action: Literal["send_to_maintenance", "mark_as_repaired"]

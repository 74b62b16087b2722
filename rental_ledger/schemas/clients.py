from typing import Optional

from pydantic import BaseModel, ConfigDict


class ClientUpsert(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: Optional[str] = None
    contactNumber: Optional[str] = None
    email: Optional[str] = None
    projectSite: Optional[str] = None
    address: Optional[str] = None

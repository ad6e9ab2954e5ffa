from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class ApiKeyCreate(BaseModel):
    name: Optional[str] = Field(None, description="Label to recognise the key by.")


class ApiKeyCreated(BaseModel):
    """Returned once, at creation: the only time the secret is shown."""

    model_config = ConfigDict(populate_by_name=True)

    key: str
    name: Optional[str] = None
    created_at: datetime = Field(..., alias="createdAt")


class ApiKeyResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    id: int
    name: Optional[str] = None
    created_at: datetime = Field(..., alias="createdAt")
    last_used: Optional[datetime] = Field(None, alias="lastUsed")
    enabled: bool = True

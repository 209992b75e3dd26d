from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import AliasChoices, BaseModel, Field


class MessageResponse(BaseModel):
    id: UUID
    org_id: UUID
    patient_id: UUID
    type: str
    content: str
    status: str
    sent_at: datetime | None = None
    error: str | None = None
    metadata: dict[str, Any] | None = Field(
        default=None, validation_alias=AliasChoices("meta", "metadata"),
    )
    created_at: datetime | None = None

    model_config = {"from_attributes": True}


class MessageListResponse(BaseModel):
    data: list[MessageResponse]
    total: int
    page: int
    limit: int
    total_pages: int

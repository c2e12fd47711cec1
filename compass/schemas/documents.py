from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class DocumentOut(BaseModel):
    """Document metadata. The bytes are only served by the download endpoint."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    company_id: UUID
    filename: str
    file_size: int
    mime_type: str
    created_at: datetime

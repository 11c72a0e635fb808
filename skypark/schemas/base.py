"""
Base Pydantic schemas
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class BaseSchema(BaseModel):
    """Reads ORM objects directly; enums serialize as their values"""
    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class IDSchema(BaseSchema):
    id: UUID


class TimestampSchema(BaseSchema):
    created_at: datetime
    updated_at: Optional[datetime] = None

from datetime import datetime
from pydantic import BaseModel, ConfigDict, field_serializer
from app.core.clock import ensure_utc

class BaseSchema(BaseModel):
    """Base schema with common configuration."""
    model_config = ConfigDict(from_attributes=True)

class TimestampSchema(BaseSchema):
    """Schema with timestamp fields."""
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @field_serializer("created_at", "updated_at")
    def serialize_timestamps(self, dt: datetime | None) -> str | None:
        dt = ensure_utc(dt)
        return dt.isoformat() if dt else None

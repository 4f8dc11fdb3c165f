from typing import Any, Dict
from .base import TimestampSchema

class ActivityResponse(TimestampSchema):
    id: int
    event_id: int
    actor_id: int | None = None
    action: str
    details: Dict[str, Any]

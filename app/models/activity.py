from typing import Dict, Any
from sqlalchemy import ForeignKey, JSON, String, Index
from sqlalchemy.orm import Mapped, mapped_column
from .base import Base

class EventActivity(Base):
    """Audit trail of access-relevant changes to an event"""

    __tablename__ = "event_activity"

    # Primary key
    id: Mapped[int] = mapped_column(primary_key=True, index=True)

    # No FK on event_id: the trail outlives a deleted event
    event_id: Mapped[int] = mapped_column(nullable=False)
    actor_id: Mapped[int | None] = mapped_column(ForeignKey("user.id", ondelete="SET NULL"))
    action: Mapped[str] = mapped_column(String(64), nullable=False)
    details: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    __table_args__ = (
        Index("ix_event_activity_event_action", "event_id", "action"),
    )

    def __repr__(self):
        return f"<EventActivity(event_id={self.event_id}, action={self.action})>"

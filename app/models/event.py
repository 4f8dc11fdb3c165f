from datetime import datetime
from typing import Any, Dict
from sqlalchemy import String, DateTime, Boolean, JSON, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column
from .base import Base, enum_type
from .enums import Visibility, AnonymousTransitionPolicy

def default_media_types() -> Dict[str, bool]:
    return {"images": True, "videos": True}

class Event(Base):
    """An event (wedding, party...) that participants share media into"""

    __tablename__ = "events"

    # Primary key
    id: Mapped[int] = mapped_column(primary_key=True, index=True)

    # Required fields
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    owner_id: Mapped[int] = mapped_column(ForeignKey("user.id", ondelete="CASCADE"), nullable=False)
    visibility: Mapped[Visibility] = mapped_column(
        enum_type(Visibility),
        default=Visibility.PRIVATE,
        nullable=False
    )

    # Optional fields
    description: Mapped[str | None] = mapped_column(String(1000))

    # Event-level permission defaults applied to guest roles
    can_view: Mapped[bool] = mapped_column(Boolean, default=True)
    can_upload: Mapped[bool] = mapped_column(Boolean, default=False)
    can_download: Mapped[bool] = mapped_column(Boolean, default=False)
    require_approval: Mapped[bool] = mapped_column(Boolean, default=True)
    allowed_media_types: Mapped[Dict[str, bool]] = mapped_column(JSON, default=default_media_types)

    # Primary share link
    share_token: Mapped[str | None] = mapped_column(String(64), unique=True, index=True)
    share_is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    share_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    share_password_hash: Mapped[str | None] = mapped_column(String(255))

    # Anonymous session handling on visibility tightening
    anonymous_transition_policy: Mapped[AnonymousTransitionPolicy] = mapped_column(
        enum_type(AnonymousTransitionPolicy),
        default=AnonymousTransitionPolicy.GRACE_PERIOD,
        nullable=False
    )
    grace_period_hours: Mapped[int | None] = mapped_column()

    # Visibility audit
    previous_visibility: Mapped[Visibility | None] = mapped_column(enum_type(Visibility))
    visibility_changed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # Bumped on every compare-and-set write
    lock_version: Mapped[int] = mapped_column(default=1, nullable=False)

    __table_args__ = (
        Index("ix_event_owner", "owner_id"),
        Index("ix_event_visibility", "visibility"),
    )

    def __repr__(self):
        return f"<Event(id={self.id}, title={self.title}, visibility={self.visibility})>"

    def permission_defaults(self) -> Dict[str, Any]:
        """Event-level defaults as exposed to clients."""
        return {
            "can_view": self.can_view,
            "can_upload": self.can_upload,
            "can_download": self.can_download,
            "require_approval": self.require_approval,
            "allowed_media_types": dict(self.allowed_media_types or default_media_types()),
        }

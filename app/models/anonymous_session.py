from datetime import datetime
from sqlalchemy import String, ForeignKey, DateTime, Boolean, UniqueConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column
from .base import Base, enum_type
from .enums import AnonymousSessionStatus

class AnonymousSession(Base):
    """
    Device-bound guest identity on an open-link event.

    ``grace_period_expires`` stays empty while the event allows anonymous
    access and is set once when the event tightens its visibility.
    """

    __tablename__ = "anonymous_sessions"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    session_id: Mapped[str] = mapped_column(String(128), nullable=False)
    event_id: Mapped[int] = mapped_column(ForeignKey("events.id", ondelete="CASCADE"), nullable=False)

    fingerprint_hash: Mapped[str] = mapped_column(String(64), default="")
    user_agent: Mapped[str] = mapped_column(String(500), default="")
    ip_address: Mapped[str] = mapped_column(String(64), default="")
    guest_name: Mapped[str | None] = mapped_column(String(100))

    status: Mapped[AnonymousSessionStatus] = mapped_column(
        enum_type(AnonymousSessionStatus),
        default=AnonymousSessionStatus.ACTIVE,
        nullable=False
    )
    claimed_by: Mapped[int | None] = mapped_column(ForeignKey("user.id", ondelete="SET NULL"))
    claimed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    grace_period_expires: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    requires_login: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    last_activity_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        UniqueConstraint("event_id", "session_id", name="uq_anonymous_session_event"),
        Index("ix_anonymous_session_fingerprint", "event_id", "fingerprint_hash"),
    )

    def __repr__(self):
        return f"<AnonymousSession(session_id={self.session_id}, event_id={self.event_id})>"

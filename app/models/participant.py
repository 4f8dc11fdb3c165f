from datetime import datetime
from typing import Dict
from sqlalchemy import ForeignKey, JSON, DateTime, UniqueConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column
from .base import Base, enum_type
from .enums import ParticipantRole, ParticipantStatus

class EventParticipant(Base):
    """
    The single record of a user's relationship with an event.

    Co-hosts are participants with role ``co_host``; their invitation goes
    ``pending -> active`` on approval. Records are soft-removed (status
    ``removed``/``left``) so history is preserved.
    """

    __tablename__ = "event_participants"

    # Primary key
    id: Mapped[int] = mapped_column(primary_key=True, index=True)

    # Required fields
    event_id: Mapped[int] = mapped_column(ForeignKey("events.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("user.id", ondelete="CASCADE"), nullable=False)
    role: Mapped[ParticipantRole] = mapped_column(enum_type(ParticipantRole), nullable=False)
    status: Mapped[ParticipantStatus] = mapped_column(
        enum_type(ParticipantStatus),
        default=ParticipantStatus.PENDING,
        nullable=False
    )

    # Overrides may only narrow the role defaults
    permissions: Mapped[Dict[str, bool]] = mapped_column(JSON, default=dict, nullable=False)

    # Optional fields
    invited_by: Mapped[int | None] = mapped_column(ForeignKey("user.id"))
    invited_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    joined_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    status_changed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    status_changed_by: Mapped[int | None] = mapped_column(ForeignKey("user.id"))
    share_token_id: Mapped[int | None] = mapped_column(ForeignKey("share_tokens.id", ondelete="SET NULL"))

    __table_args__ = (
        UniqueConstraint("event_id", "user_id", name="uq_event_participant_user"),
        Index("ix_participant_event_role", "event_id", "role"),
        Index("ix_participant_event_status", "event_id", "status"),
    )

    @property
    def is_active(self) -> bool:
        return self.status == ParticipantStatus.ACTIVE

    def __repr__(self):
        return f"<EventParticipant(event_id={self.event_id}, user_id={self.user_id}, role={self.role}, status={self.status})>"

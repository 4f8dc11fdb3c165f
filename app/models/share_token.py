from datetime import datetime
from typing import Dict, List
from sqlalchemy import String, ForeignKey, JSON, DateTime, Boolean, Index
from sqlalchemy.orm import Mapped, mapped_column
from .base import Base, enum_type
from .enums import ShareTokenType

class ShareToken(Base):
    """Capability-scoped link granting access to one event"""

    __tablename__ = "share_tokens"

    # Primary key
    id: Mapped[int] = mapped_column(primary_key=True, index=True)

    # Required fields
    token: Mapped[str] = mapped_column(String(64), unique=True, index=True, nullable=False)
    event_id: Mapped[int] = mapped_column(ForeignKey("events.id", ondelete="CASCADE"), nullable=False)
    token_type: Mapped[ShareTokenType] = mapped_column(
        enum_type(ShareTokenType),
        default=ShareTokenType.INVITE,
        nullable=False
    )
    created_by: Mapped[int] = mapped_column(ForeignKey("user.id"), nullable=False)

    # Permissions granted through the link
    perm_view: Mapped[bool] = mapped_column(Boolean, default=True)
    perm_upload: Mapped[bool] = mapped_column(Boolean, default=False)
    perm_download: Mapped[bool] = mapped_column(Boolean, default=False)
    perm_share: Mapped[bool] = mapped_column(Boolean, default=False)
    perm_comment: Mapped[bool] = mapped_column(Boolean, default=True)

    # Restrictions
    max_uses: Mapped[int | None] = mapped_column()
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    allowed_emails: Mapped[List[str]] = mapped_column(JSON, default=list, nullable=False)
    requires_approval: Mapped[bool] = mapped_column(Boolean, default=False)
    password_hash: Mapped[str | None] = mapped_column(String(255))

    # Co-host override bag handed to whoever joins through a co-host invite link
    grant_permissions: Mapped[Dict[str, bool]] = mapped_column(JSON, default=dict, nullable=False)

    # Usage
    usage_count: Mapped[int] = mapped_column(default=0, nullable=False)
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # Revocation is permanent
    revoked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    revoked_by: Mapped[int | None] = mapped_column(ForeignKey("user.id"))

    __table_args__ = (
        Index("ix_share_token_event_revoked", "event_id", "revoked"),
    )

    def __repr__(self):
        return f"<ShareToken(id={self.id}, event_id={self.event_id}, type={self.token_type}, revoked={self.revoked})>"

class ShareTokenUse(Base):
    """One consuming resolution of a share token (the ``used_by`` list)"""

    __tablename__ = "share_token_uses"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    token_id: Mapped[int] = mapped_column(ForeignKey("share_tokens.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id: Mapped[int | None] = mapped_column(ForeignKey("user.id", ondelete="SET NULL"))
    anonymous_session_id: Mapped[str | None] = mapped_column(String(128))
    used_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

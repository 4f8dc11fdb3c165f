from datetime import datetime
from typing import List
from pydantic import BaseModel, EmailStr, Field, field_validator

from app.models.enums import AnonymousSessionStatus, ShareTokenType, Visibility
from app.models.share_token import ShareToken
from .base import BaseSchema, TimestampSchema


class ShareTokenPermissions(BaseSchema):
    view: bool = True
    upload: bool = False
    download: bool = False
    share: bool = False
    comment: bool = True


class ShareTokenCreate(BaseModel):
    token_type: ShareTokenType = ShareTokenType.INVITE
    permissions: ShareTokenPermissions = Field(default_factory=ShareTokenPermissions)
    max_uses: int | None = Field(None, ge=1)
    expires_at: datetime | None = None
    allowed_emails: List[EmailStr] = Field(default_factory=list)
    requires_approval: bool = False
    password: str | None = Field(None, min_length=4, max_length=128)

    @field_validator("token_type")
    @classmethod
    def not_a_co_host_link(cls, value: ShareTokenType) -> ShareTokenType:
        if value == ShareTokenType.CO_HOST_INVITE:
            raise ValueError("Co-host invite links are created under the event's co-hosts")
        return value


class ShareTokenResponse(TimestampSchema):
    id: int
    token: str
    event_id: int
    token_type: ShareTokenType
    permissions: ShareTokenPermissions
    max_uses: int | None = None
    expires_at: datetime | None = None
    allowed_emails: List[str] = Field(default_factory=list)
    requires_approval: bool = False
    password_protected: bool = False
    usage_count: int = 0
    last_used_at: datetime | None = None
    revoked: bool = False
    revoked_at: datetime | None = None
    revoked_by: int | None = None
    created_by: int

    @classmethod
    def from_token(cls, token: ShareToken) -> "ShareTokenResponse":
        return cls(
            id=token.id,
            token=token.token,
            event_id=token.event_id,
            token_type=token.token_type,
            permissions=ShareTokenPermissions(
                view=token.perm_view,
                upload=token.perm_upload,
                download=token.perm_download,
                share=token.perm_share,
                comment=token.perm_comment,
            ),
            max_uses=token.max_uses,
            expires_at=token.expires_at,
            allowed_emails=list(token.allowed_emails or []),
            requires_approval=token.requires_approval,
            password_protected=token.password_hash is not None,
            usage_count=token.usage_count,
            last_used_at=token.last_used_at,
            revoked=token.revoked,
            revoked_at=token.revoked_at,
            revoked_by=token.revoked_by,
            created_by=token.created_by,
            created_at=token.created_at,
            updated_at=token.updated_at,
        )


class ShareTokenUseResponse(BaseSchema):
    id: int
    token_id: int
    user_id: int | None = None
    anonymous_session_id: str | None = None
    used_at: datetime


class ShareTokenUsage(BaseModel):
    token_id: int
    usage_count: int
    max_uses: int | None = None
    uses: List[ShareTokenUseResponse]


class SharePreview(BaseModel):
    """Landing-page view of a link; does not count as a use"""
    event_id: int
    title: str
    visibility: Visibility
    token_type: ShareTokenType
    permissions: ShareTokenPermissions


class ShareJoinRequest(BaseModel):
    password: str | None = None
    guest_name: str | None = Field(None, max_length=100)


class GuestSessionCreate(BaseModel):
    guest_name: str | None = Field(None, max_length=100)


class GuestSessionResponse(BaseSchema):
    session_id: str
    event_id: int
    guest_name: str | None = None
    status: AnonymousSessionStatus
    grace_period_expires: datetime | None = None
    requires_login: bool = False
    claimed_by: int | None = None
    claimed_at: datetime | None = None

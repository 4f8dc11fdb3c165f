from datetime import datetime
from typing import Annotated, Dict, List
from pydantic import AfterValidator, BaseModel, EmailStr, Field

from app.access.capabilities import OVERRIDE_KEYS
from app.models.enums import ParticipantRole, ParticipantStatus
from app.models.share_token import ShareToken
from .base import BaseSchema, TimestampSchema
from .event import AccessResponse
from .share_token import GuestSessionResponse


def _validate_overrides(value: Dict[str, bool] | None) -> Dict[str, bool] | None:
    if value is None:
        return value
    unknown = sorted(set(value) - set(OVERRIDE_KEYS))
    if unknown:
        raise ValueError(f"Unknown permission overrides: {', '.join(unknown)}")
    return value


def _validate_role(value: ParticipantRole | None) -> ParticipantRole | None:
    # Ownership only moves through an ownership transfer
    if value == ParticipantRole.OWNER:
        raise ValueError("Cannot assign the owner role")
    return value


OverrideBag = Annotated[Dict[str, bool], AfterValidator(_validate_overrides)]
AssignableRole = Annotated[ParticipantRole, AfterValidator(_validate_role)]


class ParticipantInvite(BaseModel):
    user_id: int = Field(..., gt=0)
    role: AssignableRole = ParticipantRole.AUTHENTICATED_GUEST
    permissions: OverrideBag = Field(default_factory=dict)


class CoHostInvite(BaseModel):
    user_id: int = Field(..., gt=0)
    permissions: OverrideBag = Field(default_factory=dict)


class ParticipantUpdate(BaseModel):
    role: AssignableRole | None = None
    permissions: OverrideBag | None = None


class JoinRequest(BaseModel):
    share_token: str | None = Field(None, min_length=8, max_length=64)
    password: str | None = None
    guest_name: str | None = Field(None, max_length=100)


class ParticipantResponse(TimestampSchema):
    id: int
    event_id: int
    user_id: int
    role: ParticipantRole
    status: ParticipantStatus
    permissions: Dict[str, bool] = Field(default_factory=dict)
    invited_by: int | None = None
    invited_at: datetime | None = None
    joined_at: datetime | None = None
    status_changed_at: datetime | None = None
    share_token_id: int | None = None


class ParticipantList(BaseSchema):
    items: List[ParticipantResponse]
    total: int


class CoHostList(BaseSchema):
    """The event's co-host view, grouped by invitation status"""
    pending: List[ParticipantResponse] = Field(default_factory=list)
    active: List[ParticipantResponse] = Field(default_factory=list)
    rejected: List[ParticipantResponse] = Field(default_factory=list)
    removed: List[ParticipantResponse] = Field(default_factory=list)


class JoinResponse(BaseModel):
    """Outcome of joining an event: the decision plus what was created"""
    access: AccessResponse
    participant: ParticipantResponse | None = None
    guest_session: GuestSessionResponse | None = None


# Co-hosts joining through a link cannot manage guests or settings unless the link says so
CO_HOST_LINK_DEFAULTS: Dict[str, bool] = {"manage_guests": False, "manage_settings": False}


class CoHostInviteLinkCreate(BaseModel):
    expires_in_hours: int = Field(24, ge=1, le=24 * 30)
    max_uses: int = Field(10, ge=1, le=100)
    allowed_emails: List[EmailStr] = Field(default_factory=list)
    permissions: OverrideBag = Field(default_factory=lambda: dict(CO_HOST_LINK_DEFAULTS))


class CoHostInviteLinkResponse(TimestampSchema):
    """A co-host invite link; `requires_approval` links produce pending co-hosts"""
    id: int
    token: str
    event_id: int
    permissions: Dict[str, bool] = Field(default_factory=dict)
    max_uses: int | None = None
    usage_count: int = 0
    expires_at: datetime | None = None
    allowed_emails: List[str] = Field(default_factory=list)
    requires_approval: bool = False
    revoked: bool = False
    revoked_at: datetime | None = None
    created_by: int

    @classmethod
    def from_token(cls, token: ShareToken) -> "CoHostInviteLinkResponse":
        return cls(
            id=token.id,
            token=token.token,
            event_id=token.event_id,
            permissions=dict(token.grant_permissions or {}),
            max_uses=token.max_uses,
            usage_count=token.usage_count,
            expires_at=token.expires_at,
            allowed_emails=list(token.allowed_emails or []),
            requires_approval=token.requires_approval,
            revoked=token.revoked,
            revoked_at=token.revoked_at,
            created_by=token.created_by,
            created_at=token.created_at,
            updated_at=token.updated_at,
        )

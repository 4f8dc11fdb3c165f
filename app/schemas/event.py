from datetime import datetime
from typing import Annotated, Dict, List
from pydantic import BaseModel, BeforeValidator, Field, field_serializer

from app.core.clock import ensure_utc
from app.models.enums import AnonymousTransitionPolicy, ParticipantRole, Visibility
from app.models.event import Event
from .base import BaseSchema, TimestampSchema

# Accepts the older "unlisted"/"restricted" names and normalizes them
VisibilityName = Annotated[Visibility, BeforeValidator(Visibility.parse)]


class MediaTypes(BaseSchema):
    images: bool = True
    videos: bool = True


class EventPermissionDefaults(BaseSchema):
    """Event-level defaults applied to guest roles"""
    can_view: bool = True
    can_upload: bool = False
    can_download: bool = False
    require_approval: bool = True
    allowed_media_types: MediaTypes = Field(default_factory=MediaTypes)


class EventPermissionDefaultsUpdate(BaseSchema):
    can_view: bool | None = None
    can_upload: bool | None = None
    can_download: bool | None = None
    require_approval: bool | None = None
    allowed_media_types: MediaTypes | None = None


# --- Core Event Schemas ---
class EventBase(BaseSchema):
    title: str = Field(..., min_length=1, max_length=200)
    description: str | None = Field(None, max_length=1000)


class EventCreate(EventBase):
    visibility: VisibilityName = Visibility.PRIVATE
    permissions: EventPermissionDefaults = Field(default_factory=EventPermissionDefaults)
    anonymous_transition_policy: AnonymousTransitionPolicy = AnonymousTransitionPolicy.GRACE_PERIOD
    grace_period_hours: int | None = Field(None, ge=1, le=720)
    share_password: str | None = Field(None, min_length=4, max_length=128)
    share_expires_at: datetime | None = None


class EventUpdate(BaseSchema):
    title: str | None = Field(None, min_length=1, max_length=200)
    description: str | None = Field(None, max_length=1000)


class VisibilityUpdate(BaseModel):
    """Request body for a visibility transition"""
    visibility: VisibilityName
    policy: AnonymousTransitionPolicy | None = None
    grace_period_hours: int | None = Field(None, ge=1, le=720)


class AnonymousPolicyUpdate(BaseModel):
    policy: AnonymousTransitionPolicy
    grace_period_hours: int | None = Field(None, ge=1, le=720)


class ShareLinkUpdate(BaseModel):
    """Settings of the event's primary link"""
    is_active: bool | None = None
    password: str | None = Field(None, min_length=4, max_length=128)
    remove_password: bool = False
    expires_at: datetime | None = None
    regenerate: bool = False


class OwnershipTransfer(BaseModel):
    new_owner_id: int = Field(..., gt=0)


class EventResponse(EventBase, TimestampSchema):
    id: int
    owner_id: int
    visibility: Visibility
    permissions: EventPermissionDefaults
    anonymous_transition_policy: AnonymousTransitionPolicy
    grace_period_hours: int | None = None
    previous_visibility: Visibility | None = None
    visibility_changed_at: datetime | None = None
    share_token: str | None = None
    share_is_active: bool | None = None

    @field_serializer("visibility_changed_at")
    def serialize_changed_at(self, dt: datetime | None) -> str | None:
        dt = ensure_utc(dt)
        return dt.isoformat() if dt else None

    @classmethod
    def from_event(cls, event: Event, include_share_link: bool = False) -> "EventResponse":
        """Build the response; the primary link is only shown to inviters."""
        return cls(
            id=event.id,
            title=event.title,
            description=event.description,
            owner_id=event.owner_id,
            visibility=event.visibility,
            permissions=EventPermissionDefaults(**event.permission_defaults()),
            anonymous_transition_policy=event.anonymous_transition_policy,
            grace_period_hours=event.grace_period_hours,
            previous_visibility=event.previous_visibility,
            visibility_changed_at=event.visibility_changed_at,
            share_token=event.share_token if include_share_link else None,
            share_is_active=event.share_is_active if include_share_link else None,
            created_at=event.created_at,
            updated_at=event.updated_at,
        )


class EventListResponse(BaseModel):
    items: List[EventResponse]
    total: int


class TransitionResponse(BaseModel):
    event_id: int
    from_visibility: Visibility
    to_visibility: Visibility
    anonymous_users_affected: int
    actions_taken: List[str]


class AccessResponse(BaseModel):
    """What the caller may do on one event"""
    event_id: int
    role: ParticipantRole
    visibility: Visibility
    capabilities: Dict[str, bool]
    via_token: bool = False
    upload_requires_approval: bool = True
    allowed_media_types: Dict[str, bool] = Field(default_factory=dict)
    prompt_login: bool = False

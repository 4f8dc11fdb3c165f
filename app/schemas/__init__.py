from .user import (
    UserBase,
    UserCreate,
    UserResponse,
)
from .token import Token
from .event import (
    EventCreate,
    EventUpdate,
    EventResponse,
    EventListResponse,
    EventPermissionDefaults,
    EventPermissionDefaultsUpdate,
    VisibilityUpdate,
    AnonymousPolicyUpdate,
    OwnershipTransfer,
    ShareLinkUpdate,
    TransitionResponse,
    AccessResponse,
)
from .participant import (
    ParticipantInvite,
    CoHostInvite,
    ParticipantUpdate,
    JoinRequest,
    ParticipantResponse,
    ParticipantList,
    CoHostList,
    JoinResponse,
    CoHostInviteLinkCreate,
    CoHostInviteLinkResponse,
)
from .activity import ActivityResponse
from .share_token import (
    ShareTokenPermissions,
    ShareTokenCreate,
    ShareTokenResponse,
    ShareTokenUseResponse,
    ShareTokenUsage,
    SharePreview,
    ShareJoinRequest,
    GuestSessionCreate,
    GuestSessionResponse,
)

__all__ = [
    "ActivityResponse",
    "UserBase",
    "UserCreate",
    "UserResponse",
    "Token",
    "EventCreate",
    "EventUpdate",
    "EventResponse",
    "EventListResponse",
    "EventPermissionDefaults",
    "EventPermissionDefaultsUpdate",
    "VisibilityUpdate",
    "AnonymousPolicyUpdate",
    "OwnershipTransfer",
    "ShareLinkUpdate",
    "TransitionResponse",
    "AccessResponse",
    "ParticipantInvite",
    "CoHostInvite",
    "ParticipantUpdate",
    "JoinRequest",
    "ParticipantResponse",
    "ParticipantList",
    "CoHostList",
    "JoinResponse",
    "CoHostInviteLinkCreate",
    "CoHostInviteLinkResponse",
    "ShareTokenPermissions",
    "ShareTokenCreate",
    "ShareTokenResponse",
    "ShareTokenUseResponse",
    "ShareTokenUsage",
    "SharePreview",
    "ShareJoinRequest",
    "GuestSessionCreate",
    "GuestSessionResponse",
]

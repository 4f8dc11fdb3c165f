"""
Value types passed between the access-control components.

Everything here is immutable: a decision is computed once per request and
threaded explicitly into the operation that needs it.
"""
from typing import Dict, List, Literal, Union
from pydantic import BaseModel, ConfigDict, Field

from app.models.enums import ParticipantRole, ShareTokenType, Visibility


class FrozenModel(BaseModel):
    model_config = ConfigDict(frozen=True)


# --- Principals ---
class AuthenticatedPrincipal(FrozenModel):
    kind: Literal["authenticated"] = "authenticated"
    user_id: int
    email: str | None = None


class AnonymousPrincipal(FrozenModel):
    kind: Literal["anonymous"] = "anonymous"
    session_id: str
    device_fingerprint: str


Principal = Union[AuthenticatedPrincipal, AnonymousPrincipal]


class DeviceInfo(FrozenModel):
    ip_address: str = ""
    user_agent: str = ""


# --- Capabilities ---
CAPABILITY_NAMES = (
    "can_view",
    "can_upload",
    "can_download",
    "can_edit",
    "can_delete",
    "can_manage_participants",
    "can_invite_others",
    "can_moderate_content",
    "can_approve_content",
    "can_export_data",
    "can_manage_settings",
    "can_view_analytics",
    "can_transfer_ownership",
)


class CapabilitySet(FrozenModel):
    """Closed set of operations a principal may perform on one event."""

    can_view: bool = False
    can_upload: bool = False
    can_download: bool = False
    can_edit: bool = False
    can_delete: bool = False
    can_manage_participants: bool = False
    can_invite_others: bool = False
    can_moderate_content: bool = False
    can_approve_content: bool = False
    can_export_data: bool = False
    can_manage_settings: bool = False
    can_view_analytics: bool = False
    can_transfer_ownership: bool = False

    model_config = ConfigDict(frozen=True, extra="forbid")

    @classmethod
    def none(cls) -> "CapabilitySet":
        return cls()

    @classmethod
    def all(cls) -> "CapabilitySet":
        return cls(**{name: True for name in CAPABILITY_NAMES})

    def allows(self, capability: str) -> bool:
        if capability not in CAPABILITY_NAMES:
            raise ValueError(f"Unknown capability: {capability}")
        return getattr(self, capability)

    def narrow(self, mask: Dict[str, bool]) -> "CapabilitySet":
        """Pointwise AND with a mask; names missing from the mask are kept."""
        return CapabilitySet(**{
            name: getattr(self, name) and mask.get(name, True)
            for name in CAPABILITY_NAMES
        })

    def granted(self) -> List[str]:
        return [name for name in CAPABILITY_NAMES if getattr(self, name)]

    def __le__(self, other: "CapabilitySet") -> bool:
        return all(
            not getattr(self, name) or getattr(other, name)
            for name in CAPABILITY_NAMES
        )


# --- Share tokens ---
class TokenScope(FrozenModel):
    """Permissions carried by the link a request arrived through."""

    token_id: int | None = None  # None for an event's primary link
    token_type: ShareTokenType
    view: bool = True
    upload: bool = False
    download: bool = False
    share: bool = False
    comment: bool = True
    allowed_emails: List[str] = Field(default_factory=list)
    requires_approval: bool = False


TokenFailure = Literal[
    "not_found",
    "revoked",
    "expired",
    "capacity_exceeded",
    "password_required",
    "password_mismatch",
    "email_not_allowed",
]


class TokenValid(FrozenModel):
    valid: Literal[True] = True
    event_id: int
    scope: TokenScope


class TokenInvalid(FrozenModel):
    valid: Literal[False] = False
    reason: TokenFailure


TokenValidation = Union[TokenValid, TokenInvalid]


# --- Roles and decisions ---
class ResolvedRole(FrozenModel):
    role: ParticipantRole
    overrides: Dict[str, bool] = Field(default_factory=dict)
    in_grace_period: bool = False
    prompt_login: bool = False


class AccessGranted(FrozenModel):
    allowed: Literal[True] = True
    event_id: int
    role: ParticipantRole
    visibility: Visibility
    capabilities: CapabilitySet
    via_token: bool = False
    token_id: int | None = None
    upload_requires_approval: bool = True
    allowed_media_types: Dict[str, bool] = Field(default_factory=dict)
    prompt_login: bool = False


class AccessDenied(FrozenModel):
    allowed: Literal[False] = False
    reason: str
    event_id: int | None = None

    @property
    def kind(self) -> str:
        """Reason without its sub-reason, e.g. ``token_invalid``."""
        return self.reason.split(":", 1)[0]


AccessDecision = Union[AccessGranted, AccessDenied]


class TransitionResult(FrozenModel):
    event_id: int
    from_visibility: Visibility
    to_visibility: Visibility
    anonymous_users_affected: int = 0
    actions_taken: List[str] = Field(default_factory=list)

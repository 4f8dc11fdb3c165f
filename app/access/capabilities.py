"""
Role to capability mapping.

``derive_capabilities`` is a pure function of its arguments: the role table
gives the defaults and every overlay (participant overrides, event defaults,
share-token scope) can only switch capabilities off.
"""
from typing import Dict, Mapping

from app.access.types import CAPABILITY_NAMES, CapabilitySet, TokenScope
from app.models.enums import ParticipantRole
from app.models.event import Event

GUEST_ROLES = frozenset({ParticipantRole.GUEST, ParticipantRole.AUTHENTICATED_GUEST})

ROLE_DEFAULTS: Dict[ParticipantRole, CapabilitySet] = {
    ParticipantRole.OWNER: CapabilitySet.all(),
    ParticipantRole.CO_HOST: CapabilitySet(
        can_view=True,
        can_upload=True,
        can_download=True,
        can_edit=True,
        can_manage_participants=True,
        can_invite_others=True,
        can_moderate_content=True,
        can_approve_content=True,
        can_export_data=True,
        can_manage_settings=True,
        can_view_analytics=True,
    ),
    ParticipantRole.MODERATOR: CapabilitySet(
        can_view=True,
        can_upload=True,
        can_download=True,
        can_moderate_content=True,
        can_approve_content=True,
    ),
    ParticipantRole.AUTHENTICATED_GUEST: CapabilitySet(can_view=True, can_upload=True, can_download=True),
    ParticipantRole.GUEST: CapabilitySet(can_view=True, can_upload=True, can_download=True),
    ParticipantRole.VIEWER: CapabilitySet(can_view=True),
}

# Participant permission override keys and the capabilities each one gates.
OVERRIDE_KEYS: Dict[str, tuple] = {
    "edit_event": ("can_edit",),
    "manage_content": ("can_moderate_content",),
    "approve_content": ("can_approve_content",),
    "manage_guests": ("can_manage_participants", "can_invite_others"),
    "manage_settings": ("can_manage_settings",),
    "view": ("can_view",),
    "upload": ("can_upload",),
    "download": ("can_download",),
    "export": ("can_export_data",),
    "analytics": ("can_view_analytics",),
}

# The owner's position cannot be reduced through an override bag.
UNRESTRICTABLE_ROLES = frozenset({ParticipantRole.OWNER})


def override_mask(overrides: Mapping[str, bool] | None) -> Dict[str, bool]:
    mask: Dict[str, bool] = {}
    for key, value in (overrides or {}).items():
        for capability in OVERRIDE_KEYS.get(key, ()):
            mask[capability] = mask.get(capability, True) and bool(value)
    return mask


def event_mask(event: Event) -> Dict[str, bool]:
    return {
        "can_view": bool(event.can_view),
        "can_upload": bool(event.can_upload),
        "can_download": bool(event.can_download),
    }


def token_mask(scope: TokenScope) -> Dict[str, bool]:
    """
    What a link can carry. Capabilities without a link permission are not
    reachable through a link at all.
    """
    mask = {name: False for name in CAPABILITY_NAMES}
    mask.update({
        "can_view": scope.view,
        "can_upload": scope.upload,
        "can_download": scope.download,
        "can_export_data": scope.download,
        "can_invite_others": scope.share,
    })
    return mask


def derive_capabilities(
    role: ParticipantRole,
    event: Event,
    *,
    overrides: Mapping[str, bool] | None = None,
    token_scope: TokenScope | None = None,
) -> CapabilitySet:
    capabilities = ROLE_DEFAULTS[ParticipantRole(role)]

    if role not in UNRESTRICTABLE_ROLES:
        capabilities = capabilities.narrow(override_mask(overrides))

    if role in GUEST_ROLES:
        capabilities = capabilities.narrow(event_mask(event))

    if token_scope is not None:
        capabilities = capabilities.narrow(token_mask(token_scope))

    return capabilities

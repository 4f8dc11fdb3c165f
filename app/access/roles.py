"""
Role resolution for one (event, principal) pair.

The caller loads the records (event, the principal's participant row, its
anonymous session, the token scope); nothing here touches the store.
Resolution order, first match wins:

1. the event creator is ``owner``
2. an active ``co_host`` participant record
3. any other active participant record
4. ``anyone_with_link`` gives ``guest`` / ``authenticated_guest``
5. ``invited_only`` gives ``authenticated_guest`` to explicitly invited users
6. nothing

``private`` events only ever resolve ``owner`` and ``co_host``.
"""
from datetime import datetime

from app.access.types import (
    AnonymousPrincipal,
    AuthenticatedPrincipal,
    Principal,
    ResolvedRole,
    TokenScope,
)
from app.core.clock import ensure_utc
from app.core.exceptions import InvariantViolation
from app.models.anonymous_session import AnonymousSession
from app.models.enums import (
    ParticipantRole,
    ParticipantStatus,
    ShareTokenType,
    Visibility,
)
from app.models.event import Event
from app.models.participant import EventParticipant

PRIVATE_ROLES = frozenset({ParticipantRole.OWNER, ParticipantRole.CO_HOST})


def is_explicitly_invited(
    principal: AuthenticatedPrincipal,
    participant: EventParticipant | None,
    token_scope: TokenScope | None,
) -> bool:
    """A pending invitation, or an invite link addressed to this user."""
    if participant is not None and participant.status == ParticipantStatus.PENDING:
        return True
    if token_scope is not None and token_scope.token_type == ShareTokenType.INVITE:
        if not token_scope.allowed_emails:
            return True
        email = (principal.email or "").lower()
        return email in {allowed.lower() for allowed in token_scope.allowed_emails}
    return False


def anonymous_session_expired(session: AnonymousSession | None, now: datetime) -> bool:
    expires = ensure_utc(session.grace_period_expires) if session is not None else None
    return expires is not None and expires <= now


def _relationship_role(event: Event, participant: EventParticipant) -> ResolvedRole | None:
    if participant.event_id != event.id or participant.status != ParticipantStatus.ACTIVE:
        return None

    role = ParticipantRole(participant.role)
    if role == ParticipantRole.OWNER:
        # The creator matched step 1 already; an owner row for anyone else is corrupt data.
        raise InvariantViolation(
            f"Participant {participant.user_id} holds an owner record on event {event.id} "
            f"owned by {event.owner_id}",
            event_id=event.id,
        )
    if Visibility(event.visibility) == Visibility.PRIVATE and role not in PRIVATE_ROLES:
        return None
    return ResolvedRole(role=role, overrides=dict(participant.permissions or {}))


def resolve_role(
    event: Event,
    principal: Principal,
    *,
    now: datetime,
    participant: EventParticipant | None = None,
    anonymous_session: AnonymousSession | None = None,
    token_scope: TokenScope | None = None,
) -> ResolvedRole | None:
    visibility = Visibility(event.visibility)

    if isinstance(principal, AuthenticatedPrincipal):
        if principal.user_id == event.owner_id:
            return ResolvedRole(role=ParticipantRole.OWNER)

        if participant is not None and participant.user_id == principal.user_id:
            resolved = _relationship_role(event, participant)
            if resolved is not None:
                return resolved

        if visibility == Visibility.ANYONE_WITH_LINK:
            return ResolvedRole(role=ParticipantRole.AUTHENTICATED_GUEST)

        if visibility == Visibility.INVITED_ONLY and is_explicitly_invited(principal, participant, token_scope):
            return ResolvedRole(role=ParticipantRole.AUTHENTICATED_GUEST)

        return None

    if isinstance(principal, AnonymousPrincipal):
        if visibility == Visibility.ANYONE_WITH_LINK:
            return ResolvedRole(role=ParticipantRole.GUEST)

        # Tightened event: only a session inside its grace window keeps access.
        if anonymous_session is None or anonymous_session.session_id != principal.session_id:
            return None
        expires = ensure_utc(anonymous_session.grace_period_expires)
        if expires is not None and expires > now:
            return ResolvedRole(
                role=ParticipantRole.GUEST,
                in_grace_period=True,
                prompt_login=bool(anonymous_session.requires_login),
            )
        return None

    return None

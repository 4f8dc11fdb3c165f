"""
Access decision façade.

``check_access`` is the one call every protected operation makes. It loads
the records for (event, principal), then runs token validation, role
resolution and capability derivation. Denials are returned, not raised;
callers branch on ``AccessDenied.reason``.
"""
import asyncio
from typing import Dict

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.access.capabilities import GUEST_ROLES, derive_capabilities
from app.access.roles import anonymous_session_expired, resolve_role
from app.access.share_tokens import validate_share_token
from app.access.types import (
    AccessDecision,
    AccessDenied,
    AccessGranted,
    AnonymousPrincipal,
    AuthenticatedPrincipal,
    Principal,
    TokenInvalid,
    TokenScope,
)
from app.core.clock import Clock
from app.core.config import settings
from app.core.exceptions import ForbiddenError, InvariantViolation
from app.core.logging import access_logger
from app.models.anonymous_session import AnonymousSession
from app.models.enums import ShareTokenType, Visibility
from app.models.event import Event
from app.models.participant import EventParticipant

DENIAL_MESSAGES: Dict[str, str] = {
    "event_not_found": "This event does not exist or is not accessible to you.",
    "no_role": "You do not have access to this event. Ask the host to invite you.",
    "anonymous_session_expired": "Your guest access to this event has ended. Sign in to continue.",
    "decision_timeout": "Access could not be verified right now. Please try again.",
    "capability_denied": "You do not have permission to do this on this event.",
    "token_invalid:not_found": "This link is not valid.",
    "token_invalid:revoked": "This link has been disabled by the host.",
    "token_invalid:expired": "This link has expired.",
    "token_invalid:capacity_exceeded": "This link has reached its maximum number of uses.",
    "token_invalid:password_required": "This link is password protected. Enter the password to continue.",
    "token_invalid:password_mismatch": "The password for this link is incorrect.",
    "token_invalid:email_not_allowed": "This link was not issued to your account.",
}


def denial_message(denial: AccessDenied) -> str:
    return DENIAL_MESSAGES.get(denial.reason) or DENIAL_MESSAGES.get(denial.kind, DENIAL_MESSAGES["no_role"])


def require_capability(access: AccessGranted, capability: str, event_id: int | None = None) -> None:
    """Guard for operations that already hold a decision."""
    if event_id is not None and access.event_id != event_id:
        raise ForbiddenError(DENIAL_MESSAGES["capability_denied"])
    if not access.capabilities.allows(capability):
        raise ForbiddenError(DENIAL_MESSAGES["capability_denied"])


def email_admitted(principal: Principal, scope: TokenScope) -> bool:
    if not scope.allowed_emails:
        return True
    if not isinstance(principal, AuthenticatedPrincipal) or not principal.email:
        return False
    return principal.email.lower() in {email.lower() for email in scope.allowed_emails}


async def load_participant(db: AsyncSession, event_id: int, user_id: int) -> EventParticipant | None:
    result = await db.execute(
        select(EventParticipant).where(
            EventParticipant.event_id == event_id,
            EventParticipant.user_id == user_id,
        ).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def load_anonymous_session(db: AsyncSession, event_id: int, session_id: str) -> AnonymousSession | None:
    result = await db.execute(
        select(AnonymousSession).where(
            AnonymousSession.event_id == event_id,
            AnonymousSession.session_id == session_id,
        ).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _decide(
    db: AsyncSession,
    event_id: int | None,
    principal: Principal,
    required: str | None,
    token: str | None,
    password: str | None,
    clock: Clock
) -> AccessDecision:
    now = clock.now()

    scope: TokenScope | None = None
    if token is not None:
        validation = await validate_share_token(db, token, password, clock=clock)
        if isinstance(validation, TokenInvalid):
            return AccessDenied(reason=f"token_invalid:{validation.reason}", event_id=event_id)
        if event_id is not None and validation.event_id != event_id:
            return AccessDenied(reason="token_invalid:not_found", event_id=event_id)
        if validation.scope.token_type == ShareTokenType.CO_HOST_INVITE:
            # Only good for joining as a co-host, never for viewing
            return AccessDenied(reason="token_invalid:not_found", event_id=validation.event_id)
        if not email_admitted(principal, validation.scope):
            return AccessDenied(reason="token_invalid:email_not_allowed", event_id=validation.event_id)
        event_id = validation.event_id
        scope = validation.scope

    event = await db.get(Event, event_id, populate_existing=True) if event_id is not None else None
    if event is None:
        return AccessDenied(reason="event_not_found", event_id=event_id)

    participant = None
    anonymous_session = None
    if isinstance(principal, AuthenticatedPrincipal):
        participant = await load_participant(db, event.id, principal.user_id)
    elif isinstance(principal, AnonymousPrincipal):
        anonymous_session = await load_anonymous_session(db, event.id, principal.session_id)

    resolved = resolve_role(
        event,
        principal,
        now=now,
        participant=participant,
        anonymous_session=anonymous_session,
        token_scope=scope,
    )
    if resolved is None:
        if (
            isinstance(principal, AnonymousPrincipal)
            and Visibility(event.visibility) != Visibility.ANYONE_WITH_LINK
            and anonymous_session_expired(anonymous_session, now)
        ):
            return AccessDenied(reason="anonymous_session_expired", event_id=event.id)
        return AccessDenied(reason="no_role", event_id=event.id)

    capabilities = derive_capabilities(
        resolved.role,
        event,
        overrides=resolved.overrides,
        token_scope=scope,
    )
    if required is not None and not capabilities.allows(required):
        return AccessDenied(reason=f"capability_denied:{required}", event_id=event.id)

    requires_approval = False
    if resolved.role in GUEST_ROLES:
        requires_approval = bool(event.require_approval) or bool(scope and scope.requires_approval)

    return AccessGranted(
        event_id=event.id,
        role=resolved.role,
        visibility=event.visibility,
        capabilities=capabilities,
        via_token=scope is not None,
        token_id=scope.token_id if scope else None,
        upload_requires_approval=requires_approval,
        allowed_media_types=event.permission_defaults()["allowed_media_types"],
        prompt_login=resolved.prompt_login,
    )


def _principal_log_fields(principal: Principal) -> Dict[str, object]:
    if isinstance(principal, AuthenticatedPrincipal):
        return {"user_id": principal.user_id}
    return {"session_id": principal.session_id}


async def check_access(
    db: AsyncSession,
    event_id: int | None,
    principal: Principal,
    required: str | None = None,
    *,
    token: str | None = None,
    password: str | None = None,
    clock: Clock,
    timeout: float | None = None
) -> AccessDecision:
    """
    Decide what ``principal`` may do on an event.

    Pass ``token`` when the request arrived through a share link; the link's
    scope then narrows the result and ``event_id`` may be None. The decision
    fails closed with ``decision_timeout`` if the store does not answer in
    time.
    """
    timeout = settings.ACCESS_DECISION_TIMEOUT_SECONDS if timeout is None else timeout
    try:
        decision = await asyncio.wait_for(
            _decide(db, event_id, principal, required, token, password, clock),
            timeout=timeout,
        )
    except asyncio.TimeoutError:
        decision = AccessDenied(reason="decision_timeout", event_id=event_id)
    except InvariantViolation as exc:
        access_logger.critical(
            "Access invariant violated",
            extra={"event_id": exc.event_id, "error": str(exc.detail), **_principal_log_fields(principal)}
        )
        exc.reported = True
        raise

    if isinstance(decision, AccessDenied):
        access_logger.info(
            "Access denied",
            extra={"event_id": decision.event_id, "reason": decision.reason, **_principal_log_fields(principal)}
        )
    return decision


async def resolve_event_access(
    db: AsyncSession,
    event_id_or_token: int | str,
    principal: Principal,
    via_token: bool = False,
    *,
    required: str | None = None,
    password: str | None = None,
    clock: Clock,
    timeout: float | None = None
) -> AccessDecision:
    """Decision keyed either by event id or by a share token string."""
    if via_token:
        return await check_access(
            db, None, principal, required,
            token=str(event_id_or_token), password=password, clock=clock, timeout=timeout
        )
    try:
        event_id = int(event_id_or_token)
    except (TypeError, ValueError):
        return AccessDenied(reason="event_not_found")
    return await check_access(db, event_id, principal, required, clock=clock, timeout=timeout)

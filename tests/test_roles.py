import asyncio
from datetime import datetime, timedelta, UTC
import pytest

from app.access.decision import check_access
from app.access.principal import ANONYMOUS_PREFIX, resolve_principal
from app.access.roles import resolve_role
from app.access.types import AccessDenied, AnonymousPrincipal, AuthenticatedPrincipal, DeviceInfo, TokenScope
from app.core.clock import FixedClock
from app.core.exceptions import InvariantViolation
from app.core.security import create_access_token, create_refresh_token
from app.models.anonymous_session import AnonymousSession
from app.models.enums import (
    AnonymousSessionStatus,
    ParticipantRole,
    ParticipantStatus,
    ShareTokenType,
    Visibility,
)
from app.models.event import Event
from app.models.participant import EventParticipant

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=UTC)
OWNER = AuthenticatedPrincipal(user_id=1, email="owner@example.com")
MEMBER = AuthenticatedPrincipal(user_id=2, email="member@example.com")
ANON = AnonymousPrincipal(session_id="anon_device", device_fingerprint="f" * 64)

def make_event(visibility: Visibility) -> Event:
    return Event(id=10, owner_id=OWNER.user_id, title="Event", visibility=visibility)

def make_participant(role: ParticipantRole, status: ParticipantStatus = ParticipantStatus.ACTIVE, **extra) -> EventParticipant:
    return EventParticipant(
        event_id=10,
        user_id=MEMBER.user_id,
        role=role,
        status=status,
        permissions=extra.pop("permissions", {}),
        **extra
    )

def make_session(expires: datetime | None, requires_login: bool = False) -> AnonymousSession:
    return AnonymousSession(
        session_id=ANON.session_id,
        event_id=10,
        status=AnonymousSessionStatus.ACTIVE,
        grace_period_expires=expires,
        requires_login=requires_login,
    )

@pytest.mark.parametrize("visibility", list(Visibility))
def test_creator_is_owner_everywhere(visibility):
    resolved = resolve_role(make_event(visibility), OWNER, now=NOW)
    assert resolved.role == ParticipantRole.OWNER

def test_private_event_admits_active_co_host():
    resolved = resolve_role(
        make_event(Visibility.PRIVATE),
        MEMBER,
        now=NOW,
        participant=make_participant(ParticipantRole.CO_HOST, permissions={"manage_content": False}),
    )
    assert resolved.role == ParticipantRole.CO_HOST
    assert resolved.overrides == {"manage_content": False}

def test_private_event_ignores_other_participants():
    resolved = resolve_role(
        make_event(Visibility.PRIVATE),
        MEMBER,
        now=NOW,
        participant=make_participant(ParticipantRole.MODERATOR),
    )
    assert resolved is None

def test_pending_co_host_grants_nothing_on_private_event():
    resolved = resolve_role(
        make_event(Visibility.PRIVATE),
        MEMBER,
        now=NOW,
        participant=make_participant(ParticipantRole.CO_HOST, ParticipantStatus.PENDING),
    )
    assert resolved is None

def test_removed_participant_falls_back_to_visibility():
    resolved = resolve_role(
        make_event(Visibility.ANYONE_WITH_LINK),
        MEMBER,
        now=NOW,
        participant=make_participant(ParticipantRole.MODERATOR, ParticipantStatus.REMOVED),
    )
    assert resolved.role == ParticipantRole.AUTHENTICATED_GUEST

def test_invited_only_requires_an_invitation():
    event = make_event(Visibility.INVITED_ONLY)

    assert resolve_role(event, MEMBER, now=NOW) is None
    pending = make_participant(ParticipantRole.AUTHENTICATED_GUEST, ParticipantStatus.PENDING)
    assert resolve_role(event, MEMBER, now=NOW, participant=pending).role == ParticipantRole.AUTHENTICATED_GUEST

def test_invited_only_accepts_invite_link_for_listed_email():
    event = make_event(Visibility.INVITED_ONLY)
    listed = TokenScope(token_type=ShareTokenType.INVITE, allowed_emails=["Member@Example.com"])
    unlisted = TokenScope(token_type=ShareTokenType.INVITE, allowed_emails=["someone@example.com"])
    view_link = TokenScope(token_type=ShareTokenType.VIEW)

    assert resolve_role(event, MEMBER, now=NOW, token_scope=listed).role == ParticipantRole.AUTHENTICATED_GUEST
    assert resolve_role(event, MEMBER, now=NOW, token_scope=unlisted) is None
    assert resolve_role(event, MEMBER, now=NOW, token_scope=view_link) is None

def test_anonymous_guest_on_link_event():
    resolved = resolve_role(make_event(Visibility.ANYONE_WITH_LINK), ANON, now=NOW)
    assert resolved.role == ParticipantRole.GUEST
    assert resolved.in_grace_period is False

def test_anonymous_without_session_denied_on_tightened_event():
    assert resolve_role(make_event(Visibility.INVITED_ONLY), ANON, now=NOW) is None

def test_anonymous_keeps_guest_role_inside_grace_window():
    session = make_session(NOW + timedelta(hours=1), requires_login=True)

    resolved = resolve_role(make_event(Visibility.PRIVATE), ANON, now=NOW, anonymous_session=session)

    assert resolved.role == ParticipantRole.GUEST
    assert resolved.in_grace_period is True
    assert resolved.prompt_login is True

def test_anonymous_loses_access_when_grace_window_closes():
    session = make_session(NOW)
    assert resolve_role(make_event(Visibility.INVITED_ONLY), ANON, now=NOW, anonymous_session=session) is None

def test_owner_record_for_non_owner_is_an_invariant_violation():
    with pytest.raises(InvariantViolation):
        resolve_role(
            make_event(Visibility.ANYONE_WITH_LINK),
            MEMBER,
            now=NOW,
            participant=make_participant(ParticipantRole.OWNER),
        )

@pytest.mark.parametrize("name,expected", [
    ("unlisted", Visibility.ANYONE_WITH_LINK),
    ("restricted", Visibility.INVITED_ONLY),
    ("private", Visibility.PRIVATE),
    ("anyone_with_link", Visibility.ANYONE_WITH_LINK),
])
def test_legacy_visibility_names(name, expected):
    assert Visibility.parse(name) is expected

def test_visibility_ranks_are_ordered():
    assert Visibility.ANYONE_WITH_LINK.rank < Visibility.INVITED_ONLY.rank < Visibility.PRIVATE.rank

# --- Principals ---
def test_access_token_resolves_authenticated_principal():
    token = create_access_token({"sub": "7", "email": "seven@example.com"})

    principal = resolve_principal(f"Bearer {token}")

    assert principal == AuthenticatedPrincipal(user_id=7, email="seven@example.com")

@pytest.mark.parametrize("header", [
    None,
    "",
    "Bearer",
    "Bearer not-a-jwt",
    "Basic dXNlcjpwYXNz",
])
def test_unusable_credentials_degrade_to_anonymous(header):
    assert isinstance(resolve_principal(header), AnonymousPrincipal)

def test_refresh_token_is_not_an_access_credential():
    token = create_refresh_token({"sub": "7"})
    assert isinstance(resolve_principal(f"Bearer {token}"), AnonymousPrincipal)

def test_anonymous_identity_is_stable_per_device():
    device = DeviceInfo(ip_address="10.0.0.1", user_agent="Browser/1.0")

    first = resolve_principal(None, device=device)
    second = resolve_principal(None, device=device)
    other = resolve_principal(None, device=DeviceInfo(ip_address="10.0.0.2", user_agent="Browser/1.0"))

    assert first == second
    assert first.session_id.startswith(ANONYMOUS_PREFIX)
    assert other.session_id != first.session_id

def test_guest_session_header_is_used_as_session_id():
    principal = resolve_principal(None, "  session-123  ", DeviceInfo())
    assert principal.session_id == "session-123"

# --- Decision timeout ---
class SlowSession:
    """Store that never answers in time."""

    async def get(self, *args, **kwargs):
        await asyncio.sleep(1)

    async def execute(self, *args, **kwargs):
        await asyncio.sleep(1)

async def test_slow_store_fails_closed():
    decision = await check_access(SlowSession(), 10, OWNER, "can_view", clock=FixedClock(NOW), timeout=0.01)
    assert decision == AccessDenied(reason="decision_timeout", event_id=10)

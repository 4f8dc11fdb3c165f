import asyncio
from datetime import datetime, timedelta, UTC
from typing import Dict
import pytest
from sqlalchemy import select

from app.access.decision import check_access
from app.access.types import AccessDenied, AccessGranted, AnonymousPrincipal
from app.access.visibility import transition_visibility, update_anonymous_policy
from app.core.clock import ensure_utc
from app.core.exceptions import ForbiddenError
from app.crud.activity import list_activity
from app.models.anonymous_session import AnonymousSession
from app.models.enums import AnonymousSessionStatus, AnonymousTransitionPolicy, ParticipantRole, Visibility
from app.models.event import Event

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=UTC)

async def add_session(db_session, event_id: int, session_id: str, expires: datetime | None = None) -> AnonymousSession:
    session = AnonymousSession(
        session_id=session_id,
        event_id=event_id,
        fingerprint_hash="",
        user_agent="",
        ip_address="",
        status=AnonymousSessionStatus.ACTIVE,
        requires_login=False,
        grace_period_expires=expires,
    )
    db_session.add(session)
    await db_session.commit()
    return session

async def load_sessions(db_session, event_id: int) -> Dict[str, AnonymousSession]:
    result = await db_session.execute(
        select(AnonymousSession)
        .where(AnonymousSession.event_id == event_id)
        .execution_options(populate_existing=True)
    )
    return {session.session_id: session for session in result.scalars().all()}

def anonymous(session_id: str) -> AnonymousPrincipal:
    return AnonymousPrincipal(session_id=session_id, device_fingerprint="0" * 64)

async def test_grace_period_applies_only_to_sessions_without_expiry(db_session, make_event, decide, test_user, clock):
    event = await make_event(test_user, visibility=Visibility.ANYONE_WITH_LINK)
    await add_session(db_session, event.id, "fresh")
    await add_session(db_session, event.id, "stale", expires=NOW - timedelta(hours=2))
    access = await decide(db_session, event.id, test_user)

    result = await transition_visibility(
        db_session,
        event.id,
        Visibility.PRIVATE,
        access,
        clock=clock,
        actor_id=test_user.id,
        policy=AnonymousTransitionPolicy.GRACE_PERIOD,
        grace_period_hours=24,
    )

    assert result.from_visibility == Visibility.ANYONE_WITH_LINK
    assert result.to_visibility == Visibility.PRIVATE
    assert result.anonymous_users_affected == 1
    sessions = await load_sessions(db_session, event.id)
    assert ensure_utc(sessions["fresh"].grace_period_expires) == NOW + timedelta(hours=24)
    assert ensure_utc(sessions["stale"].grace_period_expires) == NOW - timedelta(hours=2)

async def test_grace_period_keeps_guest_until_expiry(db_session, make_event, decide, test_user, clock):
    event = await make_event(test_user, visibility=Visibility.ANYONE_WITH_LINK, grace_period_hours=2)
    await add_session(db_session, event.id, "guest")
    access = await decide(db_session, event.id, test_user)

    await transition_visibility(db_session, event.id, Visibility.INVITED_ONLY, access, clock=clock)

    during = await check_access(db_session, event.id, anonymous("guest"), "can_view", clock=clock)
    assert isinstance(during, AccessGranted)
    assert during.role == ParticipantRole.GUEST

    clock.advance(hours=2)
    after = await check_access(db_session, event.id, anonymous("guest"), "can_view", clock=clock)
    assert after == AccessDenied(reason="anonymous_session_expired", event_id=event.id)

    stranger = await check_access(db_session, event.id, anonymous("never-joined"), clock=clock)
    assert stranger.reason == "no_role"

async def test_block_all_expires_sessions_now(db_session, make_event, decide, test_user, clock):
    event = await make_event(
        test_user,
        visibility=Visibility.ANYONE_WITH_LINK,
        anonymous_transition_policy=AnonymousTransitionPolicy.BLOCK_ALL,
    )
    await add_session(db_session, event.id, "open")
    await add_session(db_session, event.id, "later", expires=NOW + timedelta(hours=5))
    await add_session(db_session, event.id, "past", expires=NOW - timedelta(hours=5))
    access = await decide(db_session, event.id, test_user)

    result = await transition_visibility(db_session, event.id, Visibility.INVITED_ONLY, access, clock=clock)

    assert result.anonymous_users_affected == 2
    sessions = await load_sessions(db_session, event.id)
    assert ensure_utc(sessions["open"].grace_period_expires) == NOW
    assert ensure_utc(sessions["later"].grace_period_expires) == NOW
    assert ensure_utc(sessions["past"].grace_period_expires) == NOW - timedelta(hours=5)
    decision = await check_access(db_session, event.id, anonymous("open"), clock=clock)
    assert decision.reason == "anonymous_session_expired"

async def test_force_login_prompts_then_expires(db_session, make_event, decide, test_user, clock):
    event = await make_event(test_user, visibility=Visibility.ANYONE_WITH_LINK)
    await add_session(db_session, event.id, "guest")
    access = await decide(db_session, event.id, test_user)

    await transition_visibility(
        db_session,
        event.id,
        Visibility.PRIVATE,
        access,
        clock=clock,
        policy=AnonymousTransitionPolicy.FORCE_LOGIN,
    )

    sessions = await load_sessions(db_session, event.id)
    assert sessions["guest"].requires_login is True
    decision = await check_access(db_session, event.id, anonymous("guest"), clock=clock)
    assert decision.prompt_login is True

    clock.advance(hours=1)
    decision = await check_access(db_session, event.id, anonymous("guest"), clock=clock)
    assert decision.reason == "anonymous_session_expired"

async def test_repeating_a_transition_changes_nothing(db_session, make_event, decide, test_user, clock):
    event = await make_event(test_user, visibility=Visibility.ANYONE_WITH_LINK)
    await add_session(db_session, event.id, "guest")
    access = await decide(db_session, event.id, test_user)

    first = await transition_visibility(db_session, event.id, Visibility.PRIVATE, access, clock=clock)
    clock.advance(hours=3)
    second = await transition_visibility(db_session, event.id, Visibility.PRIVATE, access, clock=clock)

    assert first.actions_taken
    assert second.actions_taken == []
    assert second.anonymous_users_affected == 0
    stored = await db_session.get(Event, event.id, populate_existing=True)
    assert stored.lock_version == 2
    assert len(await list_activity(db_session, event.id, action="visibility_changed")) == 1

async def test_further_tightening_keeps_existing_expiry(db_session, make_event, decide, test_user, clock):
    event = await make_event(test_user, visibility=Visibility.ANYONE_WITH_LINK)
    await add_session(db_session, event.id, "guest")
    access = await decide(db_session, event.id, test_user)

    await transition_visibility(
        db_session, event.id, Visibility.INVITED_ONLY, access, clock=clock, grace_period_hours=24
    )
    clock.advance(hours=6)
    await transition_visibility(
        db_session, event.id, Visibility.PRIVATE, access, clock=clock, grace_period_hours=24
    )

    sessions = await load_sessions(db_session, event.id)
    assert ensure_utc(sessions["guest"].grace_period_expires) == NOW + timedelta(hours=24)

async def test_loosening_restores_link_access(db_session, make_event, decide, test_user, clock):
    event = await make_event(test_user, visibility=Visibility.PRIVATE)
    await add_session(db_session, event.id, "guest", expires=NOW - timedelta(days=1))
    access = await decide(db_session, event.id, test_user)

    result = await transition_visibility(db_session, event.id, "unlisted", access, clock=clock)

    assert result.to_visibility == Visibility.ANYONE_WITH_LINK
    assert result.anonymous_users_affected == 0
    decision = await check_access(db_session, event.id, anonymous("guest"), clock=clock)
    assert isinstance(decision, AccessGranted)

async def test_concurrent_transitions_apply_once(db_session, session_factory, make_event, decide, test_user, clock):
    event = await make_event(test_user, visibility=Visibility.ANYONE_WITH_LINK)
    await add_session(db_session, event.id, "guest")
    access = await decide(db_session, event.id, test_user)

    async def tighten():
        async with session_factory() as session:
            return await transition_visibility(session, event.id, Visibility.PRIVATE, access, clock=clock)

    results = await asyncio.gather(tighten(), tighten())

    assert sorted(bool(result.actions_taken) for result in results) == [False, True]
    stored = await db_session.get(Event, event.id, populate_existing=True)
    assert stored.visibility == Visibility.PRIVATE
    assert stored.lock_version == 2
    assert len(await list_activity(db_session, event.id, action="visibility_changed")) == 1

async def test_transition_requires_edit_capability(db_session, make_event, decide, test_user, second_test_user, clock):
    event = await make_event(test_user, visibility=Visibility.ANYONE_WITH_LINK)
    guest_access = await decide(db_session, event.id, second_test_user)

    with pytest.raises(ForbiddenError):
        await transition_visibility(db_session, event.id, Visibility.PRIVATE, guest_access, clock=clock)

async def test_policy_update_is_used_by_next_transition(db_session, make_event, decide, test_user, clock):
    event = await make_event(test_user, visibility=Visibility.ANYONE_WITH_LINK)
    await add_session(db_session, event.id, "guest")

    event = await update_anonymous_policy(db_session, event, AnonymousTransitionPolicy.GRACE_PERIOD, 6, test_user.id)
    access = await decide(db_session, event.id, test_user)
    await transition_visibility(db_session, event.id, Visibility.INVITED_ONLY, access, clock=clock)

    sessions = await load_sessions(db_session, event.id)
    assert event.grace_period_hours == 6
    assert ensure_utc(sessions["guest"].grace_period_expires) == NOW + timedelta(hours=6)

import asyncio
from datetime import datetime, timedelta, UTC
import pytest

from app.access.decision import check_access, resolve_event_access
from app.access.share_tokens import (
    check_token_state,
    consume_share_token,
    create_share_token,
    get_token_usage,
    revoke_share_token,
    validate_share_token,
)
from app.access.types import (
    AccessDenied,
    AccessGranted,
    AnonymousPrincipal,
    AuthenticatedPrincipal,
    TokenInvalid,
    TokenValid,
)
from app.core.exceptions import NotFoundError
from app.core.security import get_password_hash
from app.crud import event as crud_event
from app.crud.activity import list_activity
from app.crud.participant import join_event
from app.models.enums import ShareTokenType, Visibility
from app.models.share_token import ShareToken
from app.models.user import User
from app.schemas.event import EventPermissionDefaults, ShareLinkUpdate
from app.schemas.share_token import ShareTokenCreate, ShareTokenPermissions

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=UTC)

async def add_users(db_session, count: int):
    users = [
        User(email=f"guest{index}@example.com", username=f"guest{index}", hashed_password="unused")
        for index in range(count)
    ]
    db_session.add_all(users)
    await db_session.commit()
    for user in users:
        await db_session.refresh(user)
    return users

def principal_for(user: User) -> AuthenticatedPrincipal:
    return AuthenticatedPrincipal(user_id=user.id, email=user.email)

def test_token_state_checks_in_order():
    token = ShareToken(
        id=1,
        event_id=1,
        token_type=ShareTokenType.INVITE,
        revoked=True,
        expires_at=NOW - timedelta(hours=1),
        max_uses=1,
        usage_count=1,
        password_hash=get_password_hash("secret"),
        allowed_emails=[],
        requires_approval=False,
        perm_view=True,
        perm_upload=False,
        perm_download=False,
        perm_share=False,
        perm_comment=True,
    )

    assert check_token_state(token, None, NOW).reason == "revoked"
    token.revoked = False
    assert check_token_state(token, None, NOW).reason == "expired"
    token.expires_at = NOW + timedelta(hours=1)
    assert check_token_state(token, None, NOW).reason == "capacity_exceeded"
    token.usage_count = 0
    assert check_token_state(token, None, NOW).reason == "password_required"
    assert check_token_state(token, "wrong", NOW).reason == "password_mismatch"
    assert isinstance(check_token_state(token, "secret", NOW), TokenValid)

async def test_preview_does_not_count_a_use(db_session, make_event, test_user, clock):
    event = await make_event(test_user, visibility=Visibility.ANYONE_WITH_LINK)
    token = await create_share_token(db_session, event, ShareTokenCreate(max_uses=1), test_user.id, clock=clock)

    for _ in range(3):
        validation = await validate_share_token(db_session, token.token, clock=clock)
        assert isinstance(validation, TokenValid)

    await db_session.refresh(token)
    assert token.usage_count == 0

async def test_consume_counts_and_records_use(db_session, make_event, test_user, second_test_user, clock):
    event = await make_event(test_user, visibility=Visibility.ANYONE_WITH_LINK)
    token = await create_share_token(db_session, event, ShareTokenCreate(max_uses=2), test_user.id, clock=clock)
    validation = await validate_share_token(db_session, token.token, clock=clock)

    result = await consume_share_token(db_session, validation, principal_for(second_test_user), clock=clock)
    await db_session.commit()

    assert isinstance(result, TokenValid)
    await db_session.refresh(token)
    assert token.usage_count == 1
    uses = await get_token_usage(db_session, token.id)
    assert [use.user_id for use in uses] == [second_test_user.id]

async def test_concurrent_joins_never_exceed_max_uses(db_session, session_factory, make_event, test_user, clock):
    max_uses = 3
    event = await make_event(test_user, visibility=Visibility.ANYONE_WITH_LINK)
    token = await create_share_token(db_session, event, ShareTokenCreate(max_uses=max_uses), test_user.id, clock=clock)
    users = await add_users(db_session, max_uses + 1)

    async def join(user: User):
        async with session_factory() as session:
            decision, _ = await join_event(session, event.id, principal_for(user), token=token.token, clock=clock)
            return decision

    decisions = await asyncio.gather(*(join(user) for user in users))

    granted = [decision for decision in decisions if isinstance(decision, AccessGranted)]
    denied = [decision for decision in decisions if isinstance(decision, AccessDenied)]
    assert len(granted) == max_uses
    assert [decision.reason for decision in denied] == ["token_invalid:capacity_exceeded"]

    async with session_factory() as session:
        stored = await session.get(ShareToken, token.id)
        assert stored.usage_count == max_uses
        assert len(await get_token_usage(session, token.id)) == max_uses

async def test_returning_guest_is_not_counted_twice(db_session, make_event, test_user, clock):
    event = await make_event(test_user, visibility=Visibility.ANYONE_WITH_LINK)
    token = await create_share_token(db_session, event, ShareTokenCreate(max_uses=5), test_user.id, clock=clock)
    guest = AnonymousPrincipal(session_id="anon_returning", device_fingerprint="a" * 64)

    for _ in range(2):
        decision, session = await join_event(db_session, event.id, guest, token=token.token, clock=clock)
        assert isinstance(decision, AccessGranted)
        assert session.session_id == "anon_returning"

    await db_session.refresh(token)
    assert token.usage_count == 1

async def test_revoke_is_permanent_and_idempotent(db_session, make_event, test_user, clock):
    event = await make_event(test_user)
    token = await create_share_token(db_session, event, ShareTokenCreate(), test_user.id, clock=clock)

    first = await revoke_share_token(db_session, event.id, token.id, test_user.id, clock=clock)
    clock.advance(minutes=5)
    second = await revoke_share_token(db_session, event.id, token.id, test_user.id, clock=clock)

    assert first.revoked and second.revoked
    assert second.revoked_at == first.revoked_at
    assert len(await list_activity(db_session, event.id, action="share_token_revoked")) == 1
    validation = await validate_share_token(db_session, token.token, clock=clock)
    assert validation == TokenInvalid(reason="revoked")

async def test_revoke_unknown_token(db_session, make_event, test_user, clock):
    event = await make_event(test_user)
    with pytest.raises(NotFoundError):
        await revoke_share_token(db_session, event.id, 999, test_user.id, clock=clock)

async def test_token_expires_on_the_clock(db_session, make_event, test_user, clock):
    event = await make_event(test_user)
    token = await create_share_token(
        db_session,
        event,
        ShareTokenCreate(expires_at=NOW + timedelta(hours=1)),
        test_user.id,
        clock=clock,
    )

    assert isinstance(await validate_share_token(db_session, token.token, clock=clock), TokenValid)
    clock.advance(hours=1)
    assert await validate_share_token(db_session, token.token, clock=clock) == TokenInvalid(reason="expired")

async def test_unknown_token_is_not_found(db_session, clock):
    assert await validate_share_token(db_session, "no-such-token", clock=clock) == TokenInvalid(reason="not_found")

async def test_email_restricted_link(db_session, make_event, test_user, second_test_user, third_test_user, clock):
    event = await make_event(test_user, visibility=Visibility.INVITED_ONLY)
    token = await create_share_token(
        db_session,
        event,
        ShareTokenCreate(allowed_emails=[second_test_user.email.upper()]),
        test_user.id,
        clock=clock,
    )

    listed = await check_access(db_session, None, principal_for(second_test_user), token=token.token, clock=clock)
    unlisted = await check_access(db_session, None, principal_for(third_test_user), token=token.token, clock=clock)

    assert isinstance(listed, AccessGranted)
    assert listed.via_token is True
    assert unlisted.reason == "token_invalid:email_not_allowed"

async def test_link_permissions_narrow_the_decision(db_session, make_event, test_user, second_test_user, clock):
    event = await make_event(
        test_user,
        visibility=Visibility.ANYONE_WITH_LINK,
        permissions=EventPermissionDefaults(can_upload=True, can_download=True),
    )
    token = await create_share_token(
        db_session,
        event,
        ShareTokenCreate(
            token_type=ShareTokenType.VIEW,
            permissions=ShareTokenPermissions(view=True, upload=False, download=False),
        ),
        test_user.id,
        clock=clock,
    )

    direct = await check_access(db_session, event.id, principal_for(second_test_user), clock=clock)
    via_link = await check_access(db_session, event.id, principal_for(second_test_user), token=token.token, clock=clock)

    assert direct.capabilities.can_upload is True
    assert via_link.capabilities.can_upload is False
    assert via_link.capabilities <= direct.capabilities

async def test_token_for_another_event_is_rejected(db_session, make_event, test_user, second_test_user, clock):
    first = await make_event(test_user)
    second = await make_event(test_user)
    token = await create_share_token(db_session, first, ShareTokenCreate(), test_user.id, clock=clock)

    decision = await check_access(db_session, second.id, principal_for(second_test_user), token=token.token, clock=clock)

    assert decision.reason == "token_invalid:not_found"

async def test_primary_link(db_session, make_event, decide, test_user, clock):
    event = await make_event(test_user, share_password="letmein")

    assert await validate_share_token(db_session, event.share_token, clock=clock) == TokenInvalid(reason="password_required")
    validation = await validate_share_token(db_session, event.share_token, "letmein", clock=clock)
    assert isinstance(validation, TokenValid)
    assert validation.scope.token_id is None
    assert validation.scope.share is False

    access = await decide(db_session, event.id, test_user)
    await crud_event.update_share_link(db_session, event, ShareLinkUpdate(is_active=False), access, test_user.id)

    assert await validate_share_token(db_session, event.share_token, "letmein", clock=clock) == TokenInvalid(reason="revoked")

async def test_resolve_event_access_by_token_or_id(db_session, make_event, test_user, clock):
    event = await make_event(test_user, visibility=Visibility.ANYONE_WITH_LINK)
    token = await create_share_token(db_session, event, ShareTokenCreate(), test_user.id, clock=clock)
    guest = AnonymousPrincipal(session_id="anon_resolver", device_fingerprint="e" * 64)

    by_token = await resolve_event_access(db_session, token.token, guest, via_token=True, clock=clock)
    by_id = await resolve_event_access(db_session, str(event.id), guest, clock=clock)
    malformed = await resolve_event_access(db_session, "not-an-id", guest, clock=clock)

    assert by_token.event_id == event.id and by_token.via_token is True
    assert by_id.event_id == event.id and by_id.via_token is False
    assert malformed == AccessDenied(reason="event_not_found")

import pytest
from httpx import AsyncClient

from app.access.decision import check_access
from app.access.types import AccessDenied, AccessGranted, AnonymousPrincipal, AuthenticatedPrincipal
from app.core.exceptions import ConflictError, ForbiddenError, InvalidStateError
from app.crud.activity import list_activity
from app.crud.participant import (
    create_co_host_invite,
    get_participant,
    invite_co_host,
    join_as_co_host,
    list_co_host_invites,
    manage_co_host,
    revoke_co_host_invite,
)
from app.models.enums import ParticipantRole, ParticipantStatus, ShareTokenType, Visibility
from app.models.share_token import ShareToken
from app.schemas.participant import CoHostInvite, CoHostInviteLinkCreate
from app.schemas.share_token import ShareTokenCreate

def principal_for(user) -> AuthenticatedPrincipal:
    return AuthenticatedPrincipal(user_id=user.id, email=user.email)

@pytest.fixture
def owner_access(db_session, decide, test_user):
    async def run(event) -> AccessGranted:
        return await decide(db_session, event.id, test_user)
    return run

async def test_owner_link_admits_co_hosts_until_used_up(db_session, make_event, owner_access, test_user, second_test_user, third_test_user, clock):
    event = await make_event(test_user, visibility=Visibility.PRIVATE)
    access = await owner_access(event)
    link = await create_co_host_invite(
        db_session, event, CoHostInviteLinkCreate(max_uses=1), access, clock=clock, actor_id=test_user.id
    )
    assert link.token_type == ShareTokenType.CO_HOST_INVITE
    assert link.requires_approval is False

    record = await join_as_co_host(db_session, link.token, principal_for(second_test_user), clock=clock)

    assert record.role == ParticipantRole.CO_HOST
    assert record.status == ParticipantStatus.ACTIVE
    assert record.permissions == {"manage_guests": False, "manage_settings": False}
    assert record.invited_by == test_user.id
    decision = await check_access(db_session, event.id, principal_for(second_test_user), clock=clock)
    assert decision.role == ParticipantRole.CO_HOST
    assert decision.capabilities.can_moderate_content is True
    assert decision.capabilities.can_manage_participants is False

    full = await join_as_co_host(db_session, link.token, principal_for(third_test_user), clock=clock)
    assert full == AccessDenied(reason="token_invalid:capacity_exceeded")
    assert await get_participant(db_session, event.id, third_test_user.id) is None
    stored = await db_session.get(ShareToken, link.id, populate_existing=True)
    assert stored.usage_count == 1

async def test_co_host_made_link_needs_approval(db_session, make_event, decide, owner_access, test_user, second_test_user, third_test_user, clock):
    event = await make_event(test_user, visibility=Visibility.PRIVATE)
    access = await owner_access(event)
    await invite_co_host(db_session, event, CoHostInvite(user_id=second_test_user.id), access, clock=clock)
    await manage_co_host(db_session, event, second_test_user.id, "approve", access, clock=clock)
    co_host_access = await decide(db_session, event.id, second_test_user)

    link = await create_co_host_invite(
        db_session, event, CoHostInviteLinkCreate(), co_host_access, clock=clock, actor_id=second_test_user.id
    )
    assert link.requires_approval is True

    record = await join_as_co_host(db_session, link.token, principal_for(third_test_user), clock=clock)
    assert record.status == ParticipantStatus.PENDING
    waiting = await check_access(db_session, event.id, principal_for(third_test_user), clock=clock)
    assert waiting.reason == "no_role"
    assert len(await list_activity(db_session, event.id, action="co_host_requested")) == 1

    await manage_co_host(db_session, event, third_test_user.id, "approve", access, clock=clock, actor_id=test_user.id)
    approved = await check_access(db_session, event.id, principal_for(third_test_user), clock=clock)
    assert approved.role == ParticipantRole.CO_HOST

async def test_link_refuses_owner_existing_co_hosts_and_strangers(db_session, make_event, owner_access, test_user, second_test_user, clock):
    event = await make_event(test_user)
    access = await owner_access(event)
    link = await create_co_host_invite(db_session, event, CoHostInviteLinkCreate(), access, clock=clock, actor_id=test_user.id)

    with pytest.raises(InvalidStateError):
        await join_as_co_host(db_session, link.token, principal_for(test_user), clock=clock)

    await join_as_co_host(db_session, link.token, principal_for(second_test_user), clock=clock)
    with pytest.raises(ConflictError):
        await join_as_co_host(db_session, link.token, principal_for(second_test_user), clock=clock)
    stored = await db_session.get(ShareToken, link.id, populate_existing=True)
    assert stored.usage_count == 1

    anonymous = AnonymousPrincipal(session_id="anon_cohost", device_fingerprint="d" * 64)
    assert await join_as_co_host(db_session, link.token, anonymous, clock=clock) == AccessDenied(reason="no_role")

async def test_removed_participant_cannot_rejoin_through_link(db_session, make_event, owner_access, test_user, second_test_user, clock):
    event = await make_event(test_user)
    access = await owner_access(event)
    link = await create_co_host_invite(db_session, event, CoHostInviteLinkCreate(), access, clock=clock, actor_id=test_user.id)
    await join_as_co_host(db_session, link.token, principal_for(second_test_user), clock=clock)
    await manage_co_host(db_session, event, second_test_user.id, "remove", access, clock=clock, actor_id=test_user.id)

    with pytest.raises(ForbiddenError):
        await join_as_co_host(db_session, link.token, principal_for(second_test_user), clock=clock)

async def test_link_expires_and_can_be_revoked(db_session, make_event, owner_access, test_user, second_test_user, third_test_user, clock):
    event = await make_event(test_user)
    access = await owner_access(event)
    short = await create_co_host_invite(
        db_session, event, CoHostInviteLinkCreate(expires_in_hours=1), access, clock=clock, actor_id=test_user.id
    )
    revoked = await create_co_host_invite(db_session, event, CoHostInviteLinkCreate(), access, clock=clock, actor_id=test_user.id)

    await revoke_co_host_invite(db_session, event, revoked.id, access, clock=clock, actor_id=test_user.id)
    assert [link.id for link in await list_co_host_invites(db_session, event.id)] == [short.id]
    assert await join_as_co_host(db_session, revoked.token, principal_for(second_test_user), clock=clock) == AccessDenied(
        reason="token_invalid:revoked"
    )

    clock.advance(hours=2)
    assert await join_as_co_host(db_session, short.token, principal_for(third_test_user), clock=clock) == AccessDenied(
        reason="token_invalid:expired"
    )

async def test_co_host_link_is_not_a_viewing_link(db_session, make_event, owner_access, test_user, second_test_user, clock):
    event = await make_event(test_user, visibility=Visibility.INVITED_ONLY)
    access = await owner_access(event)
    link = await create_co_host_invite(db_session, event, CoHostInviteLinkCreate(), access, clock=clock, actor_id=test_user.id)

    decision = await check_access(db_session, None, principal_for(second_test_user), token=link.token, clock=clock)

    assert decision == AccessDenied(reason="token_invalid:not_found", event_id=event.id)

def test_generic_share_links_cannot_carry_co_host_type():
    with pytest.raises(ValueError):
        ShareTokenCreate(token_type=ShareTokenType.CO_HOST_INVITE)

async def test_guests_cannot_create_co_host_links(db_session, make_event, decide, test_user, second_test_user, clock):
    event = await make_event(test_user, visibility=Visibility.ANYONE_WITH_LINK)
    guest_access = await decide(db_session, event.id, second_test_user)

    with pytest.raises(ForbiddenError):
        await create_co_host_invite(db_session, event, CoHostInviteLinkCreate(), guest_access, clock=clock, actor_id=second_test_user.id)

# --- HTTP ---
async def test_co_host_invite_link_api(client: AsyncClient, test_event, test_user, second_test_user, auth_headers):
    owner = auth_headers(test_user)
    base = f"/api/v1/events/{test_event['id']}/co-hosts/invite-links"

    response = await client.post(base, json={"max_uses": 2, "permissions": {"manage_settings": False}}, headers=owner)
    assert response.status_code == 201
    link = response.json()
    assert link["permissions"] == {"manage_settings": False}
    assert link["max_uses"] == 2

    response = await client.post(f"/api/v1/co-host-invites/{link['token']}/join")
    assert response.status_code == 401

    response = await client.post(f"/api/v1/co-host-invites/{link['token']}/join", headers=auth_headers(second_test_user))
    assert response.status_code == 201
    assert response.json()["role"] == "co_host"
    assert response.json()["status"] == "active"

    response = await client.post(f"/api/v1/co-host-invites/{link['token']}/join", headers=auth_headers(second_test_user))
    assert response.status_code == 409

    response = await client.post(base, json={}, headers=auth_headers(second_test_user))
    assert response.status_code == 201
    assert response.json()["requires_approval"] is True

    response = await client.delete(f"{base}/{link['id']}", headers=owner)
    assert response.status_code == 200
    assert response.json()["revoked"] is True

    response = await client.get(base, headers=owner)
    assert link["id"] not in [item["id"] for item in response.json()]

    response = await client.post(f"/api/v1/co-host-invites/{link['token']}/join", headers=auth_headers(test_user))
    assert response.status_code == 410

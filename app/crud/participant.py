import logging
from datetime import timedelta
from typing import Dict, List, Literal, Tuple
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.access.decision import check_access, email_admitted, load_participant, require_capability
from app.access.share_tokens import (
    consume_share_token,
    generate_token,
    revoke_share_token,
    validate_share_token,
)
from app.access.types import (
    AccessDecision,
    AccessDenied,
    AccessGranted,
    AuthenticatedPrincipal,
    DeviceInfo,
    Principal,
    TokenInvalid,
)
from app.core.clock import Clock
from app.core.exceptions import (
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    InvariantViolation,
    NotFoundError,
)
from app.crud.activity import record_activity
from app.crud.anonymous_session import get_or_create_session
from app.models.anonymous_session import AnonymousSession
from app.models.enums import ParticipantRole, ParticipantStatus, ShareTokenType
from app.models.event import Event
from app.models.participant import EventParticipant
from app.models.share_token import ShareToken
from app.models.user import User
from app.schemas.participant import (
    CoHostInvite,
    CoHostInviteLinkCreate,
    ParticipantInvite,
    ParticipantUpdate,
)

logger = logging.getLogger(__name__)

# Inviting into these roles needs participant management, not just invite rights
MANAGEMENT_ROLES = frozenset({ParticipantRole.CO_HOST, ParticipantRole.MODERATOR})

CoHostAction = Literal["approve", "reject", "remove"]

# action -> (allowed current statuses, new status, activity name)
CO_HOST_TRANSITIONS = {
    "approve": ((ParticipantStatus.PENDING,), ParticipantStatus.ACTIVE, "co_host_approved"),
    "reject": ((ParticipantStatus.PENDING,), ParticipantStatus.REJECTED, "co_host_rejected"),
    "remove": ((ParticipantStatus.PENDING, ParticipantStatus.ACTIVE), ParticipantStatus.REMOVED, "co_host_removed"),
}

async def get_participant(db: AsyncSession, event_id: int, user_id: int) -> EventParticipant | None:
    """Get the participant record of a user on an event"""
    return await load_participant(db, event_id, user_id)

async def list_participants(
    db: AsyncSession,
    event_id: int,
    status: ParticipantStatus | None = None
) -> List[EventParticipant]:
    query = select(EventParticipant).where(EventParticipant.event_id == event_id)
    if status is not None:
        query = query.where(EventParticipant.status == status)
    result = await db.execute(
        query.order_by(EventParticipant.id).execution_options(populate_existing=True)
    )
    return list(result.scalars().all())

async def list_co_hosts(db: AsyncSession, event_id: int) -> Dict[str, List[EventParticipant]]:
    """The event's co-hosts grouped by status"""
    result = await db.execute(
        select(EventParticipant)
        .where(
            EventParticipant.event_id == event_id,
            EventParticipant.role == ParticipantRole.CO_HOST,
        )
        .order_by(EventParticipant.id)
        .execution_options(populate_existing=True)
    )
    grouped: Dict[str, List[EventParticipant]] = {"pending": [], "active": [], "rejected": [], "removed": []}
    for record in result.scalars().all():
        grouped.setdefault(ParticipantStatus(record.status).value, []).append(record)
    return grouped

async def _set_status(
    db: AsyncSession,
    participant: EventParticipant,
    from_statuses: Tuple[ParticipantStatus, ...],
    to_status: ParticipantStatus,
    actor_id: int | None,
    clock: Clock,
    **values
) -> bool:
    """Compare-and-set the status of one record; False when another writer got there first"""
    now = clock.now()
    changes = {"status": to_status, "status_changed_at": now, "status_changed_by": actor_id, "updated_at": now}
    if to_status == ParticipantStatus.ACTIVE:
        changes["joined_at"] = now
    changes.update(values)
    result = await db.execute(
        update(EventParticipant)
        .where(
            EventParticipant.id == participant.id,
            EventParticipant.status.in_(from_statuses),
        )
        .values(**changes)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1

async def invite_participant(
    db: AsyncSession,
    event: Event,
    invite: ParticipantInvite,
    access: AccessGranted,
    *,
    clock: Clock,
    actor_id: int | None = None
) -> EventParticipant:
    """Create a pending invitation for a registered user"""
    role = ParticipantRole(invite.role)
    capability = "can_manage_participants" if role in MANAGEMENT_ROLES else "can_invite_others"
    require_capability(access, capability, event.id)

    if invite.user_id == event.owner_id:
        raise InvalidStateError("The event owner is already a participant")
    if await db.get(User, invite.user_id) is None:
        raise NotFoundError("User not found")

    now = clock.now()
    participant = await get_participant(db, event.id, invite.user_id)
    if participant is not None:
        if participant.status in (ParticipantStatus.ACTIVE, ParticipantStatus.PENDING):
            raise ConflictError("User is already invited to or participating in this event")
        participant.role = role
        participant.permissions = dict(invite.permissions)
        participant.status = ParticipantStatus.PENDING
        participant.status_changed_at = now
        participant.status_changed_by = actor_id
    else:
        participant = EventParticipant(
            event_id=event.id,
            user_id=invite.user_id,
            role=role,
            status=ParticipantStatus.PENDING,
            permissions=dict(invite.permissions),
            status_changed_at=now,
            status_changed_by=actor_id,
        )
        db.add(participant)
    participant.invited_by = actor_id
    participant.invited_at = now

    await record_activity(
        db,
        event.id,
        "co_host_invited" if role == ParticipantRole.CO_HOST else "participant_invited",
        actor_id=actor_id,
        user_id=invite.user_id,
        role=role.value,
    )
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("User is already invited to or participating in this event")
    await db.refresh(participant)
    return participant

async def invite_co_host(
    db: AsyncSession,
    event: Event,
    invite: CoHostInvite,
    access: AccessGranted,
    *,
    clock: Clock,
    actor_id: int | None = None
) -> EventParticipant:
    """Co-hosts are participants with role co_host; they start pending"""
    return await invite_participant(
        db,
        event,
        ParticipantInvite(user_id=invite.user_id, role=ParticipantRole.CO_HOST, permissions=invite.permissions),
        access,
        clock=clock,
        actor_id=actor_id,
    )

async def manage_co_host(
    db: AsyncSession,
    event: Event,
    user_id: int,
    action: CoHostAction,
    access: AccessGranted,
    *,
    clock: Clock,
    actor_id: int | None = None
) -> Tuple[EventParticipant, bool]:
    """
    Approve, reject or remove a co-host. Returns the record and whether this
    call changed it; repeating an action that already took effect is a no-op.
    """
    require_capability(access, "can_manage_participants", event.id)
    if action not in CO_HOST_TRANSITIONS:
        raise InvalidStateError(f"Invalid action: {action}")

    participant = await get_participant(db, event.id, user_id)
    if participant is None or participant.role != ParticipantRole.CO_HOST:
        raise NotFoundError("Co-host not found")

    from_statuses, to_status, activity = CO_HOST_TRANSITIONS[action]
    changed = await _set_status(db, participant, from_statuses, to_status, actor_id, clock)
    if not changed:
        participant = await get_participant(db, event.id, user_id)
        if participant.status != to_status:
            raise InvalidStateError(f"Co-host is {ParticipantStatus(participant.status).value}; cannot {action}")
        return participant, False

    await record_activity(
        db,
        event.id,
        activity,
        actor_id=actor_id,
        user_id=user_id,
    )
    await db.commit()
    participant = await get_participant(db, event.id, user_id)
    logger.info(f"Co-host {action} applied", extra={"event_id": event.id, "user_id": user_id})
    return participant, True

async def update_participant(
    db: AsyncSession,
    event: Event,
    user_id: int,
    update_in: ParticipantUpdate,
    access: AccessGranted,
    *,
    clock: Clock,
    actor_id: int | None = None
) -> EventParticipant:
    """
    Change a participant's role or override bag.

    The owner is untouchable and nobody edits their own record. Records of
    co-hosts and moderators, and moves into or out of those roles, are the
    owner's call. Promotion to co-host leaves the record pending until a
    co-host approval.
    """
    require_capability(access, "can_manage_participants", event.id)
    if user_id == event.owner_id:
        raise InvalidStateError("The owner's role can only change through an ownership transfer")
    if actor_id is not None and user_id == actor_id:
        raise ForbiddenError("You cannot change your own role or permissions")

    participant = await get_participant(db, event.id, user_id)
    if participant is None:
        raise NotFoundError("Participant not found")
    current_role = ParticipantRole(participant.role)
    if current_role == ParticipantRole.OWNER:
        raise InvariantViolation(
            f"User {user_id} holds an owner record on event {event.id} owned by {event.owner_id}",
            event_id=event.id,
        )
    new_role = ParticipantRole(update_in.role) if update_in.role is not None else current_role
    if current_role in MANAGEMENT_ROLES or new_role in MANAGEMENT_ROLES:
        require_capability(access, "can_transfer_ownership", event.id)

    now = clock.now()
    values = {"updated_at": now}
    if update_in.role is not None:
        values["role"] = new_role
    if update_in.permissions is not None:
        values["permissions"] = dict(update_in.permissions)
    if new_role == ParticipantRole.CO_HOST and current_role != ParticipantRole.CO_HOST:
        values.update(status=ParticipantStatus.PENDING, status_changed_at=now, status_changed_by=actor_id)

    result = await db.execute(
        update(EventParticipant)
        .where(
            EventParticipant.id == participant.id,
            EventParticipant.role == participant.role,
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise ConflictError("Participant changed concurrently, please retry")

    await record_activity(
        db,
        event.id,
        "participant_updated",
        actor_id=actor_id,
        user_id=user_id,
        from_role=ParticipantRole(participant.role).value,
        to_role=ParticipantRole(values.get("role", participant.role)).value,
    )
    await db.commit()
    return await get_participant(db, event.id, user_id)

async def remove_participant(
    db: AsyncSession,
    event: Event,
    user_id: int,
    access: AccessGranted,
    *,
    clock: Clock,
    actor_id: int | None = None
) -> EventParticipant:
    """Soft-remove a participant; the record stays for history"""
    require_capability(access, "can_manage_participants", event.id)
    if user_id == event.owner_id:
        raise InvalidStateError("The event owner cannot be removed")

    participant = await get_participant(db, event.id, user_id)
    if participant is None:
        raise NotFoundError("Participant not found")

    changed = await _set_status(
        db,
        participant,
        (ParticipantStatus.PENDING, ParticipantStatus.ACTIVE, ParticipantStatus.LEFT, ParticipantStatus.REJECTED),
        ParticipantStatus.REMOVED,
        actor_id,
        clock,
    )
    if changed:
        await record_activity(db, event.id, "participant_removed", actor_id=actor_id, user_id=user_id)
        await db.commit()
    return await get_participant(db, event.id, user_id)

async def leave_event(
    db: AsyncSession,
    event: Event,
    user_id: int,
    *,
    clock: Clock
) -> EventParticipant:
    if user_id == event.owner_id:
        raise InvalidStateError("The event owner cannot leave; transfer ownership first")

    participant = await get_participant(db, event.id, user_id)
    if participant is None:
        raise NotFoundError("You are not a participant of this event")

    changed = await _set_status(
        db,
        participant,
        (ParticipantStatus.PENDING, ParticipantStatus.ACTIVE),
        ParticipantStatus.LEFT,
        user_id,
        clock,
    )
    if not changed:
        raise InvalidStateError("You are not an active participant of this event")

    await record_activity(db, event.id, "participant_left", actor_id=user_id, user_id=user_id)
    await db.commit()
    return await get_participant(db, event.id, user_id)

async def join_event(
    db: AsyncSession,
    event_id: int | None,
    principal: Principal,
    *,
    token: str | None = None,
    password: str | None = None,
    guest_name: str | None = None,
    device: DeviceInfo | None = None,
    clock: Clock
) -> Tuple[AccessDecision, EventParticipant | AnonymousSession | None]:
    """
    Join an event directly or through a share link.

    Authenticated users get an active participant record (a pending
    invitation is activated); anonymous principals get a guest session.
    A link use is only counted when the join creates or activates something.
    """
    decision = await check_access(db, event_id, principal, "can_view", token=token, password=password, clock=clock)
    if isinstance(decision, AccessDenied):
        return decision, None
    event_id = decision.event_id
    now = clock.now()

    if isinstance(principal, AuthenticatedPrincipal):
        participant = await get_participant(db, event_id, principal.user_id)
        if participant is not None:
            if participant.status == ParticipantStatus.ACTIVE:
                return decision, participant
            if participant.status == ParticipantStatus.REMOVED:
                raise ForbiddenError("You were removed from this event")
            if participant.status == ParticipantStatus.PENDING and participant.role == ParticipantRole.CO_HOST:
                # Co-host invitations are activated by approval only
                return decision, participant
    else:
        participant = None

    if token is not None:
        validation = await validate_share_token(db, token, password, clock=clock)
        if isinstance(validation, TokenInvalid):
            return AccessDenied(reason=f"token_invalid:{validation.reason}", event_id=event_id), None
        if isinstance(principal, AuthenticatedPrincipal) or await _is_new_guest(db, event_id, principal):
            consumed = await consume_share_token(db, validation, principal, clock=clock)
            if isinstance(consumed, TokenInvalid):
                await db.rollback()
                return AccessDenied(reason=f"token_invalid:{consumed.reason}", event_id=event_id), None

    if not isinstance(principal, AuthenticatedPrincipal):
        session, created = await get_or_create_session(db, event_id, principal, device, guest_name, clock=clock)
        if created:
            await record_activity(db, event_id, "guest_joined", session_id=principal.session_id, via_token=decision.via_token)
        await db.commit()
        await db.refresh(session)
        return decision, session

    if participant is None:
        participant = EventParticipant(
            event_id=event_id,
            user_id=principal.user_id,
            role=ParticipantRole.AUTHENTICATED_GUEST,
            status=ParticipantStatus.ACTIVE,
            permissions={},
            joined_at=now,
            status_changed_at=now,
            share_token_id=decision.token_id,
        )
        db.add(participant)
    else:
        # Pending invitations keep their invited role; everyone else rejoins as a guest
        role = participant.role if participant.status == ParticipantStatus.PENDING else ParticipantRole.AUTHENTICATED_GUEST
        changed = await _set_status(
            db,
            participant,
            (participant.status,),
            ParticipantStatus.ACTIVE,
            principal.user_id,
            clock,
            role=role,
            share_token_id=decision.token_id,
        )
        if not changed:
            await db.rollback()
            return decision, await get_participant(db, event_id, principal.user_id)

    await record_activity(
        db,
        event_id,
        "participant_joined",
        actor_id=principal.user_id,
        user_id=principal.user_id,
        via_token=decision.via_token,
    )
    try:
        await db.commit()
    except IntegrityError:
        # Joined concurrently from another request
        await db.rollback()
    return decision, await get_participant(db, event_id, principal.user_id)

async def _is_new_guest(db: AsyncSession, event_id: int, principal: Principal) -> bool:
    result = await db.execute(
        select(AnonymousSession.id).where(
            AnonymousSession.event_id == event_id,
            AnonymousSession.session_id == principal.session_id,
        )
    )
    return result.scalar_one_or_none() is None

async def transfer_ownership(
    db: AsyncSession,
    event: Event,
    new_owner_id: int,
    access: AccessGranted,
    *,
    clock: Clock,
    actor_id: int | None = None
) -> Event:
    """
    Hand the event to an active participant. The previous owner stays on as a
    co-host; event and both participant records change in one transaction.
    """
    require_capability(access, "can_transfer_ownership", event.id)
    old_owner_id = event.owner_id
    if new_owner_id == old_owner_id:
        raise InvalidStateError("User already owns this event")

    target = await get_participant(db, event.id, new_owner_id)
    if target is None or target.status != ParticipantStatus.ACTIVE:
        raise InvalidStateError("The new owner must be an active participant of the event")

    now = clock.now()
    result = await db.execute(
        update(Event)
        .where(
            Event.id == event.id,
            Event.owner_id == old_owner_id,
            Event.lock_version == event.lock_version,
        )
        .values(owner_id=new_owner_id, lock_version=event.lock_version + 1, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise ConflictError("Event changed concurrently, please retry")

    previous = await get_participant(db, event.id, old_owner_id)
    if previous is None:
        db.add(EventParticipant(
            event_id=event.id,
            user_id=old_owner_id,
            role=ParticipantRole.CO_HOST,
            status=ParticipantStatus.ACTIVE,
            permissions={},
            joined_at=now,
            status_changed_at=now,
        ))
    else:
        previous.role = ParticipantRole.CO_HOST
        previous.status = ParticipantStatus.ACTIVE
        previous.permissions = {}
        previous.status_changed_at = now
        previous.status_changed_by = actor_id

    target.role = ParticipantRole.OWNER
    target.permissions = {}
    target.status_changed_at = now
    target.status_changed_by = actor_id
    await db.flush()

    await assert_single_owner(db, event.id)
    await record_activity(
        db,
        event.id,
        "ownership_transferred",
        actor_id=actor_id,
        from_user_id=old_owner_id,
        to_user_id=new_owner_id,
    )
    await db.commit()
    logger.info(
        "Event ownership transferred",
        extra={"event_id": event.id, "user_id": actor_id}
    )
    return await db.get(Event, event.id, populate_existing=True)

async def assert_single_owner(db: AsyncSession, event_id: int) -> EventParticipant:
    """Exactly one active owner record, matching the event's owner"""
    event = await db.get(Event, event_id, populate_existing=True)
    if event is None:
        raise NotFoundError("Event not found")
    result = await db.execute(
        select(EventParticipant)
        .where(
            EventParticipant.event_id == event_id,
            EventParticipant.role == ParticipantRole.OWNER,
        )
        .execution_options(populate_existing=True)
    )
    owners = list(result.scalars().all())
    if (
        len(owners) != 1
        or owners[0].user_id != event.owner_id
        or owners[0].status != ParticipantStatus.ACTIVE
    ):
        raise InvariantViolation(
            f"Event {event_id} has {len(owners)} owner records "
            f"({[record.user_id for record in owners]}), expected exactly user {event.owner_id}",
            event_id=event_id,
        )
    return owners[0]

# --- Co-host invite links ---
async def create_co_host_invite(
    db: AsyncSession,
    event: Event,
    invite_in: CoHostInviteLinkCreate,
    access: AccessGranted,
    *,
    clock: Clock,
    actor_id: int
) -> ShareToken:
    """
    A link that makes whoever signs in and follows it a co-host.

    The owner's links admit co-hosts directly. Links made by a co-host
    produce pending co-hosts that still need an approval.
    """
    require_capability(access, "can_manage_participants", event.id)
    now = clock.now()
    link = ShareToken(
        token=generate_token(),
        event_id=event.id,
        token_type=ShareTokenType.CO_HOST_INVITE,
        created_by=actor_id,
        perm_view=True,
        perm_upload=False,
        perm_download=False,
        perm_share=False,
        perm_comment=False,
        max_uses=invite_in.max_uses,
        expires_at=now + timedelta(hours=invite_in.expires_in_hours),
        allowed_emails=[str(email).lower() for email in invite_in.allowed_emails],
        requires_approval=not access.capabilities.can_transfer_ownership,
        grant_permissions=dict(invite_in.permissions),
        usage_count=0,
        revoked=False,
    )
    db.add(link)
    await db.flush()
    await record_activity(
        db,
        event.id,
        "co_host_invite_created",
        actor_id=actor_id,
        token_id=link.id,
        max_uses=link.max_uses,
        requires_approval=link.requires_approval,
    )
    await db.commit()
    await db.refresh(link)
    return link

async def list_co_host_invites(
    db: AsyncSession,
    event_id: int,
    include_revoked: bool = False
) -> List[ShareToken]:
    query = select(ShareToken).where(
        ShareToken.event_id == event_id,
        ShareToken.token_type == ShareTokenType.CO_HOST_INVITE,
    )
    if not include_revoked:
        query = query.where(ShareToken.revoked.is_(False))
    result = await db.execute(query.order_by(ShareToken.id.desc()).execution_options(populate_existing=True))
    return list(result.scalars().all())

async def revoke_co_host_invite(
    db: AsyncSession,
    event: Event,
    token_id: int,
    access: AccessGranted,
    *,
    clock: Clock,
    actor_id: int
) -> ShareToken:
    require_capability(access, "can_manage_participants", event.id)
    link = await db.get(ShareToken, token_id, populate_existing=True)
    if link is None or link.event_id != event.id or link.token_type != ShareTokenType.CO_HOST_INVITE:
        raise NotFoundError("Co-host invite link not found")
    return await revoke_share_token(db, event.id, token_id, actor_id, clock=clock)

async def join_as_co_host(
    db: AsyncSession,
    token: str,
    principal: Principal,
    *,
    clock: Clock
) -> AccessDenied | EventParticipant:
    """
    Become a co-host through a co-host invite link.

    Each new co-host counts one use of the link. Existing co-hosts, the owner
    and removed participants are turned away without spending a use.
    """
    if not isinstance(principal, AuthenticatedPrincipal):
        return AccessDenied(reason="no_role")

    validation = await validate_share_token(db, token, clock=clock)
    if isinstance(validation, TokenInvalid):
        return AccessDenied(reason=f"token_invalid:{validation.reason}")
    event_id = validation.event_id
    if validation.scope.token_type != ShareTokenType.CO_HOST_INVITE:
        return AccessDenied(reason="token_invalid:not_found", event_id=event_id)
    if not email_admitted(principal, validation.scope):
        return AccessDenied(reason="token_invalid:email_not_allowed", event_id=event_id)

    event = await db.get(Event, event_id, populate_existing=True)
    if event is None:
        return AccessDenied(reason="event_not_found", event_id=event_id)
    if principal.user_id == event.owner_id:
        raise InvalidStateError("The event owner cannot join as a co-host")

    participant = await get_participant(db, event_id, principal.user_id)
    if participant is not None:
        if participant.status == ParticipantStatus.REMOVED:
            raise ForbiddenError("You were removed from this event")
        if participant.role == ParticipantRole.CO_HOST and participant.status in (
            ParticipantStatus.PENDING, ParticipantStatus.ACTIVE
        ):
            raise ConflictError("You are already a co-host for this event")

    consumed = await consume_share_token(db, validation, principal, clock=clock)
    if isinstance(consumed, TokenInvalid):
        await db.rollback()
        return AccessDenied(reason=f"token_invalid:{consumed.reason}", event_id=event_id)

    link = await db.get(ShareToken, validation.scope.token_id)
    status = ParticipantStatus.PENDING if validation.scope.requires_approval else ParticipantStatus.ACTIVE
    now = clock.now()
    granted = dict(link.grant_permissions or {})
    if participant is None:
        participant = EventParticipant(
            event_id=event_id,
            user_id=principal.user_id,
            role=ParticipantRole.CO_HOST,
            status=status,
            permissions=granted,
            invited_by=link.created_by,
            invited_at=now,
            joined_at=now if status == ParticipantStatus.ACTIVE else None,
            status_changed_at=now,
            status_changed_by=principal.user_id,
            share_token_id=link.id,
        )
        db.add(participant)
    else:
        changed = await _set_status(
            db,
            participant,
            (participant.status,),
            status,
            principal.user_id,
            clock,
            role=ParticipantRole.CO_HOST,
            permissions=granted,
            invited_by=link.created_by,
            invited_at=now,
            share_token_id=link.id,
        )
        if not changed:
            await db.rollback()
            raise ConflictError("Participant changed concurrently, please retry")

    await record_activity(
        db,
        event_id,
        "co_host_joined" if status == ParticipantStatus.ACTIVE else "co_host_requested",
        actor_id=principal.user_id,
        user_id=principal.user_id,
        token_id=link.id,
    )
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("You are already a co-host for this event")
    logger.info(
        "Co-host joined through invite link",
        extra={"event_id": event_id, "user_id": principal.user_id}
    )
    return await get_participant(db, event_id, principal.user_id)

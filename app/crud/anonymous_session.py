import logging
from typing import List, Tuple
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.access.decision import load_anonymous_session, load_participant
from app.access.roles import anonymous_session_expired
from app.access.types import AnonymousPrincipal, DeviceInfo
from app.core.clock import Clock
from app.core.exceptions import InvalidStateError, NotFoundError
from app.crud.activity import record_activity
from app.models.anonymous_session import AnonymousSession
from app.models.enums import AnonymousSessionStatus, ParticipantRole, ParticipantStatus
from app.models.event import Event
from app.models.participant import EventParticipant
from app.models.user import User

logger = logging.getLogger(__name__)

async def get_or_create_session(
    db: AsyncSession,
    event_id: int,
    principal: AnonymousPrincipal,
    device: DeviceInfo | None = None,
    guest_name: str | None = None,
    *,
    clock: Clock
) -> Tuple[AnonymousSession, bool]:
    """Return the device's session on the event and whether it was created.

    The caller commits.
    """
    device = device or DeviceInfo()
    now = clock.now()

    session = await load_anonymous_session(db, event_id, principal.session_id)
    created = session is None
    if created:
        session = AnonymousSession(
            session_id=principal.session_id,
            event_id=event_id,
            fingerprint_hash=principal.device_fingerprint,
            user_agent=device.user_agent[:500],
            ip_address=device.ip_address[:64],
            guest_name=guest_name,
            status=AnonymousSessionStatus.ACTIVE,
            requires_login=False,
            last_activity_at=now,
        )
        db.add(session)
        try:
            await db.flush()
        except IntegrityError:
            # Same device joined concurrently; use the row that won
            await db.rollback()
            session = await load_anonymous_session(db, event_id, principal.session_id)
            created = False
    if not created:
        session.last_activity_at = now
        if guest_name:
            session.guest_name = guest_name
    return session, created

async def list_sessions(db: AsyncSession, event_id: int) -> List[AnonymousSession]:
    result = await db.execute(
        select(AnonymousSession)
        .where(AnonymousSession.event_id == event_id)
        .order_by(AnonymousSession.id)
    )
    return list(result.scalars().all())

async def claim_session(
    db: AsyncSession,
    event: Event,
    session_id: str,
    user: User,
    *,
    clock: Clock
) -> Tuple[AnonymousSession, EventParticipant]:
    """
    Attach a guest session to a signed-in user.

    The session must still be usable; the user ends up with an active
    participant record so access survives the session's grace window.
    """
    now = clock.now()
    session = await load_anonymous_session(db, event.id, session_id)
    if session is None:
        raise NotFoundError("Guest session not found")
    if anonymous_session_expired(session, now):
        raise InvalidStateError("Guest session has expired")

    participant = await load_participant(db, event.id, user.id)
    if participant is not None and participant.status == ParticipantStatus.REMOVED:
        raise InvalidStateError("You were removed from this event")

    result = await db.execute(
        update(AnonymousSession)
        .where(
            AnonymousSession.id == session.id,
            AnonymousSession.status == AnonymousSessionStatus.ACTIVE,
        )
        .values(
            status=AnonymousSessionStatus.CLAIMED,
            claimed_by=user.id,
            claimed_at=now,
            last_activity_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        session = await load_anonymous_session(db, event.id, session_id)
        if session.claimed_by != user.id:
            raise InvalidStateError("Guest session was already claimed")

    if participant is None:
        participant = EventParticipant(
            event_id=event.id,
            user_id=user.id,
            role=ParticipantRole.AUTHENTICATED_GUEST,
            status=ParticipantStatus.ACTIVE,
            permissions={},
            joined_at=now,
            status_changed_at=now,
        )
        db.add(participant)
    elif participant.status in (ParticipantStatus.LEFT, ParticipantStatus.PENDING) and participant.role != ParticipantRole.CO_HOST:
        participant.status = ParticipantStatus.ACTIVE
        participant.joined_at = now
        participant.status_changed_at = now

    await record_activity(
        db,
        event.id,
        "guest_session_claimed",
        actor_id=user.id,
        session_id=session_id,
    )
    await db.commit()

    session = await load_anonymous_session(db, event.id, session_id)
    await db.refresh(participant)
    logger.info("Guest session claimed", extra={"event_id": event.id, "user_id": user.id})
    return session, participant

import logging
from typing import List
from sqlalchemy import delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.access.decision import require_capability
from app.access.share_tokens import generate_token
from app.access.types import AccessGranted
from app.core.clock import Clock, ensure_utc
from app.core.security import get_password_hash
from app.crud.activity import record_activity
from app.models.anonymous_session import AnonymousSession
from app.models.enums import ParticipantRole, ParticipantStatus
from app.models.event import Event
from app.models.participant import EventParticipant
from app.models.share_token import ShareToken, ShareTokenUse
from app.models.user import User
from app.schemas.event import (
    EventCreate,
    EventUpdate,
    EventPermissionDefaultsUpdate,
    ShareLinkUpdate,
)

logger = logging.getLogger(__name__)

async def create_event(
    db: AsyncSession,
    event_in: EventCreate,
    owner: User,
    *,
    clock: Clock
) -> Event:
    """Create an event together with its owner record and primary link"""
    now = clock.now()
    permissions = event_in.permissions

    db_event = Event(
        title=event_in.title,
        description=event_in.description,
        owner_id=owner.id,
        visibility=event_in.visibility,
        can_view=permissions.can_view,
        can_upload=permissions.can_upload,
        can_download=permissions.can_download,
        require_approval=permissions.require_approval,
        allowed_media_types=permissions.allowed_media_types.model_dump(),
        share_token=generate_token(),
        share_is_active=True,
        share_expires_at=ensure_utc(event_in.share_expires_at),
        share_password_hash=get_password_hash(event_in.share_password) if event_in.share_password else None,
        anonymous_transition_policy=event_in.anonymous_transition_policy,
        grace_period_hours=event_in.grace_period_hours,
        lock_version=1,
        updated_at=now
    )
    db.add(db_event)
    await db.flush()

    db.add(EventParticipant(
        event_id=db_event.id,
        user_id=owner.id,
        role=ParticipantRole.OWNER,
        status=ParticipantStatus.ACTIVE,
        permissions={},
        joined_at=now,
        status_changed_at=now,
    ))
    await record_activity(
        db,
        db_event.id,
        "event_created",
        actor_id=owner.id,
        visibility=db_event.visibility.value,
    )
    await db.commit()
    await db.refresh(db_event)

    logger.info("Event created", extra={"event_id": db_event.id, "user_id": owner.id})
    return db_event

async def get_event(db: AsyncSession, event_id: int) -> Event | None:
    """Get an event by id"""
    return await db.get(Event, event_id, populate_existing=True)

async def list_events_for_user(
    db: AsyncSession,
    user_id: int,
    *,
    skip: int = 0,
    limit: int = 100
) -> List[Event]:
    """Events the user owns or holds an active participant record on"""
    active_participation = select(EventParticipant.event_id).where(
        EventParticipant.user_id == user_id,
        EventParticipant.status == ParticipantStatus.ACTIVE,
    )
    result = await db.execute(
        select(Event)
        .where(or_(Event.owner_id == user_id, Event.id.in_(active_participation)))
        .order_by(Event.created_at.desc(), Event.id.desc())
        .offset(skip)
        .limit(limit)
    )
    return list(result.scalars().all())

async def update_event(
    db: AsyncSession,
    event: Event,
    event_in: EventUpdate,
    access: AccessGranted,
    actor_id: int | None = None
) -> Event:
    require_capability(access, "can_edit", event.id)
    update_data = event_in.model_dump(exclude_unset=True)
    for field, value in update_data.items():
        setattr(event, field, value)

    await record_activity(db, event.id, "event_updated", actor_id=actor_id, fields=sorted(update_data))
    await db.commit()
    await db.refresh(event)
    return event

async def update_permission_defaults(
    db: AsyncSession,
    event: Event,
    defaults_in: EventPermissionDefaultsUpdate,
    access: AccessGranted,
    actor_id: int | None = None
) -> Event:
    """Change the event-level defaults that guest roles inherit"""
    require_capability(access, "can_manage_settings", event.id)
    update_data = defaults_in.model_dump(exclude_unset=True)
    for field, value in update_data.items():
        if value is None:
            continue
        setattr(event, field, value)

    await record_activity(db, event.id, "permissions_updated", actor_id=actor_id, changes=update_data)
    await db.commit()
    await db.refresh(event)
    return event

async def update_share_link(
    db: AsyncSession,
    event: Event,
    link_in: ShareLinkUpdate,
    access: AccessGranted,
    actor_id: int | None = None
) -> Event:
    """Enable, disable, protect or rotate the event's primary link"""
    require_capability(access, "can_invite_others", event.id)
    if link_in.regenerate:
        event.share_token = generate_token()
    if link_in.is_active is not None:
        event.share_is_active = link_in.is_active
    if link_in.remove_password:
        event.share_password_hash = None
    elif link_in.password:
        event.share_password_hash = get_password_hash(link_in.password)
    if "expires_at" in link_in.model_fields_set:
        event.share_expires_at = ensure_utc(link_in.expires_at)

    await record_activity(
        db,
        event.id,
        "share_link_updated",
        actor_id=actor_id,
        regenerated=link_in.regenerate,
        is_active=event.share_is_active,
    )
    await db.commit()
    await db.refresh(event)
    return event

async def delete_event(
    db: AsyncSession,
    event: Event,
    access: AccessGranted,
    actor_id: int | None = None
) -> None:
    """Delete the event and everything hanging off it; the activity trail stays"""
    require_capability(access, "can_delete", event.id)
    event_id = event.id

    token_ids = select(ShareToken.id).where(ShareToken.event_id == event_id)
    await db.execute(delete(ShareTokenUse).where(ShareTokenUse.token_id.in_(token_ids)))
    await db.execute(delete(EventParticipant).where(EventParticipant.event_id == event_id))
    await db.execute(delete(AnonymousSession).where(AnonymousSession.event_id == event_id))
    await db.execute(delete(ShareToken).where(ShareToken.event_id == event_id))
    await db.delete(event)

    await record_activity(db, event_id, "event_deleted", actor_id=actor_id)
    await db.commit()
    logger.info("Event deleted", extra={"event_id": event_id, "user_id": actor_id})

"""
Visibility state machine.

Tightening an event (``anyone_with_link -> invited_only -> private``) puts
every live anonymous session on a clock according to the event's
``anonymous_transition_policy``. Session updates only ever *set* an expiry
that is not there yet (or, for ``block_all``, pull a future one to now), so
applying the same transition twice leaves sessions as the first run did.

The visibility write is a compare-and-set on ``Event.lock_version`` and is
committed in the same transaction as the session updates.
"""
import logging
from datetime import datetime, timedelta
from typing import List, Tuple

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.access.decision import require_capability
from app.access.types import AccessGranted, TransitionResult
from app.core.clock import Clock
from app.core.config import settings
from app.core.exceptions import ConflictError, NotFoundError
from app.crud.activity import record_activity
from app.models.anonymous_session import AnonymousSession
from app.models.enums import AnonymousSessionStatus, AnonymousTransitionPolicy, Visibility
from app.models.event import Event

logger = logging.getLogger(__name__)

VISIBILITY_MESSAGES = {
    Visibility.ANYONE_WITH_LINK: "Event is now accessible via link without login",
    Visibility.INVITED_ONLY: "Event now admits invited guests only",
    Visibility.PRIVATE: "Event is now limited to its hosts",
}


def is_tightening(current: Visibility, target: Visibility) -> bool:
    return target.rank > current.rank


def _live_sessions(event_id: int):
    return update(AnonymousSession).where(
        AnonymousSession.event_id == event_id,
        AnonymousSession.status == AnonymousSessionStatus.ACTIVE,
    )


async def apply_anonymous_policy(
    db: AsyncSession,
    event: Event,
    policy: AnonymousTransitionPolicy,
    now: datetime,
    grace_period_hours: int | None = None
) -> Tuple[int, str]:
    """Update the event's anonymous sessions; returns (sessions touched, action)."""
    if policy == AnonymousTransitionPolicy.BLOCK_ALL:
        stmt = _live_sessions(event.id).where(
            or_(
                AnonymousSession.grace_period_expires.is_(None),
                AnonymousSession.grace_period_expires > now,
            )
        ).values(grace_period_expires=now)
        action = "Anonymous sessions blocked immediately"
    elif policy == AnonymousTransitionPolicy.FORCE_LOGIN:
        expires = now + timedelta(hours=settings.FORCE_LOGIN_GRACE_HOURS)
        stmt = _live_sessions(event.id).where(
            AnonymousSession.grace_period_expires.is_(None)
        ).values(grace_period_expires=expires, requires_login=True)
        action = f"Anonymous sessions must sign in within {settings.FORCE_LOGIN_GRACE_HOURS}h"
    else:
        hours = grace_period_hours or event.grace_period_hours or settings.DEFAULT_GRACE_PERIOD_HOURS
        expires = now + timedelta(hours=hours)
        stmt = _live_sessions(event.id).where(
            AnonymousSession.grace_period_expires.is_(None)
        ).values(grace_period_expires=expires)
        action = f"Anonymous sessions granted a {hours}h grace period"

    result = await db.execute(stmt.execution_options(synchronize_session=False))
    return result.rowcount or 0, action


async def _load_event(db: AsyncSession, event_id: int) -> Event | None:
    result = await db.execute(
        select(Event)
        .where(Event.id == event_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def transition_visibility(
    db: AsyncSession,
    event_id: int,
    new_visibility: Visibility | str,
    access: AccessGranted,
    *,
    clock: Clock,
    actor_id: int | None = None,
    policy: AnonymousTransitionPolicy | None = None,
    grace_period_hours: int | None = None
) -> TransitionResult:
    """
    Move an event to ``new_visibility``.

    ``access`` is the caller's decision for this event and must carry
    ``can_edit``. A lost compare-and-set re-reads the event and tries again,
    so the side effects applied are those of the transition that commits.
    """
    require_capability(access, "can_edit", event_id)
    target = Visibility.parse(new_visibility)

    for attempt in range(1, settings.VISIBILITY_TRANSITION_MAX_RETRIES + 1):
        event = await _load_event(db, event_id)
        if event is None:
            raise NotFoundError("Event not found")

        current = Visibility(event.visibility)
        if current == target:
            return TransitionResult(
                event_id=event_id,
                from_visibility=current,
                to_visibility=target,
            )

        now = clock.now()
        result = await db.execute(
            update(Event)
            .where(Event.id == event_id, Event.lock_version == event.lock_version)
            .values(
                visibility=target,
                previous_visibility=current,
                visibility_changed_at=now,
                lock_version=event.lock_version + 1,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            logger.info(
                f"Visibility write lost a race, retrying (attempt {attempt})",
                extra={"event_id": event_id}
            )
            continue

        actions: List[str] = [VISIBILITY_MESSAGES[target]]
        affected = 0
        if is_tightening(current, target):
            affected, action = await apply_anonymous_policy(
                db,
                event,
                policy or AnonymousTransitionPolicy(event.anonymous_transition_policy),
                now,
                grace_period_hours,
            )
            actions.append(action)

        await record_activity(
            db,
            event_id,
            "visibility_changed",
            actor_id=actor_id,
            from_visibility=current.value,
            to_visibility=target.value,
            anonymous_users_affected=affected,
        )
        await db.commit()
        await _load_event(db, event_id)

        logger.info(
            f"Event visibility {current.value} -> {target.value}",
            extra={"event_id": event_id, "user_id": actor_id}
        )
        return TransitionResult(
            event_id=event_id,
            from_visibility=current,
            to_visibility=target,
            anonymous_users_affected=affected,
            actions_taken=actions,
        )

    raise ConflictError("Event visibility changed concurrently, please retry")


async def update_anonymous_policy(
    db: AsyncSession,
    event: Event,
    policy: AnonymousTransitionPolicy,
    grace_period_hours: int | None = None,
    actor_id: int | None = None
) -> Event:
    event.anonymous_transition_policy = policy
    event.grace_period_hours = grace_period_hours
    await record_activity(
        db,
        event.id,
        "anonymous_policy_changed",
        actor_id=actor_id,
        policy=policy.value,
        grace_period_hours=grace_period_hours,
    )
    await db.commit()
    await db.refresh(event)
    return event

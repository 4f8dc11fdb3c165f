from typing import Any, List
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.activity import EventActivity

async def record_activity(
    db: AsyncSession,
    event_id: int,
    action: str,
    actor_id: int | None = None,
    **details: Any
) -> EventActivity:
    """Append an audit row; committed with the surrounding change"""
    entry = EventActivity(
        event_id=event_id,
        actor_id=actor_id,
        action=action,
        details=details,
    )
    db.add(entry)
    return entry

async def list_activity(
    db: AsyncSession,
    event_id: int,
    action: str | None = None
) -> List[EventActivity]:
    query = select(EventActivity).where(EventActivity.event_id == event_id)
    if action is not None:
        query = query.where(EventActivity.action == action)
    result = await db.execute(query.order_by(EventActivity.id))
    return list(result.scalars().all())

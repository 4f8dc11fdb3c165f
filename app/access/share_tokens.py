"""
Share-token lifecycle: validation, consumption and management.

``validate_share_token`` is the preview path and never changes state.
``consume_share_token`` is the only place a use is counted; it relies on a
single conditional UPDATE so concurrent joins cannot push successful uses
past ``max_uses``.
"""
import logging
import secrets
from datetime import datetime
from typing import List

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.access.types import (
    AuthenticatedPrincipal,
    Principal,
    TokenInvalid,
    TokenScope,
    TokenValid,
    TokenValidation,
)
from app.core.clock import Clock, ensure_utc
from app.core.config import settings
from app.core.exceptions import NotFoundError
from app.core.security import get_password_hash, verify_password
from app.crud.activity import record_activity
from app.models.enums import ShareTokenType
from app.models.event import Event
from app.models.share_token import ShareToken, ShareTokenUse
from app.schemas.share_token import ShareTokenCreate

logger = logging.getLogger(__name__)


def generate_token() -> str:
    return secrets.token_urlsafe(settings.SHARE_TOKEN_BYTES)


def scope_for_token(token: ShareToken) -> TokenScope:
    return TokenScope(
        token_id=token.id,
        token_type=token.token_type,
        view=token.perm_view,
        upload=token.perm_upload,
        download=token.perm_download,
        share=token.perm_share,
        comment=token.perm_comment,
        allowed_emails=list(token.allowed_emails or []),
        requires_approval=token.requires_approval,
    )


def scope_for_primary_link(event: Event) -> TokenScope:
    """The event's own link carries the event defaults and cannot re-share."""
    return TokenScope(
        token_type=ShareTokenType.VIEW,
        view=True,
        upload=bool(event.can_upload),
        download=bool(event.can_download),
        share=False,
    )


def _check_password(password_hash: str | None, supplied: str | None) -> TokenInvalid | None:
    if password_hash is None:
        return None
    if not supplied:
        return TokenInvalid(reason="password_required")
    if not verify_password(supplied, password_hash):
        return TokenInvalid(reason="password_mismatch")
    return None


def check_token_state(token: ShareToken, supplied_password: str | None, now: datetime) -> TokenValidation:
    """Strict order: revoked, expired, capacity, password."""
    if token.revoked:
        return TokenInvalid(reason="revoked")
    expires_at = ensure_utc(token.expires_at)
    if expires_at is not None and expires_at <= now:
        return TokenInvalid(reason="expired")
    if token.max_uses is not None and token.usage_count >= token.max_uses:
        return TokenInvalid(reason="capacity_exceeded")
    failure = _check_password(token.password_hash, supplied_password)
    if failure is not None:
        return failure
    return TokenValid(event_id=token.event_id, scope=scope_for_token(token))


def check_primary_link_state(event: Event, supplied_password: str | None, now: datetime) -> TokenValidation:
    if not event.share_is_active:
        return TokenInvalid(reason="revoked")
    expires_at = ensure_utc(event.share_expires_at)
    if expires_at is not None and expires_at <= now:
        return TokenInvalid(reason="expired")
    failure = _check_password(event.share_password_hash, supplied_password)
    if failure is not None:
        return failure
    return TokenValid(event_id=event.id, scope=scope_for_primary_link(event))


async def get_share_token(db: AsyncSession, token: str) -> ShareToken | None:
    result = await db.execute(
        select(ShareToken)
        .where(ShareToken.token == token)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def validate_share_token(
    db: AsyncSession,
    token: str,
    supplied_password: str | None = None,
    *,
    clock: Clock
) -> TokenValidation:
    """Resolve a link to its event without counting a use."""
    now = clock.now()
    if not token:
        return TokenInvalid(reason="not_found")

    record = await get_share_token(db, token)
    if record is not None:
        return check_token_state(record, supplied_password, now)

    result = await db.execute(
        select(Event)
        .where(Event.share_token == token)
        .execution_options(populate_existing=True)
    )
    event = result.scalar_one_or_none()
    if event is None:
        return TokenInvalid(reason="not_found")
    return check_primary_link_state(event, supplied_password, now)


async def consume_share_token(
    db: AsyncSession,
    validation: TokenValid,
    principal: Principal,
    *,
    clock: Clock
) -> TokenValidation:
    """
    Count one use of a validated link.

    The increment is conditional on the token still being usable, so the
    (N+1)th concurrent join sees zero affected rows and fails with
    ``capacity_exceeded``. The caller commits together with the join.
    """
    token_id = validation.scope.token_id
    if token_id is None:
        # The primary link has no usage counter
        return validation

    now = clock.now()
    result = await db.execute(
        update(ShareToken)
        .where(
            ShareToken.id == token_id,
            ShareToken.revoked.is_(False),
            or_(ShareToken.expires_at.is_(None), ShareToken.expires_at > now),
            or_(ShareToken.max_uses.is_(None), ShareToken.usage_count < ShareToken.max_uses),
        )
        .values(usage_count=ShareToken.usage_count + 1, last_used_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        current = await db.get(ShareToken, token_id, populate_existing=True)
        if current is None:
            return TokenInvalid(reason="not_found")
        if current.revoked:
            return TokenInvalid(reason="revoked")
        expires_at = ensure_utc(current.expires_at)
        if expires_at is not None and expires_at <= now:
            return TokenInvalid(reason="expired")
        logger.info(
            "Share token at capacity",
            extra={"event_id": validation.event_id, "reason": "capacity_exceeded"}
        )
        return TokenInvalid(reason="capacity_exceeded")

    db.add(ShareTokenUse(
        token_id=token_id,
        user_id=principal.user_id if isinstance(principal, AuthenticatedPrincipal) else None,
        anonymous_session_id=None if isinstance(principal, AuthenticatedPrincipal) else principal.session_id,
        used_at=now,
    ))
    await db.flush()
    return validation


# --- Management ---
async def create_share_token(
    db: AsyncSession,
    event: Event,
    token_in: ShareTokenCreate,
    created_by: int,
    *,
    clock: Clock
) -> ShareToken:
    permissions = token_in.permissions
    token = ShareToken(
        token=generate_token(),
        event_id=event.id,
        token_type=token_in.token_type,
        created_by=created_by,
        perm_view=permissions.view,
        perm_upload=permissions.upload,
        perm_download=permissions.download,
        perm_share=permissions.share,
        perm_comment=permissions.comment,
        max_uses=token_in.max_uses,
        expires_at=ensure_utc(token_in.expires_at),
        allowed_emails=[str(email).lower() for email in token_in.allowed_emails],
        requires_approval=token_in.requires_approval,
        password_hash=get_password_hash(token_in.password) if token_in.password else None,
        usage_count=0,
        revoked=False,
    )
    db.add(token)
    await db.flush()
    await record_activity(
        db,
        event.id,
        "share_token_created",
        actor_id=created_by,
        token_id=token.id,
        token_type=token.token_type.value,
        max_uses=token.max_uses,
        at=clock.now().isoformat(),
    )
    await db.commit()
    await db.refresh(token)
    return token


async def list_share_tokens(
    db: AsyncSession,
    event_id: int,
    include_revoked: bool = True
) -> List[ShareToken]:
    query = select(ShareToken).where(ShareToken.event_id == event_id)
    if not include_revoked:
        query = query.where(ShareToken.revoked.is_(False))
    result = await db.execute(query.order_by(ShareToken.id))
    return list(result.scalars().all())


async def revoke_share_token(
    db: AsyncSession,
    event_id: int,
    token_id: int,
    revoked_by: int,
    *,
    clock: Clock
) -> ShareToken:
    """Revoke for good. Revoking an already revoked token changes nothing."""
    now = clock.now()
    result = await db.execute(
        update(ShareToken)
        .where(
            ShareToken.id == token_id,
            ShareToken.event_id == event_id,
            ShareToken.revoked.is_(False),
        )
        .values(revoked=True, revoked_at=now, revoked_by=revoked_by)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount:
        await record_activity(
            db,
            event_id,
            "share_token_revoked",
            actor_id=revoked_by,
            token_id=token_id,
        )
        await db.commit()

    token = await db.get(ShareToken, token_id, populate_existing=True)
    if token is None or token.event_id != event_id:
        raise NotFoundError("Share token not found")
    return token


async def get_token_usage(db: AsyncSession, token_id: int) -> List[ShareTokenUse]:
    result = await db.execute(
        select(ShareTokenUse)
        .where(ShareTokenUse.token_id == token_id)
        .order_by(ShareTokenUse.id)
    )
    return list(result.scalars().all())

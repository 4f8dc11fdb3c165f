from typing import Callable
from fastapi import Depends, Header, HTTPException, Path, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.access.decision import check_access, denial_message
from app.access.principal import resolve_principal
from app.access.types import (
    AccessDecision,
    AccessDenied,
    AccessGranted,
    AnonymousPrincipal,
    AuthenticatedPrincipal,
    DeviceInfo,
    Principal,
)
from app.core.clock import Clock, get_clock
from app.core.config import settings
from app.crud import event as crud_event
from app.db.database import get_db
from app.models.anonymous_session import AnonymousSession
from app.models.event import Event
from app.models.participant import EventParticipant
from app.schemas.event import AccessResponse
from app.schemas.participant import JoinResponse, ParticipantResponse
from app.schemas.share_token import GuestSessionResponse

def get_device_info(request: Request) -> DeviceInfo:
    return DeviceInfo(
        ip_address=request.client.host if request.client else "",
        user_agent=request.headers.get("user-agent", ""),
    )

async def get_principal(
    request: Request,
    authorization: str | None = Header(None),
    guest_session: str | None = Header(None, alias=settings.GUEST_SESSION_HEADER),
) -> Principal:
    """Caller identity; a missing or stale bearer token yields an anonymous principal"""
    return resolve_principal(authorization, guest_session, get_device_info(request))

def principal_user_id(principal: Principal) -> int | None:
    return principal.user_id if isinstance(principal, AuthenticatedPrincipal) else None

def denial_to_http(denial: AccessDenied, principal: Principal) -> HTTPException:
    """The single table mapping denial reasons to HTTP responses"""
    detail = {"reason": denial.reason, "message": denial_message(denial)}
    kind = denial.kind

    if kind == "event_not_found" or denial.reason == "token_invalid:not_found":
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=detail)
    if kind == "decision_timeout":
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=detail)
    if kind == "anonymous_session_expired" or (kind == "no_role" and isinstance(principal, AnonymousPrincipal)):
        return HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        )
    if denial.reason == "token_invalid:password_required":
        return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)
    if denial.reason == "token_invalid:email_not_allowed" and isinstance(principal, AnonymousPrincipal):
        return HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        )
    if denial.reason in ("token_invalid:expired", "token_invalid:revoked", "token_invalid:capacity_exceeded"):
        return HTTPException(status_code=status.HTTP_410_GONE, detail=detail)
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=detail)

def ensure_granted(decision: AccessDecision, principal: Principal) -> AccessGranted:
    if isinstance(decision, AccessDenied):
        raise denial_to_http(decision, principal)
    return decision

def event_access(required: str | None = None) -> Callable:
    """Dependency factory: the caller's decision on the event in the path"""
    async def dependency(
        event_id: int = Path(..., gt=0),
        principal: Principal = Depends(get_principal),
        db: AsyncSession = Depends(get_db),
        clock: Clock = Depends(get_clock),
    ) -> AccessGranted:
        decision = await check_access(db, event_id, principal, required, clock=clock)
        return ensure_granted(decision, principal)
    return dependency

async def load_event(db: AsyncSession, access: AccessGranted) -> Event:
    event = await crud_event.get_event(db, access.event_id)
    if event is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Event not found")
    return event

def access_response(access: AccessGranted) -> AccessResponse:
    return AccessResponse(
        event_id=access.event_id,
        role=access.role,
        visibility=access.visibility,
        capabilities=access.capabilities.model_dump(),
        via_token=access.via_token,
        upload_requires_approval=access.upload_requires_approval,
        allowed_media_types=access.allowed_media_types,
        prompt_login=access.prompt_login,
    )

async def join_response(
    db: AsyncSession,
    decision: AccessDecision,
    record: EventParticipant | AnonymousSession | None,
    principal: Principal,
    clock: Clock
) -> JoinResponse:
    access = ensure_granted(decision, principal)
    if isinstance(record, EventParticipant) and record.is_active:
        # Report the role the join produced, not the one used to get in
        refreshed = await check_access(db, access.event_id, principal, clock=clock)
        if isinstance(refreshed, AccessGranted):
            access = refreshed
    if isinstance(record, AnonymousSession):
        return JoinResponse(access=access_response(access), guest_session=GuestSessionResponse.model_validate(record))
    participant = ParticipantResponse.model_validate(record) if record is not None else None
    return JoinResponse(access=access_response(access), participant=participant)

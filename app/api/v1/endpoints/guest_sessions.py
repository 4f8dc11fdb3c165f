from fastapi import APIRouter, Depends, Header, Path, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.access.decision import check_access, load_anonymous_session
from app.access.types import AnonymousPrincipal, AuthenticatedPrincipal, Principal
from app.api.deps import access_response, ensure_granted, get_device_info, get_principal
from app.core.clock import Clock, get_clock
from app.core.config import settings
from app.core.exceptions import InvalidStateError, NotFoundError
from app.core.security import get_current_user
from app.crud import anonymous_session as crud_session
from app.crud import event as crud_event
from app.crud import participant as crud_participant
from app.db.database import get_db
from app.models.user import User
from app.schemas.participant import JoinResponse, ParticipantResponse
from app.schemas.share_token import GuestSessionCreate, GuestSessionResponse

router = APIRouter(
    prefix="/events/{event_id}/guest-session",
    tags=["Guest sessions"],
    responses={
        401: {"description": "Guest access has ended"},
        404: {"description": "Event or guest session not found"}
    }
)

@router.post(
    "",
    response_model=GuestSessionResponse,
    summary="Start guest session",
    description="""
    Get or create the caller's anonymous session on an event.

    Only available while the event admits anonymous guests. The returned
    `session_id` identifies the guest in the `X-Guest-Session` header.
    """,
    responses={
        200: {
            "description": "Guest session",
            "content": {
                "application/json": {
                    "example": {
                        "session_id": "anon_5f1c9a0b7e2d4c38a6b1f0e9d8c7b6a5",
                        "event_id": 1,
                        "guest_name": "Aunt May",
                        "status": "active",
                        "grace_period_expires": None,
                        "requires_login": False
                    }
                }
            }
        }
    }
)
async def start_guest_session(
    request: Request,
    event_id: int = Path(..., gt=0),
    session_in: GuestSessionCreate | None = None,
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    principal: Principal = Depends(get_principal)
) -> GuestSessionResponse:
    if isinstance(principal, AuthenticatedPrincipal):
        raise InvalidStateError("Signed-in users join the event instead of opening a guest session")

    session_in = session_in or GuestSessionCreate()
    decision, session = await crud_participant.join_event(
        db,
        event_id,
        principal,
        guest_name=session_in.guest_name,
        device=get_device_info(request),
        clock=clock,
    )
    ensure_granted(decision, principal)
    return GuestSessionResponse.model_validate(session)

@router.get(
    "",
    response_model=GuestSessionResponse,
    summary="Get guest session",
    description="The caller's own guest session, including any grace-period expiry.",
)
async def get_guest_session(
    event_id: int = Path(..., gt=0),
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_principal)
) -> GuestSessionResponse:
    if not isinstance(principal, AnonymousPrincipal):
        raise NotFoundError("Guest session not found")
    session = await load_anonymous_session(db, event_id, principal.session_id)
    if session is None:
        raise NotFoundError("Guest session not found")
    return GuestSessionResponse.model_validate(session)

@router.post(
    "/claim",
    response_model=JoinResponse,
    summary="Claim guest session",
    description="""
    Attach a guest session to the signed-in user.

    Send the access token as usual and the guest session id in the
    `X-Guest-Session` header. The user becomes an active participant, so
    access no longer depends on the session's grace period.
    """
)
async def claim_guest_session(
    event_id: int = Path(..., gt=0),
    guest_session: str = Header(..., alias=settings.GUEST_SESSION_HEADER),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    current_user: User = Depends(get_current_user)
) -> JoinResponse:
    event = await crud_event.get_event(db, event_id)
    if event is None:
        raise NotFoundError("Event not found")

    session, participant = await crud_session.claim_session(db, event, guest_session, current_user, clock=clock)

    principal = AuthenticatedPrincipal(user_id=current_user.id, email=current_user.email)
    decision = await check_access(db, event_id, principal, clock=clock)
    return JoinResponse(
        access=access_response(ensure_granted(decision, principal)),
        participant=ParticipantResponse.model_validate(participant),
        guest_session=GuestSessionResponse.model_validate(session)
    )

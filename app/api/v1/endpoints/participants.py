from typing import List
from fastapi import APIRouter, Depends, HTTPException, Path, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.access.types import AccessGranted, Principal
from app.api.deps import (
    event_access,
    get_device_info,
    get_principal,
    join_response,
    load_event,
    principal_user_id,
)
from app.core.clock import Clock, get_clock
from app.core.security import get_current_user
from app.crud import anonymous_session as crud_session
from app.crud import event as crud_event
from app.crud import participant as crud_participant
from app.db.database import get_db
from app.models.enums import ParticipantStatus
from app.models.user import User
from app.schemas.participant import (
    JoinRequest,
    JoinResponse,
    ParticipantInvite,
    ParticipantList,
    ParticipantResponse,
    ParticipantUpdate,
)
from app.schemas.share_token import GuestSessionResponse

router = APIRouter(
    prefix="/events/{event_id}",
    tags=["Participants"],
    responses={
        401: {"description": "Not authenticated"},
        403: {"description": "Not enough permissions"},
        404: {"description": "Event or participant not found"}
    }
)

@router.get(
    "/participants",
    response_model=ParticipantList,
    summary="List participants",
)
async def list_participants(
    db: AsyncSession = Depends(get_db),
    access: AccessGranted = Depends(event_access("can_manage_participants")),
    status_filter: ParticipantStatus | None = Query(None, alias="status")
) -> ParticipantList:
    participants = await crud_participant.list_participants(db, access.event_id, status=status_filter)
    return ParticipantList(
        items=[ParticipantResponse.model_validate(participant) for participant in participants],
        total=len(participants)
    )

@router.get(
    "/guest-sessions",
    response_model=List[GuestSessionResponse],
    summary="List guest sessions",
    description="Anonymous sessions on the event with their grace-period state, oldest first.",
)
async def list_guest_sessions(
    db: AsyncSession = Depends(get_db),
    access: AccessGranted = Depends(event_access("can_manage_participants"))
) -> List[GuestSessionResponse]:
    sessions = await crud_session.list_sessions(db, access.event_id)
    return [GuestSessionResponse.model_validate(session) for session in sessions]

@router.post(
    "/participants",
    response_model=ParticipantResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Invite participant",
    description="""
    Invite a registered user. The invitation is pending until the user joins.

    * Inviting as `co_host` or `moderator` requires participant management
    * Other roles require the right to invite others
    * The owner role cannot be assigned
    """,
    responses={
        409: {
            "description": "Already invited",
            "content": {
                "application/json": {
                    "example": {"detail": "User is already invited to or participating in this event"}
                }
            }
        }
    }
)
async def invite_participant(
    *,
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    invite_in: ParticipantInvite,
    access: AccessGranted = Depends(event_access()),
    principal: Principal = Depends(get_principal)
) -> ParticipantResponse:
    event = await load_event(db, access)
    participant = await crud_participant.invite_participant(
        db,
        event,
        invite_in,
        access,
        clock=clock,
        actor_id=principal_user_id(principal),
    )
    return ParticipantResponse.model_validate(participant)

@router.patch(
    "/participants/{user_id}",
    response_model=ParticipantResponse,
    summary="Update participant",
    description="Change another participant's role or permission overrides. Co-host and moderator changes are the owner's; promotion to co-host waits for approval.",
)
async def update_participant(
    *,
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    user_id: int = Path(..., gt=0),
    update_in: ParticipantUpdate,
    access: AccessGranted = Depends(event_access("can_manage_participants")),
    principal: Principal = Depends(get_principal)
) -> ParticipantResponse:
    event = await load_event(db, access)
    participant = await crud_participant.update_participant(
        db,
        event,
        user_id,
        update_in,
        access,
        clock=clock,
        actor_id=principal_user_id(principal),
    )
    return ParticipantResponse.model_validate(participant)

@router.delete(
    "/participants/{user_id}",
    response_model=ParticipantResponse,
    summary="Remove participant",
    description="Removed participants keep their record and cannot rejoin.",
)
async def remove_participant(
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    user_id: int = Path(..., gt=0),
    access: AccessGranted = Depends(event_access("can_manage_participants")),
    principal: Principal = Depends(get_principal)
) -> ParticipantResponse:
    event = await load_event(db, access)
    participant = await crud_participant.remove_participant(
        db,
        event,
        user_id,
        access,
        clock=clock,
        actor_id=principal_user_id(principal),
    )
    return ParticipantResponse.model_validate(participant)

@router.post(
    "/join",
    response_model=JoinResponse,
    summary="Join event",
    description="""
    Join an event directly or through a share link.

    * Signed-in users get an active participant record; a pending invitation is accepted
    * Anonymous callers get a guest session; send its `session_id` back in the
      `X-Guest-Session` header on later requests
    * A share link use is counted only when the join creates or activates something
    """,
    responses={
        200: {
            "description": "Joined",
            "content": {
                "application/json": {
                    "example": {
                        "access": {
                            "event_id": 1,
                            "role": "authenticated_guest",
                            "visibility": "anyone_with_link",
                            "capabilities": {"can_view": True, "can_upload": True},
                            "via_token": False,
                            "upload_requires_approval": True,
                            "allowed_media_types": {"images": True, "videos": True},
                            "prompt_login": False
                        },
                        "participant": {
                            "id": 7,
                            "event_id": 1,
                            "user_id": 3,
                            "role": "authenticated_guest",
                            "status": "active"
                        },
                        "guest_session": None
                    }
                }
            }
        },
        410: {"description": "Share link expired, revoked or used up"}
    }
)
async def join_event(
    request: Request,
    event_id: int = Path(..., gt=0),
    join_in: JoinRequest | None = None,
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    principal: Principal = Depends(get_principal)
) -> JoinResponse:
    join_in = join_in or JoinRequest()
    decision, record = await crud_participant.join_event(
        db,
        event_id,
        principal,
        token=join_in.share_token,
        password=join_in.password,
        guest_name=join_in.guest_name,
        device=get_device_info(request),
        clock=clock,
    )
    return await join_response(db, decision, record, principal, clock)

@router.post(
    "/leave",
    response_model=ParticipantResponse,
    summary="Leave event",
    description="The owner cannot leave; transfer ownership first.",
)
async def leave_event(
    event_id: int = Path(..., gt=0),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    current_user: User = Depends(get_current_user)
) -> ParticipantResponse:
    event = await crud_event.get_event(db, event_id)
    if event is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Event not found")
    participant = await crud_participant.leave_event(db, event, current_user.id, clock=clock)
    return ParticipantResponse.model_validate(participant)

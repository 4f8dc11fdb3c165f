from typing import List
from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.access.types import AccessGranted, Principal
from app.api.deps import event_access, get_principal, load_event, principal_user_id
from app.core.clock import Clock, get_clock
from app.core.security import get_current_user
from app.crud import participant as crud_participant
from app.crud.participant import CoHostAction
from app.db.database import get_db
from app.models.user import User
from app.schemas.participant import (
    CoHostInvite,
    CoHostInviteLinkCreate,
    CoHostInviteLinkResponse,
    CoHostList,
    ParticipantResponse,
)

router = APIRouter(
    prefix="/events/{event_id}/co-hosts",
    tags=["Co-hosts"],
    responses={
        401: {"description": "Not authenticated"},
        403: {"description": "Not enough permissions"},
        404: {"description": "Event or co-host not found"}
    }
)

@router.get(
    "/",
    response_model=CoHostList,
    summary="List co-hosts",
    description="Co-host records grouped by status: pending, active, rejected and removed.",
)
async def list_co_hosts(
    db: AsyncSession = Depends(get_db),
    access: AccessGranted = Depends(event_access("can_manage_participants"))
) -> CoHostList:
    grouped = await crud_participant.list_co_hosts(db, access.event_id)
    return CoHostList(**{
        key: [ParticipantResponse.model_validate(record) for record in records]
        for key, records in grouped.items()
    })

@router.post(
    "/",
    response_model=ParticipantResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Invite co-host",
    description="""
    Invite a registered user as co-host.

    The invitation stays pending and grants nothing until it is approved.
    """,
    responses={
        201: {
            "description": "Invitation created",
            "content": {
                "application/json": {
                    "example": {
                        "id": 4,
                        "event_id": 1,
                        "user_id": 2,
                        "role": "co_host",
                        "status": "pending",
                        "permissions": {},
                        "invited_by": 1
                    }
                }
            }
        }
    }
)
async def invite_co_host(
    *,
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    invite_in: CoHostInvite,
    access: AccessGranted = Depends(event_access("can_manage_participants")),
    principal: Principal = Depends(get_principal)
) -> ParticipantResponse:
    event = await load_event(db, access)
    participant = await crud_participant.invite_co_host(
        db,
        event,
        invite_in,
        access,
        clock=clock,
        actor_id=principal_user_id(principal),
    )
    return ParticipantResponse.model_validate(participant)

@router.post(
    "/{user_id}/{action}",
    response_model=ParticipantResponse,
    summary="Approve, reject or remove a co-host",
    description="""
    Apply a co-host action.

    * `approve`: pending to active
    * `reject`: pending to rejected
    * `remove`: pending or active to removed

    Repeating an action that already took effect returns the record unchanged.
    """
)
async def manage_co_host(
    *,
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    user_id: int = Path(..., gt=0),
    action: CoHostAction,
    access: AccessGranted = Depends(event_access("can_manage_participants")),
    principal: Principal = Depends(get_principal)
) -> ParticipantResponse:
    event = await load_event(db, access)
    participant, _ = await crud_participant.manage_co_host(
        db,
        event,
        user_id,
        action,
        access,
        clock=clock,
        actor_id=principal_user_id(principal),
    )
    return ParticipantResponse.model_validate(participant)

@router.post(
    "/invite-links",
    response_model=CoHostInviteLinkResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create co-host invite link",
    description="""
    Create a link that turns signed-in users who follow it into co-hosts.

    * Expires after `expires_in_hours` (24 by default) and allows `max_uses` joins (10 by default)
    * `permissions` is the override bag every joining co-host receives
    * Links created by a co-host produce pending co-hosts that need approval
    """,
    responses={
        201: {
            "description": "Invite link created",
            "content": {
                "application/json": {
                    "example": {
                        "id": 5,
                        "token": "pX3c8Zr0mKq1LwYv7TnB2uHd",
                        "event_id": 1,
                        "permissions": {"manage_guests": False, "manage_settings": False},
                        "max_uses": 10,
                        "usage_count": 0,
                        "expires_at": "2024-06-02T12:00:00Z",
                        "requires_approval": False,
                        "revoked": False,
                        "created_by": 1
                    }
                }
            }
        }
    }
)
async def create_co_host_invite(
    *,
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    invite_in: CoHostInviteLinkCreate | None = None,
    access: AccessGranted = Depends(event_access("can_manage_participants")),
    current_user: User = Depends(get_current_user)
) -> CoHostInviteLinkResponse:
    event = await load_event(db, access)
    link = await crud_participant.create_co_host_invite(
        db,
        event,
        invite_in or CoHostInviteLinkCreate(),
        access,
        clock=clock,
        actor_id=current_user.id,
    )
    return CoHostInviteLinkResponse.from_token(link)

@router.get(
    "/invite-links",
    response_model=List[CoHostInviteLinkResponse],
    summary="List co-host invite links",
    description="Newest first. Revoked links are left out unless `include_revoked` is set.",
)
async def list_co_host_invites(
    db: AsyncSession = Depends(get_db),
    access: AccessGranted = Depends(event_access("can_manage_participants")),
    include_revoked: bool = Query(False)
) -> List[CoHostInviteLinkResponse]:
    links = await crud_participant.list_co_host_invites(db, access.event_id, include_revoked=include_revoked)
    return [CoHostInviteLinkResponse.from_token(link) for link in links]

@router.delete(
    "/invite-links/{token_id}",
    response_model=CoHostInviteLinkResponse,
    summary="Revoke co-host invite link",
    description="Revocation is permanent; co-hosts who already joined keep their role.",
)
async def revoke_co_host_invite(
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    token_id: int = Path(..., gt=0),
    access: AccessGranted = Depends(event_access("can_manage_participants")),
    current_user: User = Depends(get_current_user)
) -> CoHostInviteLinkResponse:
    event = await load_event(db, access)
    link = await crud_participant.revoke_co_host_invite(
        db,
        event,
        token_id,
        access,
        clock=clock,
        actor_id=current_user.id,
    )
    return CoHostInviteLinkResponse.from_token(link)

from typing import List
from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.access import visibility as access_visibility
from app.access.types import AccessGranted, Principal
from app.api.deps import access_response, event_access, get_principal, load_event, principal_user_id
from app.core.clock import Clock, get_clock
from app.core.logging import events_logger
from app.core.security import get_current_user
from app.crud import activity as crud_activity
from app.crud import event as crud_event
from app.crud import participant as crud_participant
from app.db.database import get_db
from app.models.user import User
from app.schemas.activity import ActivityResponse
from app.schemas.event import (
    AccessResponse,
    AnonymousPolicyUpdate,
    EventCreate,
    EventListResponse,
    EventPermissionDefaultsUpdate,
    EventResponse,
    EventUpdate,
    OwnershipTransfer,
    ShareLinkUpdate,
    TransitionResponse,
    VisibilityUpdate,
)

router = APIRouter(
    prefix="/events",
    tags=["Events"],
    responses={
        401: {"description": "Not authenticated"},
        403: {"description": "Not enough permissions"},
        404: {"description": "Event not found"},
        500: {"description": "Internal server error"}
    }
)

@router.post(
    "/",
    response_model=EventResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create new event",
    description="""
    Create a new event owned by the current user.

    Features:
    * Owner participant record created alongside the event
    * Primary share link generated (optionally password protected)
    * Visibility defaults to `private`; `unlisted` and `restricted` are accepted as aliases
    """,
    responses={
        201: {
            "description": "Event created successfully",
            "content": {
                "application/json": {
                    "example": {
                        "id": 1,
                        "title": "Summer Wedding",
                        "description": "Photos from the big day",
                        "owner_id": 1,
                        "visibility": "anyone_with_link",
                        "permissions": {
                            "can_view": True,
                            "can_upload": True,
                            "can_download": False,
                            "require_approval": True,
                            "allowed_media_types": {"images": True, "videos": True}
                        },
                        "anonymous_transition_policy": "grace_period",
                        "grace_period_hours": 24,
                        "share_token": "g3t9Yv0R2c1b7Hq4s8Wm5xKa",
                        "share_is_active": True,
                        "created_at": "2024-03-19T15:00:00Z",
                        "updated_at": "2024-03-19T15:00:00Z"
                    }
                }
            }
        }
    }
)
async def create_event(
    *,
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    event_in: EventCreate,
    current_user: User = Depends(get_current_user)
) -> EventResponse:
    """
    Create a new event.

    Parameters:
    - **title**: Event title
    - **visibility**: anyone_with_link, invited_only or private
    - **permissions**: Defaults applied to guests
    """
    db_event = await crud_event.create_event(db, event_in, current_user, clock=clock)
    return EventResponse.from_event(db_event, include_share_link=True)

@router.get(
    "/",
    response_model=EventListResponse,
    summary="List my events",
    description="Events the current user owns or actively participates in, newest first.",
)
async def list_events(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000)
) -> EventListResponse:
    events = await crud_event.list_events_for_user(db, current_user.id, skip=skip, limit=limit)
    return EventListResponse(
        items=[EventResponse.from_event(event, include_share_link=event.owner_id == current_user.id) for event in events],
        total=len(events)
    )

@router.get(
    "/{event_id}",
    response_model=EventResponse,
    summary="Get event",
    description="""
    Get an event the caller can view.

    Anonymous callers are admitted on `anyone_with_link` events and, after a
    visibility change, while their guest session is within its grace period.
    The primary share link is only returned to callers who may invite others.
    """
)
async def get_event(
    db: AsyncSession = Depends(get_db),
    access: AccessGranted = Depends(event_access("can_view"))
) -> EventResponse:
    event = await load_event(db, access)
    return EventResponse.from_event(event, include_share_link=access.capabilities.can_invite_others)

@router.patch(
    "/{event_id}",
    response_model=EventResponse,
    summary="Update event",
)
async def update_event(
    *,
    db: AsyncSession = Depends(get_db),
    event_in: EventUpdate,
    access: AccessGranted = Depends(event_access("can_edit")),
    principal: Principal = Depends(get_principal)
) -> EventResponse:
    event = await load_event(db, access)
    event = await crud_event.update_event(db, event, event_in, access, principal_user_id(principal))
    return EventResponse.from_event(event, include_share_link=access.capabilities.can_invite_others)

@router.delete(
    "/{event_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete event",
    description="Delete the event with its participants, guest sessions and share links. Owner only.",
)
async def delete_event(
    db: AsyncSession = Depends(get_db),
    access: AccessGranted = Depends(event_access("can_delete")),
    principal: Principal = Depends(get_principal)
) -> Response:
    event = await load_event(db, access)
    await crud_event.delete_event(db, event, access, principal_user_id(principal))
    return Response(status_code=status.HTTP_204_NO_CONTENT)

@router.get(
    "/{event_id}/access",
    response_model=AccessResponse,
    summary="Get my access",
    description="""
    Resolve the caller's role and capabilities on the event.

    Denials carry a machine-readable reason, e.g. `no_role`,
    `anonymous_session_expired` or `capability_denied:can_view`.
    """,
    responses={
        200: {
            "description": "Access granted",
            "content": {
                "application/json": {
                    "example": {
                        "event_id": 1,
                        "role": "guest",
                        "visibility": "anyone_with_link",
                        "capabilities": {"can_view": True, "can_upload": True, "can_edit": False},
                        "via_token": False,
                        "upload_requires_approval": True,
                        "allowed_media_types": {"images": True, "videos": True},
                        "prompt_login": False
                    }
                }
            }
        },
        401: {
            "description": "Anonymous caller without a role",
            "content": {
                "application/json": {
                    "example": {"detail": {"reason": "anonymous_session_expired", "message": "Your guest access to this event has ended. Sign in to continue."}}
                }
            }
        }
    }
)
async def get_access(
    access: AccessGranted = Depends(event_access())
) -> AccessResponse:
    return access_response(access)

@router.put(
    "/{event_id}/visibility",
    response_model=TransitionResponse,
    summary="Change visibility",
    description="""
    Move the event between `anyone_with_link`, `invited_only` and `private`.

    Tightening applies the anonymous transition policy to live guest sessions:
    * `block_all`: sessions expire immediately
    * `grace_period`: sessions expire after the grace period
    * `force_login`: sessions get a short window and are asked to sign in

    Repeating a transition changes nothing.
    """,
    responses={
        200: {
            "description": "Transition applied",
            "content": {
                "application/json": {
                    "example": {
                        "event_id": 1,
                        "from_visibility": "anyone_with_link",
                        "to_visibility": "invited_only",
                        "anonymous_users_affected": 3,
                        "actions_taken": [
                            "Event now admits invited guests only",
                            "Anonymous sessions granted a 24h grace period"
                        ]
                    }
                }
            }
        },
        409: {"description": "Concurrent visibility change"}
    }
)
async def change_visibility(
    *,
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    update_in: VisibilityUpdate,
    access: AccessGranted = Depends(event_access("can_edit")),
    principal: Principal = Depends(get_principal)
) -> TransitionResponse:
    result = await access_visibility.transition_visibility(
        db,
        access.event_id,
        update_in.visibility,
        access,
        clock=clock,
        actor_id=principal_user_id(principal),
        policy=update_in.policy,
        grace_period_hours=update_in.grace_period_hours,
    )
    return TransitionResponse(**result.model_dump())

@router.put(
    "/{event_id}/anonymous-policy",
    response_model=EventResponse,
    summary="Set anonymous transition policy",
)
async def set_anonymous_policy(
    *,
    db: AsyncSession = Depends(get_db),
    policy_in: AnonymousPolicyUpdate,
    access: AccessGranted = Depends(event_access("can_manage_settings")),
    principal: Principal = Depends(get_principal)
) -> EventResponse:
    """Takes effect on the next tightening transition"""
    event = await load_event(db, access)
    event = await access_visibility.update_anonymous_policy(
        db,
        event,
        policy_in.policy,
        policy_in.grace_period_hours,
        actor_id=principal_user_id(principal),
    )
    return EventResponse.from_event(event, include_share_link=access.capabilities.can_invite_others)

@router.patch(
    "/{event_id}/permissions",
    response_model=EventResponse,
    summary="Update guest permission defaults",
    description="Event-level defaults narrow what guests and authenticated guests may do.",
)
async def update_permissions(
    *,
    db: AsyncSession = Depends(get_db),
    defaults_in: EventPermissionDefaultsUpdate,
    access: AccessGranted = Depends(event_access("can_manage_settings")),
    principal: Principal = Depends(get_principal)
) -> EventResponse:
    event = await load_event(db, access)
    event = await crud_event.update_permission_defaults(db, event, defaults_in, access, principal_user_id(principal))
    return EventResponse.from_event(event, include_share_link=access.capabilities.can_invite_others)

@router.patch(
    "/{event_id}/share-link",
    response_model=EventResponse,
    summary="Update primary share link",
    description="""
    Manage the event's own link.

    * `is_active`: enable or disable the link
    * `password` / `remove_password`: protect the link
    * `expires_at`: set or clear an expiry
    * `regenerate`: issue a new link; the old one stops working
    """
)
async def update_share_link(
    *,
    db: AsyncSession = Depends(get_db),
    link_in: ShareLinkUpdate,
    access: AccessGranted = Depends(event_access("can_invite_others")),
    principal: Principal = Depends(get_principal)
) -> EventResponse:
    event = await load_event(db, access)
    event = await crud_event.update_share_link(db, event, link_in, access, principal_user_id(principal))
    return EventResponse.from_event(event, include_share_link=True)

@router.post(
    "/{event_id}/transfer-ownership",
    response_model=EventResponse,
    summary="Transfer ownership",
    description="""
    Hand the event to another active participant.

    The previous owner remains on the event as an active co-host.
    """,
    responses={
        400: {
            "description": "Target is not an active participant",
            "content": {
                "application/json": {
                    "example": {"detail": "The new owner must be an active participant of the event"}
                }
            }
        }
    }
)
async def transfer_ownership(
    *,
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    transfer_in: OwnershipTransfer,
    access: AccessGranted = Depends(event_access("can_transfer_ownership")),
    principal: Principal = Depends(get_principal)
) -> EventResponse:
    event = await load_event(db, access)
    event = await crud_participant.transfer_ownership(
        db,
        event,
        transfer_in.new_owner_id,
        access,
        clock=clock,
        actor_id=principal_user_id(principal),
    )
    events_logger.info(
        "Ownership transferred",
        extra={"event_id": event.id, "user_id": principal_user_id(principal)}
    )
    return EventResponse.from_event(event)

@router.get(
    "/{event_id}/activity",
    response_model=List[ActivityResponse],
    summary="Event activity",
    description="Audit trail of access changes: visibility, invitations, joins and link management.",
)
async def get_activity(
    db: AsyncSession = Depends(get_db),
    access: AccessGranted = Depends(event_access("can_view_analytics")),
    action: str | None = Query(None, description="Only entries with this action")
) -> List[ActivityResponse]:
    entries = await crud_activity.list_activity(db, access.event_id, action=action)
    return [ActivityResponse.model_validate(entry) for entry in entries]

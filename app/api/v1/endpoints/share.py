from fastapi import APIRouter, Depends, Header, Path, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.access.decision import email_admitted
from app.access.share_tokens import validate_share_token
from app.access.types import AccessDenied, Principal, TokenInvalid
from app.api.deps import denial_to_http, get_device_info, get_principal, join_response
from app.core.clock import Clock, get_clock
from app.crud import event as crud_event
from app.crud import participant as crud_participant
from app.db.database import get_db
from app.schemas.participant import JoinResponse
from app.schemas.share_token import SharePreview, ShareJoinRequest, ShareTokenPermissions

router = APIRouter(
    prefix="/share",
    tags=["Share links"],
    responses={
        401: {"description": "Password or sign-in required"},
        403: {"description": "Link not usable by this caller"},
        404: {"description": "Link not found"},
        410: {"description": "Link expired, revoked or used up"}
    }
)

@router.get(
    "/{token}",
    response_model=SharePreview,
    summary="Preview share link",
    description="""
    Resolve a link to its event without joining.

    Previewing never counts as a use of the link. Password protected links
    take the password in the `X-Share-Password` header.
    """,
    responses={
        200: {
            "description": "Link is usable",
            "content": {
                "application/json": {
                    "example": {
                        "event_id": 1,
                        "title": "Summer Wedding",
                        "visibility": "anyone_with_link",
                        "token_type": "invite",
                        "permissions": {"view": True, "upload": True, "download": False, "share": False, "comment": True}
                    }
                }
            }
        }
    }
)
async def preview_share_link(
    token: str = Path(..., min_length=8, max_length=64),
    password: str | None = Header(None, alias="X-Share-Password"),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    principal: Principal = Depends(get_principal)
) -> SharePreview:
    validation = await validate_share_token(db, token, password, clock=clock)
    if isinstance(validation, TokenInvalid):
        raise denial_to_http(AccessDenied(reason=f"token_invalid:{validation.reason}"), principal)
    if not email_admitted(principal, validation.scope):
        raise denial_to_http(
            AccessDenied(reason="token_invalid:email_not_allowed", event_id=validation.event_id),
            principal
        )

    event = await crud_event.get_event(db, validation.event_id)
    if event is None:
        raise denial_to_http(AccessDenied(reason="event_not_found", event_id=validation.event_id), principal)

    scope = validation.scope
    return SharePreview(
        event_id=event.id,
        title=event.title,
        visibility=event.visibility,
        token_type=scope.token_type,
        permissions=ShareTokenPermissions(
            view=scope.view,
            upload=scope.upload,
            download=scope.download,
            share=scope.share,
            comment=scope.comment,
        )
    )

@router.post(
    "/{token}/join",
    response_model=JoinResponse,
    summary="Join through share link",
    description="""
    Join the link's event. The use is counted once per new participant or
    guest session; a link at its use limit answers 410.
    """
)
async def join_via_share_link(
    request: Request,
    token: str = Path(..., min_length=8, max_length=64),
    join_in: ShareJoinRequest | None = None,
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    principal: Principal = Depends(get_principal)
) -> JoinResponse:
    join_in = join_in or ShareJoinRequest()
    decision, record = await crud_participant.join_event(
        db,
        None,
        principal,
        token=token,
        password=join_in.password,
        guest_name=join_in.guest_name,
        device=get_device_info(request),
        clock=clock,
    )
    return await join_response(db, decision, record, principal, clock)

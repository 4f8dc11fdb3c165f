from typing import List
from fastapi import APIRouter, Depends, HTTPException, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.access import share_tokens as access_tokens
from app.access.types import AccessGranted
from app.api.deps import event_access, load_event
from app.core.clock import Clock, get_clock
from app.core.security import get_current_user
from app.db.database import get_db
from app.models.share_token import ShareToken
from app.models.user import User
from app.schemas.share_token import (
    ShareTokenCreate,
    ShareTokenResponse,
    ShareTokenUsage,
    ShareTokenUseResponse,
)

router = APIRouter(
    prefix="/events/{event_id}/share-tokens",
    tags=["Share links"],
    responses={
        401: {"description": "Not authenticated"},
        403: {"description": "Not enough permissions"},
        404: {"description": "Event or share link not found"}
    }
)

@router.post(
    "/",
    response_model=ShareTokenResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create share link",
    description="""
    Create an additional link to the event.

    Features:
    * Link permissions can only narrow what the joining role may do
    * Optional use limit, expiry and password
    * `allowed_emails` restricts the link to signed-in users with those addresses
    """,
    responses={
        201: {
            "description": "Share link created",
            "content": {
                "application/json": {
                    "example": {
                        "id": 3,
                        "token": "Jq0vV2mE1x9rYb4Zc8Tn6uLw",
                        "event_id": 1,
                        "token_type": "invite",
                        "permissions": {"view": True, "upload": True, "download": False, "share": False, "comment": True},
                        "max_uses": 20,
                        "expires_at": "2024-04-01T00:00:00Z",
                        "allowed_emails": [],
                        "requires_approval": False,
                        "password_protected": False,
                        "usage_count": 0,
                        "revoked": False,
                        "created_by": 1
                    }
                }
            }
        }
    }
)
async def create_share_token(
    *,
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    token_in: ShareTokenCreate,
    access: AccessGranted = Depends(event_access("can_invite_others")),
    current_user: User = Depends(get_current_user)
) -> ShareTokenResponse:
    event = await load_event(db, access)
    token = await access_tokens.create_share_token(db, event, token_in, current_user.id, clock=clock)
    return ShareTokenResponse.from_token(token)

@router.get(
    "/",
    response_model=List[ShareTokenResponse],
    summary="List share links",
)
async def list_share_tokens(
    db: AsyncSession = Depends(get_db),
    access: AccessGranted = Depends(event_access("can_invite_others")),
    include_revoked: bool = Query(True)
) -> List[ShareTokenResponse]:
    tokens = await access_tokens.list_share_tokens(db, access.event_id, include_revoked=include_revoked)
    return [ShareTokenResponse.from_token(token) for token in tokens]

@router.delete(
    "/{token_id}",
    response_model=ShareTokenResponse,
    summary="Revoke share link",
    description="Revocation is permanent. Revoking twice returns the already revoked link.",
)
async def revoke_share_token(
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    token_id: int = Path(..., gt=0),
    access: AccessGranted = Depends(event_access("can_invite_others")),
    current_user: User = Depends(get_current_user)
) -> ShareTokenResponse:
    token = await access_tokens.revoke_share_token(db, access.event_id, token_id, current_user.id, clock=clock)
    return ShareTokenResponse.from_token(token)

@router.get(
    "/{token_id}/usage",
    response_model=ShareTokenUsage,
    summary="Share link usage",
    description="Every counted use of the link, oldest first.",
)
async def get_share_token_usage(
    db: AsyncSession = Depends(get_db),
    token_id: int = Path(..., gt=0),
    access: AccessGranted = Depends(event_access("can_view_analytics"))
) -> ShareTokenUsage:
    token = await db.get(ShareToken, token_id, populate_existing=True)
    if token is None or token.event_id != access.event_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Share token not found")
    uses = await access_tokens.get_token_usage(db, token_id)
    return ShareTokenUsage(
        token_id=token.id,
        usage_count=token.usage_count,
        max_uses=token.max_uses,
        uses=[ShareTokenUseResponse.model_validate(use) for use in uses]
    )

from fastapi import APIRouter, Depends, Path, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.access.types import AccessDenied, Principal
from app.api.deps import denial_to_http, get_principal
from app.core.clock import Clock, get_clock
from app.crud import participant as crud_participant
from app.db.database import get_db
from app.schemas.participant import ParticipantResponse

router = APIRouter(
    prefix="/co-host-invites",
    tags=["Co-hosts"],
    responses={
        401: {"description": "Sign-in required"},
        404: {"description": "Link not found"},
        409: {"description": "Already a co-host"},
        410: {"description": "Link expired, revoked or used up"}
    }
)

@router.post(
    "/{token}/join",
    response_model=ParticipantResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Join as co-host",
    description="""
    Follow a co-host invite link. The caller must be signed in.

    The returned record is `active`, or `pending` when the link was created
    by a co-host and an approval is still needed. Use `/share/{token}` to
    preview the link without joining.
    """
)
async def join_as_co_host(
    token: str = Path(..., min_length=8, max_length=64),
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    principal: Principal = Depends(get_principal)
) -> ParticipantResponse:
    result = await crud_participant.join_as_co_host(db, token, principal, clock=clock)
    if isinstance(result, AccessDenied):
        raise denial_to_http(result, principal)
    return ParticipantResponse.model_validate(result)

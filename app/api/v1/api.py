from fastapi import APIRouter

from app.api.v1.endpoints import auth, events, participants, co_hosts, co_host_invites, share_tokens, share, guest_sessions

api_router = APIRouter()

# Include all route modules
api_router.include_router(auth.router)
api_router.include_router(events.router)
api_router.include_router(participants.router)
api_router.include_router(co_hosts.router)
api_router.include_router(co_host_invites.router)
api_router.include_router(share_tokens.router)
api_router.include_router(share.router)
api_router.include_router(guest_sessions.router)

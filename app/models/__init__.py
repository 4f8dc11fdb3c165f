from .base import Base
from .enums import (
    Visibility,
    ParticipantRole,
    ParticipantStatus,
    ShareTokenType,
    AnonymousTransitionPolicy,
    AnonymousSessionStatus,
)
from .user import User
from .event import Event
from .participant import EventParticipant
from .share_token import ShareToken, ShareTokenUse
from .anonymous_session import AnonymousSession
from .activity import EventActivity

# For convenience, export all models
__all__ = [
    "Base",
    "Visibility",
    "ParticipantRole",
    "ParticipantStatus",
    "ShareTokenType",
    "AnonymousTransitionPolicy",
    "AnonymousSessionStatus",
    "User",
    "Event",
    "EventParticipant",
    "ShareToken",
    "ShareTokenUse",
    "AnonymousSession",
    "EventActivity",
]

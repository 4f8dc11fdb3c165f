from enum import Enum

class Visibility(str, Enum):
    """Who may resolve a role on an event absent an explicit relationship.

    Ordered from most open to most closed; the older names ``unlisted`` and
    ``restricted`` map onto the same rungs.
    """
    ANYONE_WITH_LINK = "anyone_with_link"
    INVITED_ONLY = "invited_only"
    PRIVATE = "private"

    @classmethod
    def parse(cls, value: "str | Visibility") -> "Visibility":
        if isinstance(value, cls):
            return value
        normalized = LEGACY_VISIBILITY_NAMES.get(value, value)
        return cls(normalized)

    @property
    def rank(self) -> int:
        return VISIBILITY_RANK[self]

LEGACY_VISIBILITY_NAMES = {
    "unlisted": Visibility.ANYONE_WITH_LINK.value,
    "restricted": Visibility.INVITED_ONLY.value,
}

VISIBILITY_RANK = {
    Visibility.ANYONE_WITH_LINK: 0,
    Visibility.INVITED_ONLY: 1,
    Visibility.PRIVATE: 2,
}

class ParticipantRole(str, Enum):
    """Role a principal holds with respect to one event"""
    OWNER = "owner"
    CO_HOST = "co_host"
    MODERATOR = "moderator"
    GUEST = "guest"
    VIEWER = "viewer"
    AUTHENTICATED_GUEST = "authenticated_guest"

class ParticipantStatus(str, Enum):
    """Only ACTIVE records make their role effective"""
    PENDING = "pending"
    ACTIVE = "active"
    REJECTED = "rejected"
    REMOVED = "removed"
    LEFT = "left"

class ShareTokenType(str, Enum):
    INVITE = "invite"
    VIEW = "view"
    UPLOAD = "upload"
    CO_HOST_INVITE = "co_host_invite"

class AnonymousTransitionPolicy(str, Enum):
    """What happens to anonymous sessions when visibility tightens"""
    BLOCK_ALL = "block_all"
    GRACE_PERIOD = "grace_period"
    FORCE_LOGIN = "force_login"

class AnonymousSessionStatus(str, Enum):
    ACTIVE = "active"
    CLAIMED = "claimed"

import hashlib

from app.access.types import (
    AnonymousPrincipal,
    AuthenticatedPrincipal,
    DeviceInfo,
    Principal,
)
from app.core.security import decode_token

ANONYMOUS_PREFIX = "anon_"


def device_fingerprint(device: DeviceInfo, session_hint: str | None = None) -> str:
    """Stable hash of the device so a reconnecting browser keeps its identity."""
    raw = "|".join([device.ip_address or "", device.user_agent or "", session_hint or ""])
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def _bearer_token(auth_header: str | None) -> str | None:
    if not auth_header:
        return None
    scheme, _, token = auth_header.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def resolve_principal(
    auth_header: str | None,
    session_hint: str | None = None,
    device: DeviceInfo | None = None,
) -> Principal:
    """
    Turn an inbound credential into a principal.

    Anything that is not a valid access token (missing header, garbage,
    expired, refresh token, unknown subject format) degrades to an anonymous
    principal instead of failing, so mixed anonymous/authenticated routes
    never break on a stale client token.
    """
    device = device or DeviceInfo()
    token = _bearer_token(auth_header)
    if token:
        payload = decode_token(token, "access")
        if payload is not None:
            try:
                return AuthenticatedPrincipal(
                    user_id=int(payload["sub"]),
                    email=payload.get("email"),
                )
            except (TypeError, ValueError):
                pass

    hint = session_hint.strip() if session_hint and session_hint.strip() else None
    fingerprint = device_fingerprint(device, hint)
    session_id = hint or f"{ANONYMOUS_PREFIX}{fingerprint[:32]}"
    return AnonymousPrincipal(session_id=session_id, device_fingerprint=fingerprint)

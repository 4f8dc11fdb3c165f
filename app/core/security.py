from datetime import datetime, timedelta, UTC
from typing import Any, Tuple
from passlib.context import CryptContext
from jose import jwt, JWTError
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import UnauthorizedError
from app.db.database import get_db

# Shared by account passwords and share-link passwords
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl=f"{settings.API_V1_STR}/auth/login")

ACCESS = "access"
REFRESH = "refresh"

def _encode(claims: dict[str, Any], token_type: str, lifetime: timedelta) -> str:
    payload = {**claims, "exp": datetime.now(UTC) + lifetime, "type": token_type}
    return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)

def create_access_token(data: dict[str, Any], expires_delta: timedelta | None = None) -> str:
    """Short-lived token accepted in the Authorization header"""
    return _encode(data, ACCESS, expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))

def create_refresh_token(data: dict[str, Any]) -> str:
    """Only usable against /auth/refresh; never resolves a principal"""
    return _encode(data, REFRESH, timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS))

def create_token_pair(data: dict[str, Any]) -> Tuple[str, str]:
    return create_access_token(data), create_refresh_token(data)

def token_claims_for(user: Any) -> dict[str, Any]:
    """Subject is the user id; the email lets email-restricted links be checked without a lookup."""
    return {"sub": str(user.id), "email": user.email}

def decode_token(token: str, token_type: str = ACCESS) -> dict[str, Any] | None:
    """Claims of a well-formed token of `token_type`, else None."""
    try:
        payload = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        return None
    if payload.get("type") != token_type or not payload.get("sub"):
        return None
    return payload

def verify_token(token: str, token_type: str = ACCESS) -> dict[str, Any]:
    payload = decode_token(token, token_type)
    if payload is None:
        raise UnauthorizedError("Could not validate credentials")
    return payload

def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)

def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)

async def get_current_user(
    db: AsyncSession = Depends(get_db),
    token: str = Depends(oauth2_scheme)
):
    """Dependency for endpoints that need a signed-in user rather than any principal"""
    payload = verify_token(token, ACCESS)

    # crud.user imports this module
    from app.crud.user import get_user

    try:
        user_id = int(payload["sub"])
    except (TypeError, ValueError):
        raise UnauthorizedError("Could not validate credentials")
    user = await get_user(db, user_id)
    if user is None:
        raise UnauthorizedError("Could not validate credentials")
    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Inactive user"
        )
    return user

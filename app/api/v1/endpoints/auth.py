from typing import Any
from fastapi import APIRouter, Depends, HTTPException, status, Header
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.logging import auth_logger
from app.core.security import (
    create_token_pair,
    get_current_user,
    token_claims_for,
    verify_token,
)
from app.db.database import get_db
from app.schemas.token import Token
from app.schemas.user import UserCreate, UserResponse
from app.crud.user import authenticate_user, create_user, get_user, get_user_by_email, get_user_by_username
from app.models.user import User

router = APIRouter(
    prefix="/auth",
    tags=["Authentication"],
    responses={
        401: {"description": "Authentication failed"},
        500: {"description": "Internal server error"}
    }
)

@router.post(
    "/register",
    status_code=status.HTTP_201_CREATED,
    response_model=UserResponse,
    summary="Register new user",
    description="""
    Register a new user in the system.

    The endpoint performs the following:
    * Validates the email and username are not already registered
    * Securely hashes the password
    * Creates a new user record
    * Returns the created user's basic information
    """,
    responses={
        201: {
            "description": "User successfully created",
            "content": {
                "application/json": {
                    "example": {
                        "id": 1,
                        "email": "user@example.com",
                        "username": "johndoe",
                        "full_name": None,
                        "is_active": True
                    }
                }
            }
        },
        400: {
            "description": "Email already registered",
            "content": {
                "application/json": {
                    "example": {"detail": "A user with this email already exists"}
                }
            }
        }
    }
)
async def register(
    *,
    db: AsyncSession = Depends(get_db),
    user_in: UserCreate
) -> UserResponse:
    """
    Register a new user with the following information:

    - **email**: Unique email address
    - **password**: Strong password (min 8 characters)
    - **username**: Unique username
    """
    if await get_user_by_email(db, email=user_in.email):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="A user with this email already exists",
        )
    if await get_user_by_username(db, username=user_in.username):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="A user with this username already exists",
        )

    user = await create_user(db, user_in)
    auth_logger.info("User registered", extra={"user_id": user.id})
    return UserResponse.model_validate(user)

@router.post(
    "/login",
    response_model=Token,
    summary="Login for access token",
    description="""
    OAuth2 compatible token login endpoint. Authenticates a user and returns an access token
    and refresh token for future requests.

    The access token carries the user's id and email; the email is what share links
    restricted to a list of addresses are checked against.
    """,
    responses={
        200: {
            "description": "Successful login",
            "content": {
                "application/json": {
                    "example": {
                        "access_token": "eyJ0eXAiOiJKV1QiLCJhbGciOiJIUzI1...",
                        "refresh_token": "eyJ0eXAiOiJKV1QiLCJhbGciOiJIUzI1...",
                        "token_type": "bearer"
                    }
                }
            }
        },
        401: {
            "description": "Invalid credentials",
            "content": {
                "application/json": {
                    "example": {"detail": "Incorrect email or password"}
                }
            }
        }
    }
)
async def login(
    db: AsyncSession = Depends(get_db),
    form_data: OAuth2PasswordRequestForm = Depends()
) -> Any:
    """
    Authenticate user and return JWT token pair.

    - **username**: Email address of the user (used as username)
    - **password**: User's password
    """
    user = await authenticate_user(db, email=form_data.username, password=form_data.password)
    if not user or not user.is_active:
        auth_logger.info("Failed login attempt")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    access_token, refresh_token = create_token_pair(token_claims_for(user))
    return {
        "access_token": access_token,
        "refresh_token": refresh_token,
        "token_type": "bearer"
    }

@router.post(
    "/refresh",
    response_model=Token,
    summary="Refresh access token",
    description="""
    Get a new access token using a valid refresh token.

    The refresh token must be provided in the Authorization header with the Bearer prefix.
    """,
    responses={
        401: {
            "description": "Invalid or expired refresh token",
            "content": {
                "application/json": {
                    "example": {"detail": "Invalid refresh token"}
                }
            }
        }
    }
)
async def refresh_token(
    db: AsyncSession = Depends(get_db),
    authorization: str = Header(..., description="The refresh token obtained during login, with Bearer prefix")
) -> Any:
    """Exchange a refresh token for a new token pair"""
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authorization header format",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = verify_token(token, "refresh")
    try:
        user_id = int(payload["sub"])
    except (TypeError, ValueError):
        user_id = None
    user = await get_user(db, user_id) if user_id is not None else None
    if not user or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid refresh token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    access_token, new_refresh_token = create_token_pair(token_claims_for(user))
    return {
        "access_token": access_token,
        "refresh_token": new_refresh_token,
        "token_type": "bearer"
    }

@router.get(
    "/me",
    response_model=UserResponse,
    summary="Current user",
)
async def read_current_user(current_user: User = Depends(get_current_user)) -> UserResponse:
    return UserResponse.model_validate(current_user)

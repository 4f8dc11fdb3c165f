from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.security import get_password_hash, verify_password
from app.models.user import User
from app.schemas.user import UserCreate

async def get_user(db: AsyncSession, user_id: int) -> User | None:
    """Get a user by id"""
    return await db.get(User, user_id)

async def get_user_by_email(db: AsyncSession, *, email: str) -> User | None:
    """Get a user by email"""
    result = await db.execute(select(User).where(User.email == email.lower()))
    return result.scalar_one_or_none()

async def get_user_by_username(db: AsyncSession, *, username: str) -> User | None:
    result = await db.execute(select(User).where(User.username == username))
    return result.scalar_one_or_none()

async def create_user(db: AsyncSession, user_in: UserCreate) -> User:
    """Create a new user"""
    db_user = User(
        email=user_in.email.lower(),
        username=user_in.username,
        full_name=user_in.full_name,
        hashed_password=get_password_hash(user_in.password)
    )
    db.add(db_user)
    await db.commit()
    await db.refresh(db_user)
    return db_user

async def authenticate_user(db: AsyncSession, *, email: str, password: str) -> User | None:
    """Return the user when the credentials match"""
    user = await get_user_by_email(db, email=email)
    if user is None or not verify_password(password, user.hashed_password):
        return None
    return user

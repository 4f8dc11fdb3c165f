from pydantic import EmailStr, Field
from .base import BaseSchema

class UserBase(BaseSchema):
    """Base schema for user data"""
    email: EmailStr
    username: str = Field(..., min_length=3, max_length=50)
    full_name: str | None = None

class UserCreate(UserBase):
    """Schema for user registration"""
    password: str = Field(..., min_length=8)

class UserResponse(UserBase):
    """Schema for user response data"""
    id: int
    is_active: bool = True

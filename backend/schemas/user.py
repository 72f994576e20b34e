from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field, field_validator

from services.security import password_problems


class UserCreate(BaseModel):
    email: EmailStr
    username: str = Field(..., min_length=3, max_length=100)
    password: str

    @field_validator("username")
    @classmethod
    def username_not_blank(cls, v: str) -> str:
        v = v.strip()
        if len(v) < 3:
            raise ValueError("Username is required.")
        return v

    @field_validator("password")
    @classmethod
    def password_strength(cls, v: str) -> str:
        problems = password_problems(v)
        if problems:
            raise ValueError("Password must contain " + ", ".join(problems) + ".")
        return v


class UserResponse(BaseModel):
    id: UUID
    email: str
    username: str
    is_admin: bool
    created_at: datetime

    class Config:
        from_attributes = True


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class RegisterResponse(Token):
    user: UserResponse
    balance: Decimal

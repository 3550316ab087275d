from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, EmailStr, Field, field_validator

from webrana.schemas.common import PageMeta


def _check_password(value: str) -> str:
    if len(value) < 8:
        raise ValueError("password must be at least 8 characters")
    if not any(c.isalpha() for c in value) or not any(c.isdigit() for c in value):
        raise ValueError("password must contain a letter and a digit")
    return value


class RegisterIn(BaseModel):
    email: EmailStr
    password: str
    full_name: str = Field(..., min_length=1, max_length=255)
    phone: str | None = Field(default=None, max_length=32)

    @field_validator("password")
    @classmethod
    def _password(cls, v: str) -> str:
        return _check_password(v)


class LoginIn(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)
    device_info: str | None = Field(default=None, max_length=255)


class RefreshIn(BaseModel):
    refresh_token: str = Field(..., min_length=1)


class ChangePasswordIn(BaseModel):
    current_password: str = Field(..., min_length=1)
    new_password: str

    @field_validator("new_password")
    @classmethod
    def _password(cls, v: str) -> str:
        return _check_password(v)


class UserOut(BaseModel):
    id: int
    email: str
    full_name: str
    phone: str | None = None
    telegram_chat_id: str | None = None
    role: str
    status: str
    last_login_at: datetime | None = None
    created_at: datetime

    class Config:
        from_attributes = True


class TokenOut(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserOut


class MeOut(UserOut):
    balance: int = 0
    currency: str = "IDR"


class ProfileUpdate(BaseModel):
    full_name: str | None = Field(default=None, min_length=1, max_length=255)
    phone: str | None = Field(default=None, max_length=32)
    telegram_chat_id: str | None = Field(default=None, max_length=64)


class AdminUserUpdate(BaseModel):
    status: str | None = Field(default=None, pattern="^(active|suspended|deleted)$")
    role: str | None = Field(default=None, pattern="^(customer|admin)$")


class UserListOut(BaseModel):
    data: list[UserOut]
    meta: PageMeta

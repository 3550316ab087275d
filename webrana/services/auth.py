from __future__ import annotations

import logging

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from webrana.core.config import settings
from webrana.core.db import utcnow
from webrana.core.errors import AppError
from webrana.core.pagination import page_meta
from webrana.core.security import (
    TokenError,
    create_access_token,
    create_refresh_token,
    decode_token,
    hash_password,
    hash_token,
    verify_password,
)
from webrana.models.user import RefreshToken, User
from webrana.services import wallet

logger = logging.getLogger(__name__)


class AuthError(AppError):
    code = "AUTH_ERROR"
    status_code = 401


class EmailAlreadyExists(AuthError):
    code = "EMAIL_ALREADY_EXISTS"
    status_code = 409
    message = "Email is already registered"


class InvalidCredentials(AuthError):
    code = "INVALID_CREDENTIALS"
    message = "Invalid email or password"


class InvalidToken(AuthError):
    code = "INVALID_TOKEN"
    message = "Invalid refresh token"


class TokenExpired(AuthError):
    code = "TOKEN_EXPIRED"
    message = "Refresh token expired"


class AccountSuspended(AuthError):
    code = "ACCOUNT_SUSPENDED"
    status_code = 403
    message = "Account is suspended"


class AccountDeleted(AuthError):
    code = "ACCOUNT_DELETED"
    status_code = 403
    message = "Account has been deleted"


class InvalidCurrentPassword(AuthError):
    code = "INVALID_CURRENT_PASSWORD"
    status_code = 400
    message = "Current password is incorrect"


class UserNotFound(AuthError):
    code = "USER_NOT_FOUND"
    status_code = 404
    message = "User not found"


def _check_status(user: User) -> None:
    if user.status == "suspended":
        raise AccountSuspended()
    if user.status == "deleted":
        raise AccountDeleted()


async def _issue_tokens(
    db: AsyncSession,
    user: User,
    *,
    device_info: str | None = None,
    ip_address: str | None = None,
) -> dict:
    access = create_access_token(user_id=user.id, email=user.email, role=user.role, status=user.status)
    refresh, expires_at = create_refresh_token(user_id=user.id)
    db.add(
        RefreshToken(
            user_id=user.id,
            token_hash=hash_token(refresh),
            expires_at=expires_at,
            device_info=device_info,
            ip_address=ip_address,
        )
    )
    return {
        "access_token": access,
        "refresh_token": refresh,
        "token_type": "bearer",
        "expires_in": settings.JWT_ACCESS_MINUTES * 60,
        "user": user,
    }


async def get_user_by_email(db: AsyncSession, email: str) -> User | None:
    res = await db.execute(select(User).where(User.email == email.strip().lower()))
    return res.scalar_one_or_none()


async def register(
    db: AsyncSession,
    *,
    email: str,
    password: str,
    full_name: str,
    phone: str | None = None,
) -> User:
    email = email.strip().lower()
    if await get_user_by_email(db, email) is not None:
        raise EmailAlreadyExists()

    user = User(
        email=email,
        password_hash=hash_password(password),
        full_name=full_name,
        phone=phone,
        role="customer",
        status="active",
    )
    db.add(user)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise EmailAlreadyExists()

    logger.info("user registered", extra={"user_id": user.id})
    return user


async def login(
    db: AsyncSession,
    *,
    email: str,
    password: str,
    device_info: str | None = None,
    ip_address: str | None = None,
) -> dict:
    user = await get_user_by_email(db, email)
    if not user or not verify_password(password, user.password_hash):
        raise InvalidCredentials()
    _check_status(user)

    try:
        user.last_login_at = utcnow()
        tokens = await _issue_tokens(db, user, device_info=device_info, ip_address=ip_address)
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    return tokens


async def refresh(
    db: AsyncSession,
    refresh_token: str,
    *,
    device_info: str | None = None,
    ip_address: str | None = None,
) -> dict:
    try:
        payload = decode_token(refresh_token, expected_type="refresh")
    except TokenError as e:
        if e.code == "TOKEN_EXPIRED":
            raise TokenExpired()
        raise InvalidToken()

    res = await db.execute(select(RefreshToken).where(RefreshToken.token_hash == hash_token(refresh_token)))
    stored = res.scalar_one_or_none()
    if stored is None or stored.revoked_at is not None:
        raise InvalidToken()
    if stored.expires_at < utcnow():
        raise TokenExpired()
    if str(stored.user_id) != str(payload.get("sub")):
        raise InvalidToken()

    user = await db.get(User, stored.user_id)
    if user is None:
        raise InvalidToken()
    _check_status(user)

    try:
        stored.revoked_at = utcnow()
        tokens = await _issue_tokens(db, user, device_info=device_info, ip_address=ip_address)
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    return tokens


async def logout(db: AsyncSession, refresh_token: str) -> None:
    await db.execute(
        update(RefreshToken)
        .where(RefreshToken.token_hash == hash_token(refresh_token), RefreshToken.revoked_at.is_(None))
        .values(revoked_at=utcnow())
    )
    await db.commit()


async def revoke_all_tokens(db: AsyncSession, user_id: int) -> int:
    """Revokes live refresh tokens in the caller's transaction."""
    res = await db.execute(
        update(RefreshToken)
        .where(RefreshToken.user_id == user_id, RefreshToken.revoked_at.is_(None))
        .values(revoked_at=utcnow())
    )
    return int(res.rowcount or 0)


async def logout_all(db: AsyncSession, user: User) -> int:
    count = await revoke_all_tokens(db, user.id)
    await db.commit()
    return count


async def change_password(db: AsyncSession, user: User, *, current_password: str, new_password: str) -> None:
    if not verify_password(current_password, user.password_hash):
        raise InvalidCurrentPassword()

    try:
        user.password_hash = hash_password(new_password)
        await revoke_all_tokens(db, user.id)
        await db.commit()
    except Exception:
        await db.rollback()
        raise


async def get_profile(db: AsyncSession, user: User) -> dict:
    profile = {c.name: getattr(user, c.name) for c in User.__table__.columns if c.name != "password_hash"}
    profile["balance"] = await wallet.get_balance(db, int(user.id))
    profile["currency"] = settings.CURRENCY
    return profile


async def update_profile(db: AsyncSession, user: User, data) -> User:
    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(user, field, value)
    await db.commit()
    return user


# -------------------------
# Admin user management
# -------------------------
async def list_users(
    db: AsyncSession,
    *,
    email: str | None = None,
    role: str | None = None,
    status: str | None = None,
    page: int = 1,
    limit: int = 20,
) -> dict:
    filters = []
    if email:
        filters.append(User.email.ilike(f"%{email.strip().lower()}%"))
    if role:
        filters.append(User.role == role)
    if status:
        filters.append(User.status == status)

    total_res = await db.execute(select(func.count()).select_from(User).where(*filters))
    total = int(total_res.scalar_one())

    res = await db.execute(
        select(User)
        .where(*filters)
        .order_by(User.created_at.desc(), User.id.desc())
        .limit(limit)
        .offset((page - 1) * limit)
    )
    return {"data": res.scalars().all(), "meta": page_meta(page, limit, total)}


async def get_user(db: AsyncSession, user_id: int) -> User:
    user = await db.get(User, user_id)
    if user is None:
        raise UserNotFound()
    return user


async def admin_update_user(
    db: AsyncSession,
    user_id: int,
    *,
    status: str | None = None,
    role: str | None = None,
) -> User:
    user = await get_user(db, user_id)
    try:
        if role is not None:
            user.role = role
        if status is not None and status != user.status:
            user.status = status
            if status != "active":
                await revoke_all_tokens(db, user.id)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info("user updated by admin", extra={"user_id": user.id, "status": user.status, "role": user.role})
    return user

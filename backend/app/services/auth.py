"""
Local accounts: bcrypt password hashes, JWT bearer tokens, lockout after
repeated failed logins, and the audit trail of user actions.
"""
import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.config import settings
from app.models.user import AuditLog, User
from app.schemas.auth import TokenData

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=settings.BCRYPT_ROUNDS)


class LoginFailed(Exception):
    """Raised by authenticate_user; str(exc) is safe to show the caller."""


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def role_name(user: User) -> str:
    return user.role.name if user.role else "readonly"


def issue_access_token(user: User) -> str:
    claims = {
        "sub": str(user.id),
        "username": user.username,
        "role": role_name(user),
        "type": "access",
        "exp": datetime.now(timezone.utc) + timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES),
    }
    return jwt.encode(claims, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> Optional[TokenData]:
    """None for anything that is not a valid, unexpired access token."""
    try:
        claims = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        return None
    if claims.get("type") != "access" or not str(claims.get("sub", "")).isdigit():
        return None
    return TokenData(user_id=int(claims["sub"]), username=claims.get("username"), role=claims.get("role"))


def _user_query():
    return select(User).options(selectinload(User.role))


async def get_user_by_username(db: AsyncSession, username: str) -> Optional[User]:
    result = await db.execute(_user_query().where(User.username == username.lower()))
    return result.scalar_one_or_none()


async def get_user_by_id(db: AsyncSession, user_id: int) -> Optional[User]:
    result = await db.execute(_user_query().where(User.id == user_id))
    return result.scalar_one_or_none()


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


async def _set_login_state(db: AsyncSession, user_id: int, **values) -> None:
    await db.execute(update(User).where(User.id == user_id).values(**values))
    await db.commit()


async def authenticate_user(db: AsyncSession, username: str, password: str) -> User:
    user = await get_user_by_username(db, username)
    if user is None:
        raise LoginFailed("Invalid credentials")
    if not user.is_active:
        raise LoginFailed("Account is disabled")

    now = datetime.now(timezone.utc)
    if user.account_locked:
        locked_until = _as_utc(user.locked_until)
        if locked_until is None or now <= locked_until:
            raise LoginFailed("Account is locked. Contact administrator.")
        await _set_login_state(db, user.id, account_locked=False, failed_attempts=0, locked_until=None)
        user.failed_attempts = 0

    if not verify_password(password, user.password_hash):
        attempts = (user.failed_attempts or 0) + 1
        if attempts >= settings.MAX_LOGIN_ATTEMPTS:
            logger.warning("Locking %s after %d failed logins", username, attempts)
            await _set_login_state(
                db, user.id, failed_attempts=attempts, account_locked=True,
                locked_until=now + timedelta(minutes=settings.ACCOUNT_LOCK_MINUTES),
            )
        else:
            await _set_login_state(db, user.id, failed_attempts=attempts)
        raise LoginFailed("Invalid credentials")

    await _set_login_state(db, user.id, failed_attempts=0, last_login=now)
    return user


async def log_audit(
    db: AsyncSession,
    action: str,
    user_id: Optional[int] = None,
    username: Optional[str] = None,
    resource_type: Optional[str] = None,
    resource_id: Optional[str] = None,
    details=None,
    source_ip: Optional[str] = None,
    success: bool = True,
):
    if details is not None and not isinstance(details, str):
        details = json.dumps(details, default=str)
    db.add(AuditLog(
        user_id=user_id, username=username, action=action,
        resource_type=resource_type, resource_id=resource_id,
        details=details, source_ip=source_ip, success=success,
    ))
    await db.commit()

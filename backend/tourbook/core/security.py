import hashlib
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import UUID

import structlog
from fastapi import Depends, Request
from fastapi.responses import JSONResponse
from jose import jwt
from passlib.context import CryptContext
from sqlalchemy.ext.asyncio import AsyncSession

from tourbook.core.errors import AppError
from tourbook.core.settings import get_settings
from tourbook.db.crud import find_by_id, to_document
from tourbook.db.models import User, UserRole, as_utc, utcnow
from tourbook.db.session import get_session

logger = structlog.get_logger(__name__)

ALGORITHM = "HS256"
TOKEN_COOKIE = "jwt"

pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=get_settings().BCRYPT_ROUNDS,
)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    """Verify a password against its hash"""
    try:
        return pwd_context.verify(plain, hashed)
    except ValueError as e:
        logger.warning("password_verification_error", error=str(e))
        return False


def sign_token(user_id: UUID, issued_at: Optional[datetime] = None) -> str:
    """Create a signed access token for ``user_id``"""
    settings = get_settings()
    issued_at = issued_at or utcnow()
    expire = issued_at + timedelta(minutes=settings.JWT_EXPIRES_IN_MINUTES)
    payload = {
        "sub": str(user_id),
        "iat": int(issued_at.timestamp()),
        "exp": int(expire.timestamp()),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=ALGORITHM)


def decode_token(token: str) -> dict:
    """Raises JWTError / ExpiredSignatureError, rendered as 401 by the error handlers"""
    return jwt.decode(token, get_settings().JWT_SECRET, algorithms=[ALGORITHM])


def changed_password_after(user: User, issued_at: int) -> bool:
    """True when the password changed after a token issued at ``issued_at`` (epoch seconds)"""
    changed_at = as_utc(user.password_changed_at)
    if changed_at is None:
        return False
    return issued_at < int(changed_at.timestamp())


def mark_password_changed(user: User) -> None:
    # one second in the past so a token signed right after the change stays valid
    user.password_changed_at = utcnow() - timedelta(seconds=1)


def hash_reset_token(raw_token: str) -> str:
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


def create_password_reset_token(user: User) -> str:
    """Store the hashed token and expiry on ``user``; return the raw token"""
    raw_token = secrets.token_hex(32)
    user.password_reset_token = hash_reset_token(raw_token)
    user.password_reset_expires = utcnow() + timedelta(minutes=get_settings().PASSWORD_RESET_EXPIRES_MINUTES)
    return raw_token


def clear_password_reset_token(user: User) -> None:
    user.password_reset_token = None
    user.password_reset_expires = None


def set_password(user: User, password: str) -> None:
    user.password_hash = get_password_hash(password)
    clear_password_reset_token(user)
    mark_password_changed(user)


def token_from_request(request: Request) -> Optional[str]:
    """Bearer header first, cookie second"""
    authorization = request.headers.get("Authorization", "")
    if authorization.startswith("Bearer "):
        return authorization.split(" ", 1)[1].strip() or None
    return request.cookies.get(TOKEN_COOKIE)


async def protect(
    request: Request,
    session: AsyncSession = Depends(get_session),
) -> User:
    """Resolve the logged-in user or reject the request"""
    token = token_from_request(request)
    if not token:
        raise AppError("You are not logged in! Please log in to get access.", 401)

    payload = decode_token(token)
    try:
        user_id = UUID(payload.get("sub", ""))
        issued_at = int(payload["iat"])
    except (KeyError, TypeError, ValueError):
        logger.warning("invalid_token_payload")
        raise AppError("Invalid token. Please log in again!", 401)

    user = await find_by_id(session, User, user_id)
    if not user:
        raise AppError("The user belonging to this token no longer exists.", 401)

    if changed_password_after(user, issued_at):
        raise AppError("User recently changed password! Please log in again.", 401)

    structlog.contextvars.bind_contextvars(user_id=str(user.id))
    return user


def restrict_to(*roles: UserRole):
    """Dependency factory: only the given roles may continue"""
    allowed = {UserRole(role) for role in roles}

    async def _guard(user: User = Depends(protect)) -> User:
        if user.role not in allowed:
            logger.warning("permission_denied", user_id=str(user.id), role=user.role.value)
            raise AppError("You do not have permission to perform this action", 403)
        return user

    return _guard


def _is_secure(request: Request) -> bool:
    return request.url.scheme == "https" or request.headers.get("x-forwarded-proto") == "https"


def send_token(user: User, status_code: int, request: Request) -> JSONResponse:
    """Sign a token and deliver it in the body and as an http-only cookie"""
    settings = get_settings()
    token = sign_token(user.id)
    response = JSONResponse(
        status_code=status_code,
        content={"status": "success", "token": token, "data": {"user": to_document(user)}},
    )
    response.set_cookie(
        TOKEN_COOKIE,
        token,
        expires=datetime.now(timezone.utc) + timedelta(days=settings.JWT_COOKIE_EXPIRES_IN_DAYS),
        httponly=True,
        secure=_is_secure(request),
    )
    return response


def clear_token_cookie(response: JSONResponse) -> JSONResponse:
    response.set_cookie(
        TOKEN_COOKIE,
        "loggedout",
        expires=datetime.now(timezone.utc) + timedelta(seconds=10),
        httponly=True,
    )
    return response

"""
Users API endpoints: authentication, the logged-in user's own account and
admin management of other accounts.
"""

from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.responses import JSONResponse
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from tourbook.api.factory import HandlerFactory
from tourbook.api.schemas import (
    ForgotPasswordRequest, LoginRequest, ResetPasswordRequest, SignupRequest,
    UpdateMeRequest, UpdatePasswordRequest, UserUpdate
)
from tourbook.core.email import Mailer, get_mailer
from tourbook.core.errors import AppError
from tourbook.core.rate_limit import limiter
from tourbook.core.security import (
    clear_password_reset_token, clear_token_cookie, create_password_reset_token,
    get_password_hash, hash_reset_token, protect, restrict_to, send_token,
    set_password, verify_password
)
from tourbook.core.settings import get_settings
from tourbook.db import crud
from tourbook.db.models import TourGuide, User, UserRole, as_utc, utcnow
from tourbook.db.session import get_session

logger = structlog.get_logger(__name__)
router = APIRouter(prefix="/users", tags=["users"])

users = HandlerFactory(User)

admin_only = restrict_to(UserRole.ADMIN)


def _url(request: Request, path: str) -> str:
    return f"{str(request.base_url).rstrip('/')}/api/v1/users/{path}"


# ===== AUTHENTICATION =====

@router.post("/signup")
async def signup(
    payload: SignupRequest,
    request: Request,
    session: AsyncSession = Depends(get_session),
    mailer: Mailer = Depends(get_mailer),
):
    user = await crud.insert(session, User(
        name=payload.name,
        email=payload.email,
        password_hash=get_password_hash(payload.password),
    ))
    logger.info("user_signed_up", user_id=str(user.id))

    try:
        await mailer.send_welcome(user, _url(request, "me"))
    except OSError as e:
        logger.error("welcome_email_failed", user_id=str(user.id), error=str(e))

    return send_token(user, status.HTTP_201_CREATED, request)


@router.post("/login")
@limiter.limit(get_settings().RATE_LIMIT_LOGIN)
async def login(
    request: Request,
    payload: LoginRequest,
    session: AsyncSession = Depends(get_session),
):
    if not payload.email or not payload.password:
        raise AppError("Please provide email and password!", 400)

    user = await crud.find_one(session, User, User.email == payload.email.strip().lower())
    if user is None or not verify_password(payload.password, user.password_hash):
        logger.warning("login_failed")
        raise AppError("Incorrect email or password", 401)

    logger.info("user_logged_in", user_id=str(user.id))
    return send_token(user, status.HTTP_200_OK, request)


@router.get("/logout")
async def logout():
    return clear_token_cookie(JSONResponse({"status": "success"}))


@router.post("/forgotPassword")
async def forgot_password(
    payload: ForgotPasswordRequest,
    request: Request,
    session: AsyncSession = Depends(get_session),
    mailer: Mailer = Depends(get_mailer),
):
    user = await crud.find_one(session, User, User.email == str(payload.email).lower())
    if user is None:
        raise AppError("There is no user with that email address.", 404)

    raw_token = create_password_reset_token(user)
    session.add(user)
    await session.commit()

    try:
        await mailer.send_password_reset(user, _url(request, f"resetPassword/{raw_token}"))
    except OSError as e:
        clear_password_reset_token(user)
        session.add(user)
        await session.commit()
        logger.error("password_reset_email_failed", user_id=str(user.id), error=str(e))
        raise AppError("There was an error sending the email. Try again later!", 500)

    return {"status": "success", "message": "Token sent to email!"}


@router.patch("/resetPassword/{token}")
async def reset_password(
    token: str,
    payload: ResetPasswordRequest,
    request: Request,
    session: AsyncSession = Depends(get_session),
):
    user = await crud.find_one(session, User, User.password_reset_token == hash_reset_token(token))
    expires = as_utc(user.password_reset_expires) if user else None
    if user is None or expires is None or expires <= utcnow():
        raise AppError("Token is invalid or has expired", 400)

    set_password(user, payload.password)
    await crud.update_fields(session, user, {})
    logger.info("password_reset", user_id=str(user.id))
    return send_token(user, status.HTTP_200_OK, request)


@router.patch("/updateMyPassword")
async def update_my_password(
    payload: UpdatePasswordRequest,
    request: Request,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(protect),
):
    if not verify_password(payload.password_current, current_user.password_hash):
        raise AppError("Your current password is wrong.", 401)

    set_password(current_user, payload.password)
    await crud.update_fields(session, current_user, {})
    logger.info("password_updated", user_id=str(current_user.id))
    return send_token(current_user, status.HTTP_201_CREATED, request)


# ===== CURRENT USER =====

@router.get("/me")
async def get_me(
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(protect),
):
    return await users.get_one(session, current_user.id)


@router.patch("/updateMe")
async def update_me(
    payload: UpdateMeRequest,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(protect),
):
    if payload.password is not None or payload.password_confirm is not None:
        raise AppError("This route is not for password updates. Please use /updateMyPassword.", 400)

    values = payload.model_dump(include={"name", "email"}, exclude_unset=True, exclude_none=True)
    user = await crud.update_fields(session, current_user, values)
    return {"status": "success", "data": {"user": crud.to_document(user)}}


@router.delete("/deleteMe", status_code=status.HTTP_204_NO_CONTENT)
async def delete_me(
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(protect),
):
    await crud.update_fields(session, current_user, {"active": False})
    logger.info("user_deactivated", user_id=str(current_user.id))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ===== ADMIN =====

@router.get("")
async def get_all_users(
    request: Request,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(admin_only),
):
    return await users.get_all(session, request.query_params)


@router.get("/{user_id}")
async def get_user(
    user_id: UUID,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(admin_only),
):
    return await users.get_one(session, user_id)


@router.patch("/{user_id}")
async def update_user(
    user_id: UUID,
    payload: UserUpdate,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(admin_only),
):
    values = payload.model_dump(exclude_unset=True, exclude_none=True)
    return await users.update_one(session, user_id, values)


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_user(
    user_id: UUID,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(admin_only),
):
    user = await users.get_document(session, user_id)
    await session.execute(delete(TourGuide).where(TourGuide.user_id == user.id))
    await users.delete_one(session, user_id, obj=user)
    return Response(status_code=status.HTTP_204_NO_CONTENT)

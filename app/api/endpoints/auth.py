"""Registration, login and profile endpoints."""

import logging

from fastapi import APIRouter, Request, Response, status

from app.api.deps import CurrentUser, DBSession
from app.core.config import settings
from app.core.security import create_access_token
from app.middleware.rate_limit import limiter
from app.models.user import User
from app.schemas.user import AuthResponse, UserCreate, UserLogin, UserRead, UserUpdate
from app.services import users as user_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Auth"])


def _auth_response(user: User) -> AuthResponse:
    token = create_access_token({"sub": user.id})
    return AuthResponse(user=UserRead.model_validate(user), token=token)


@router.post(
    "/register",
    response_model=AuthResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register",
    description="Create an account and return an access token.",
)
@limiter.limit(settings.RATE_LIMIT_AUTH)
async def register(request: Request, body: UserCreate, db: DBSession) -> AuthResponse:
    user = await user_service.register_user(db, body)
    return _auth_response(user)


@router.post(
    "/login",
    response_model=AuthResponse,
    summary="Log in",
    description="Exchange email and password for an access token.",
)
@limiter.limit(settings.RATE_LIMIT_AUTH)
async def login(request: Request, body: UserLogin, db: DBSession) -> AuthResponse:
    user = await user_service.authenticate(db, body.email, body.password)
    return _auth_response(user)


@router.get("/me", response_model=UserRead, summary="Current user")
async def read_me(current_user: CurrentUser) -> User:
    return current_user


@router.patch("/me", response_model=UserRead, summary="Update profile")
async def update_me(body: UserUpdate, db: DBSession, current_user: CurrentUser) -> User:
    return await user_service.update_profile(db, current_user, body)


@router.delete(
    "/me",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete account",
    description="Delete the current account and every tree it owns.",
)
async def delete_me(db: DBSession, current_user: CurrentUser) -> Response:
    await user_service.delete_user(db, current_user)
    return Response(status_code=status.HTTP_204_NO_CONTENT)

"""
FastAPI routes for storefront authentication.

Prefix: /auth
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Form, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr

from storefront.auth import AuthCoordinator, SessionCheck, UserIdentity
from storefront.core.config import Settings
from storefront.utils.exceptions import (
    AuthError,
    InvalidCredentials,
    PersistenceError,
    UserNotFound,
)
from storefront.utils.logger import get_logger

from .deps import get_coordinator, get_settings, require_login

logger = get_logger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


class UserPublic(BaseModel):
    id: str
    email: EmailStr
    name: str = ""
    created_at: Optional[str] = None


class AuthResponse(BaseModel):
    token: str
    user: UserPublic
    redirect: Optional[str] = None


def _user_to_public(user: UserIdentity) -> UserPublic:
    return UserPublic(**user.public())


def _set_session_cookie(response: Response, settings: Settings, token: str) -> None:
    """
    Attach the session token as a cookie.

    Clients can also send the token in an Authorization header.
    """
    response.set_cookie(
        key=settings.sessions.cookie_name,
        value=token,
        max_age=settings.sessions.lifetime_hours * 60 * 60,
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
    )


@router.post("/login", response_model=AuthResponse)
async def login(
    request: Request,
    email: EmailStr = Form(...),
    password: str = Form(...),
    redirect: Optional[str] = Form(None),
    coordinator: AuthCoordinator = Depends(get_coordinator),
    settings: Settings = Depends(get_settings),
) -> Any:
    """
    Log in with email and password.

    Request (form-encoded):
        email, password, redirect (optional post-login path)

    Response:
        {
          "token": "<session_token>",
          "user": { "id": "...", "email": "...", "name": "...", "created_at": "..." },
          "redirect": "/video/abc" | null
        }
    """
    try:
        user = await coordinator.login(
            str(email),
            password,
            redirect_path=redirect,
            user_agent=request.headers.get("user-agent"),
        )
    except (UserNotFound, InvalidCredentials) as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e))
    except AuthError as e:
        # session creation or user lookup failure
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))

    token = coordinator.session.token
    response = JSONResponse(
        content=AuthResponse(
            token=token, user=_user_to_public(user), redirect=redirect
        ).model_dump()
    )
    _set_session_cookie(response, settings, token)
    return response


@router.post("/logout")
async def logout(
    coordinator: AuthCoordinator = Depends(get_coordinator),
    settings: Settings = Depends(get_settings),
) -> Dict[str, str]:
    """
    Log out the current session.

    The cookie is cleared even when the session could not be deactivated.
    """
    await coordinator.logout()
    response = JSONResponse({"status": "success"})
    response.delete_cookie(settings.sessions.cookie_name)
    return response


@router.post("/logout-all")
async def logout_all(
    check: SessionCheck = Depends(require_login),
    coordinator: AuthCoordinator = Depends(get_coordinator),
    settings: Settings = Depends(get_settings),
) -> Dict[str, Any]:
    """Deactivate every active session of the current user."""
    try:
        count = await coordinator.sessions.deactivate_all_sessions(check.user.id)
    except PersistenceError as e:
        logger.error("Logout everywhere failed", user_id=check.user.id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to log out all sessions",
        )
    response = JSONResponse({"status": "success", "deactivated": count})
    response.delete_cookie(settings.sessions.cookie_name)
    return response


@router.get("/me", response_model=UserPublic)
async def me(check: SessionCheck = Depends(require_login)) -> UserPublic:
    """Return the current authenticated user."""
    return _user_to_public(check.user)

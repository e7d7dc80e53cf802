"""
Request dependencies.

Each request gets its own SessionManager whose token slot is seeded from the
session cookie or an Authorization: Bearer header. The validation cache is
shared process-wide through app.state.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Optional

from fastapi import Depends, HTTPException, Request, status

from storefront.auth import AuthCoordinator, SessionCheck, SessionManager, TokenSlot
from storefront.auth.session_manager import REASON_EXPIRED
from storefront.core.config import Settings
from storefront.stores import DocumentStore


class RequestTokenSlot(TokenSlot):
    """Token slot for one request; the route syncs it back to the cookie."""

    def __init__(self, token: Optional[str] = None):
        self._token = token or None
        self.changed = False

    def get(self) -> Optional[str]:
        return self._token

    def set(self, token: str) -> None:
        self._token = token
        self.changed = True

    def clear(self) -> None:
        if self._token is not None:
            self.changed = True
        self._token = None


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_store(request: Request) -> DocumentStore:
    return request.app.state.store


def _extract_token(request: Request, cookie_name: str) -> Optional[str]:
    # Prefer cookie for browser flows
    token = request.cookies.get(cookie_name)
    if token:
        return token
    auth_header = request.headers.get("Authorization")
    if not auth_header:
        return None
    if auth_header.lower().startswith("bearer "):
        return auth_header[7:].strip() or None
    return None


def get_session_manager(request: Request) -> SessionManager:
    settings = get_settings(request)
    slot = RequestTokenSlot(_extract_token(request, settings.sessions.cookie_name))
    return SessionManager(
        get_store(request),
        token_slot=slot,
        cache=request.app.state.session_cache,
        lifetime=timedelta(hours=settings.sessions.lifetime_hours),
    )


def get_coordinator(
    request: Request,
    sessions: SessionManager = Depends(get_session_manager),
) -> AuthCoordinator:
    settings = get_settings(request)
    return AuthCoordinator(
        get_store(request),
        sessions,
        check_interval=timedelta(seconds=settings.sessions.check_interval_seconds),
        debounce=timedelta(seconds=settings.sessions.check_debounce_seconds),
    )


async def require_login(
    coordinator: AuthCoordinator = Depends(get_coordinator),
) -> SessionCheck:
    """
    Dependency for protected routes.

    Raises 401 if the session is missing, expired, inactive or its user is gone.
    """
    token = coordinator.sessions.token_slot.get()
    check = await coordinator.check_session()
    if not check.is_authenticated:
        expired = bool(token) and coordinator.sessions.cache.reason(token) == REASON_EXPIRED
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Session expired" if expired else "Not authenticated",
        )
    return check

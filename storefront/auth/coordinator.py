"""
Auth coordinator: login/logout flows and periodic session re-validation
for one client context.

States: anonymous -> authenticating -> authenticated, with session-expired
passed through when a previously valid session stops validating.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, List, Optional

from ..core.clock import Clock, utcnow
from ..stores.documents import USERS_COLLECTION, DocumentStore
from ..utils.exceptions import (
    AuthError,
    DocumentNotFound,
    InvalidCredentials,
    PersistenceError,
    UserNotFound,
)
from ..utils.logger import get_logger
from .models import Session, UserIdentity
from .passwords import verify_password
from .session_manager import SessionManager

logger = get_logger(__name__)

SESSION_CHECK_INTERVAL = timedelta(minutes=5)
SESSION_CHECK_DEBOUNCE = timedelta(seconds=10)
LOGIN_PATH = "/login"


class AuthState(str, Enum):
    ANONYMOUS = "anonymous"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    SESSION_EXPIRED = "session-expired"


@dataclass(frozen=True)
class SessionCheck:
    """Result of one session check; reused as-is while debounced."""

    session: Optional[Session]
    user: Optional[UserIdentity]
    checked_at: datetime

    @property
    def is_authenticated(self) -> bool:
        return self.session is not None and self.user is not None


StateListener = Callable[[AuthState, AuthState], None]


class AuthCoordinator:
    def __init__(
        self,
        store: DocumentStore,
        sessions: SessionManager,
        clock: Optional[Clock] = None,
        navigate: Optional[Callable[[str], None]] = None,
        check_interval: timedelta = SESSION_CHECK_INTERVAL,
        debounce: timedelta = SESSION_CHECK_DEBOUNCE,
    ):
        self.store = store
        self.sessions = sessions
        self.clock = clock or sessions.clock or utcnow
        self.navigate = navigate
        self.check_interval = check_interval
        self.debounce = debounce

        self.user: Optional[UserIdentity] = None
        self.session: Optional[Session] = None
        self.loading = False
        self.error: Optional[str] = None
        self.state = AuthState.ANONYMOUS
        self._last_check: Optional[SessionCheck] = None
        self._listeners: List[StateListener] = []
        self._task: Optional[asyncio.Task] = None

    @property
    def is_authenticated(self) -> bool:
        return self.state == AuthState.AUTHENTICATED

    @property
    def session_checked_at(self) -> Optional[datetime]:
        return self._last_check.checked_at if self._last_check else None

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register a state listener; returns an unsubscribe callable."""
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def _transition(self, new_state: AuthState) -> None:
        old_state = self.state
        if old_state == new_state:
            return
        self.state = new_state
        logger.debug("Auth state changed", old=old_state.value, new=new_state.value)
        for listener in list(self._listeners):
            listener(old_state, new_state)

    def _clear_identity(self) -> None:
        self.user = None
        self.session = None

    async def _find_user_by_email(self, email: str) -> UserIdentity:
        documents = await self.store.list_documents(USERS_COLLECTION, {"email": email})
        if not documents:
            raise UserNotFound()
        return UserIdentity(**documents[0])

    async def login(
        self,
        email: str,
        password: str,
        redirect_path: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> UserIdentity:
        """
        Authenticate by email and password and open a new session.

        Raises UserNotFound, InvalidCredentials, SessionCreationFailed, or
        AuthError when the user lookup itself fails. On failure the
        coordinator returns to anonymous and keeps the message in error.
        """
        self.loading = True
        self.error = None
        self._transition(AuthState.AUTHENTICATING)
        try:
            try:
                user = await self._find_user_by_email(email)
            except PersistenceError as e:
                logger.error("Login error", error=str(e))
                raise AuthError("Login failed. Please try again.") from e

            if not verify_password(password, user.password_hash):
                raise InvalidCredentials()

            session = await self.sessions.create_session(user.id, user_agent=user_agent)
        except AuthError as e:
            self.error = str(e)
            self._clear_identity()
            self._transition(AuthState.ANONYMOUS)
            logger.info("Login failed", reason=type(e).__name__)
            raise
        finally:
            self.loading = False

        self.user = user
        self.session = session
        self._last_check = SessionCheck(session=session, user=user, checked_at=self.clock())
        self._transition(AuthState.AUTHENTICATED)
        logger.info("User logged in", user_id=user.id, session_id=session.id)

        if redirect_path and self.navigate:
            self.navigate(redirect_path)
        return user

    async def logout(self) -> None:
        """
        Deactivate the current session and drop local identity.

        The local token is always cleared, even when the store update fails.
        """
        self.loading = True
        try:
            session = self.session or await self.sessions.get_current_session()
            if session is not None:
                await self.sessions.deactivate_session(session.id)
        except PersistenceError as e:
            logger.error("Logout error, clearing local session anyway", error=str(e))
        finally:
            self.sessions.clear_local_token()
            self._clear_identity()
            self._last_check = SessionCheck(session=None, user=None, checked_at=self.clock())
            self._transition(AuthState.ANONYMOUS)
            self.loading = False

        logger.info("User logged out")
        if self.navigate:
            self.navigate(LOGIN_PATH)

    async def check_session(self) -> SessionCheck:
        """
        Re-validate the stored session and resolve its user.

        Calls within the debounce window return the previous result object.
        """
        now = self.clock()
        if self._last_check is not None and now - self._last_check.checked_at < self.debounce:
            return self._last_check

        self.loading = True
        try:
            result = await self._run_check(now)
        finally:
            self.loading = False
        self._last_check = result
        return result

    async def _run_check(self, now: datetime) -> SessionCheck:
        was_authenticated = self.is_authenticated
        session = await self.sessions.get_current_session()
        self.session = session

        if session is None:
            self._fall_back_to_anonymous(was_authenticated)
            return SessionCheck(session=None, user=None, checked_at=now)

        try:
            document = await self.store.get_document(USERS_COLLECTION, session.user_id)
        except DocumentNotFound as e:
            return await self._revoke_orphan(session, was_authenticated, now, e)
        except PersistenceError as e:
            # store unavailable: deny for now, keep the session record
            logger.error(
                "Error resolving session user", session_id=session.id, user_id=session.user_id, error=str(e)
            )
            self._clear_identity()
            self._transition(AuthState.ANONYMOUS)
            return SessionCheck(session=None, user=None, checked_at=now)

        try:
            user = UserIdentity(**document)
        except ValueError as e:
            return await self._revoke_orphan(session, was_authenticated, now, e)

        self.user = user
        self._transition(AuthState.AUTHENTICATED)
        return SessionCheck(session=session, user=user, checked_at=now)

    async def _revoke_orphan(
        self, session: Session, was_authenticated: bool, now: datetime, error: Exception
    ) -> SessionCheck:
        """Deactivate a session whose user record no longer resolves."""
        logger.warning(
            "Session user could not be resolved, deactivating session",
            session_id=session.id,
            user_id=session.user_id,
            error=str(error),
        )
        try:
            await self.sessions.deactivate_session(session.id)
        except PersistenceError:
            pass
        self._fall_back_to_anonymous(was_authenticated)
        return SessionCheck(session=None, user=None, checked_at=now)

    def _fall_back_to_anonymous(self, was_authenticated: bool) -> None:
        self._clear_identity()
        if was_authenticated:
            logger.info("Session no longer valid")
            self._transition(AuthState.SESSION_EXPIRED)
        self._transition(AuthState.ANONYMOUS)

    async def tick(self) -> Optional[SessionCheck]:
        """One periodic step: re-check when a session exists and the interval elapsed."""
        if self.session is None:
            return None
        checked_at = self.session_checked_at
        if checked_at is not None and self.clock() - checked_at <= self.check_interval:
            return None
        return await self.check_session()

    async def _periodic_loop(self) -> None:
        while True:
            await asyncio.sleep(self.check_interval.total_seconds())
            try:
                await self.tick()
            except Exception as e:
                logger.error("Periodic session check failed", error=str(e))

    async def start(self) -> SessionCheck:
        """Initial session check plus the background re-validation task."""
        result = await self.check_session()
        if self._task is None:
            self._task = asyncio.create_task(self._periodic_loop())
        return result

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

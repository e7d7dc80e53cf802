"""
Session manager: issues, validates and revokes opaque session tokens.

Validation results are cached per token for a short TTL to bound load on the
document store. While a lookup for a token is in flight, concurrent callers
for the same token get the last cached value instead of a second lookup.
Sessions are never deleted, only deactivated.
"""

from __future__ import annotations

import secrets
import string
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Optional, Set

from ..core.clock import Clock, utcnow
from ..stores.documents import SESSIONS_COLLECTION, DocumentStore
from ..utils.exceptions import (
    PersistenceError,
    SessionCreationFailed,
    SessionExpired,
    SessionInvalid,
)
from ..utils.logger import get_logger, token_preview
from .models import Session
from .token_slot import MemoryTokenSlot, TokenSlot

logger = get_logger(__name__)

SESSION_LIFETIME = timedelta(hours=24)
CACHE_TTL = timedelta(seconds=30)
TOKEN_LENGTH = 64
TOKEN_ALPHABET = string.ascii_letters + string.digits
USER_AGENT_MAX_LENGTH = 255
CACHE_LOG_THROTTLE = timedelta(seconds=5)

REASON_MISSING = "missing"
REASON_INACTIVE = "inactive"
REASON_EXPIRED = "expired"


def generate_session_token(length: int = TOKEN_LENGTH) -> str:
    """Random alphanumeric token from the OS CSPRNG."""
    return "".join(secrets.choice(TOKEN_ALPHABET) for _ in range(length))


@dataclass
class _CacheEntry:
    session: Optional[Session]
    stored_at: datetime
    reason: Optional[str] = None


class SessionCache:
    """
    Token -> validation result cache plus the set of tokens being looked up.

    Not locked: callers share one event loop. Guard with a mutex before
    sharing an instance across threads.
    """

    def __init__(self, ttl: timedelta = CACHE_TTL, clock: Optional[Clock] = None):
        self.ttl = ttl
        self.clock = clock or utcnow
        self._entries: Dict[str, _CacheEntry] = {}
        self._in_flight: Set[str] = set()
        self.generation = 0

    def fresh(self, token: str) -> Optional[_CacheEntry]:
        entry = self._entries.get(token)
        if entry is None:
            return None
        if self.clock() - entry.stored_at >= self.ttl:
            return None
        return entry

    def last(self, token: str) -> Optional[Session]:
        entry = self._entries.get(token)
        return entry.session if entry else None

    def reason(self, token: str) -> Optional[str]:
        entry = self._entries.get(token)
        return entry.reason if entry else None

    def put(self, token: str, session: Optional[Session], reason: Optional[str] = None) -> None:
        self._entries[token] = _CacheEntry(session=session, stored_at=self.clock(), reason=reason)

    def clear(self) -> None:
        """Drop every entry. Lookups started before the clear must not repopulate it."""
        self._entries.clear()
        self.generation += 1

    def in_flight(self, token: str) -> bool:
        return token in self._in_flight

    def mark_in_flight(self, token: str) -> None:
        self._in_flight.add(token)

    def release(self, token: str) -> None:
        self._in_flight.discard(token)

    def __len__(self) -> int:
        return len(self._entries)


class SessionManager:
    """Owns session records and the validation cache for one client context."""

    def __init__(
        self,
        store: DocumentStore,
        token_slot: Optional[TokenSlot] = None,
        cache: Optional[SessionCache] = None,
        clock: Optional[Clock] = None,
        lifetime: timedelta = SESSION_LIFETIME,
        cache_ttl: timedelta = CACHE_TTL,
    ):
        self.store = store
        self.token_slot = token_slot or MemoryTokenSlot()
        self.clock = clock or utcnow
        self.cache = cache if cache is not None else SessionCache(ttl=cache_ttl, clock=self.clock)
        self.lifetime = lifetime
        self._cache_hits = 0
        self._last_hit_log: Optional[datetime] = None

    async def create_session(self, user_id: str, user_agent: Optional[str] = None) -> Session:
        """Persist a new session, store its token in the slot and seed the cache."""
        token = generate_session_token()
        now = self.clock()
        fields = {
            "userId": user_id,
            "token": token,
            "createdAt": now.isoformat(),
            "expiresAt": (now + self.lifetime).isoformat(),
            "isActive": True,
        }
        if user_agent:
            fields["userAgent"] = user_agent[:USER_AGENT_MAX_LENGTH]

        try:
            document = await self.store.create_document(SESSIONS_COLLECTION, None, fields)
        except PersistenceError as e:
            logger.error("Error creating session", user_id=user_id, error=str(e))
            raise SessionCreationFailed() from e

        session = Session(**document)
        self.token_slot.set(token)
        self.cache.put(token, session)
        logger.info("Session created", session_id=session.id, user_id=user_id)
        return session

    async def validate_session(self, token: Optional[str]) -> Optional[Session]:
        """
        Return the session for a token if active and unexpired, else None.

        Store errors count as "no valid session". Expired sessions are
        deactivated as a side effect.
        """
        if not token:
            return None

        if self.cache.in_flight(token):
            return self.cache.last(token)

        entry = self.cache.fresh(token)
        if entry is not None:
            self._log_cache_hit()
            return entry.session

        self.cache.mark_in_flight(token)
        try:
            return await self._lookup(token)
        finally:
            self.cache.release(token)

    async def _lookup(self, token: str, reread: bool = True) -> Optional[Session]:
        logger.debug("Validating session", token=token_preview(token))
        generation = self.cache.generation
        try:
            documents = await self.store.list_documents(SESSIONS_COLLECTION, {"token": token})
        except PersistenceError as e:
            logger.error("Error validating session", token=token_preview(token), error=str(e))
            return None

        if not documents:
            logger.info("No session found for token", token=token_preview(token))
            self.cache.put(token, None, REASON_MISSING)
            return None

        try:
            session = Session(**documents[0])
        except ValueError as e:
            logger.error("Malformed session document", document_id=documents[0].get("id"), error=str(e))
            self.cache.put(token, None, REASON_MISSING)
            return None

        if not session.is_active:
            logger.info("Session is inactive", session_id=session.id)
            self.cache.put(token, None, REASON_INACTIVE)
            return None

        if session.is_expired(self.clock()):
            logger.info("Session expired, deactivating", session_id=session.id)
            try:
                await self.deactivate_session(session.id)
            except PersistenceError:
                # already logged; the session is still refused
                pass
            self.cache.put(token, None, REASON_EXPIRED)
            return None

        if self.cache.generation != generation:
            # cache was cleared while the store call was pending; the document may be stale
            logger.info("Session cache cleared during lookup", session_id=session.id, reread=reread)
            return await self._lookup(token, reread=False) if reread else None

        self.cache.put(token, session)
        return session

    def _log_cache_hit(self) -> None:
        self._cache_hits += 1
        now = self.clock()
        if self._last_hit_log is None or now - self._last_hit_log > CACHE_LOG_THROTTLE:
            logger.debug("Using cached session", validations=self._cache_hits)
            self._cache_hits = 0
            self._last_hit_log = now

    async def require_session(self, token: Optional[str]) -> Session:
        """Like validate_session but raises SessionExpired / SessionInvalid."""
        session = await self.validate_session(token)
        if session is not None:
            return session
        if token and self.cache.reason(token) == REASON_EXPIRED:
            raise SessionExpired()
        raise SessionInvalid()

    async def deactivate_session(self, session_id: str) -> None:
        """
        Mark a session inactive, clear the local token and the whole cache.

        Local state is cleared even when the store update fails; the
        PersistenceError is re-raised afterwards.
        """
        try:
            await self.store.update_document(SESSIONS_COLLECTION, session_id, {"isActive": False})
        except PersistenceError as e:
            logger.error("Error deactivating session", session_id=session_id, error=str(e))
            raise
        finally:
            self.token_slot.clear()
            self.cache.clear()
        logger.info("Session deactivated", session_id=session_id)

    async def deactivate_all_sessions(self, user_id: str) -> int:
        """Deactivate every active session of a user. Returns how many were deactivated."""
        try:
            documents = await self.store.list_documents(
                SESSIONS_COLLECTION, {"userId": user_id, "isActive": True}
            )
        except PersistenceError as e:
            logger.error("Error listing user sessions", user_id=user_id, error=str(e))
            self.token_slot.clear()
            self.cache.clear()
            raise

        deactivated = 0
        failure: Optional[PersistenceError] = None
        for document in documents:
            try:
                await self.deactivate_session(document["id"])
                deactivated += 1
            except PersistenceError as e:
                failure = failure or e

        self.token_slot.clear()
        self.cache.clear()
        logger.info("User sessions deactivated", user_id=user_id, count=deactivated)
        if failure is not None:
            raise failure
        return deactivated

    async def get_current_session(self) -> Optional[Session]:
        """Validate whatever token is in the local slot."""
        token = self.token_slot.get()
        if not token:
            return None
        return await self.validate_session(token)

    def clear_local_token(self) -> None:
        self.token_slot.clear()

"""Session authentication: session manager, coordinator, password hashing."""

from .coordinator import AuthCoordinator, AuthState, SessionCheck
from .models import Session, UserIdentity
from .passwords import hash_password, verify_password
from .session_manager import SessionCache, SessionManager, generate_session_token
from .token_slot import FileTokenSlot, MemoryTokenSlot, TokenSlot

__all__ = [
    "AuthCoordinator",
    "AuthState",
    "SessionCheck",
    "Session",
    "UserIdentity",
    "hash_password",
    "verify_password",
    "SessionCache",
    "SessionManager",
    "generate_session_token",
    "FileTokenSlot",
    "MemoryTokenSlot",
    "TokenSlot",
]

"""
Auth models.

Session documents keep the camelCase attribute names of the sessions
collection (userId, expiresAt, isActive, ...); Python code uses the
snake_case field names.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..core.clock import parse_timestamp


class Session(BaseModel):
    """Server-recorded bearer credential for one login."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    user_id: str = Field(alias="userId")
    token: str
    user_agent: Optional[str] = Field(default=None, alias="userAgent")
    created_at: datetime = Field(alias="createdAt")
    expires_at: datetime = Field(alias="expiresAt")
    is_active: bool = Field(default=True, alias="isActive")

    @field_validator("created_at", "expires_at", mode="before")
    @classmethod
    def _aware(cls, value: Any) -> datetime:
        return parse_timestamp(value)

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now


class UserIdentity(BaseModel):
    """User record; read-only for the storefront core."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    name: str = ""
    password_hash: str = ""
    created_at: Optional[str] = None

    def public(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "created_at": self.created_at,
        }

"""Persistence collaborators for the storefront core."""

from .documents import (
    PURCHASES_COLLECTION,
    SESSIONS_COLLECTION,
    SITE_CONFIG_COLLECTION,
    USERS_COLLECTION,
    DocumentStore,
    JsonDocumentStore,
)

__all__ = [
    "DocumentStore",
    "JsonDocumentStore",
    "USERS_COLLECTION",
    "SESSIONS_COLLECTION",
    "SITE_CONFIG_COLLECTION",
    "PURCHASES_COLLECTION",
]

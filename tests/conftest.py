import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Set

import pytest

from storefront.auth import hash_password
from storefront.stores import USERS_COLLECTION, DocumentStore, JsonDocumentStore
from storefront.utils.exceptions import PersistenceError

ENV_FALLBACK_VARS = (
    "EMAIL_USER",
    "EMAIL_PASS",
    "EMAIL_FROM",
    "TELEGRAM_USERNAME",
    "STRIPE_SECRET_KEY",
    "PAYPAL_CLIENT_ID",
    "PAYPAL_CLIENT_SECRET",
)

TEST_PASSWORD = "password123"


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FlakyStore(DocumentStore):
    """Wraps a store; operations listed in fail_on raise PersistenceError."""

    def __init__(self, inner: DocumentStore):
        self.inner = inner
        self.fail_on: Set[str] = set()
        self.calls: List[str] = []

    def _enter(self, operation: str) -> None:
        self.calls.append(operation)
        if operation in self.fail_on:
            raise PersistenceError(f"{operation} unavailable")

    async def list_documents(self, collection, filters=None):
        self._enter("list_documents")
        return await self.inner.list_documents(collection, filters)

    async def get_document(self, collection, document_id):
        self._enter("get_document")
        return await self.inner.get_document(collection, document_id)

    async def create_document(self, collection, document_id, fields):
        self._enter("create_document")
        return await self.inner.create_document(collection, document_id, fields)

    async def update_document(self, collection, document_id, fields):
        self._enter("update_document")
        return await self.inner.update_document(collection, document_id, fields)

    async def supported_fields(self, collection):
        return await self.inner.supported_fields(collection)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_FALLBACK_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(tmp_path):
    return JsonDocumentStore(tmp_path / "data")


@pytest.fixture
def flaky_store(store):
    return FlakyStore(store)


@pytest.fixture(scope="session")
def password_hash():
    return hash_password(TEST_PASSWORD)


def seed_user(
    store: DocumentStore,
    password_hash: str,
    user_id: str = "user-1",
    email: str = "buyer@example.com",
    name: str = "Ann",
) -> Dict[str, Any]:
    return asyncio.run(
        store.create_document(
            USERS_COLLECTION,
            user_id,
            {
                "email": email,
                "name": name,
                "password_hash": password_hash,
                "created_at": "2025-12-01T10:00:00+00:00",
            },
        )
    )


@pytest.fixture
def user(store, password_hash):
    return seed_user(store, password_hash)


@pytest.fixture
def make_user(store, password_hash):
    def _make(user_id="user-1", email="buyer@example.com", name="Ann"):
        return seed_user(store, password_hash, user_id=user_id, email=email, name=name)

    return _make

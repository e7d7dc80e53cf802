import asyncio
import string

import pytest

from storefront.auth import (
    FileTokenSlot,
    MemoryTokenSlot,
    SessionCache,
    SessionManager,
    generate_session_token,
)
from storefront.stores import SESSIONS_COLLECTION, DocumentStore
from storefront.utils.exceptions import (
    PersistenceError,
    SessionCreationFailed,
    SessionExpired,
    SessionInvalid,
)


class GatedStore(DocumentStore):
    """Session lookups read, then block until released, to hold a validation in flight."""

    def __init__(self, inner):
        self.inner = inner
        self.gate_lookups = False
        self.entered = asyncio.Event()
        self.release = asyncio.Event()
        self.lookups = 0

    async def list_documents(self, collection, filters=None):
        documents = await self.inner.list_documents(collection, filters)
        if collection == SESSIONS_COLLECTION and self.gate_lookups:
            self.lookups += 1
            self.entered.set()
            await self.release.wait()
        return documents

    async def get_document(self, collection, document_id):
        return await self.inner.get_document(collection, document_id)

    async def create_document(self, collection, document_id, fields):
        return await self.inner.create_document(collection, document_id, fields)

    async def update_document(self, collection, document_id, fields):
        return await self.inner.update_document(collection, document_id, fields)


def test_generate_session_token_is_long_alphanumeric():
    tokens = {generate_session_token() for _ in range(50)}
    assert len(tokens) == 50
    alphabet = set(string.ascii_letters + string.digits)
    for token in tokens:
        assert len(token) == 64
        assert set(token) <= alphabet


def test_create_then_validate(store, clock):
    manager = SessionManager(store, clock=clock)
    session = asyncio.run(manager.create_session("user-1", user_agent="pytest"))

    assert manager.token_slot.get() == session.token
    assert session.expires_at - session.created_at == manager.lifetime

    validated = asyncio.run(manager.validate_session(session.token))
    assert validated.user_id == "user-1"
    assert validated.token == session.token
    assert validated.is_active is True

    # a manager with a cold cache reads the stored record
    other = SessionManager(store, clock=clock)
    from_store = asyncio.run(other.validate_session(session.token))
    assert from_store.id == session.id
    assert from_store.user_agent == "pytest"


def test_user_agent_truncated(store, clock):
    manager = SessionManager(store, clock=clock)
    session = asyncio.run(manager.create_session("user-1", user_agent="x" * 400))
    assert len(session.user_agent) == 255


def test_validate_unknown_or_empty_token(store, clock):
    manager = SessionManager(store, clock=clock)
    assert asyncio.run(manager.validate_session(None)) is None
    assert asyncio.run(manager.validate_session("")) is None
    assert asyncio.run(manager.validate_session("nope")) is None
    with pytest.raises(SessionInvalid):
        asyncio.run(manager.require_session("nope"))


def test_expired_session_is_lazily_deactivated(store, clock):
    manager = SessionManager(store, clock=clock)
    session = asyncio.run(manager.create_session("user-1"))

    clock.advance(hours=24)
    assert asyncio.run(manager.validate_session(session.token)) is None

    stored = asyncio.run(store.get_document(SESSIONS_COLLECTION, session.id))
    assert stored["isActive"] is False
    with pytest.raises(SessionExpired):
        asyncio.run(manager.require_session(session.token))


def test_deactivate_invalidates_cache_before_ttl(store, clock):
    manager = SessionManager(store, clock=clock)
    session = asyncio.run(manager.create_session("user-1"))
    assert asyncio.run(manager.validate_session(session.token)) is not None

    asyncio.run(manager.deactivate_session(session.id))

    assert manager.token_slot.get() is None
    assert len(manager.cache) == 0
    assert asyncio.run(manager.validate_session(session.token)) is None


def test_create_validate_deactivate_scenario(store, clock):
    manager = SessionManager(store, clock=clock)
    session = asyncio.run(manager.create_session("user-1"))
    token = session.token

    assert asyncio.run(manager.validate_session(token)).user_id == "user-1"
    asyncio.run(manager.deactivate_session(session.id))
    assert asyncio.run(manager.validate_session(token)) is None


def test_validation_results_cached_for_ttl(flaky_store, clock):
    manager = SessionManager(flaky_store, clock=clock)
    session = asyncio.run(manager.create_session("user-1"))
    flaky_store.calls.clear()

    for _ in range(3):
        assert asyncio.run(manager.validate_session(session.token)) is not None
    assert flaky_store.calls == []

    clock.advance(seconds=31)
    assert asyncio.run(manager.validate_session(session.token)) is not None
    assert flaky_store.calls == ["list_documents"]


def test_store_failure_during_validation_fails_closed(flaky_store, clock):
    manager = SessionManager(flaky_store, clock=clock)
    session = asyncio.run(manager.create_session("user-1"))
    clock.advance(seconds=31)
    flaky_store.fail_on.add("list_documents")

    assert asyncio.run(manager.validate_session(session.token)) is None


def test_store_failure_during_create(flaky_store, clock):
    flaky_store.fail_on.add("create_document")
    manager = SessionManager(flaky_store, clock=clock)

    with pytest.raises(SessionCreationFailed):
        asyncio.run(manager.create_session("user-1"))
    assert manager.token_slot.get() is None


def test_deactivate_clears_local_state_even_when_store_fails(flaky_store, clock):
    manager = SessionManager(flaky_store, clock=clock)
    session = asyncio.run(manager.create_session("user-1"))
    flaky_store.fail_on.add("update_document")

    with pytest.raises(PersistenceError):
        asyncio.run(manager.deactivate_session(session.id))
    assert manager.token_slot.get() is None
    assert len(manager.cache) == 0


def test_concurrent_validation_is_single_flight(store, clock):
    gated = GatedStore(store)
    manager = SessionManager(gated, clock=clock)

    async def scenario():
        session = await manager.create_session("user-1")
        clock.advance(seconds=31)
        gated.gate_lookups = True

        first = asyncio.create_task(manager.validate_session(session.token))
        await gated.entered.wait()
        # lookup in flight: the previous cached value is returned immediately
        second = await manager.validate_session(session.token)
        gated.release.set()
        return session, second, await first

    session, second, first = asyncio.run(scenario())
    assert gated.lookups == 1
    assert second.id == session.id
    assert first.id == session.id


def test_deactivation_during_lookup_is_not_undone(store, clock):
    gated = GatedStore(store)
    manager = SessionManager(gated, clock=clock)

    async def scenario():
        session = await manager.create_session("user-1")
        clock.advance(seconds=31)
        gated.gate_lookups = True

        pending = asyncio.create_task(manager.validate_session(session.token))
        await gated.entered.wait()
        await manager.deactivate_session(session.id)
        gated.release.set()
        return await pending, await manager.validate_session(session.token)

    pending, after = asyncio.run(scenario())
    assert pending is None
    assert after is None
    assert gated.lookups == 2


def test_cache_clear_bumps_generation():
    cache = SessionCache()
    before = cache.generation
    cache.clear()
    assert cache.generation == before + 1


def test_in_flight_token_without_cache_returns_none():
    cache = SessionCache()
    cache.mark_in_flight("abc")
    assert cache.in_flight("abc")
    assert cache.last("abc") is None
    cache.release("abc")
    assert not cache.in_flight("abc")


def test_deactivate_all_sessions(store, clock):
    manager = SessionManager(store, clock=clock)
    for _ in range(3):
        asyncio.run(manager.create_session("user-1"))
    other = asyncio.run(manager.create_session("user-2"))

    count = asyncio.run(manager.deactivate_all_sessions("user-1"))

    assert count == 3
    remaining = asyncio.run(
        store.list_documents(SESSIONS_COLLECTION, {"userId": "user-1", "isActive": True})
    )
    assert remaining == []
    assert asyncio.run(manager.validate_session(other.token)).user_id == "user-2"


def test_get_current_session_reads_slot(store, clock):
    manager = SessionManager(store, clock=clock)
    assert asyncio.run(manager.get_current_session()) is None

    session = asyncio.run(manager.create_session("user-1"))
    cold = SessionManager(store, token_slot=MemoryTokenSlot(session.token), clock=clock)
    assert asyncio.run(cold.get_current_session()).id == session.id


def test_file_token_slot_round_trip(tmp_path):
    slot = FileTokenSlot(tmp_path / "client" / "token.json")
    assert slot.get() is None
    slot.set("abc123")
    assert FileTokenSlot(tmp_path / "client" / "token.json").get() == "abc123"
    slot.clear()
    assert slot.get() is None
    slot.clear()

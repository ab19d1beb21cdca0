"""
Unit tests for session store implementations.

Tests file, in-memory and cached stores for record persistence, missing
records, flush semantics and session id validation.
"""

import json

import pytest

from devshop.services.interfaces.session_store import RecordNotFound
from devshop.services.session_store import CachedSessionStore, FileSessionStore, InMemorySessionStore


@pytest.fixture
def file_store(tmp_path):
    """File store under a temporary directory."""
    return FileSessionStore(str(tmp_path / "sessions"))


class TestFileSessionStore:
    """Test the JSON document store."""

    @pytest.mark.asyncio
    async def test_set_then_get(self, file_store):
        """Test records persist as one document per session."""
        await file_store.set("s1", "conversation", {"turn_count": 2, "state": "gathering"})

        assert await file_store.get("s1", "conversation") == {"turn_count": 2, "state": "gathering"}

        document = json.loads((file_store.storage_path / "s1.json").read_text())
        assert document["records"]["conversation"]["turn_count"] == 2
        assert document["version"] == "1.0"
        assert "saved_at" in document

    @pytest.mark.asyncio
    async def test_keys_share_a_document(self, file_store):
        """Test several keys coexist in one session file."""
        await file_store.set("s1", "conversation", {"a": 1})
        await file_store.set("s1", "notes", {"b": 2})

        assert await file_store.get("s1", "conversation") == {"a": 1}
        assert await file_store.get("s1", "notes") == {"b": 2}

    @pytest.mark.asyncio
    async def test_missing_records(self, file_store):
        """Test unknown sessions and keys raise RecordNotFound."""
        with pytest.raises(RecordNotFound):
            await file_store.get("nope", "conversation")

        await file_store.set("s1", "conversation", {})
        with pytest.raises(RecordNotFound) as exc_info:
            await file_store.get("s1", "other")

        assert exc_info.value.key == "other"
        assert isinstance(exc_info.value, KeyError)
        assert await file_store.exists("s1", "other") is False
        assert await file_store.exists("s1", "conversation") is True

    @pytest.mark.asyncio
    async def test_list_and_delete(self, file_store):
        """Test sessions can be listed and removed."""
        await file_store.set("b", "conversation", {})
        await file_store.set("a", "conversation", {})

        assert await file_store.list_sessions() == ["a", "b"]
        assert await file_store.delete_session("a") is True
        assert await file_store.delete_session("a") is False
        assert await file_store.list_sessions() == ["b"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("session_id", ["../escape", "a/b", ".hidden", ""])
    async def test_rejects_unsafe_ids(self, file_store, session_id):
        """Test session ids cannot leave the storage directory."""
        with pytest.raises(ValueError):
            await file_store.set(session_id, "conversation", {})

    @pytest.mark.asyncio
    async def test_survives_new_instance(self, tmp_path):
        """Test another store over the same directory reads the record."""
        await FileSessionStore(str(tmp_path)).set("s1", "conversation", {"turn_count": 3})

        assert (await FileSessionStore(str(tmp_path)).get("s1", "conversation"))["turn_count"] == 3


class TestInMemorySessionStore:
    """Test the process-local store."""

    @pytest.mark.asyncio
    async def test_records_are_copied(self):
        """Test callers cannot mutate stored records in place."""
        store = InMemorySessionStore()
        record = {"history": []}
        await store.set("s1", "conversation", record)

        record["history"].append("outside change")
        loaded = await store.get("s1", "conversation")
        loaded["history"].append("another change")

        assert (await store.get("s1", "conversation"))["history"] == []

    @pytest.mark.asyncio
    async def test_missing(self):
        """Test unknown records raise RecordNotFound."""
        with pytest.raises(RecordNotFound):
            await InMemorySessionStore().get("s1", "conversation")


class TestCachedSessionStore:
    """Test the cache-then-store tier."""

    @pytest.mark.asyncio
    async def test_writes_wait_for_flush(self):
        """Test nothing reaches the backing store before flush."""
        backing = InMemorySessionStore()
        cached = CachedSessionStore(backing)

        await cached.set("s1", "conversation", {"turn_count": 1})

        assert await cached.get("s1", "conversation") == {"turn_count": 1}
        assert await cached.exists("s1", "conversation") is True
        assert await backing.exists("s1", "conversation") is False
        assert cached.pending_writes == 1

        await cached.flush()

        assert await backing.get("s1", "conversation") == {"turn_count": 1}
        assert cached.pending_writes == 0

    @pytest.mark.asyncio
    async def test_flush_single_session(self):
        """Test flushing one session leaves others pending."""
        backing = InMemorySessionStore()
        cached = CachedSessionStore(backing)
        await cached.set("s1", "conversation", {})
        await cached.set("s2", "conversation", {})

        await cached.flush("s1")

        assert await backing.exists("s1", "conversation") is True
        assert await backing.exists("s2", "conversation") is False
        assert cached.pending_writes == 1

    @pytest.mark.asyncio
    async def test_reads_fall_through(self):
        """Test cache misses load from the backing store."""
        backing = InMemorySessionStore()
        await backing.set("s1", "conversation", {"turn_count": 7})
        cached = CachedSessionStore(backing)

        assert (await cached.get("s1", "conversation"))["turn_count"] == 7
        assert await cached.list_sessions() == ["s1"]

        with pytest.raises(RecordNotFound):
            await cached.get("s2", "conversation")

    @pytest.mark.asyncio
    async def test_evict_keeps_dirty_entries(self):
        """Test eviction never drops unflushed writes."""
        backing = InMemorySessionStore()
        cached = CachedSessionStore(backing)
        await cached.set("s1", "conversation", {"v": 1})

        cached.evict("s1")
        assert cached.pending_writes == 1

        await cached.flush()
        cached.evict("s1")
        await backing.set("s1", "conversation", {"v": 2})

        assert (await cached.get("s1", "conversation"))["v"] == 2

    @pytest.mark.asyncio
    async def test_over_file_store(self, file_store):
        """Test flush makes records durable on disk."""
        cached = CachedSessionStore(file_store)
        await cached.set("s1", "conversation", {"turn_count": 4})
        await cached.flush("s1")

        assert (await FileSessionStore(str(file_store.storage_path)).get("s1", "conversation"))["turn_count"] == 4

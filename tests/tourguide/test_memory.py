"""
Tests for the mem0 client and the memory bridge.
"""
import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest


@pytest.fixture
def mem0_requests(monkeypatch):
    """Route the store's httpx clients to a recording MockTransport."""
    seen = []
    responses = {}
    real_client = httpx.AsyncClient

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        status, body = responses.get((request.method, request.url.path), (200, {"results": []}))
        return httpx.Response(status, json=body)

    def factory(**kwargs):
        return real_client(transport=httpx.MockTransport(handler), **kwargs)

    monkeypatch.setattr("tourguide.memory.store.httpx.AsyncClient", factory)
    return seen, responses


class TestMemoryStore:
    """Tests for MemoryStore."""

    @pytest.mark.asyncio
    async def test_add_posts_messages(self, mem0_requests):
        from tourguide.memory.store import MemoryStore

        seen, responses = mem0_requests
        responses[("POST", "/v1/memories/")] = (200, {"results": [{"id": "m-1", "memory": "likes tapas"}]})
        store = MemoryStore("key")

        memory_id = await store.add(
            [{"role": "user", "content": "I love tapas"}], "u1", metadata={"category": "tour_session"}
        )

        assert memory_id == "m-1"
        request = seen[0]
        assert request.headers["Authorization"] == "Token key"
        body = json.loads(request.content)
        assert body["user_id"] == "u1"
        assert body["metadata"] == {"category": "tour_session"}
        assert "infer" not in body

    @pytest.mark.asyncio
    async def test_add_verbatim(self, mem0_requests):
        from tourguide.memory.store import MemoryStore

        seen, _ = mem0_requests
        await MemoryStore("key").add([{"role": "user", "content": "x"}], "u1", infer=False)

        assert json.loads(seen[0].content)["infer"] is False

    @pytest.mark.asyncio
    async def test_search_parses_hits(self, mem0_requests):
        from tourguide.memory.store import MemoryStore

        _, responses = mem0_requests
        responses[("POST", "/v1/memories/search/")] = (200, [
            {"id": "a", "memory": "vegetarian", "score": 0.9},
            {"id": "b", "memory": "afraid of heights", "score": 0.4, "metadata": {"type": "bookmark"}},
        ])

        hits = await MemoryStore("key").search("food", "u1")

        assert [(h.id, h.text, h.score) for h in hits] == [("a", "vegetarian", 0.9), ("b", "afraid of heights", 0.4)]
        assert hits[1].metadata == {"type": "bookmark"}

    @pytest.mark.asyncio
    async def test_http_error_raises(self, mem0_requests):
        from tourguide.memory.store import MemoryStore, MemoryStoreError

        _, responses = mem0_requests
        responses[("GET", "/v1/memories/")] = (503, {"detail": "down"})

        with pytest.raises(MemoryStoreError):
            await MemoryStore("key").get_all("u1")

    @pytest.mark.asyncio
    async def test_missing_key_raises(self):
        from tourguide.memory.store import MemoryStore, MemoryStoreError

        store = MemoryStore("")

        assert not store.configured
        with pytest.raises(MemoryStoreError):
            await store.search("anything", "u1")


def _bridge(tmp_path, store=None, **kwargs):
    from tourguide.memory.bridge import MemoryBridge

    if store is None:
        store = MagicMock()
        store.add = AsyncMock(return_value="m-1")
        store.search = AsyncMock(return_value=[])
        store.get_all = AsyncMock(return_value=[])
    return MemoryBridge(store, base_dir=tmp_path, **kwargs)


class TestMemoryBridge:
    """Tests for MemoryBridge."""

    def test_default_user_id_per_session(self, tmp_path):
        bridge = _bridge(tmp_path)

        assert bridge.default_user_id("s-1") == "anonymous-s-1"
        assert bridge.default_user_id("s-2") == "anonymous-s-2"

    def test_default_user_id_pooled(self, tmp_path):
        bridge = _bridge(tmp_path, anonymous_user_id="guest")

        assert bridge.default_user_id("s-1") == "guest"

    @pytest.mark.asyncio
    async def test_persist_tags_tour_session(self, tmp_path):
        bridge = _bridge(tmp_path)
        messages = [{"role": "user", "content": "hi"}, {"role": "assistant", "content": "hello"}]

        assert await bridge.persist(messages, "u1") == "m-1"
        bridge.store.add.assert_awaited_once_with(messages, "u1", metadata={"category": "tour_session"})

    @pytest.mark.asyncio
    async def test_persist_failure_returns_none(self, tmp_path):
        from tourguide.memory.store import MemoryStoreError

        bridge = _bridge(tmp_path)
        bridge.store.add.side_effect = MemoryStoreError("down")

        assert await bridge.persist([{"role": "user", "content": "hi"}], "u1") is None

    @pytest.mark.asyncio
    async def test_persist_async_runs_detached(self, tmp_path):
        bridge = _bridge(tmp_path)

        task = bridge.persist_async([{"role": "user", "content": "hi"}], "u1")
        await task

        bridge.store.add.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_bookmark_saved_to_memory_store(self, tmp_path):
        from tourguide.memory.bridge import Bookmark
        from tourguide.storage.local_persistence import load_bookmarks

        bridge = _bridge(tmp_path)

        bookmark_id = await bridge.save_bookmark(
            Bookmark(title="Casa Pepe", description="Great tapas at Casa Pepe", category="food", location="Seville"),
            "u1",
        )

        assert bookmark_id == "m-1"
        kwargs = bridge.store.add.await_args.kwargs
        assert kwargs["infer"] is False
        assert kwargs["metadata"] == {"type": "bookmark", "title": "Casa Pepe", "category": "food", "location": "Seville"}
        assert load_bookmarks("u1", base_dir=tmp_path) == []

    @pytest.mark.asyncio
    async def test_bookmark_falls_back_to_file_once(self, tmp_path):
        from tourguide.memory.bridge import Bookmark
        from tourguide.memory.store import MemoryStoreError
        from tourguide.storage.local_persistence import load_bookmarks

        bridge = _bridge(tmp_path)
        bridge.store.add.side_effect = MemoryStoreError("unreachable")

        bookmark_id = await bridge.save_bookmark(Bookmark(title="Alfama", description="Walk Alfama at dusk"), "u1")

        stored = load_bookmarks("u1", base_dir=tmp_path)
        assert len(stored) == 1
        assert stored[0]["id"] == bookmark_id
        assert stored[0]["title"] == "Alfama"

    @pytest.mark.asyncio
    async def test_get_bookmarks_merges_stores(self, tmp_path):
        from tourguide.memory.store import MemoryHit
        from tourguide.storage.local_persistence import append_bookmark

        bridge = _bridge(tmp_path)
        bridge.store.get_all.return_value = [
            MemoryHit(id="m-1", text="Great tapas", metadata={"type": "bookmark", "title": "Casa Pepe", "category": "food"}),
            MemoryHit(id="m-2", text="User is vegetarian", metadata={"category": "tour_session"}),
        ]
        append_bookmark("u1", {"title": "Alfama", "description": "Walk Alfama", "category": "place"}, base_dir=tmp_path)

        records = await bridge.get_bookmarks("u1")

        assert [(r.title, r.category) for r in records] == [("Casa Pepe", "food"), ("Alfama", "place")]
        assert records[1].created_at is not None

    @pytest.mark.asyncio
    async def test_get_bookmarks_survives_store_outage(self, tmp_path):
        from tourguide.memory.store import MemoryStoreError
        from tourguide.storage.local_persistence import append_bookmark

        bridge = _bridge(tmp_path)
        bridge.store.get_all.side_effect = MemoryStoreError("down")
        append_bookmark("u1", {"title": "Alfama", "description": "Walk Alfama"}, base_dir=tmp_path)

        records = await bridge.get_bookmarks("u1")

        assert [r.title for r in records] == ["Alfama"]

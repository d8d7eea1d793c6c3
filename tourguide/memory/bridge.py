"""
Memory Bridge
Conversation persistence and bookmarks on top of the memory store, with a
per-user file fallback for bookmarks.
"""
import asyncio
import datetime
import uuid
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Optional

import structlog

from ..background import spawn_detached
from ..storage.local_persistence import append_bookmark, load_bookmarks
from ..tracing import start_memory_span
from .store import MemoryHit, MemoryStore, MemoryStoreError

logger = structlog.get_logger()

BOOKMARK_TYPE = "bookmark"
TOUR_SESSION_METADATA = {"category": "tour_session"}


@dataclass
class Bookmark:
    """A bookmark as saved by the user."""
    title: str
    description: str
    category: str = "general"
    location: Optional[str] = None


@dataclass
class BookmarkRecord:
    """A stored bookmark, normalized across the primary and fallback stores."""
    id: str
    text: str
    relevance_score: float = 0.0
    title: str = ""
    category: str = "general"
    location: Optional[str] = None
    created_at: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


def _record_from_hit(hit: MemoryHit) -> BookmarkRecord:
    metadata = hit.metadata or {}
    return BookmarkRecord(
        id=hit.id,
        text=hit.text,
        relevance_score=hit.score,
        title=metadata.get("title") or hit.text,
        category=metadata.get("category") or "general",
        location=metadata.get("location"),
        created_at=hit.created_at,
    )


def _record_from_file(entry: dict) -> BookmarkRecord:
    created_at = None
    timestamp = entry.get("timestamp")
    if isinstance(timestamp, (int, float)):
        created_at = datetime.datetime.fromtimestamp(timestamp, tz=datetime.timezone.utc).isoformat()
    return BookmarkRecord(
        id=str(entry.get("id") or ""),
        text=entry.get("description") or "",
        relevance_score=0.0,
        title=entry.get("title") or "",
        category=entry.get("category") or "general",
        location=entry.get("location"),
        created_at=created_at,
    )


class MemoryBridge:
    """
    Facade the gateway and tools use for everything long-term.

    Conversation writes go to the memory store only; a failed write is
    logged and reported as None. Bookmarks try the memory store first and
    fall back to a JSON file per user.
    """

    def __init__(
        self,
        store: MemoryStore,
        base_dir: Optional[Path] = None,
        anonymous_user_id: Optional[str] = None,
    ):
        self.store = store
        self.base_dir = base_dir
        self.anonymous_user_id = anonymous_user_id

    def default_user_id(self, session_id: str) -> str:
        """Identity for a client that never supplied one."""
        if self.anonymous_user_id:
            return self.anonymous_user_id
        return f"anonymous-{session_id}"

    # ---------- Conversation memory ----------

    async def persist(self, messages: list[dict], user_id: str) -> Optional[str]:
        """Store a finished exchange; returns the new entry id or None on failure."""
        with start_memory_span("add", user_id):
            try:
                memory_id = await self.store.add(messages, user_id, metadata=TOUR_SESSION_METADATA)
            except MemoryStoreError as e:
                logger.error("memory_persist_failed", user_id=user_id, error=str(e))
                return None
        logger.info("memory_persisted", user_id=user_id, memory_id=memory_id, messages=len(messages))
        return memory_id

    def persist_async(self, messages: list[dict], user_id: str) -> asyncio.Task:
        """Fire-and-forget persist; failures are only logged."""
        return spawn_detached(
            self.persist(list(messages), user_id),
            name=f"memory_persist:{user_id}",
            user_id=user_id,
        )

    async def search(self, query: str, user_id: str) -> list[MemoryHit]:
        """Semantic search over the user's memories. Raises MemoryStoreError."""
        with start_memory_span("search", user_id):
            return await self.store.search(query, user_id)

    # ---------- Bookmarks ----------

    async def save_bookmark(self, bookmark: Bookmark, user_id: str) -> Optional[str]:
        """
        Save a bookmark; None only when both stores failed.
        """
        metadata = {
            "type": BOOKMARK_TYPE,
            "title": bookmark.title,
            "category": bookmark.category,
        }
        if bookmark.location:
            metadata["location"] = bookmark.location

        with start_memory_span("save_bookmark", user_id):
            try:
                memory_id = await self.store.add(
                    [{"role": "user", "content": bookmark.description}],
                    user_id,
                    metadata=metadata,
                    infer=False,
                )
                bookmark_id = memory_id or f"bookmark_{uuid.uuid4().hex[:12]}"
                logger.info("bookmark_saved", user_id=user_id, bookmark_id=bookmark_id, store="memory")
                return bookmark_id
            except MemoryStoreError as e:
                logger.warning("bookmark_primary_failed", user_id=user_id, error=str(e))

            try:
                bookmark_id = await asyncio.to_thread(
                    append_bookmark, user_id, asdict(bookmark), self.base_dir
                )
            except (OSError, ValueError) as e:
                logger.error("bookmark_fallback_failed", user_id=user_id, error=str(e))
                return None

        logger.info("bookmark_saved", user_id=user_id, bookmark_id=bookmark_id, store="file")
        return bookmark_id

    async def get_bookmarks(self, user_id: str) -> list[BookmarkRecord]:
        """All bookmarks for a user from both stores, memory store first."""
        records: list[BookmarkRecord] = []

        with start_memory_span("get_bookmarks", user_id):
            try:
                hits = await self.store.get_all(user_id)
                records.extend(
                    _record_from_hit(hit) for hit in hits
                    if (hit.metadata or {}).get("type") == BOOKMARK_TYPE
                )
            except MemoryStoreError as e:
                logger.warning("bookmark_primary_read_failed", user_id=user_id, error=str(e))

            try:
                entries = await asyncio.to_thread(load_bookmarks, user_id, self.base_dir)
            except (OSError, ValueError) as e:
                logger.error("bookmark_fallback_read_failed", user_id=user_id, error=str(e))
                entries = []

        seen = {record.id for record in records}
        for entry in entries:
            record = _record_from_file(entry)
            if record.id not in seen:
                seen.add(record.id)
                records.append(record)

        return records

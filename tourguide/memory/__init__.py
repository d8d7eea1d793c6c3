"""
Memory package.
"""

from .bridge import Bookmark, BookmarkRecord, MemoryBridge
from .store import MemoryHit, MemoryStore, MemoryStoreError

__all__ = ["Bookmark", "BookmarkRecord", "MemoryBridge", "MemoryHit", "MemoryStore", "MemoryStoreError"]

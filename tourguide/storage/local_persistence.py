"""
Lightweight local persistence for per-user bookmarks.
Stores plain JSON files under data/users/<user_id>/.
Used as the durable fallback when the memory store is unreachable.
"""

from __future__ import annotations

import json
import re
import threading
import time
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..config import settings

# Client-supplied ids end up in paths
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_.@-]")

# Serializes read-modify-write of bookmark files within the process
_write_lock = threading.Lock()


def safe_user_dir_name(user_id: str) -> str:
    name = _UNSAFE_CHARS.sub("_", user_id).strip(".")
    return name or "_"


def _user_dir(user_id: str, base_dir: Optional[Path] = None) -> Path:
    """Return directory for a given user's persisted data."""
    root = Path(base_dir) if base_dir else Path(settings.data_dir)
    return root.resolve() / "users" / safe_user_dir_name(user_id)


def bookmarks_path(user_id: str, base_dir: Optional[Path] = None) -> Path:
    return _user_dir(user_id, base_dir) / "bookmarks.json"


def load_json(path: Path) -> Any:
    if not path.exists():
        return None
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def atomic_write_json(path: Path, data: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    with open(tmp, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)
        f.flush()
    tmp.replace(path)


# ---------- Bookmarks ----------


def load_bookmarks(user_id: str, base_dir: Optional[Path] = None) -> List[Dict[str, Any]]:
    data = load_json(bookmarks_path(user_id, base_dir))
    return data if isinstance(data, list) else []


def append_bookmark(user_id: str, bookmark: Dict[str, Any], base_dir: Optional[Path] = None) -> str:
    """
    Append one bookmark to the user's file and return its id.

    The stored entry gets an id, the owner and a timestamp if it lacks them.
    """
    entry = dict(bookmark)
    entry.setdefault("id", f"bookmark_{uuid.uuid4().hex[:12]}")
    entry.setdefault("user_id", user_id)
    entry.setdefault("timestamp", time.time())

    path = bookmarks_path(user_id, base_dir)
    with _write_lock:
        existing = load_bookmarks(user_id, base_dir)
        existing.append(entry)
        atomic_write_json(path, existing)
    return entry["id"]

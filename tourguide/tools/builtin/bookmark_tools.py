"""
Bookmark tools: let travellers save places, tips and moments, and list them later.
"""
import re
from typing import Optional

import structlog

from ...memory.bridge import Bookmark
from ..registry import tool_registry

logger = structlog.get_logger()

DEFAULT_TITLE_WORDS = 8

# First match wins, in this order
CATEGORY_KEYWORDS = [
    ("food", ["restaurant", "cafe", "café", "food", "eat", "ate", "dish", "meal", "dinner",
              "lunch", "breakfast", "cuisine", "bakery", "coffee", "bistro", "pizza", "tapas"]),
    ("accommodation", ["hotel", "hostel", "airbnb", "accommodation", "stay", "staying",
                       "room", "resort", "inn", "guesthouse", "lodge"]),
    ("place", ["museum", "park", "visit", "visited", "monument", "landmark", "beach", "temple",
               "church", "cathedral", "gallery", "tower", "castle", "palace", "attraction",
               "square", "market", "bridge", "viewpoint"]),
    ("tip", ["tip", "advice", "remember to", "don't forget", "avoid", "make sure",
             "best time", "recommend", "should"]),
    ("memory", ["memory", "moment", "experience", "loved", "felt", "amazing", "beautiful",
                "unforgettable", "remember when"]),
]

CATEGORY_LABELS = {
    "food": "🍽️ Food & Dining",
    "accommodation": "🏨 Accommodation",
    "place": "📍 Places",
    "tip": "💡 Tips",
    "memory": "✨ Memories",
    "general": "📌 General",
}

_CATEGORY_PATTERNS = [
    (category, re.compile(r"\b(?:" + "|".join(re.escape(k) for k in keywords) + r")\b", re.IGNORECASE))
    for category, keywords in CATEGORY_KEYWORDS
]

_PROPER_NAME = r"([A-Z][\w'&-]*(?:\s+(?:of\s+|de\s+|the\s+)?[A-Z][\w'&-]*)*)"

TITLE_PATTERNS = {
    "food": re.compile(r"\b(?:restaurant|cafe|café|bistro|bakery|bar)\s+(?:called|named)\s+" + _PROPER_NAME),
    "accommodation": re.compile(r"\b(?:hotel|hostel|staying at|stayed at)\s+(?:called\s+|named\s+)?" + _PROPER_NAME),
    "place": re.compile(r"\b(?:visited|visit|saw|see)\s+(?:the\s+)?" + _PROPER_NAME),
}

_LOCATION_PATTERN = re.compile(r"\b(?:in|at|near)\s+([A-Z][\w'-]*(?:\s+[A-Z][\w'-]*)*)")


def categorize_bookmark(content: str) -> str:
    """Pick a category from keywords in the text."""
    for category, pattern in _CATEGORY_PATTERNS:
        if pattern.search(content):
            return category
    return "general"


def truncate_title(content: str, max_words: int = DEFAULT_TITLE_WORDS) -> str:
    words = content.split()
    if len(words) <= max_words:
        return " ".join(words)
    return " ".join(words[:max_words]) + "..."


def extract_title(content: str, category: str, max_words: int = DEFAULT_TITLE_WORDS) -> str:
    """A specific name for known categories, otherwise the leading words."""
    pattern = TITLE_PATTERNS.get(category)
    if pattern is not None:
        match = pattern.search(content)
        if match:
            return match.group(1).strip()
    return truncate_title(content, max_words)


def extract_location(content: str) -> Optional[str]:
    """The capitalized place after "in", "at" or "near", if any."""
    match = _LOCATION_PATTERN.search(content)
    return match.group(1).strip() if match else None


@tool_registry.register(
    description=(
        "Save a bookmark for the user: a place, restaurant, tip or memorable moment "
        "from the trip they want to keep for later."
    ),
    parameters={
        "type": "object",
        "properties": {
            "content": {"type": "string", "description": "What to bookmark, in the user's words"},
            "title": {"type": "string", "description": "Short title (optional)"},
            "location": {"type": "string", "description": "Where it is (optional)"},
            "category": {
                "type": "string",
                "description": "food, accommodation, place, tip, memory or general (optional)",
            },
        },
        "required": ["content"],
    },
    category="bookmarks",
)
async def save_bookmark(
    ctx,
    content: str,
    title: Optional[str] = None,
    location: Optional[str] = None,
    category: Optional[str] = None,
) -> str:
    if not content or not content.strip():
        return "There was nothing to bookmark. Tell me what you'd like to save."
    if ctx.memory is None:
        return "Sorry, I couldn't save that bookmark right now."

    content = content.strip()
    category = category if category in CATEGORY_LABELS else categorize_bookmark(content)
    max_words = ctx.options.get("bookmark_title_words", DEFAULT_TITLE_WORDS)
    bookmark = Bookmark(
        title=title or extract_title(content, category, max_words),
        description=content,
        category=category,
        location=location or extract_location(content),
    )

    bookmark_id = await ctx.memory.save_bookmark(bookmark, ctx.user_id)
    if bookmark_id is None:
        return "Sorry, I couldn't save that bookmark right now. Please try again in a moment."

    logger.info("bookmark_tool_saved", user_id=ctx.user_id, category=category, bookmark_id=bookmark_id)
    where = f" ({bookmark.location})" if bookmark.location else ""
    return f'✅ Saved "{bookmark.title}"{where} to your {CATEGORY_LABELS[category]} bookmarks.'


@tool_registry.register(
    description="List the bookmarks the user has saved, grouped by category.",
    parameters={
        "type": "object",
        "properties": {
            "category": {
                "type": "string",
                "description": "Only list this category: food, accommodation, place, tip, memory or general (optional)",
            },
        },
        "required": [],
    },
    category="bookmarks",
)
async def get_bookmarks(ctx, category: Optional[str] = None) -> str:
    if ctx.memory is None:
        return "Sorry, I couldn't load your bookmarks right now."

    records = await ctx.memory.get_bookmarks(ctx.user_id)
    if category:
        records = [r for r in records if r.category == category]

    if not records:
        if category:
            return f"You don't have any {category} bookmarks yet."
        return "You haven't saved any bookmarks yet. Just ask me to bookmark something you like!"

    grouped: dict[str, list] = {}
    for record in records:
        grouped.setdefault(record.category if record.category in CATEGORY_LABELS else "general", []).append(record)

    sections = []
    for key in CATEGORY_LABELS:
        items = grouped.get(key)
        if not items:
            continue
        lines = [CATEGORY_LABELS[key]]
        for record in items:
            where = f" ({record.location})" if record.location else ""
            lines.append(f"- {record.title or truncate_title(record.text)}{where}")
        sections.append("\n".join(lines))

    return f"📚 Your bookmarks ({len(records)}):\n\n" + "\n\n".join(sections)

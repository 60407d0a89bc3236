"""
Helpers for content bodies and the fields derived from them.

A body is either plain text or a block document::

    {"blocks": [{"type": "paragraph", "data": {"text": "Hello <b>world</b>"}},
                {"type": "list", "data": {"items": ["one", {"content": "two"}]}},
                {"type": "image", "data": {"file": {"url": "https://..."}}}]}

Only text extraction, word counting and embedded image discovery look
inside it; everything else is stored as given.
"""
import math
import re
import time
from typing import Any, Iterator

from blogcore.config import settings
from blogcore.errors import ValidationError
from blogcore.models import ContentKind

_TAG_RE = re.compile(r"<[^>]*>")
_SLUG_INVALID_RE = re.compile(r"[^a-z0-9]+")


def slugify(text: str) -> str:
    """Return a URL-safe, lowercase slug derived from *text*."""
    return _SLUG_INVALID_RE.sub("-", text.lower()).strip("-")


def slug_with_timestamp(title: str, timestamp_ms: int | None = None) -> str:
    """``"Hello World"`` -> ``"hello-world-1718000000000"``."""
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    base = slugify(title) or "untitled"
    return f"{base}-{timestamp_ms}"


def strip_html(text: str) -> str:
    return _TAG_RE.sub("", text)


def validate_body(body: Any, kind: ContentKind) -> None:
    """Raise ValidationError unless *body* is acceptable for *kind*."""
    if body is None or body == "" or body == {}:
        raise ValidationError("body", "Content is required")

    if isinstance(body, str):
        if kind is ContentKind.ARTICLE:
            raise ValidationError("body", "Article content must be a block document")
        if not body.strip():
            raise ValidationError("body", "Content is required")
        return

    if not isinstance(body, dict):
        raise ValidationError("body", "Content must be a valid block document")
    if not isinstance(body.get("blocks"), list):
        raise ValidationError("body", "Content must have a blocks array")

    for block in body["blocks"]:
        if not isinstance(block, dict) or not isinstance(block.get("type"), str):
            raise ValidationError("body", "Each block must be an object with a type")
        data = block.get("data")
        if data is None:
            continue
        if not isinstance(data, dict):
            raise ValidationError("body", f"Block data must be an object ({block['type']})")
        if block["type"] == "list" and not isinstance(data.get("items") or [], list):
            raise ValidationError("body", "List block items must be an array")


def _list_item_text(item: Any) -> str:
    if isinstance(item, dict):
        content = item.get("content")
        return content if isinstance(content, str) else ""
    if isinstance(item, str):
        return item
    return ""


def _blocks(body: Any) -> list[dict]:
    if isinstance(body, dict) and isinstance(body.get("blocks"), list):
        return [b for b in body["blocks"] if isinstance(b, dict)]
    return []


def _data(block: dict) -> dict:
    data = block.get("data")
    return data if isinstance(data, dict) else {}


def _items(block: dict) -> list:
    items = _data(block).get("items")
    return items if isinstance(items, list) else []


def iter_text(body: Any) -> Iterator[str]:
    """Yield every text span of *body* with markup removed."""
    if isinstance(body, str):
        yield body
        return

    for block in _blocks(body):
        text = _data(block).get("text")
        if isinstance(text, str):
            yield strip_html(text)
        if block.get("type") == "list":
            for item in _items(block):
                item_text = _list_item_text(item)
                if item_text:
                    yield strip_html(item_text)


def word_count(body: Any) -> int:
    return sum(len(span.split()) for span in iter_text(body))


def reading_time(body: Any) -> int:
    """Estimated minutes to read *body*; never less than 1."""
    return max(1, math.ceil(word_count(body) / settings.WORDS_PER_MINUTE))


def _truncate(text: str, limit: int) -> str:
    text = text.strip()
    if len(text) <= limit:
        return text
    return text[: limit - 3].rstrip() + "..."


def extract_excerpt(body: Any, limit: int | None = None) -> str | None:
    """
    Return the first extractable text span of *body*, truncated to *limit*
    characters (ellipsis included).  Block documents prefer the first
    paragraph and fall back to the first list item.
    """
    limit = limit or settings.EXCERPT_LENGTH

    if isinstance(body, str):
        return _truncate(body, limit) or None

    blocks = _blocks(body)
    for block in blocks:
        text = _data(block).get("text")
        if block.get("type") == "paragraph" and isinstance(text, str) and text:
            return _truncate(strip_html(text), limit) or None

    for block in blocks:
        items = _items(block)
        if block.get("type") == "list" and items:
            text = _list_item_text(items[0])
            if text:
                return _truncate(strip_html(text), limit) or None
    return None


def embedded_media_urls(body: Any) -> list[str]:
    """URLs of every image block in *body*."""
    urls = []
    for block in _blocks(body):
        if block.get("type") != "image":
            continue
        file_info = _data(block).get("file") or {}
        url = file_info.get("url") if isinstance(file_info, dict) else None
        if isinstance(url, str) and url:
            urls.append(url)
    return urls

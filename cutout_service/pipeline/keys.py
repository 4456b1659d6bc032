"""
Object key and content-type resolution for staged sources.

Best-effort and lossy: callers that need an exact key pass one explicitly.
"""

import re
import posixpath
from typing import Optional
from urllib.parse import urlsplit

FALLBACK_KEY = "download"
FALLBACK_CONTENT_TYPE = "application/octet-stream"

IMAGE_CONTENT_TYPES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".webp": "image/webp",
    ".gif": "image/gif",
    ".svg": "image/svg+xml",
}

_WHITESPACE = re.compile(r"\s+")


def resolve_key(url: str) -> str:
    """Derive an object key from the base name of the URL path."""
    try:
        parts = urlsplit(url)
        if not parts.scheme or not parts.netloc:
            return FALLBACK_KEY
        name = posixpath.basename(parts.path)
    except (ValueError, TypeError, AttributeError):
        return FALLBACK_KEY
    if not name:
        return FALLBACK_KEY
    return _WHITESPACE.sub("_", name)


def guess_content_type(key: str) -> Optional[str]:
    """Map a key's extension to an image MIME type, None if unknown."""
    ext = posixpath.splitext(key or "")[1].lower()
    return IMAGE_CONTENT_TYPES.get(ext)


def resolve_content_type(
    explicit: Optional[str],
    fetched: Optional[str],
    key: str
) -> str:
    """Explicit value, then the fetch response header, then the extension table."""
    return explicit or fetched or guess_content_type(key) or FALLBACK_CONTENT_TYPE

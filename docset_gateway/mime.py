from __future__ import annotations

from types import MappingProxyType

MIME_TYPES = MappingProxyType(
    {
        ".html": "text/html",
        ".css": "text/css",
        ".js": "application/javascript",
        ".json": "application/json",
        ".svg": "image/svg+xml",
    }
)


def mime_for(path: str) -> str | None:
    """Return the content type for the extension of ``path``, if known.

    Matching is case-sensitive and only considers the final path segment.
    """
    segment = path.rsplit("/", 1)[-1]
    _, dot, extension = segment.rpartition(".")
    if not dot:
        return None
    return MIME_TYPES.get(f".{extension}")

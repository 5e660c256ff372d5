from __future__ import annotations

from typing import TYPE_CHECKING

from .errors import NotFoundError

if TYPE_CHECKING:
    from collections.abc import Iterable


def resolve_index(keys: Iterable[str]) -> str:
    """Pick the index document from a sorted listing of storage keys.

    The first key ending in ``/index.html`` wins immediately. Otherwise the
    last ``.html`` key seen is returned, which for a lexicographically
    sorted listing is the greatest one. Suffixes are compared
    case-insensitively. Errors raised by ``keys`` while iterating propagate
    unchanged.

    Raises:
        NotFoundError: ``keys`` contains no ``.html`` key.
    """
    best_html: str | None = None
    for key in keys:
        lowered = key.lower()
        if lowered.endswith("/index.html"):
            return key
        if lowered.endswith(".html"):
            best_html = key

    if best_html is None:
        msg = "could not find an html document for the namespace"
        raise NotFoundError(msg)
    return best_html

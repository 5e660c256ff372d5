"""Translation between public request paths and storage keys."""

from __future__ import annotations


def normalize_mount_path(mount_path: str) -> str:
    """Return ``mount_path`` with one leading slash and no trailing slash."""
    trimmed = mount_path.strip().strip("/")
    return f"/{trimmed}" if trimmed else "/"


def is_index_request(path: str) -> bool:
    """Check whether ``path`` asks for a directory rather than an asset.

    Only the last path segment is inspected: without a ``.`` it is treated
    as a directory request that resolves to the index document.
    """
    return "." not in path.rsplit("/", 1)[-1]


def to_storage_key(public_path: str, mount_path: str, namespace_prefix: str) -> str:
    """Map a public request path to its storage key under ``namespace_prefix``."""
    mount = mount_path.strip("/")
    relative = public_path.lstrip("/")
    if mount:
        if relative == mount:
            relative = ""
        elif relative.startswith(f"{mount}/"):
            relative = relative[len(mount) + 1 :]
    relative = relative.lstrip("/")

    prefix = namespace_prefix.strip("/")
    if not relative:
        return prefix
    return f"{prefix}/{relative}"


def to_public_path(storage_key: str, mount_path: str, namespace_prefix: str) -> str:
    """Map a storage key back to the public path it is served under."""
    prefix = namespace_prefix.strip("/")
    mount = normalize_mount_path(mount_path).rstrip("/")
    if storage_key == prefix:
        return mount or "/"
    relative = storage_key
    if relative.startswith(f"{prefix}/"):
        relative = relative[len(prefix) + 1 :]
    return f"{mount}/{relative.lstrip('/')}"

from __future__ import annotations

DEFAULT_MARKER = "/uploads/"

_SCHEMES = ("http://", "https://")


def externalize(stored: str | None, base: str | None, marker: str = DEFAULT_MARKER) -> str | None:
    """Turn a stored image path into a URL reachable under ``base``.

    Local upload paths are always re-anchored on the current ``base`` even if
    an older absolute URL was persisted (e.g. ``http://localhost:8000/uploads/x.jpg``).
    Third-party URLs pass through untouched. Applying it twice with the same
    base gives the same result.
    """
    if not stored or not base:
        return stored
    base = base.rstrip("/")
    if not base:
        return stored

    if stored.startswith(base + marker):
        return stored

    idx = stored.find(marker)
    if idx != -1:
        return base + stored[idx:]

    if stored.startswith(_SCHEMES) or stored.startswith(base + "/"):
        return stored

    if not stored.startswith("/"):
        stored = "/" + stored
    return base + stored

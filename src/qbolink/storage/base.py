"""
Key-value store interface consumed by ``TokenStore``.

The persistence engine itself lives outside qbolink; anything with these three
async methods can back the token store (Redis, a database table, a secrets
manager, ...).
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class KeyValueStore(Protocol):
    """Minimal async key-value interface. Values are strings."""

    async def get(self, key: str) -> str | None:
        """Return the value for ``key``, or None when absent."""
        ...

    async def set(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``, replacing any previous value."""
        ...

    async def delete(self, key: str) -> bool:
        """Remove ``key``. Returns True if something was removed."""
        ...

"""
Token store: one persisted ``TenantCredential`` per tenant.

Credentials live in an external key-value store under
``quickbooks/token/<tenant id>``, or ``quickbooks/token/default`` before a
tenant id is known (e.g. ahead of the first OAuth callback). Values are the
JSON-serialized credential, optionally Fernet-encrypted.

There is no in-memory cache: a store outage surfaces as ``StoreError`` to
every caller. ``get`` followed by ``set`` is not atomic; callers that
read-modify-write must serialize themselves (``RefreshScheduler`` holds a
per-tenant lock for that).
"""

from __future__ import annotations

import logging

from cryptography.fernet import Fernet, InvalidToken
from pydantic import ValidationError

from qbolink.errors import StoreError
from qbolink.models.credential import TenantCredential
from qbolink.storage.base import KeyValueStore

logger = logging.getLogger("qbolink.storage.token_store")

TOKEN_KEY_PREFIX = "quickbooks/token/"
DEFAULT_TENANT_KEY = "default"


def token_key(tenant_id: str | None) -> str:
    """Store key for a tenant's credential."""
    return f"{TOKEN_KEY_PREFIX}{tenant_id or DEFAULT_TENANT_KEY}"


class TokenStore:
    """Reads and writes tenant credentials through a ``KeyValueStore``.

    Args:
        backend: The key-value store holding the records.
        encryption_key: Optional Fernet key. When set, values are encrypted
            before they reach the backend.
    """

    def __init__(self, backend: KeyValueStore, *, encryption_key: str | bytes | None = None) -> None:
        self.backend = backend
        self._fernet = Fernet(encryption_key) if encryption_key else None

    def _encode(self, credential: TenantCredential) -> str:
        data = credential.model_dump_json()
        if self._fernet:
            return self._fernet.encrypt(data.encode()).decode()
        return data

    def _decode(self, key: str, raw: str) -> TenantCredential:
        try:
            if self._fernet:
                raw = self._fernet.decrypt(raw.encode()).decode()
            return TenantCredential.model_validate_json(raw)
        except InvalidToken as e:
            raise StoreError(f"Cannot decrypt value at {key} (wrong encryption key?)") from e
        except ValidationError as e:
            raise StoreError(f"Unreadable credential at {key}: {e}") from e

    async def get(self, tenant_id: str | None) -> TenantCredential | None:
        key = token_key(tenant_id)
        try:
            raw = await self.backend.get(key)
        except StoreError:
            raise
        except Exception as e:
            raise StoreError(f"Failed to read {key}: {e}") from e

        if raw is None:
            return None
        return self._decode(key, raw)

    async def set(self, tenant_id: str | None, credential: TenantCredential) -> None:
        key = token_key(tenant_id)
        value = self._encode(credential)
        try:
            await self.backend.set(key, value)
        except StoreError:
            raise
        except Exception as e:
            raise StoreError(f"Failed to write {key}: {e}") from e
        logger.debug("Stored credential for tenant %s", tenant_id or DEFAULT_TENANT_KEY)

    async def delete(self, tenant_id: str | None) -> bool:
        key = token_key(tenant_id)
        try:
            removed = await self.backend.delete(key)
        except StoreError:
            raise
        except Exception as e:
            raise StoreError(f"Failed to delete {key}: {e}") from e
        if removed:
            logger.info("Deleted credential for tenant %s", tenant_id or DEFAULT_TENANT_KEY)
        return removed

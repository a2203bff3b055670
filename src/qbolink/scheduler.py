"""
Refresh scheduler — keeps tenant credentials fresh ahead of expiry.

Each tenant runs a small state machine::

    IDLE ──start()──▶ SCHEDULED ──timer──▶ REFRESHING ──ok──▶ SCHEDULED
                                                    └──error──▶ IDLE

Instead of polling, one one-shot timer per tenant is armed for
``expiry - safety margin`` and re-armed from the new credential after every
successful refresh. A failed refresh leaves the tenant IDLE until something
calls ``start()`` or ``track()`` again; there is no automatic retry.

A per-tenant lock serializes "read credential → refresh → write credential"
against ``start()`` and the OAuth-callback path (``track()``), so a timer
refresh and a fresh authorization can't overwrite each other's tokens.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable

from qbolink.auth.oauth2 import TokenExchange
from qbolink.errors import QBOLinkError
from qbolink.models.credential import TenantCredential, now_millis
from qbolink.storage.token_store import DEFAULT_TENANT_KEY, TokenStore

logger = logging.getLogger("qbolink.scheduler")

# Refresh this long before the access token expires
SAFETY_MARGIN_MILLIS = 120_000


class RefreshState(str, Enum):
    """Where a tenant is in the refresh loop."""

    IDLE = "idle"
    SCHEDULED = "scheduled"
    REFRESHING = "refreshing"


_BUSY = (RefreshState.SCHEDULED, RefreshState.REFRESHING)


@dataclass
class PendingRefresh:
    """The single outstanding refresh timer for a tenant."""

    tenant_id: str | None
    fire_at_millis: int
    task: asyncio.Task[None]


def compute_refresh_delay(
    credential: TenantCredential,
    now: int,
    margin_millis: int = SAFETY_MARGIN_MILLIS,
) -> int:
    """Milliseconds until a refresh should fire (never negative)."""
    return max(0, credential.access_expires_at_millis - now - margin_millis)


def _tenant_key(tenant_id: str | None) -> str:
    return tenant_id or DEFAULT_TENANT_KEY


class RefreshScheduler:
    """Single-timer refresh loop per tenant.

    Args:
        store: Where credentials are read from and written back to.
        exchange: Performs the refresh-token grant.
        margin_millis: How long before expiry to refresh.
        clock: Returns the current time in milliseconds.
        sleep: Awaitable sleep in seconds; swapped out in tests.
    """

    def __init__(
        self,
        store: TokenStore,
        exchange: TokenExchange,
        *,
        margin_millis: int = SAFETY_MARGIN_MILLIS,
        clock: Callable[[], int] = now_millis,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._store = store
        self._exchange = exchange
        self._margin_millis = margin_millis
        self._clock = clock
        self._sleep = sleep

        self._states: dict[str, RefreshState] = {}
        self._pending: dict[str, PendingRefresh] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        # Strong references so running timer tasks aren't garbage collected
        self._tasks: set[asyncio.Task[None]] = set()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def state(self, tenant_id: str | None = None) -> RefreshState:
        return self._states.get(_tenant_key(tenant_id), RefreshState.IDLE)

    def pending(self, tenant_id: str | None = None) -> PendingRefresh | None:
        return self._pending.get(_tenant_key(tenant_id))

    def _lock(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def start(self, tenant_id: str | None = None) -> RefreshState:
        """Begin tracking ``tenant_id`` from its stored credential.

        Idempotent: a tenant that is already SCHEDULED or REFRESHING is left
        alone. Raises ``StoreError`` if the credential can't be read.
        """
        key = _tenant_key(tenant_id)
        if self.state(tenant_id) in _BUSY:
            return self.state(tenant_id)

        async with self._lock(key):
            if self.state(tenant_id) in _BUSY:
                return self.state(tenant_id)

            credential = await self._store.get(tenant_id)
            if credential is None:
                logger.info("No stored credential for tenant %s, refresh loop idle", key)
                self._states[key] = RefreshState.IDLE
                return RefreshState.IDLE

            self._arm(key, tenant_id, credential)
            return RefreshState.SCHEDULED

    async def track(self, tenant_id: str | None, credential: TenantCredential) -> None:
        """Persist a newly acquired credential and schedule its refresh.

        Used after an OAuth callback. Replaces any pending timer, since the
        new credential has its own expiry.
        """
        key = _tenant_key(tenant_id)
        async with self._lock(key):
            await self._store.set(tenant_id, credential)
            self._cancel_pending(key)
            self._arm(key, tenant_id, credential)

    async def stop(self, tenant_id: str | None = None) -> None:
        """Cancel pending timers and go IDLE.

        With no ``tenant_id`` every tenant is stopped. A refresh already in
        flight finishes and persists its result but does not re-arm.
        """
        keys = [_tenant_key(tenant_id)] if tenant_id is not None else list(self._states)
        cancelled: list[asyncio.Task[None]] = []
        for key in keys:
            task = self._cancel_pending(key)
            if task is not None:
                cancelled.append(task)
            self._states[key] = RefreshState.IDLE

        if cancelled:
            await asyncio.gather(*cancelled, return_exceptions=True)
            logger.info("Cancelled %d pending refresh timer(s)", len(cancelled))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _cancel_pending(self, key: str) -> asyncio.Task[None] | None:
        """Drop the tenant's pending timer, cancelling it unless mid-refresh."""
        pending = self._pending.pop(key, None)
        if pending is None:
            return None
        if self._states.get(key) is RefreshState.REFRESHING:
            return None
        pending.task.cancel()
        return pending.task

    def _arm(self, key: str, tenant_id: str | None, credential: TenantCredential) -> None:
        now = self._clock()
        delay = compute_refresh_delay(credential, now, self._margin_millis)
        task = asyncio.create_task(self._fire(key, tenant_id, delay), name=f"qbolink-refresh-{key}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        self._pending[key] = PendingRefresh(tenant_id=tenant_id, fire_at_millis=now + delay, task=task)
        self._states[key] = RefreshState.SCHEDULED
        logger.info("Scheduled token refresh for tenant %s in %.1fs", key, delay / 1000)

    def _owns_timer(self, key: str) -> bool:
        pending = self._pending.get(key)
        return pending is not None and pending.task is asyncio.current_task()

    async def _fire(self, key: str, tenant_id: str | None, delay_millis: int) -> None:
        await self._sleep(delay_millis / 1000)

        async with self._lock(key):
            if not self._owns_timer(key):
                # Superseded by track() or stop() while waiting for the lock
                return

            self._states[key] = RefreshState.REFRESHING
            try:
                credential = await self._store.get(tenant_id)
                if credential is None:
                    logger.warning("Credential for tenant %s disappeared, refresh loop idle", key)
                    self._go_idle(key)
                    return
                refreshed = await self._exchange.refresh(credential)
                await self._store.set(tenant_id, refreshed)
            except QBOLinkError as e:
                logger.error("Token refresh failed for tenant %s: %s", key, e)
                self._go_idle(key)
                return
            except Exception:
                logger.exception("Unexpected error refreshing tenant %s", key)
                self._go_idle(key)
                return

            if self._states.get(key) is not RefreshState.REFRESHING:
                logger.info("Tenant %s stopped during refresh, not rescheduling", key)
                return

            self._arm(key, tenant_id, refreshed)

    def _go_idle(self, key: str) -> None:
        if self._owns_timer(key):
            del self._pending[key]
        self._states[key] = RefreshState.IDLE

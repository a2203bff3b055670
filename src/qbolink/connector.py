"""
QuickBooks connector — wires OAuth, token refresh, and webhooks together.

The host application owns the HTTP server. It forwards requests for the
connector's two paths to ``handle_http``:

- ``GET  /callbacks/quickbooks`` — OAuth redirect (``code``, ``state``,
  ``realmId``). Exchanges the code and (re)starts the refresh loop. Always
  answers 200, even when the exchange fails; failures only reach the logs.
- ``POST /webhooks/quickbooks`` — change notifications signed with
  ``intuit-signature``. 401 when the signature is missing or wrong, 200
  otherwise.

Usage::

    config = QBOLinkConfig.load("qbolink.yaml")
    connector = QuickBooksConnector(config, MemoryKeyValueStore())

    async def on_invoice(note: ChangeNotification) -> None:
        ...

    connector.register_subscription(SubscriptionOptions("Invoice", "Create"), on_invoice)
    await connector.start()
    response = await connector.handle_http(request)
    ...
    await connector.stop()
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections import OrderedDict
from typing import Awaitable, Callable

from qbolink.auth.oauth2 import AuthorizationRequest, AuthorizationUrlBuilder, TokenExchange
from qbolink.config import QBOLinkConfig
from qbolink.errors import AuthError, StoreError, WebhookAuthError
from qbolink.http import HttpRequest, HttpResponse
from qbolink.models.credential import TenantCredential, now_millis
from qbolink.models.events import EventHandler, EventSubscription, SubscriptionOptions, WebhookPayload
from qbolink.scheduler import RefreshScheduler
from qbolink.storage.base import KeyValueStore
from qbolink.storage.token_store import TokenStore
from qbolink.webhooks.router import EventRouter
from qbolink.webhooks.verifier import SIGNATURE_HEADER, WebhookVerifier

logger = logging.getLogger("qbolink.connector")

RouteHandler = Callable[[HttpRequest], Awaitable[HttpResponse]]

# Issued OAuth states are kept this long, and at most this many at once
STATE_TTL_MILLIS = 10 * 60 * 1000
MAX_ISSUED_STATES = 1024


class QuickBooksConnector:
    """One QuickBooks app connection: credentials for a tenant plus webhooks.

    Args:
        config: Loaded ``QBOLinkConfig``.
        store: A ``TokenStore`` or a raw ``KeyValueStore`` to wrap in one.
        exchange: Token exchange client; built from ``config`` when omitted.
        clock: Millisecond clock shared by the exchange and scheduler.
        sleep: Sleep used by refresh timers.
    """

    name = "quickbooks"

    def __init__(
        self,
        config: QBOLinkConfig,
        store: TokenStore | KeyValueStore,
        *,
        exchange: TokenExchange | None = None,
        clock: Callable[[], int] = now_millis,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.config = config
        self.tenant_id: str | None = config.realm_id
        self._clock = clock

        if isinstance(store, TokenStore):
            self.token_store = store
        else:
            self.token_store = TokenStore(store, encryption_key=config.storage.encryption_key)

        self.exchange = exchange or TokenExchange(
            config.oauth.client_id,
            config.oauth.client_secret,
            clock=clock,
        )
        self.scheduler = RefreshScheduler(
            self.token_store,
            self.exchange,
            margin_millis=config.scheduler.refresh_margin_seconds * 1000,
            clock=clock,
            sleep=sleep,
        )
        self.verifier = WebhookVerifier(config.webhook.verifier_token)
        self.router = EventRouter()

        self._url_builder = AuthorizationUrlBuilder(
            config.oauth.client_id,
            config.oauth.client_secret,
            config.oauth.redirect_uri,
            sandbox=config.oauth.sandbox,
        )
        # state -> issue time (ms), oldest first
        self._issued_states: OrderedDict[str, int] = OrderedDict()

        self._routes: dict[str, dict[str, RouteHandler]] = {}
        self._add_route("GET", config.oauth.callback_path, self._handle_callback)
        self._add_route("POST", config.webhook.path, self._handle_webhook)

    def _add_route(self, method: str, path: str, handler: RouteHandler) -> None:
        self._routes.setdefault(path, {})[method] = handler

    @property
    def routes(self) -> dict[str, list[str]]:
        """Registered paths and the methods each accepts."""
        return {path: sorted(methods) for path, methods in self._routes.items()}

    @property
    def api_base_url(self) -> str:
        return self.config.oauth.api_base_url

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start the refresh loop for the configured tenant, if it has tokens."""
        state = await self.scheduler.start(self.tenant_id)
        logger.info("QuickBooks connector started (tenant %s, refresh %s)", self.tenant_id or "default", state.value)

    async def stop(self) -> None:
        """Cancel refresh timers and release the HTTP client."""
        await self.scheduler.stop()
        await self.exchange.close()
        logger.info("QuickBooks connector stopped")

    # ------------------------------------------------------------------
    # OAuth
    # ------------------------------------------------------------------

    def authorization_url(self) -> AuthorizationRequest:
        """Build a consent URL for the user to visit."""
        request = self._url_builder.build()
        if self.config.validate_state:
            self._remember_state(request.state)
        logger.debug("Authorization URL: %s", request.url)
        return request

    def _remember_state(self, state: str) -> None:
        now = self._clock()
        self._expire_states(now)
        self._issued_states[state] = now
        while len(self._issued_states) > MAX_ISSUED_STATES:
            self._issued_states.popitem(last=False)

    def _expire_states(self, now: int) -> None:
        while self._issued_states:
            oldest = next(iter(self._issued_states.values()))
            if now - oldest < STATE_TTL_MILLIS:
                break
            self._issued_states.popitem(last=False)

    def _consume_state(self, state: str | None) -> bool:
        """Whether ``state`` was issued recently; each state is accepted once."""
        self._expire_states(self._clock())
        if state is None:
            return False
        return self._issued_states.pop(state, None) is not None

    async def get_credential(self, tenant_id: str | None = None) -> TenantCredential | None:
        """Current stored credential, for code making accounting API calls."""
        return await self.token_store.get(tenant_id or self.tenant_id)

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def register_subscription(
        self,
        options: SubscriptionOptions | str,
        handler: EventHandler,
        subscription_id: str | None = None,
    ) -> EventSubscription:
        """Call ``handler`` for every change matching ``options``.

        ``options`` may also be an action key string such as ``"Invoice/Create"``.
        """
        if isinstance(options, str):
            options = SubscriptionOptions.from_action_key(options)
        return self.router.register(options.action_key, handler, subscription_id)

    def remove_subscription(self, subscription_id: str) -> bool:
        return self.router.unregister(subscription_id)

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    async def handle_http(self, request: HttpRequest) -> HttpResponse:
        """Route a request by exact path, then method."""
        methods = self._routes.get(request.path)
        if methods is None:
            return HttpResponse(status=404, body={"error": "not_found"})
        handler = methods.get(request.method.upper())
        if handler is None:
            return HttpResponse(status=405, body={"error": "method_not_allowed"})
        return await handler(request)

    async def _handle_callback(self, request: HttpRequest) -> HttpResponse:
        realm_id = request.query.get("realmId")
        code = request.query.get("code")
        state = request.query.get("state")

        if not realm_id:
            logger.warning("OAuth callback without realmId, ignoring")
            return HttpResponse.ok({"text": "Error"})

        if self.config.validate_state and not self._consume_state(state):
            logger.warning("OAuth callback for realm %s with unknown or expired state, ignoring", realm_id)
            return HttpResponse.ok()

        if not code:
            logger.warning("OAuth callback for realm %s without code, ignoring", realm_id)
            return HttpResponse.ok()

        # The caller always gets 200; exchange failures are only logged.
        try:
            credential = await self.exchange.exchange_code(
                code,
                self.config.oauth.redirect_uri,
                tenant_id=realm_id,
            )
            await self.scheduler.track(realm_id, credential)
        except (AuthError, StoreError) as e:
            logger.error("OAuth callback for realm %s failed: %s", realm_id, e)
            return HttpResponse.ok()

        self.tenant_id = realm_id
        logger.info("QuickBooks authorization complete for realm %s", realm_id)
        return HttpResponse.ok()

    async def _handle_webhook(self, request: HttpRequest) -> HttpResponse:
        verdict = self.verifier.verify(request.body, request.header(SIGNATURE_HEADER))
        try:
            verdict.raise_for_reject()
        except WebhookAuthError as e:
            return HttpResponse(status=401, body={"error": e.reason})

        if not request.body:
            return HttpResponse.ok()

        try:
            payload = WebhookPayload.parse(json.loads(request.body))
        except ValueError as e:
            logger.warning("Ignoring malformed webhook body: %s", e)
            return HttpResponse.ok()

        delivered = await self.router.dispatch(payload)
        logger.debug("Webhook delivered to %d handler(s)", delivered)
        return HttpResponse.ok()

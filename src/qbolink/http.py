"""
Plain request/response values exchanged with the host HTTP layer.

qbolink doesn't run a server. Whatever framework owns routing and TLS
converts its request into an ``HttpRequest``, calls
``QuickBooksConnector.handle_http``, and writes the ``HttpResponse`` back.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any
from urllib.parse import parse_qsl, urlsplit


@dataclass(frozen=True)
class HttpRequest:
    method: str
    path: str
    query: dict[str, str] = field(default_factory=dict)
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    def header(self, name: str) -> str | None:
        """Case-insensitive header lookup."""
        wanted = name.lower()
        for key, value in self.headers.items():
            if key.lower() == wanted:
                return value
        return None

    @classmethod
    def from_url(
        cls,
        method: str,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        body: bytes = b"",
    ) -> HttpRequest:
        """Build a request from a path-plus-query URL such as ``/cb?code=x``."""
        parts = urlsplit(url)
        return cls(
            method=method.upper(),
            path=parts.path or "/",
            query=dict(parse_qsl(parts.query)),
            headers=headers or {},
            body=body,
        )


@dataclass(frozen=True)
class HttpResponse:
    status: int
    body: dict[str, Any] | None = None

    @classmethod
    def ok(cls, body: dict[str, Any] | None = None) -> HttpResponse:
        return cls(status=200, body=body)

from __future__ import annotations

import ipaddress
import logging
import os
from typing import Iterable, Sequence

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

DEFAULT_ALLOWED_NETS = ("127.0.0.1/32", "::1/128")
# Served without an allowlist check.
DEFAULT_EXEMPT_PATHS = ("/api/healthz",)

IPNetwork = ipaddress.IPv4Network | ipaddress.IPv6Network

logger = logging.getLogger("security")


def parse_nets(raw: str) -> list[IPNetwork]:
    nets: list[IPNetwork] = []
    for part in (raw or "").split(","):
        s = part.strip()
        if not s:
            continue
        try:
            nets.append(ipaddress.ip_network(s, strict=False))
        except ValueError as exc:
            raise ValueError(f"invalid allowed network: {s}") from exc
    return nets


def _deny(status_code: int, code: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": code})


class NetworkAllowlistMiddleware(BaseHTTPMiddleware):
    """Only let sync triggers and status reads through from ``allowed_nets``.

    An empty allowlist lets everything through; a malformed one answers 503
    on every guarded path until it is fixed.
    """

    def __init__(self, app, allowed_nets: Iterable[str], exempt_paths: Sequence[str] = DEFAULT_EXEMPT_PATHS):
        super().__init__(app)
        self.exempt_paths = tuple(exempt_paths)
        self.allowed: list[IPNetwork] = []
        self.allowlist_error: str | None = None
        try:
            self.allowed = parse_nets(",".join(allowed_nets))
        except ValueError as exc:
            self.allowlist_error = str(exc)
            logger.error("allowlist_invalid: %s", exc)

    def is_allowed(self, client_host: str) -> bool:
        ip = ipaddress.ip_address(client_host)
        return not self.allowed or any(ip in net for net in self.allowed)

    async def dispatch(self, request: Request, call_next):
        if request.url.path in self.exempt_paths:
            return await call_next(request)

        if self.allowlist_error:
            return _deny(503, f"allowlist_misconfigured: {self.allowlist_error}")

        client_host = request.client.host if request.client else ""
        try:
            allowed = self.is_allowed(client_host)
        except ValueError:
            logger.warning("request_denied client=%r path=%s reason=unrecognized_address", client_host, request.url.path)
            return _deny(403, "client_address_unrecognized")

        if not allowed:
            logger.warning("request_denied client=%s path=%s reason=not_allowed", client_host, request.url.path)
            return _deny(403, "client_not_allowed")

        return await call_next(request)


def get_allowed_nets(configured: Sequence[str] | None = None) -> list[str]:
    """Networks from ``ALLOWED_NETS``, else ``web_allowed_nets`` from config."""
    raw = os.environ.get("ALLOWED_NETS")
    if raw is not None:
        return [s.strip() for s in raw.split(",") if s.strip()]
    nets = DEFAULT_ALLOWED_NETS if configured is None else configured
    return [s.strip() for s in nets if s and s.strip()]

from __future__ import annotations

import asyncio
import ipaddress
import logging
import math
import time
from contextvars import ContextVar
from uuid import uuid4

from fastapi import Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from .metrics import rate_limit_hits_total, rate_limit_requests_total
from .settings import settings
from .store import KeyValueStore

# Context variable for request ID (accessible throughout the request lifecycle)
request_id_ctx: ContextVar[str] = ContextVar("request_id", default="")

# Only the API surface is metered; health and metrics endpoints never are.
RATE_LIMITED_PREFIX = "/v1/"


def add_cors(app):
    origins = settings.allow_origins
    if not origins:
        return
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["*"],
    )


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        response = await call_next(request)
        headers = {
            "X-Frame-Options": "DENY",
            "X-Content-Type-Options": "nosniff",
            "Referrer-Policy": "no-referrer",
        }
        if request.url.scheme in {"https", "wss"}:
            headers["Strict-Transport-Security"] = "max-age=63072000; includeSubDomains"
        for key, value in headers.items():
            response.headers.setdefault(key, value)
        return response


def add_security_headers(app):
    app.add_middleware(SecurityHeadersMiddleware)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Reuse the caller's X-Request-ID or mint one, and echo it on the response."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        request_id = request.headers.get("X-Request-ID") or str(uuid4())
        token = request_id_ctx.set(request_id)
        request.state.request_id = request_id
        try:
            response = await call_next(request)
        finally:
            request_id_ctx.reset(token)
        response.headers["X-Request-ID"] = request_id
        return response


class RequestIDLogFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        request_id = request_id_ctx.get("")
        record.request_id = request_id if request_id else "-"  # type: ignore[attr-defined]
        return True


def add_request_id_tracing(app):
    app.add_middleware(RequestIDMiddleware)
    logging.getLogger().addFilter(RequestIDLogFilter())


def get_request_id() -> str:
    return request_id_ctx.get("")


class RateLimiter:
    """
    Token bucket per client identifier.

    Bucket state lives in the injected store, so tests get a fresh limiter by
    handing in a fresh store and multi-worker deployments can share Redis.
    """

    def __init__(self, store: KeyValueStore, shards: int = 32) -> None:
        self._store = store
        # Serialise read-modify-write per bucket; awaits on the store can interleave
        self._locks = [asyncio.Lock() for _ in range(max(1, shards))]

    async def dispatch(self, request: Request, call_next):
        limit = settings.RATE_LIMIT_REQUESTS
        window = settings.RATE_LIMIT_WINDOW_SECONDS
        if (
            not settings.RATE_LIMIT_ENABLED
            or limit <= 0
            or window <= 0
            or not request.url.path.startswith(RATE_LIMITED_PREFIX)
        ):
            return await call_next(request)

        identifier = self.identifier_for(request)
        allowed, remaining, reset_in = await self.consume(
            identifier, limit, window, time.time()
        )
        if not allowed:
            rate_limit_hits_total.inc()
            rate_limit_requests_total.labels(result="throttle").inc()
            retry_after = max(1, math.ceil(reset_in))
            headers = {
                "Retry-After": str(retry_after),
                "X-RateLimit-Limit": str(limit),
                "X-RateLimit-Remaining": "0",
                "X-RateLimit-Reset": str(retry_after),
            }
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={
                    "detail": "Rate limit exceeded. Please wait before sending more messages.",
                    "retry_after": retry_after,
                },
                headers=headers,
            )

        response = await call_next(request)
        rate_limit_requests_total.labels(result="allow").inc()
        response.headers.setdefault("X-RateLimit-Limit", str(limit))
        response.headers["X-RateLimit-Remaining"] = str(max(0, remaining))
        response.headers["X-RateLimit-Reset"] = str(max(0, math.ceil(reset_in)))
        return response

    async def consume(
        self, identifier: str, limit: int, window: int, now: float
    ) -> tuple[bool, int, float]:
        refill_rate = limit / window
        key = f"ratelimit:{identifier}"
        async with self._locks[hash(identifier) % len(self._locks)]:
            return await self._consume_locked(key, limit, window, now, refill_rate)

    async def _consume_locked(
        self, key: str, limit: int, window: int, now: float, refill_rate: float
    ) -> tuple[bool, int, float]:
        bucket = await self._store.get(key)
        # Idle buckets are dropped by the store once they could have refilled twice over
        ttl = window * 2

        if not bucket:
            await self._store.set(key, {"tokens": float(limit - 1), "last": now}, ttl)
            return True, limit - 1, 0.0

        elapsed = max(0.0, now - float(bucket["last"]))
        tokens = min(float(limit), float(bucket["tokens"]) + elapsed * refill_rate)

        if tokens >= 1:
            tokens -= 1
            await self._store.set(key, {"tokens": tokens, "last": now}, ttl)
            reset_in = (limit - tokens) / refill_rate if tokens < limit else 0.0
            return True, int(tokens), reset_in

        await self._store.set(key, {"tokens": tokens, "last": now}, ttl)
        reset_in = (1 - tokens) / refill_rate
        return False, 0, reset_in

    async def reset(self) -> None:
        await self._store.clear()

    def identifier_for(self, request: Request) -> str:
        """
        Client identifier: the client IP. X-User-Id and X-Forwarded-For are
        client-controlled, so both are only honoured from trusted proxies.
        """
        direct_client_ip = request.client.host if request.client else None
        if not direct_client_ip or not _is_trusted_proxy(direct_client_ip):
            return direct_client_ip or "anonymous"

        user_id = (request.headers.get("x-user-id") or "").strip()
        if user_id:
            return f"user:{user_id}"

        forwarded = request.headers.get("x-forwarded-for")
        if not forwarded:
            return direct_client_ip

        # Leftmost valid address is the original client
        for ip in (part.strip() for part in forwarded.split(",")):
            if _is_valid_ip(ip):
                return ip
        return direct_client_ip


def _is_trusted_proxy(ip: str) -> bool:
    trusted = settings.TRUSTED_PROXIES.strip()
    if not trusted:
        return False
    if trusted == "*":
        return True
    try:
        ip_obj = ipaddress.ip_address(ip)
    except ValueError:
        return False
    for entry in trusted.split(","):
        entry = entry.strip()
        if not entry:
            continue
        try:
            if "/" in entry:
                if ip_obj in ipaddress.ip_network(entry, strict=False):
                    return True
            elif ip_obj == ipaddress.ip_address(entry):
                return True
        except ValueError:
            continue
    return False


def _is_valid_ip(ip: str) -> bool:
    try:
        ipaddress.ip_address(ip)
    except ValueError:
        return False
    return True


def add_rate_limiting(app, store: KeyValueStore) -> RateLimiter:
    limiter = RateLimiter(store)
    app.state.rate_limiter = limiter

    @app.middleware("http")
    async def _rate_limit(request: Request, call_next):  # type: ignore[override]
        return await limiter.dispatch(request, call_next)

    return limiter

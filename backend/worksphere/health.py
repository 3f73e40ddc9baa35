"""Health check module with dependency verification."""

from __future__ import annotations

import time
from typing import Any
from urllib.parse import urlparse

from .settings import settings
from .store import KeyValueStore, RedisStore


def _is_configured(value: str | None) -> bool:
    """Return True when a config string is non-empty after trimming."""
    if value is None:
        return False
    return bool(value.strip())


class HealthChecker:
    """Health checker for the venue source, LLM backend, store and Sentry."""

    def __init__(self) -> None:
        self._check_cache: dict[str, tuple[dict[str, Any], float]] = {}
        self._cache_ttl = 30.0  # Cache health checks for 30 seconds

    async def check_all(self, store: KeyValueStore | None = None) -> dict[str, Any]:
        """
        Check health of all dependencies.

        Returns:
            Dict with overall status and individual component checks
        """
        checks = {
            "venue_source": self._check_venue_source(),
            "llm": self._check_llm(),
            "store": await self._check_store(store),
            "sentry": (
                self._check_sentry() if _is_configured(settings.SENTRY_DSN) else {"status": "disabled"}
            ),
        }

        all_ok = all(check.get("status") in {"ok", "disabled"} for check in checks.values())

        return {
            "status": "healthy" if all_ok else "degraded",
            "timestamp": time.time(),
            "checks": checks,
        }

    def _check_venue_source(self) -> dict[str, Any]:
        endpoints = settings.overpass_endpoints
        if not endpoints:
            return {"status": "error", "error": "OVERPASS_ENDPOINTS is empty"}
        invalid = [e for e in endpoints if urlparse(e).scheme not in {"http", "https"}]
        if invalid:
            return {"status": "error", "error": f"Invalid endpoint URL: {invalid[0]}"}
        return {
            "status": "ok",
            "endpoints": len(endpoints),
            "timeout_seconds": settings.OVERPASS_TIMEOUT_SECONDS,
        }

    def _check_llm(self) -> dict[str, Any]:
        wanted = [
            name
            for name, backend in (
                ("classifier", settings.CLASSIFIER_BACKEND),
                ("extractor", settings.EXTRACTOR_BACKEND),
                ("direct_reply", settings.DIRECT_REPLY_BACKEND),
            )
            if backend == "llm"
        ]
        if not wanted:
            return {"status": "disabled", "reason": "rule-based backends selected"}
        if not settings.llm_configured:
            # Stages fall back to the rule-based backends, so the service still answers
            return {
                "status": "error",
                "error": "LLM_API_KEY not configured",
                "affected": wanted,
            }
        return {"status": "ok", "model": settings.LLM_MODEL, "stages": wanted}

    async def _check_store(self, store: KeyValueStore | None) -> dict[str, Any]:
        if not isinstance(store, RedisStore):
            return {"status": "ok", "backend": "memory"}

        cache_key = "store"
        cached = self._get_cached_check(cache_key)
        if cached is not None:
            return cached
        try:
            await store.ping()
            result = {"status": "ok", "backend": "redis"}
        except Exception as exc:
            result = {
                "status": "error",
                "backend": "redis",
                "error": str(exc),
                "error_type": type(exc).__name__,
            }
        self._cache_check(cache_key, result)
        return result

    def _check_sentry(self) -> dict[str, Any]:
        """Check if Sentry is configured (doesn't actually test connectivity)."""
        cache_key = "sentry"
        cached = self._get_cached_check(cache_key)
        if cached is not None:
            return cached

        dsn = settings.SENTRY_DSN or ""
        if "@" in dsn and "//" in dsn:
            result = {
                "status": "ok",
                "environment": settings.SENTRY_ENVIRONMENT,
                "release": settings.SENTRY_RELEASE or "unset",
            }
        else:
            result = {"status": "error", "error": "Invalid SENTRY_DSN format"}

        self._cache_check(cache_key, result)
        return result

    def _get_cached_check(self, key: str) -> dict[str, Any] | None:
        """Get cached health check result if still valid."""
        if key not in self._check_cache:
            return None

        result, timestamp = self._check_cache[key]
        if time.time() - timestamp > self._cache_ttl:
            return None

        return result

    def _cache_check(self, key: str, result: dict[str, Any]) -> None:
        self._check_cache[key] = (result, time.time())

    def clear_cache(self) -> None:
        """Clear cached dependency checks (useful for tests)."""
        self._check_cache.clear()


# Global health checker instance
health_checker = HealthChecker()


__all__ = ["health_checker", "HealthChecker"]

"""HTTP client with retry/backoff and per-provider request metrics."""
from __future__ import annotations

import logging
import random
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

import requests

from . import config

logger = logging.getLogger(__name__)

PROVIDER_KINDS = ("places", "registry", "directions")

RETRYABLE_STATUSES = (429, 500, 502, 503, 504)


class ProviderError(RuntimeError):
    """Raised when a provider answers with a non-successful status."""


@dataclass
class RequestMetrics:
    network_places: int = 0
    network_registry: int = 0
    network_directions: int = 0
    cache_hits_places: int = 0
    cache_hits_registry: int = 0
    failures_places: int = 0
    failures_registry: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def inc_network(self, kind: str) -> None:
        self._inc("network", kind)

    def inc_cache_hit(self, kind: str) -> None:
        self._inc("cache_hits", kind)

    def inc_failure(self, kind: str) -> None:
        self._inc("failures", kind)

    def _inc(self, prefix: str, kind: str) -> None:
        name = f"{prefix}_{kind}"
        if kind not in PROVIDER_KINDS or not hasattr(self, name):
            raise ValueError(f"Unknown request kind: {kind}")
        with self._lock:
            setattr(self, name, getattr(self, name) + 1)


class HttpClient:
    def __init__(
        self,
        timeout: int = config.HTTP_TIMEOUT_SECONDS,
        retry_max: int = config.HTTP_RETRY_MAX,
        backoff_base: float = config.HTTP_BACKOFF_BASE,
        backoff_max: float = config.HTTP_BACKOFF_MAX,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.timeout = timeout
        self.retry_max = max(1, int(retry_max))
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.sleep = sleep
        self.session = requests.Session()

    def get_json(self, url: str, params: Optional[Dict[str, Any]] = None) -> Any:
        for attempt in range(1, self.retry_max + 1):
            try:
                resp = self.session.get(url, params=params, timeout=self.timeout)
            except requests.RequestException as exc:
                logger.warning("Request to %s failed (attempt %s): %s", url, attempt, exc)
                if attempt >= self.retry_max:
                    raise
                self._sleep_backoff(attempt)
                continue

            status = resp.status_code
            if 200 <= status < 300:
                try:
                    return resp.json()
                except ValueError:
                    logger.error("Non-JSON response from %s", url)
                    raise

            if status in RETRYABLE_STATUSES:
                logger.warning("HTTP %s from %s (attempt %s)", status, url, attempt)
                if attempt >= self.retry_max:
                    resp.raise_for_status()
                if not self._sleep_retry_after(resp):
                    self._sleep_backoff(attempt)
                continue

            # Non-retryable
            logger.error("HTTP %s from %s", status, url)
            resp.raise_for_status()

        raise RuntimeError("Unexpected HTTP retry loop exit")

    def _sleep_backoff(self, attempt: int) -> None:
        base = min(self.backoff_base * (2 ** (attempt - 1)), self.backoff_max)
        jitter = random.uniform(0, self.backoff_base)
        self.sleep(base + jitter)

    def _sleep_retry_after(self, resp: requests.Response) -> bool:
        retry_after = resp.headers.get("Retry-After")
        if not retry_after:
            return False
        try:
            delay = float(retry_after)
        except ValueError:
            return False
        delay = max(0.0, min(delay, self.backoff_max))
        self.sleep(delay)
        return True

"""Webhook-call collaborator with bounded exponential backoff."""

from __future__ import annotations

import json
import logging
import random
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import requests

from dripline.errors import StepExecutionError, TransientDispatchError
from dripline.http import get_sync_client

logger = logging.getLogger(__name__)

# Responses worth retrying; anything else non-2xx is final
RETRYABLE_STATUSES = frozenset({408, 425, 429, 500, 502, 503, 504})


class RetryStrategy:
    """Configurable retry strategy with exponential backoff."""

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        exponential_base: float = 2.0,
        jitter: bool = True,
    ):
        """Initialize retry strategy.

        Args:
            max_attempts: Total attempts, including the first
            base_delay: Initial delay in seconds
            max_delay: Maximum delay between attempts
            exponential_base: Base for exponential backoff
            jitter: Add randomization to prevent thundering herd
        """
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter

    def get_delay(self, attempt: int) -> float:
        """Delay before the attempt following ``attempt`` (1-based)."""
        delay = self.base_delay * (self.exponential_base ** (attempt - 1))
        delay = min(delay, self.max_delay)

        if self.jitter:
            delay *= 0.5 + random.random()  # 50-150% of calculated delay

        return delay


@dataclass
class WebhookResult:
    """Outcome of a successful webhook call."""

    status_code: int
    attempts: int
    body: str = ""


class WebhookCaller:
    """Calls external endpoints on behalf of ``call_webhook`` steps.

    Timeouts, connection errors, and retryable statuses are retried up to
    ``retry.max_attempts``; exhausting them raises ``TransientDispatchError``.
    Other non-2xx responses raise ``StepExecutionError`` immediately.

    Args:
        retry: Backoff policy
        timeout: Per-request timeout in seconds
        session: HTTP session; defaults to the shared pooled client
        sleep: Sleep function, injectable for tests
    """

    def __init__(
        self,
        retry: RetryStrategy | None = None,
        timeout: float = 10.0,
        session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.retry = retry or RetryStrategy()
        self.timeout = timeout
        self._session = session
        self._sleep = sleep

    @property
    def session(self) -> requests.Session:
        if self._session is None:
            self._session = get_sync_client()
        return self._session

    def call(self, url: str, method: str, payload: dict[str, Any]) -> WebhookResult:
        method = method.upper()
        body = json.dumps(payload, default=str).encode("utf-8")
        headers = {"Content-Type": "application/json"}
        last_error = ""

        for attempt in range(1, self.retry.max_attempts + 1):
            try:
                if method == "GET":
                    response = self.session.request(
                        method, url, params=_flatten(payload), timeout=self.timeout
                    )
                else:
                    response = self.session.request(
                        method, url, data=body, headers=headers, timeout=self.timeout
                    )
            except requests.exceptions.Timeout:
                last_error = "Request timeout"
                logger.warning(f"Webhook {method} {url} timed out (attempt {attempt})")
            except requests.exceptions.ConnectionError as e:
                last_error = f"Connection error: {e}"
                logger.warning(f"Webhook {method} {url} failed (attempt {attempt}): {last_error}")
            except requests.exceptions.RequestException as e:
                raise StepExecutionError(f"Webhook request to {url} is invalid: {e}")
            else:
                if response.ok:
                    logger.info(f"Webhook delivered: {method} {url} -> {response.status_code}")
                    return WebhookResult(
                        status_code=response.status_code,
                        attempts=attempt,
                        body=response.text[:1000],
                    )
                if response.status_code not in RETRYABLE_STATUSES:
                    raise StepExecutionError(
                        f"Webhook {method} {url} returned HTTP {response.status_code}"
                    )
                last_error = f"HTTP {response.status_code}"
                logger.warning(f"Webhook {method} {url} returned {last_error} (attempt {attempt})")

            if attempt < self.retry.max_attempts:
                self._sleep(self.retry.get_delay(attempt))

        raise TransientDispatchError(
            f"Webhook {method} {url} failed after {self.retry.max_attempts} attempts: "
            f"{last_error}",
            target=url,
            attempts=self.retry.max_attempts,
        )


def _flatten(payload: dict[str, Any]) -> dict[str, str]:
    """Top-level scalars as query parameters for GET calls."""
    return {
        key: str(value)
        for key, value in payload.items()
        if isinstance(value, str | int | float | bool)
    }

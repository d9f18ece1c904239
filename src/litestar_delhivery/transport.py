"""Authenticated, retrying HTTP client for the Delhivery API.

Knows nothing about shipments: it builds auth headers, encodes bodies,
retries connection failures and 5xx answers with capped exponential
backoff, and turns everything else into typed errors.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, Literal

import httpx

from litestar_delhivery import __version__
from litestar_delhivery.config import DelhiveryConfig
from litestar_delhivery.exceptions import (
    HTTPError,
    InvalidResponseError,
    NotConfiguredError,
    TransportError,
)
from litestar_delhivery.governor import RateGovernor

logger = logging.getLogger(__name__)

JSON_ACCEPT = "application/json"
DOCUMENT_ACCEPT = "application/pdf,application/json;q=0.5"

SECRET_HEADERS = frozenset(
    {"authorization", "x-delhivery-secret", "x-delhivery-client"}
)
REDACTED = "********"

BodyFormat = Literal["json", "form"]


@dataclass
class TransportResponse:
    code: int
    body: str
    headers: dict[str, str] = field(default_factory=dict)
    json: Any = None
    content: bytes = b""


def redact_headers(headers: Mapping[str, str]) -> dict[str, str]:
    """Copy of ``headers`` with credential values masked."""
    return {
        key: REDACTED if key.lower() in SECRET_HEADERS else value
        for key, value in headers.items()
    }


def extract_error_message(payload: Any, body: str = "") -> str:
    """Best-effort carrier error message from a decoded response."""
    if isinstance(payload, dict):
        for key in ("message", "error"):
            value = payload.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
        errors = payload.get("errors")
        if isinstance(errors, list) and errors:
            return str(errors[0]).strip()
        if isinstance(errors, dict) and errors:
            return str(next(iter(errors.values()))).strip()
        remark = payload.get("remark") or payload.get("rmk")
        if remark:
            return str(remark).strip()
    return " ".join(body.split()[:40])


def backoff_delay(attempt: int, base: float, cap: float) -> float:
    """Delay before retrying after ``attempt`` (1-based) failed."""
    return min(cap, base * (2 ** (attempt - 1)))


class DelhiveryTransport:
    """Executes requests against the carrier API.

    Args:
        config: Integration config (credentials, timeouts, retry policy).
        governor: Optional call budget enforcer, consulted per attempt
            when a request names its ``endpoint``.
        client: Pre-built ``httpx.AsyncClient``; tests pass one with a
            ``MockTransport``. Created lazily when omitted.
        sleep: Awaitable used between retries.
    """

    def __init__(
        self,
        config: DelhiveryConfig,
        *,
        governor: RateGovernor | None = None,
        client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._config = config
        self._governor = governor
        self._client = client
        self._owns_client = client is None
        self._sleep = sleep

    @property
    def config(self) -> DelhiveryConfig:
        return self._config

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._config.timeout)
            )
        return self._client

    def build_headers(
        self,
        extra: Mapping[str, str] | None = None,
        *,
        expect_json: bool = True,
    ) -> dict[str, str]:
        headers = {
            "Authorization": f"Token {self._config.api_key}",
            "Accept": JSON_ACCEPT if expect_json else DOCUMENT_ACCEPT,
            "User-Agent": f"litestar-delhivery/{__version__}",
        }
        if self._config.api_secret:
            headers["X-Delhivery-Secret"] = self._config.api_secret
        if self._config.client_code:
            headers["X-Delhivery-Client"] = self._config.client_code
        if extra:
            headers.update(extra)
        return headers

    def build_url(self, path: str) -> str:
        return f"{self._config.resolved_base_url}/{path.lstrip('/')}"

    async def send(
        self,
        method: str,
        path: str,
        *,
        headers: Mapping[str, str] | None = None,
        query: Mapping[str, Any] | None = None,
        body: Any = None,
        body_format: BodyFormat = "json",
        expect_json: bool = True,
        timeout: float | None = None,
        endpoint: str | None = None,
    ) -> TransportResponse:
        """Send one logical request, retrying retryable failures.

        Raises:
            NotConfiguredError: Credentials missing; nothing is sent.
            QuotaExceededError: The endpoint's call budget is spent.
            TransportError: Connection failures outlasted every retry.
            HTTPError: Any non-2xx answer (5xx only after retries).
            InvalidResponseError: A 2xx body that is not valid JSON.
        """
        if not self._config.is_configured:
            raise NotConfiguredError()

        method = method.upper()
        request_headers = self.build_headers(headers, expect_json=expect_json)
        request_kwargs: dict[str, Any] = {
            "params": {k: str(v) for k, v in (query or {}).items()},
            "timeout": httpx.Timeout(timeout or self._config.timeout),
        }
        if body is not None:
            if body_format == "form":
                request_kwargs["data"] = body
            else:
                request_kwargs["json"] = body
        url = self.build_url(path)
        max_attempts = self._config.max_retries + 1
        client = self._get_client()

        for attempt in range(1, max_attempts + 1):
            if self._governor is not None and endpoint:
                self._governor.acquire(endpoint)

            logger.debug(
                "Delhivery %s %s attempt %d/%d headers=%s body=%s",
                method,
                path,
                attempt,
                max_attempts,
                redact_headers(request_headers),
                "[redacted]" if body is not None else "",
            )
            try:
                response = await client.request(
                    method, url, headers=request_headers, **request_kwargs
                )
            except httpx.TransportError as exc:
                if attempt < max_attempts:
                    delay = self._delay(attempt)
                    logger.warning(
                        "Delhivery %s %s attempt %d failed (%s), "
                        "retrying in %.1fs",
                        method,
                        path,
                        attempt,
                        exc.__class__.__name__,
                        delay,
                    )
                    await self._sleep(delay)
                    continue
                logger.error(
                    "Delhivery %s %s failed after %d attempts: %s",
                    method,
                    path,
                    attempt,
                    exc.__class__.__name__,
                )
                raise TransportError(
                    f"Delhivery request {method} {path} failed: {exc}"
                ) from exc

            if response.status_code >= 500 and attempt < max_attempts:
                delay = self._delay(attempt)
                logger.warning(
                    "Delhivery %s %s attempt %d returned HTTP %d, "
                    "retrying in %.1fs",
                    method,
                    path,
                    attempt,
                    response.status_code,
                    delay,
                )
                await self._sleep(delay)
                continue

            return self._finish(method, path, attempt, response, expect_json)

        raise AssertionError("unreachable")  # pragma: no cover

    def _delay(self, attempt: int) -> float:
        return backoff_delay(
            attempt,
            self._config.backoff_base_seconds,
            self._config.backoff_max_seconds,
        )

    def _finish(
        self,
        method: str,
        path: str,
        attempt: int,
        response: httpx.Response,
        expect_json: bool,
    ) -> TransportResponse:
        text = response.text
        decoded: Any = None
        decode_failed = False
        if expect_json or response.status_code >= 400:
            try:
                decoded = response.json()
            except ValueError:
                decode_failed = True

        if not 200 <= response.status_code < 300:
            message = extract_error_message(decoded, text)
            logger.error(
                "Delhivery %s %s attempt %d returned HTTP %d: %s",
                method,
                path,
                attempt,
                response.status_code,
                message,
            )
            raise HTTPError(response.status_code, message)

        if expect_json and decode_failed:
            logger.error(
                "Delhivery %s %s returned unreadable JSON (HTTP %d)",
                method,
                path,
                response.status_code,
            )
            raise InvalidResponseError(
                "Delhivery returned an unreadable response."
            )

        logger.debug(
            "Delhivery %s %s attempt %d succeeded with HTTP %d",
            method,
            path,
            attempt,
            response.status_code,
        )
        return TransportResponse(
            code=response.status_code,
            body=text,
            headers=dict(response.headers),
            json=decoded if expect_json else None,
            content=response.content,
        )

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> DelhiveryTransport:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

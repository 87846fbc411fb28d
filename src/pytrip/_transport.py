"""JSON-over-HTTP transport for the fuel/distance-accounting service."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Mapping
from typing import Any, Protocol

import aiohttp

from pytrip._constants import RETRYABLE_CLIENT_STATUS_CODES, USER_AGENT
from pytrip._redact import redact_for_log
from pytrip.config import TripConfig
from pytrip.exceptions import SyncPermanent, SyncTransient

_logger = logging.getLogger(__name__)


class Transport(Protocol):
    """Structural transport interface used by the endpoint module.

    Tests pass small fakes implementing ``post_json``; production code uses
    :class:`JsonTransport`.
    """

    async def post_json(self, endpoint: str, payload: Mapping[str, Any]) -> dict[str, Any]:
        ...


def _is_retryable_status(status: int) -> bool:
    return status >= 500 or status in RETRYABLE_CLIENT_STATUS_CODES


class JsonTransport:
    """POST JSON with bearer auth and map failures onto the sync error classes.

    Network errors, timeouts, HTTP 5xx, 408 and 429 raise
    :class:`SyncTransient`; any other non-2xx status and unparseable bodies
    raise :class:`SyncPermanent`.
    """

    def __init__(self, config: TripConfig, http_session: aiohttp.ClientSession) -> None:
        self._config = config
        self._http = http_session

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {
            "accept": "application/json",
            "content-type": "application/json; charset=UTF-8",
            "user-agent": USER_AGENT,
        }
        if self._config.auth_token:
            headers["authorization"] = f"Bearer {self._config.auth_token}"
        return headers

    async def post_json(self, endpoint: str, payload: Mapping[str, Any]) -> dict[str, Any]:
        url = f"{self._config.base_url.rstrip('/')}{endpoint}"
        headers = self._headers()
        body = json.dumps(payload, separators=(",", ":"))
        timeout = aiohttp.ClientTimeout(total=self._config.request_timeout_s)

        _logger.debug("POST %s headers=%s body=%s", url, redact_for_log(headers), redact_for_log(payload))

        try:
            async with self._http.post(url, data=body, headers=headers, timeout=timeout) as resp:
                text = await resp.text()
                status = resp.status
        except asyncio.TimeoutError as exc:
            raise SyncTransient(f"Request to {endpoint} timed out", endpoint=endpoint) from exc
        except aiohttp.ClientError as exc:
            raise SyncTransient(f"Request to {endpoint} failed: {exc}", endpoint=endpoint) from exc

        if not 200 <= status < 300:
            error_cls = SyncTransient if _is_retryable_status(status) else SyncPermanent
            raise error_cls(
                f"HTTP {status} from {endpoint}: {text[:200]}",
                status_code=status,
                endpoint=endpoint,
            )

        try:
            result = json.loads(text)
        except json.JSONDecodeError as exc:
            raise SyncPermanent(
                f"Invalid JSON from {endpoint}: {text[:200]}",
                status_code=status,
                endpoint=endpoint,
            ) from exc

        if not isinstance(result, dict):
            raise SyncPermanent(
                f"Expected a JSON object from {endpoint}, got {type(result).__name__}",
                status_code=status,
                endpoint=endpoint,
            )

        _logger.debug("Response %s status=%d body=%s", endpoint, status, redact_for_log(result))
        return result

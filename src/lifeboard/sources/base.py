"""Source client interface and the shared httpx client.

A source exposes one or more streams, one per record type it produces. Each
stream is a page fetcher ``fetch_page(since, cursor, limit) -> Page`` that
the pagination walker drives until exhaustion.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import httpx

from lifeboard.core.errors import FatalSourceError, TransientNetworkError

logger = logging.getLogger(__name__)

RawRecord = dict[str, Any]

# Status codes that mean the credentials or base configuration are unusable
FATAL_STATUS_CODES = frozenset({400, 401, 403, 404})


@dataclass
class Page:
    """One page of raw records and the cursor (or page number) for the next."""

    items: list[RawRecord]
    next: Any = None


PageFetcher = Callable[[datetime, Any, int], Page]


@dataclass
class SourceStream:
    """A paged stream of raw records of one type."""

    record_type: str
    fetch_page: PageFetcher
    # First cursor/page value to send; None for cursor APIs
    initial_cursor: Any = None


class SourceClient(ABC):
    """Base class for all source clients."""

    name: str = ""

    @abstractmethod
    def streams(self) -> list[SourceStream]:
        """Streams to fetch for one sync run, in processing order."""
        ...

    def close(self) -> None:
        """Release network resources."""
        return None


class HttpSourceClient(SourceClient):
    """Source client backed by an ``httpx.Client``.

    Retries timeouts, connection errors, 429 and 5xx responses with
    exponential backoff inside a single call. Once retries are exhausted the
    failure becomes a ``TransientNetworkError``. Authentication and
    configuration failures raise ``FatalSourceError`` immediately.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str,
        *,
        timeout: float = 30.0,
        max_retries: int = 2,
        retry_backoff: float = 1.0,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if not base_url:
            raise FatalSourceError(self.name, "base_url is not configured")
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff
        self._sleep = sleep
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            headers={"Accept": "application/json", **self.auth_headers(api_key)},
            transport=transport,
        )

    def auth_headers(self, api_key: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {api_key}"}

    def get_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        """GET ``path`` and decode the JSON body.

        Raises:
            FatalSourceError: On 400/401/403/404 or an undecodable body.
            TransientNetworkError: When retries are exhausted.
        """
        clean_params = {k: v for k, v in (params or {}).items() if v is not None}
        attempt = 0
        while True:
            try:
                response = self._client.get(path, params=clean_params)
            except httpx.TimeoutException as exc:
                error = TransientNetworkError(f"{self.name}: timeout on {path}: {exc}")
            except httpx.TransportError as exc:
                error = TransientNetworkError(f"{self.name}: connection failed on {path}: {exc}")
            else:
                status = response.status_code
                if status in FATAL_STATUS_CODES:
                    raise FatalSourceError(
                        self.name, f"HTTP {status} from {path}", status_code=status
                    )
                if status == 429 or status >= 500:
                    error = TransientNetworkError(
                        f"{self.name}: HTTP {status} from {path}", status_code=status
                    )
                elif status >= 400:
                    raise FatalSourceError(
                        self.name, f"HTTP {status} from {path}", status_code=status
                    )
                else:
                    try:
                        return response.json()
                    except ValueError as exc:
                        raise FatalSourceError(
                            self.name, f"invalid JSON from {path}", status_code=status
                        ) from exc

            if attempt >= self.max_retries:
                raise error
            delay = self.retry_backoff * (2**attempt)
            attempt += 1
            logger.warning("%s (retry %d/%d in %.1fs)", error, attempt, self.max_retries, delay)
            self._sleep(delay)

    def close(self) -> None:
        self._client.close()


def extract_items(body: Any, *keys: str) -> list[RawRecord]:
    """Pull the record list out of a response body.

    Tries each key in order (dotted paths allowed), then ``data``, then the
    body itself when it is already a list.
    """
    if isinstance(body, list):
        return [item for item in body if isinstance(item, dict)]
    if not isinstance(body, dict):
        return []
    for key in (*keys, "data"):
        value = dig(body, key)
        if isinstance(value, list):
            return [item for item in value if isinstance(item, dict)]
        if isinstance(value, dict) and key == "data":
            return extract_items(value, *keys)
    return []


def dig(data: Any, path: str) -> Any:
    """Resolve a dotted path in nested dicts; None when any step is missing."""
    current = data
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            return None
        current = current[part]
    return current

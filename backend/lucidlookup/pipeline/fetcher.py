from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Literal

import httpx

logger = logging.getLogger(__name__)

TokenTransport = Literal["query", "header"]

# Identifies the service to the register operator.
DEFAULT_USER_AGENT = "LucidLookupService/1.0 (registration lookup cache)"

_CHUNK_SIZE = 1 << 16
_BODY_EXCERPT_CHARS = 1000


class FetchError(RuntimeError):
    """Base class for failures while downloading the upstream document."""

    kind = "fetch_error"


class FetchTimeout(FetchError):
    kind = "timeout"


class ResponseTooLarge(FetchError):
    kind = "too_large"

    def __init__(self, message: str, *, limit: int, received: int) -> None:
        super().__init__(message)
        self.limit = limit
        self.received = received


class UpstreamUnreachable(FetchError):
    kind = "unreachable"


class RateLimited(FetchError):
    kind = "rate_limited"

    def __init__(self, message: str, *, retry_after_s: float | None = None) -> None:
        super().__init__(message)
        self.retry_after_s = retry_after_s


class UpstreamError(FetchError):
    kind = "upstream_error"

    def __init__(self, message: str, *, status_code: int, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


@dataclass(frozen=True)
class FetchConfig:
    url: str
    token: str = ""
    token_transport: TokenTransport = "query"
    token_name: str = "token"
    timeout_s: float = 300.0
    max_bytes: int = 2000 * 1024 * 1024
    user_agent: str = DEFAULT_USER_AGENT


def mask_token(token: str, visible: int = 6) -> str:
    if not token:
        return "<none>"
    if len(token) <= visible:
        return "*" * len(token)
    return token[:visible] + "..."


class SnapshotFetcher:
    """Downloads the upstream register document with bounded size and time."""

    def __init__(self, config: FetchConfig, *, transport: httpx.BaseTransport | None = None) -> None:
        self._config = config
        self._client = httpx.Client(
            timeout=config.timeout_s,
            follow_redirects=True,
            headers={"User-Agent": config.user_agent, "Accept": "application/xml"},
            transport=transport,
        )

    @property
    def config(self) -> FetchConfig:
        return self._config

    def close(self) -> None:
        self._client.close()

    def _request_parts(self) -> tuple[dict[str, str], dict[str, str]]:
        params: dict[str, str] = {}
        headers: dict[str, str] = {}
        if self._config.token:
            if self._config.token_transport == "header":
                headers[self._config.token_name] = self._config.token
            else:
                params[self._config.token_name] = self._config.token
        return params, headers

    def fetch(self) -> bytes:
        cfg = self._config
        params, headers = self._request_parts()
        logger.info(
            "Downloading register document from %s (token %s via %s)",
            cfg.url,
            mask_token(cfg.token),
            cfg.token_transport,
        )
        started = time.monotonic()
        deadline = started + cfg.timeout_s
        try:
            with self._client.stream("GET", cfg.url, params=params, headers=headers) as resp:
                _raise_for_status(resp)
                declared = resp.headers.get("Content-Length")
                if declared and declared.isdigit() and int(declared) > cfg.max_bytes:
                    raise ResponseTooLarge(
                        f"Declared response size {declared} bytes exceeds limit of {cfg.max_bytes}",
                        limit=cfg.max_bytes,
                        received=int(declared),
                    )
                body = bytearray()
                for chunk in resp.iter_bytes(chunk_size=_CHUNK_SIZE):
                    body.extend(chunk)
                    if len(body) > cfg.max_bytes:
                        raise ResponseTooLarge(
                            f"Response exceeded limit of {cfg.max_bytes} bytes",
                            limit=cfg.max_bytes,
                            received=len(body),
                        )
                    if time.monotonic() > deadline:
                        raise FetchTimeout(f"Download did not finish within {cfg.timeout_s:.0f}s")
        except httpx.TimeoutException as e:
            raise FetchTimeout(f"Timed out fetching {cfg.url}: {e}") from e
        except httpx.TransportError as e:
            raise UpstreamUnreachable(f"Could not reach {cfg.url}: {e}") from e

        elapsed = time.monotonic() - started
        logger.info("Downloaded %d bytes in %.1fs", len(body), elapsed)
        return bytes(body)


def _raise_for_status(resp: httpx.Response) -> None:
    if resp.is_success:
        return
    if resp.status_code == 429:
        retry_after = _retry_after_seconds(resp)
        raise RateLimited(
            f"Upstream rate limited the request (429), retry after {retry_after}s",
            retry_after_s=retry_after,
        )
    resp.read()
    body = resp.text[:_BODY_EXCERPT_CHARS]
    logger.error("Upstream answered %s: %s", resp.status_code, body)
    raise UpstreamError(
        f"Upstream answered HTTP {resp.status_code}",
        status_code=resp.status_code,
        body=body,
    )


def _retry_after_seconds(resp: httpx.Response) -> float | None:
    raw = resp.headers.get("Retry-After")
    if not raw:
        return None
    raw = raw.strip()
    if raw.isdigit():
        return float(raw)
    return None

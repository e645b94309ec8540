"""
Single HTTP probe with a hard deadline.

Every probe settles: a response (any status), a timeout, or a connection
error. Nothing is raised to callers; failures are ProbeResult values.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping, Optional

import aiohttp

logger = logging.getLogger(__name__)

REDIRECT_STATUSES = frozenset({300, 301, 302, 303, 304, 307, 308})
DEFAULT_PORTS = {"http": 80, "https": 443}


@dataclass(frozen=True)
class Endpoint:
    """Where to send a probe: scheme, host, port and request path."""

    host: str
    port: int
    path: str = "/"
    scheme: str = "http"

    @classmethod
    def parse(cls, value: str) -> "Endpoint":
        """
        Parse 'host', 'host:port', 'http(s)://host[:port][/path]'.

        Without an explicit port, 80/443 is taken from the scheme.
        """
        text = str(value).strip()
        scheme = "http"
        for candidate in ("https", "http"):
            prefix = f"{candidate}://"
            if text.lower().startswith(prefix):
                scheme = candidate
                text = text[len(prefix):]
                break

        path = "/"
        slash = text.find("/")
        if slash >= 0:
            path = text[slash:]
            text = text[:slash]

        host = text
        port = DEFAULT_PORTS[scheme]
        if ":" in text:
            host, port_str = text.rsplit(":", 1)
            try:
                port = int(port_str)
            except ValueError:
                raise ValueError(f"Invalid port in {value!r}") from None

        if not host:
            raise ValueError(f"Missing host in {value!r}")
        if not 0 < port < 65536:
            raise ValueError(f"Port out of range in {value!r}")
        return cls(host=host, port=port, path=path, scheme=scheme)

    def with_path(self, path: str) -> "Endpoint":
        if not path.startswith("/"):
            path = "/" + path
        return Endpoint(host=self.host, port=self.port, path=path, scheme=self.scheme)

    @property
    def authority(self) -> str:
        if self.port == DEFAULT_PORTS.get(self.scheme):
            return self.host
        return f"{self.host}:{self.port}"

    @property
    def url(self) -> str:
        return f"{self.scheme}://{self.authority}{self.path}"

    def __str__(self) -> str:
        return self.url


class ProbeFailure(str, Enum):
    TIMEOUT = "timeout"
    CONNECTION_ERROR = "connection-error"


@dataclass(frozen=True)
class ProbeResult:
    """Outcome of one HTTP attempt."""

    url: str
    status: Optional[int] = None
    headers: Mapping[str, str] = field(default_factory=dict)
    body: Optional[bytes] = None
    failure: Optional[ProbeFailure] = None
    error: str = ""
    elapsed_ms: float = 0.0

    @property
    def ok(self) -> bool:
        """2xx response."""
        return self.failure is None and self.status is not None and 200 <= self.status < 300

    @property
    def ready(self) -> bool:
        """2xx or a redirect: the server is up and routing."""
        return self.ok or (self.failure is None and self.status in REDIRECT_STATUSES)

    def text(self, encoding: str = "utf-8") -> str:
        if not self.body:
            return ""
        return self.body.decode(encoding, errors="replace")

    def describe(self) -> str:
        if self.failure is not None:
            return f"{self.failure.value}: {self.error}" if self.error else self.failure.value
        return f"HTTP {self.status}"

    @classmethod
    def timeout(cls, url: str, elapsed_ms: float = 0.0) -> "ProbeResult":
        return cls(url=url, failure=ProbeFailure.TIMEOUT, error="request timeout", elapsed_ms=elapsed_ms)

    @classmethod
    def connection_error(cls, url: str, error: str = "", elapsed_ms: float = 0.0) -> "ProbeResult":
        return cls(url=url, failure=ProbeFailure.CONNECTION_ERROR, error=error, elapsed_ms=elapsed_ms)


class HttpProbe:
    """aiohttp-backed prober. Use as an async context manager."""

    USER_AGENT = "CutoverWarmup/1.0"

    def __init__(self, session: Optional[aiohttp.ClientSession] = None, user_agent: str = USER_AGENT):
        self._session = session
        self._owns_session = session is None
        self.headers = {
            "Cache-Control": "no-cache",
            "Pragma": "no-cache",
            "User-Agent": user_agent,
        }

    async def __aenter__(self) -> "HttpProbe":
        if self._session is None:
            # One connection per probe: a timed-out request never poisons a pooled socket
            self._session = aiohttp.ClientSession(
                connector=aiohttp.TCPConnector(force_close=True),
            )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    async def probe(self, endpoint: Endpoint, timeout_ms: float, keep_body: bool = False) -> ProbeResult:
        """
        Send one GET and classify the outcome.

        Args:
            endpoint: Target (path included)
            timeout_ms: Total budget for connect + response + body
            keep_body: Keep the drained body on the result

        Returns:
            ProbeResult; never raises for network conditions
        """
        if timeout_ms <= 0:
            raise ValueError(f"timeout_ms must be positive, got {timeout_ms}")
        if self._session is None:
            raise RuntimeError("HttpProbe used outside 'async with'")

        url = endpoint.url
        started = time.monotonic()
        try:
            async with self._session.get(
                url,
                headers=self.headers,
                allow_redirects=False,
                timeout=aiohttp.ClientTimeout(total=timeout_ms / 1000.0),
            ) as resp:
                # Always drain so the connection is released cleanly
                body = await resp.read()
                return ProbeResult(
                    url=url,
                    status=resp.status,
                    headers=dict(resp.headers),
                    body=body if keep_body else None,
                    elapsed_ms=(time.monotonic() - started) * 1000.0,
                )
        except asyncio.TimeoutError:
            elapsed = (time.monotonic() - started) * 1000.0
            logger.debug("Probe %s timed out after %.0fms", url, elapsed)
            return ProbeResult.timeout(url, elapsed_ms=elapsed)
        except aiohttp.ClientError as e:
            elapsed = (time.monotonic() - started) * 1000.0
            logger.debug("Probe %s failed: %s", url, e)
            return ProbeResult.connection_error(url, error=str(e) or type(e).__name__, elapsed_ms=elapsed)

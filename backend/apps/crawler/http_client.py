# apps/crawler/http_client.py

import json
import random
import threading
import time
import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

logger = logging.getLogger(__name__)


# Browser user agents, rotated per request
USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:125.0) Gecko/20100101 Firefox/125.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.4 Safari/605.1.15",
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_4 like Mac OS X) AppleWebKit/605.1.15 (KHTML, like Gecko) Mobile/15E148 Instagram 330.0.0.0",
]

DIRECT = "direct"


@dataclass
class FetchResponse:
    """One HTTP exchange as seen by the platform clients."""
    url: str
    status_code: int | None
    text: str
    headers: dict[str, str]
    duration_ms: int
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status_code is not None and 200 <= self.status_code < 300

    @property
    def content_type(self) -> str:
        return self.headers.get("content-type", "").split(";")[0].strip()

    def json(self) -> Any:
        return json.loads(self.text)


@dataclass
class HttpClientConfig:
    timeout: float = 30.0
    # Extra attempts after a connection error or a 5xx
    max_retries: int = 1
    retry_delay: float = 2.0
    retry_backoff: float = 2.0
    rotate_user_agent: bool = True
    headers: dict[str, str] = field(default_factory=lambda: {
        "Accept": "text/html,application/json;q=0.9,*/*;q=0.8",
        "Accept-Language": "cs-CZ,cs;q=0.9,en-US;q=0.8,en;q=0.7",
    })


class HttpClient:
    """
    httpx wrapper with retries and user-agent rotation.

    The egress proxy is chosen per request by the caller (the connection
    pool). One httpx.Client is kept per proxy so connections to the same
    egress point are reused across requests.
    """

    def __init__(self, config: HttpClientConfig | None = None, sleep=time.sleep, transport=None):
        self.config = config or HttpClientConfig()
        self._sleep = sleep
        self._transport = transport
        self._clients: dict[str, httpx.Client] = {}
        self._lock = threading.Lock()

    def _client_for(self, proxy: str | None) -> httpx.Client:
        key = proxy or DIRECT
        with self._lock:
            client = self._clients.get(key)
            if client is None:
                client = httpx.Client(
                    timeout=self.config.timeout,
                    follow_redirects=True,
                    proxy=proxy,
                    transport=self._transport,
                )
                self._clients[key] = client
            return client

    def _headers(self, extra: dict | None) -> dict[str, str]:
        agent = random.choice(USER_AGENTS) if self.config.rotate_user_agent else USER_AGENTS[0]
        return {**self.config.headers, "User-Agent": agent, **(extra or {})}

    def _retryable(self, status_code: int | None) -> bool:
        # 429 goes back to the pool as a failure instead of being retried
        return status_code is None or status_code >= 500

    def fetch(
        self,
        url: str,
        method: str = "GET",
        headers: dict | None = None,
        params: dict | None = None,
        proxy: str | None = None,
    ) -> FetchResponse:
        """
        Fetch a URL through `proxy` (None = direct).
        Never raises; transport failures come back with `error` set.
        """
        client = self._client_for(proxy)
        result = None

        for attempt in range(self.config.max_retries + 1):
            if attempt:
                delay = self.config.retry_delay * (self.config.retry_backoff ** (attempt - 1))
                logger.info(f"Retrying {url} in {delay:.1f}s (attempt {attempt})")
                self._sleep(delay)

            started = time.monotonic()
            try:
                response = client.request(method, url, headers=self._headers(headers), params=params)
                result = FetchResponse(
                    url=str(response.url),
                    status_code=response.status_code,
                    text=response.text,
                    headers=dict(response.headers),
                    duration_ms=int((time.monotonic() - started) * 1000),
                )
            except httpx.TimeoutException as e:
                result = self._failure(url, started, f"Timeout: {e}")
            except httpx.ProxyError as e:
                result = self._failure(url, started, f"Proxy error: {e}")
            except httpx.TransportError as e:
                result = self._failure(url, started, f"Connection error: {e}")

            if not self._retryable(result.status_code):
                return result
            logger.warning(f"Fetch of {url} failed ({result.error or result.status_code})")

        return result

    def get(self, url: str, **kwargs) -> FetchResponse:
        return self.fetch(url, method="GET", **kwargs)

    def close(self) -> None:
        with self._lock:
            clients, self._clients = list(self._clients.values()), {}
        for client in clients:
            client.close()

    @staticmethod
    def _failure(url: str, started: float, error: str) -> FetchResponse:
        return FetchResponse(
            url=url,
            status_code=None,
            text="",
            headers={},
            duration_ms=int((time.monotonic() - started) * 1000),
            error=error,
        )

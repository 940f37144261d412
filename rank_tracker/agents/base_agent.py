"""Base agent class for upstream search agents"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Optional

import httpx
from loguru import logger

from ..utils.config import resolve_delay_ms, resolve_timeout_ms
from ..utils.retry import RetryPolicy

Sleep = Callable[[float], Awaitable[Any]]


class BaseAgent(ABC):
    """Abstract base class for agents that call an upstream HTTP API.

    An agent can be handed an existing ``httpx.AsyncClient`` to share a
    connection pool; otherwise it opens its own when used as an async
    context manager.
    """

    def __init__(
        self,
        config: dict,
        client: Optional[httpx.AsyncClient] = None,
        sleep: Optional[Sleep] = None,
    ):
        self.config = config
        self.timeout_ms = resolve_timeout_ms(config.get("timeout_ms"))
        self.delay_ms = resolve_delay_ms(config.get("delay_ms"))
        self.retry_policy = RetryPolicy(
            max_retries=config.get("max_retries", 2),
            backoff_seconds=config.get("backoff_ms", 200) / 1000,
        )
        self.sleep = sleep or asyncio.sleep

        self._client = client
        self._owns_client = False

    @property
    @abstractmethod
    def source_name(self) -> str:
        """Unique identifier for this data source"""
        pass

    def get_http_client(self) -> httpx.AsyncClient:
        """Get configured HTTP client with the per-request timeout"""
        return httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout_ms / 1000),
            headers=self._get_headers(),
            follow_redirects=True,
        )

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = self.get_http_client()
            self._owns_client = True
        return self._client

    async def aclose(self):
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
            self._owns_client = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()

    def _get_headers(self) -> dict:
        return {
            "Accept": "application/json, text/plain, */*",
            "Accept-Language": "ko-KR,ko;q=0.9,en-US;q=0.8",
        }

    async def wait_interval(self):
        """Pause between consecutive upstream requests."""
        if self.delay_ms > 0:
            await self.sleep(self.delay_ms / 1000)

    def log_failure(self, what: str, error: Optional[str]):
        logger.warning(f"[{self.source_name}] {what} failed: {error}")

"""Shared test helpers."""

import httpx

FAST_SEARCH = {"delay_ms": 0, "backoff_ms": 0, "timeout_ms": 1000, "max_retries": 2}


def mock_client(handler) -> httpx.AsyncClient:
    """AsyncClient whose requests are answered by ``handler(request)``."""
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))

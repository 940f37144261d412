"""Naver shopping search agent: locates a product's rank for a keyword."""

import math
import re
from dataclasses import dataclass
from typing import Optional

import httpx
from loguru import logger

from ..storage.models import SearchItem
from ..utils.retry import RetryResult, request_with_retry
from .base_agent import BaseAgent, Sleep

PAGE_SIZE = 100
MAX_RANK = 1000
MAX_PAGES = 10
SORT = "sim"

# smartstore.naver.com/{store}/products/{id}
_LINK_PRODUCT_PATTERN = re.compile(r"/products/(\d+)")


@dataclass(frozen=True)
class Credentials:
    """Naver Open API application key pair."""

    client_id: str
    client_secret: str


@dataclass
class RankLookupResult:
    """Outcome of one keyword lookup.

    ``ok`` is False when an upstream request failed for good; ``rank`` is
    then None just as it is when the product was not found.
    """

    rank: Optional[int]
    ok: bool = True
    pages_fetched: int = 0
    attempts: int = 0
    error: Optional[str] = None


def page_limit_for(total: Optional[int]) -> int:
    """Number of pages worth fetching for a reported result count."""
    if total is None:
        total = MAX_RANK
    return max(1, min(MAX_PAGES, math.ceil(min(total, MAX_RANK) / PAGE_SIZE)))


def _extract_link_product_id(link: str) -> str:
    m = _LINK_PRODUCT_PATTERN.search(link)
    return m.group(1) if m else ""


def matches_target(item: SearchItem, target_id: str) -> bool:
    """Check the product id, the mall product id and the link's product id."""
    candidates = (
        item.product_id,
        item.mall_product_id,
        _extract_link_product_id(item.link),
    )
    return any(candidate and candidate == target_id for candidate in candidates)


def parse_search_page(payload: dict) -> tuple[list[SearchItem], Optional[int]]:
    """Extract items and the reported total from a search response body.

    Returns:
        (items, total); total is None when the body carries no numeric total
    """
    raw_items = payload.get("items") if isinstance(payload, dict) else None
    if not isinstance(raw_items, list):
        raw_items = []

    items = []
    for raw in raw_items:
        if not isinstance(raw, dict):
            items.append(SearchItem())
            continue
        items.append(
            SearchItem(
                product_id=str(raw.get("productId") or ""),
                mall_product_id=str(raw.get("mallProductId") or ""),
                link=str(raw.get("link") or ""),
                title=str(raw.get("title") or ""),
                mall_name=str(raw.get("mallName") or ""),
            )
        )

    total = payload.get("total") if isinstance(payload, dict) else None
    if isinstance(total, bool) or not isinstance(total, (int, float)):
        total = None
    elif isinstance(total, float) and not math.isfinite(total):
        total = None

    return items, total


class NaverShoppingAgent(BaseAgent):
    """Queries the Naver shopping search API page by page.

    Pages hold 100 items sorted by relevance. A lookup stops at the first
    match, at a short page, or after the page limit derived from the
    reported total (never more than MAX_PAGES pages, ranks up to MAX_RANK).
    """

    def __init__(
        self,
        config: dict,
        credentials: Credentials,
        client: Optional[httpx.AsyncClient] = None,
        sleep: Optional[Sleep] = None,
    ):
        super().__init__(config, client=client, sleep=sleep)
        self.credentials = credentials
        self.base_url = config.get("base_url", "https://openapi.naver.com/v1/search/shop.json")

    @property
    def source_name(self) -> str:
        return "naver_shopping"

    def _auth_headers(self) -> dict:
        return {
            "X-Naver-Client-Id": self.credentials.client_id,
            "X-Naver-Client-Secret": self.credentials.client_secret,
        }

    async def fetch_page(self, keyword: str, start: int) -> RetryResult:
        """Fetch one result page starting at the 1-based offset ``start``."""
        return await request_with_retry(
            self.client,
            "GET",
            self.base_url,
            policy=self.retry_policy,
            sleep=self.sleep,
            timeout=self.timeout_ms / 1000,
            params={"query": keyword, "display": PAGE_SIZE, "start": start, "sort": SORT},
            headers=self._auth_headers(),
        )

    async def lookup_rank(self, keyword: str, target_id: str) -> RankLookupResult:
        """Find the 1-based rank of ``target_id`` in the results for ``keyword``.

        Upstream failures are reported in the result, never raised.
        """
        target_id = str(target_id).strip()
        result = RankLookupResult(rank=None)
        page_limit = MAX_PAGES
        page = 0

        while page < page_limit:
            start = page * PAGE_SIZE + 1
            response = await self.fetch_page(keyword, start)
            result.pages_fetched += 1
            result.attempts += response.attempts

            if not response.ok:
                self.log_failure(f"Search keyword={keyword!r} start={start}", response.error)
                result.ok = False
                result.error = response.error
                return result

            try:
                payload = response.value.json()
            except ValueError as e:
                self.log_failure(f"Decoding keyword={keyword!r} start={start}", str(e))
                result.ok = False
                result.error = f"invalid JSON: {e}"
                return result

            items, total = parse_search_page(payload)
            page_limit = page_limit_for(total)

            for index, item in enumerate(items):
                if matches_target(item, target_id):
                    result.rank = start + index
                    logger.debug(f"keyword={keyword!r} product={target_id}: rank {result.rank}")
                    return result

            if len(items) < PAGE_SIZE or page + 1 >= page_limit:
                break

            page += 1
            await self.wait_interval()

        logger.debug(
            f"keyword={keyword!r} product={target_id}: not found in {result.pages_fetched} pages"
        )
        return result

    async def find_rank(self, keyword: str, target_id: str) -> Optional[int]:
        """Rank of ``target_id`` for ``keyword``, or None when not found or on failure."""
        return (await self.lookup_rank(keyword, target_id)).rank

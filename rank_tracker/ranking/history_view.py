"""Rank history read model for the dashboard."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from loguru import logger

from ..errors import ConfigurationError, NotFoundError
from ..storage.database import Database
from ..storage.models import Product, RankHistory


@dataclass
class RankPoint:
    """One point of a keyword's daily rank series."""

    rank: Optional[int]
    date: datetime

    def to_dict(self) -> Dict:
        return {"rank": self.rank, "date": self.date.isoformat()}


@dataclass
class KeywordRankSummary:
    """Latest rank, change and daily history for one keyword."""

    keyword: str
    current_rank: Optional[int]
    previous_rank: Optional[int]
    delta: Optional[int]  # positive = moved up
    history: List[RankPoint] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return {
            "keyword": self.keyword,
            "currentRank": self.current_rank,
            "previousRank": self.previous_rank,
            "delta": self.delta,
            "history": [point.to_dict() for point in self.history],
        }


def local_date(moment: datetime, tz: ZoneInfo):
    """Calendar date of ``moment`` in ``tz``; naive datetimes are taken as UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(tz).date()


def daily_series(samples: List[RankHistory], tz: ZoneInfo, max_days: int) -> List[RankPoint]:
    """Keep the latest sample of each local day.

    Args:
        samples: Rows of one keyword, newest first
        tz: Zone that defines a calendar day
        max_days: Maximum number of distinct days to keep

    Returns:
        Points ordered oldest first
    """
    points: List[RankPoint] = []
    seen = set()

    for sample in samples:
        day = local_date(sample.created_at, tz)
        if day in seen:
            continue
        if len(points) >= max_days:
            break
        seen.add(day)
        points.append(RankPoint(rank=sample.rank, date=sample.created_at))

    points.reverse()
    return points


def summarize_keyword(
    keyword: str, samples: List[RankHistory], tz: ZoneInfo, max_days: int
) -> KeywordRankSummary:
    """Build the summary of one keyword from its samples, newest first."""
    current = samples[0].rank if samples else None
    previous = samples[1].rank if len(samples) > 1 else None
    delta = previous - current if current is not None and previous is not None else None

    return KeywordRankSummary(
        keyword=keyword,
        current_rank=current,
        previous_rank=previous,
        delta=delta,
        history=daily_series(samples, tz, max_days),
    )


class RankHistoryView:
    """Serves per-product keyword rank summaries.

    Reads a bounded window of history (``lookback_days`` back, at most
    ``max_rows_per_product`` rows) and groups it by keyword text, since rows
    carry a copy of the keyword rather than a reference.
    """

    def __init__(
        self,
        db: Database,
        lookback_days: int = 120,
        max_rows_per_product: int = 2000,
        max_days: int = 120,
        tz_name: str = "Asia/Seoul",
    ):
        self.db = db
        self.lookback_days = lookback_days
        self.max_rows_per_product = max_rows_per_product
        self.max_days = max_days

        try:
            self.tz = ZoneInfo(tz_name)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ConfigurationError(f"Unknown timezone: {tz_name}") from e

    @classmethod
    def from_config(cls, db: Database, history_config) -> "RankHistoryView":
        return cls(
            db,
            lookback_days=history_config.lookback_days,
            max_rows_per_product=history_config.max_rows_per_product,
            max_days=history_config.max_days,
            tz_name=history_config.timezone,
        )

    def keyword_summaries(self, product: Product) -> List[KeywordRankSummary]:
        """Summaries for each tracked keyword of a product, in keyword order."""
        since = datetime.utcnow() - timedelta(days=self.lookback_days)
        rows = self.db.get_rank_history(
            product_pk=product.id, since=since, limit=self.max_rows_per_product
        )

        by_keyword: Dict[str, List[RankHistory]] = {}
        for row in rows:
            by_keyword.setdefault(row.keyword, []).append(row)

        return [
            summarize_keyword(kw.keyword, by_keyword.get(kw.keyword, []), self.tz, self.max_days)
            for kw in product.keywords
        ]

    def ranks_for(
        self, product_external_id: Optional[str] = None, owner_id: Optional[str] = None
    ) -> Dict:
        """Rank summaries for one product, or for every product in scope.

        Raises:
            NotFoundError: ``product_external_id`` matches no product
        """
        if product_external_id:
            product = self.db.find_product_by_external_id(product_external_id, owner_id)
            if product is None:
                raise NotFoundError("Product not found", {"product_id": product_external_id})

            return {
                "product": {
                    "id": product.id,
                    "productId": product.product_id,
                    "productName": product.product_name,
                },
                "ranks": [s.to_dict() for s in self.keyword_summaries(product)],
            }

        products = self.db.list_products(owner_id=owner_id)
        logger.debug(f"Building rank summaries for {len(products)} products")

        return {
            "products": [
                {
                    "id": product.id,
                    "productId": product.product_id,
                    "productName": product.product_name,
                    "keywords": [s.to_dict() for s in self.keyword_summaries(product)],
                }
                for product in products
            ]
        }

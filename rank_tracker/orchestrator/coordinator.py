"""Rank refresh coordination."""

import time
from datetime import datetime
from typing import Callable, Optional

import httpx
from loguru import logger

from ..agents.naver_shopping import Credentials, NaverShoppingAgent
from ..errors import RefreshPreconditionError
from ..storage.database import Database
from ..storage.history import HistoryBatchWriter
from ..storage.models import Product, RefreshOutcome, RefreshSummary, RefreshTask
from ..utils.config import Config, resolve_concurrency
from .runner import run_bounded

AgentFactory = Callable[[Credentials], NaverShoppingAgent]


def build_tasks(products: list[Product]) -> list[RefreshTask]:
    """One task per (product, keyword), product order first, then keyword order."""
    tasks = []
    for product in products:
        for keyword in product.keywords:
            tasks.append(
                RefreshTask(
                    product_pk=product.id,
                    product_id=product.product_id,
                    keyword=keyword.keyword,
                )
            )
    return tasks


def summarize(outcomes: list[RefreshOutcome], duration_ms: int) -> RefreshSummary:
    """Reduce outcomes into summary counters."""
    success = sum(1 for o in outcomes if o.found)
    failed = sum(1 for o in outcomes if not o.ok)
    return RefreshSummary(
        success=True,
        total_tasks=len(outcomes),
        success_count=success,
        not_found_count=len(outcomes) - success - failed,
        failed_count=failed,
        duration_ms=duration_ms,
    )


class RefreshCoordinator:
    """Runs on-demand rank refreshes.

    A run resolves credentials, expands every in-scope product into one task
    per keyword, looks the tasks up concurrently and appends one rank row per
    task to the history.
    """

    def __init__(
        self,
        db: Database,
        config: Config,
        agent_factory: Optional[AgentFactory] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize the coordinator.

        Args:
            db: Repository for products, credentials and history
            config: Merged configuration
            agent_factory: Builds the search agent for a credential pair
            client: Shared HTTP client handed to agents built by the default factory
        """
        self.db = db
        self.config = config
        self.client = client
        self.agent_factory = agent_factory or self._default_agent
        self.writer = HistoryBatchWriter(db, batch_size=config.history.batch_size)

    def _default_agent(self, credentials: Credentials) -> NaverShoppingAgent:
        return NaverShoppingAgent(
            self.config.search.model_dump(), credentials, client=self.client
        )

    def resolve_credentials(self, actor_id: Optional[str]) -> Credentials:
        """Prefer the actor's own credentials, else any usable shared record."""
        api_config = self.db.get_api_config(actor_id) if actor_id else None
        if api_config is None or not api_config.is_usable:
            api_config = self.db.get_any_api_config()

        if api_config is None or not api_config.is_usable:
            raise RefreshPreconditionError("API keys not configured")

        return Credentials(api_config.naver_client_id, api_config.naver_client_secret)

    def load_tasks(self, actor_id: Optional[str]) -> tuple[list[Product], list[RefreshTask]]:
        products = self.db.list_products(owner_id=actor_id)
        if not products:
            raise RefreshPreconditionError("No products registered")

        tasks = build_tasks(products)
        if not tasks:
            raise RefreshPreconditionError("No keywords registered")

        return products, tasks

    async def refresh(self, actor_id: Optional[str] = None) -> RefreshSummary:
        """Refresh ranks for every product in scope.

        Args:
            actor_id: Requesting user; None refreshes every product

        Returns:
            Summary counters for the run

        Raises:
            RefreshPreconditionError: no credentials, products or keywords
            HistoryWriteError: the rank history could not be saved
        """
        started_at = datetime.utcnow()
        start = time.monotonic()

        credentials = self.resolve_credentials(actor_id)
        products, tasks = self.load_tasks(actor_id)
        concurrency = resolve_concurrency(self.config.refresh.concurrency)

        logger.info(
            f"Starting rank refresh: {len(products)} products, {len(tasks)} tasks, "
            f"concurrency={min(concurrency, len(tasks))} (actor={actor_id or 'anonymous'})"
        )

        agent = self.agent_factory(credentials)
        async with agent:

            async def lookup(task: RefreshTask) -> RefreshOutcome:
                result = await agent.lookup_rank(task.keyword, task.product_id)
                return RefreshOutcome(task=task, rank=result.rank, ok=result.ok)

            def as_failure(task: RefreshTask, error: Exception) -> RefreshOutcome:
                return RefreshOutcome(task=task, rank=None, ok=False)

            outcomes = await run_bounded(tasks, lookup, concurrency, on_error=as_failure)

        rows = [
            {"product_pk": o.task.product_pk, "keyword": o.task.keyword, "rank": o.rank}
            for o in outcomes
        ]

        try:
            written = self.writer.write(rows)
        except Exception as e:
            self.db.record_refresh_job(
                actor_id,
                "failed",
                started_at,
                total_tasks=len(tasks),
                duration=time.monotonic() - start,
                error=str(e),
            )
            raise

        summary = summarize(outcomes, int((time.monotonic() - start) * 1000))
        summary.stats = {
            "products": len(products),
            "keywords": len(tasks),
            "concurrency": min(concurrency, len(tasks)),
            "rowsWritten": written,
        }

        self.db.record_refresh_job(
            actor_id,
            "completed",
            started_at,
            total_tasks=summary.total_tasks,
            success_count=summary.success_count,
            not_found_count=summary.not_found_count,
            failed_count=summary.failed_count,
            duration=summary.duration_ms / 1000,
        )

        logger.info(
            f"Rank refresh completed: {summary.success_count}/{summary.total_tasks} ranked, "
            f"{summary.not_found_count} not found, {summary.failed_count} failed "
            f"in {summary.duration_ms}ms"
        )
        return summary

import asyncio

import httpx
import pytest

from rank_tracker.agents.naver_shopping import Credentials, NaverShoppingAgent, RankLookupResult
from rank_tracker.errors import HistoryWriteError, RefreshPreconditionError
from rank_tracker.orchestrator import RefreshCoordinator
from rank_tracker.orchestrator.coordinator import build_tasks

from helpers import FAST_SEARCH, mock_client


class FakeAgent:
    """Answers lookups from a (product_id, keyword) -> rank table."""

    def __init__(self, ranks, failing=(), raising=()):
        self.ranks = ranks
        self.failing = set(failing)
        self.raising = set(raising)
        self.lookups = []
        self.closed = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        self.closed = True

    async def lookup_rank(self, keyword, target_id):
        self.lookups.append((target_id, keyword))
        await asyncio.sleep(0)
        if (target_id, keyword) in self.raising:
            raise RuntimeError("connection reset")
        if (target_id, keyword) in self.failing:
            return RankLookupResult(rank=None, ok=False, error="HTTP 503")
        return RankLookupResult(rank=self.ranks.get((target_id, keyword)))


RANKS = {
    ("111", "lamp"): 3,
    ("111", "desk lamp"): 17,
    ("222", "stand"): 5,
    ("222", "phone holder"): 99,
}


def seed(db, owner="owner-1"):
    lamp = db.create_product(owner, "111", "Desk lamp")
    db.replace_keywords(lamp.id, ["lamp", "desk lamp", "led lamp"])
    stand = db.create_product(owner, "222", "Phone stand")
    db.replace_keywords(stand.id, ["stand", "tablet stand", "phone holder"])
    db.save_api_config(owner, "client-id", "client-secret")
    return lamp, stand


def coordinator_with(db, config, agent):
    seen = []

    def factory(credentials):
        seen.append(credentials)
        return agent

    coordinator = RefreshCoordinator(db, config, agent_factory=factory)
    return coordinator, seen


def test_refresh_counts_and_persists_every_task(db, config):
    lamp, stand = seed(db)
    agent = FakeAgent(RANKS)
    coordinator, seen = coordinator_with(db, config, agent)

    summary = asyncio.run(coordinator.refresh("owner-1"))

    assert summary.success
    assert summary.total_tasks == 6
    assert summary.success_count == 4
    assert summary.not_found_count == 2
    assert summary.failed_count == 0
    assert summary.stats["rowsWritten"] == 6
    assert seen == [Credentials("client-id", "client-secret")]
    assert agent.closed

    rows = db.get_rank_history(product_pk=lamp.id)
    assert sorted((r.keyword, r.rank) for r in rows) == [
        ("desk lamp", 17),
        ("lamp", 3),
        ("led lamp", None),
    ]
    assert db.count_rank_history(stand.id) == 3


def test_failed_lookups_are_counted_separately(db, config):
    seed(db)
    agent = FakeAgent(RANKS, failing=[("111", "lamp")], raising=[("222", "stand")])
    coordinator, _ = coordinator_with(db, config, agent)

    summary = asyncio.run(coordinator.refresh("owner-1"))

    assert summary.failed_count == 2
    assert summary.success_count == 2
    assert summary.not_found_count == 2
    assert summary.success_count + summary.not_found_count + summary.failed_count == 6
    assert len(db.get_rank_history()) == 6


def test_summary_response_uses_wire_names(db, config):
    seed(db)
    coordinator, _ = coordinator_with(db, config, FakeAgent(RANKS))

    response = asyncio.run(coordinator.refresh("owner-1")).to_response()

    assert set(response) == {
        "success",
        "totalTasks",
        "successCount",
        "failedCount",
        "notFoundCount",
        "durationMs",
        "stats",
    }


def test_tasks_follow_product_then_keyword_order(db):
    seed(db)

    tasks = build_tasks(db.list_products(owner_id="owner-1"))

    assert [(t.product_id, t.keyword) for t in tasks] == [
        ("111", "lamp"),
        ("111", "desk lamp"),
        ("111", "led lamp"),
        ("222", "stand"),
        ("222", "tablet stand"),
        ("222", "phone holder"),
    ]


def test_missing_credentials_stop_the_run(db, config):
    product = db.create_product("owner-1", "111", "Desk lamp")
    db.add_keyword(product.id, "lamp")
    agent = FakeAgent(RANKS)
    coordinator, _ = coordinator_with(db, config, agent)

    with pytest.raises(RefreshPreconditionError, match="API keys not configured"):
        asyncio.run(coordinator.refresh("owner-1"))

    assert agent.lookups == []
    assert db.get_rank_history() == []


def test_credentials_fall_back_to_shared_record(db, config):
    product = db.create_product("owner-2", "111", "Desk lamp")
    db.add_keyword(product.id, "lamp")
    db.save_api_config("owner-2", "", "")
    db.save_api_config("admin", "shared-id", "shared-secret")
    coordinator, seen = coordinator_with(db, config, FakeAgent(RANKS))

    asyncio.run(coordinator.refresh("owner-2"))

    assert seen == [Credentials("shared-id", "shared-secret")]


def test_no_products_or_keywords_stop_the_run(db, config):
    db.save_api_config("owner-1", "client-id", "client-secret")
    coordinator, _ = coordinator_with(db, config, FakeAgent(RANKS))

    with pytest.raises(RefreshPreconditionError, match="No products registered"):
        asyncio.run(coordinator.refresh("owner-1"))

    db.create_product("owner-1", "111", "Desk lamp")
    with pytest.raises(RefreshPreconditionError, match="No keywords registered"):
        asyncio.run(coordinator.refresh("owner-1"))


def test_actor_scope_limits_products(db, config):
    seed(db, owner="owner-1")
    other = db.create_product("owner-2", "333", "Mouse pad")
    db.add_keyword(other.id, "mouse pad")
    agent = FakeAgent(RANKS)
    coordinator, _ = coordinator_with(db, config, agent)

    assert asyncio.run(coordinator.refresh("owner-1")).total_tasks == 6
    assert ("333", "mouse pad") not in agent.lookups

    assert asyncio.run(coordinator.refresh(None)).total_tasks == 7


def test_history_write_failure_propagates_and_is_recorded(db, config):
    seed(db)
    coordinator, _ = coordinator_with(db, config, FakeAgent(RANKS))

    class BrokenStore:
        def bulk_insert_rank_history(self, rows):
            raise RuntimeError("disk full")

    coordinator.writer.store = BrokenStore()

    with pytest.raises(HistoryWriteError):
        asyncio.run(coordinator.refresh("owner-1"))

    job = db.get_refresh_jobs(limit=1)[0]
    assert job.status == "failed"
    assert "Failed to save rank history" in job.error


def test_completed_run_is_recorded(db, config):
    seed(db)
    coordinator, _ = coordinator_with(db, config, FakeAgent(RANKS))

    asyncio.run(coordinator.refresh("owner-1"))

    job = db.get_refresh_jobs(limit=1)[0]
    assert job.status == "completed"
    assert job.total_tasks == 6
    assert job.success_count == 4


def test_refresh_with_http_agent(db, config):
    product = db.create_product("owner-1", "12345", "Wireless earbuds")
    db.replace_keywords(product.id, ["earbuds", "headphones"])
    db.save_api_config("owner-1", "client-id", "client-secret")

    def handler(request):
        if request.url.params["query"] == "earbuds":
            items = [{"productId": str(i)} for i in range(6)] + [{"productId": "12345"}]
        else:
            items = [{"productId": str(i)} for i in range(20)]
        return httpx.Response(200, json={"total": len(items), "items": items})

    async def run():
        async with mock_client(handler) as client:
            coordinator = RefreshCoordinator(
                db,
                config,
                agent_factory=lambda creds: NaverShoppingAgent(FAST_SEARCH, creds, client=client),
            )
            return await coordinator.refresh("owner-1")

    summary = asyncio.run(run())

    assert summary.success_count == 1
    assert summary.not_found_count == 1
    ranks = {r.keyword: r.rank for r in db.get_rank_history(product_pk=product.id)}
    assert ranks == {"earbuds": 7, "headphones": None}

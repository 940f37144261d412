import pytest
from fastapi.testclient import TestClient

from rank_tracker.agents.naver_shopping import RankLookupResult
from rank_tracker.api.main import create_app
from rank_tracker.orchestrator import RefreshCoordinator

OWNER = {"X-User-Id": "owner-1"}
STRANGER = {"X-User-Id": "owner-2"}


class StaticAgent:
    """Ranks every lookup at the length of its keyword."""

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return None

    async def lookup_rank(self, keyword, target_id):
        return RankLookupResult(rank=len(keyword))


@pytest.fixture
def client(db, config):
    coordinator = RefreshCoordinator(db, config, agent_factory=lambda creds: StaticAgent())
    return TestClient(create_app(config=config, db=db, coordinator=coordinator))


def create_product(client, product_id="12345", name="Wireless earbuds"):
    response = client.post(
        "/products", json={"productId": product_id, "productName": name}, headers=OWNER
    )
    assert response.status_code == 200
    return response.json()


def test_health(client):
    assert client.get("/health").json()["status"] == "healthy"


def test_writes_require_an_actor(client):
    response = client.post("/products", json={"productId": "1", "productName": "x"})

    assert response.status_code == 401


def test_duplicate_product_conflicts(client):
    create_product(client)

    response = client.post(
        "/products", json={"productId": "12345", "productName": "again"}, headers=OWNER
    )

    assert response.status_code == 409


def test_only_owner_can_modify_product(client):
    product = create_product(client)

    forbidden = client.post(
        f"/products/{product['id']}/keywords", json={"keyword": "earbuds"}, headers=STRANGER
    )
    missing = client.delete("/products/does-not-exist", headers=OWNER)

    assert forbidden.status_code == 403
    assert missing.status_code == 404


def test_keyword_lifecycle(client):
    product = create_product(client)
    pk = product["id"]

    client.post(f"/products/{pk}/keywords", json={"keyword": "earbuds"}, headers=OWNER)
    client.post(f"/products/{pk}/keywords", json={"keyword": "headset"}, headers=OWNER)
    duplicate = client.post(f"/products/{pk}/keywords", json={"keyword": "earbuds"}, headers=OWNER)
    blank = client.post(f"/products/{pk}/keywords", json={"keyword": "  "}, headers=OWNER)
    client.put(
        f"/products/{pk}/keywords",
        json={"keywordOrders": [{"keyword": "headset", "order": 0}, {"keyword": "earbuds", "order": 1}]},
        headers=OWNER,
    )

    listed = client.get("/products", params={"userId": "owner-1"}).json()

    assert duplicate.status_code == 409
    assert blank.status_code == 400
    assert [kw["keyword"] for kw in listed[0]["keywords"]] == ["headset", "earbuds"]

    client.delete(f"/products/{pk}/keywords", params={"keyword": "headset"}, headers=OWNER)
    listed = client.get("/products", params={"userId": "owner-1"}).json()
    assert [kw["keyword"] for kw in listed[0]["keywords"]] == ["earbuds"]


def test_settings_never_return_the_secret(client):
    client.post(
        "/settings",
        json={"naverClientId": "client-id", "naverClientSecret": "top-secret"},
        headers=OWNER,
    )

    body = client.get("/settings", headers=OWNER).json()

    assert body == {"naverClientId": "client-id", "naverClientSecret": "********", "hasSecret": True}


def test_refresh_without_keys_is_a_bad_request(client):
    create_product(client)

    response = client.post("/ranks/refresh", headers=OWNER)

    assert response.status_code == 400
    assert response.json()["detail"] == "API keys not configured"


def test_refresh_then_read_ranks(client):
    product = create_product(client)
    client.post(
        "/keywords",
        json={"productId": product["id"], "keywords": ["earbuds", "bluetooth earbuds"]},
        headers=OWNER,
    )
    client.post(
        "/settings",
        json={"naverClientId": "client-id", "naverClientSecret": "top-secret"},
        headers=OWNER,
    )

    refresh = client.post("/ranks/refresh", headers=OWNER)

    assert refresh.status_code == 200
    body = refresh.json()
    assert body["success"] is True
    assert body["totalTasks"] == 2
    assert body["successCount"] == 2
    assert body["notFoundCount"] == 0
    assert body["failedCount"] == 0

    ranks = client.get("/ranks", params={"productId": "12345"}).json()
    assert {r["keyword"]: r["currentRank"] for r in ranks["ranks"]} == {
        "earbuds": 7,
        "bluetooth earbuds": 17,
    }


def test_ranks_for_unknown_product(client):
    assert client.get("/ranks", params={"productId": "nope"}).status_code == 404


def test_whitespace_product_fields_are_bad_requests(client):
    blank_id = client.post(
        "/products", json={"productId": "  ", "productName": "Earbuds"}, headers=OWNER
    )
    blank_name = client.post(
        "/products", json={"productId": "12345", "productName": " "}, headers=OWNER
    )

    assert blank_id.status_code == 400
    assert blank_name.status_code == 400
    assert client.get("/products").json() == []


def test_deleting_unknown_keyword_is_not_found(client):
    product = create_product(client)

    response = client.delete(
        f"/products/{product['id']}/keywords", params={"keyword": "never added"}, headers=OWNER
    )

    assert response.status_code == 404


def test_product_list_includes_rank_counts(client, db):
    first = create_product(client, "111", "Desk lamp")
    create_product(client, "222", "Phone stand")
    db.bulk_insert_rank_history(
        [{"product_pk": first["id"], "keyword": "lamp", "rank": r} for r in (3, 4)]
    )

    listed = client.get("/products", params={"userId": "owner-1"}).json()

    assert {p["productId"]: p["rankCount"] for p in listed} == {"111": 2, "222": 0}

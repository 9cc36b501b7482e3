import pytest

from lead_finder.core.config import Settings
from lead_finder.core.errors import UpstreamSearchError
from lead_finder.core.keys import key_id
from lead_finder.core.ledger import InMemoryCreditLedger
from lead_finder.jobs import server
from lead_finder.jobs.enrichment import EnrichmentOrchestrator
from lead_finder.models import PlaceDetail, PlaceSummary, ScrapeResult

API_KEY = "AIzaSyServerKey"
ADMIN_SECRET = "s3cret"


class StubSearch:
    def __init__(self, places=None, error=None):
        self.places = places or []
        self.error = error
        self.calls = 0

    def search(self, query, api_key, limit):
        self.calls += 1
        if self.error:
            raise self.error
        return iter(self.places[:limit])


class StubDetails:
    def fetch(self, place_id, api_key):
        return PlaceDetail(
            place_id=place_id,
            name=f"Shop {place_id}",
            formatted_address="日本、東京都渋谷区",
            phone="+81 3-1234-5678",
            website=f"https://shop{place_id}.example/",
            rating=4.0 + int(place_id) / 10,
        )


class StubScraper:
    def scrape(self, url):
        return ScrapeResult(email=f"info@{url.split('//')[1].rstrip('/')}")

    def close(self):
        pass


@pytest.fixture
def app_settings(monkeypatch):
    settings = Settings(admin_secret=ADMIN_SECRET, page_delay_seconds=0)
    monkeypatch.setattr(server, "get_settings", lambda: settings)
    return settings


@pytest.fixture
def search_stub():
    return StubSearch([PlaceSummary(place_id="1"), PlaceSummary(place_id="2")])


@pytest.fixture
def client(monkeypatch, app_settings, search_stub):
    ledger = InMemoryCreditLedger.from_settings(app_settings)
    orchestrator = EnrichmentOrchestrator(
        ledger,
        settings=app_settings,
        search_client=search_stub,
        detail_client=StubDetails(),
        scraper_factory=lambda cancel_event: StubScraper(),
    )
    monkeypatch.setattr(server, "_orchestrator", orchestrator)
    return server.app.test_client()


def test_health_endpoint(client):
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.get_json()["status"] == "ok"
    assert response.get_json()["ledger"] == "memory"


def test_search_validates_payload(client, search_stub):
    assert client.post("/search", json={}).status_code == 400
    response = client.post("/search", json={"keyword": "cafe", "location": " ", "apiKey": API_KEY})
    assert response.status_code == 400
    assert "location" in response.get_json()["error"]
    assert search_stub.calls == 0


def test_search_returns_ranked_rows(client):
    response = client.post("/search", json={"keyword": "cafe", "location": "shibuya", "apiKey": API_KEY})

    assert response.status_code == 200
    body = response.get_json()
    assert body["mode"] == "free"
    assert body["perRun"] == 20
    assert body["remaining"] == {"free": 1, "paid": 0, "total": 1}
    assert body["count"] == 2
    first = body["results"][0]
    assert first["index"] == 1
    assert first["storeName"] == "Shop 2"
    assert first["address"] == "東京都渋谷区"
    assert first["phone"] == "03-1234-5678"
    assert first["homepage"] == "https://shop2.example/"
    assert first["email"] == "info@shop2.example"
    assert first["social"] is None
    assert first["keyword"] == "cafe"
    assert first["location"] == "shibuya"


def test_search_without_credit_returns_402(client, search_stub):
    payload = {"keyword": "cafe", "location": "shibuya", "apiKey": API_KEY}
    assert client.post("/search", json=payload).status_code == 200
    assert client.post("/search", json=payload).status_code == 200

    response = client.post("/search", json=payload)

    assert response.status_code == 402
    assert "error" in response.get_json()
    assert "hint" in response.get_json()
    assert search_stub.calls == 2


def test_search_upstream_error_is_classified(client, search_stub):
    search_stub.error = UpstreamSearchError("You have exceeded your daily request quota", cause="quota")

    response = client.post("/search", json={"keyword": "cafe", "location": "shibuya", "apiKey": API_KEY})

    assert response.status_code == 429
    body = response.get_json()
    assert body["cause"] == "quota"
    assert body["error"] == "You have exceeded your daily request quota"
    assert body["hint"]


def test_search_unexpected_error_returns_500(client, search_stub):
    search_stub.error = KeyError("boom")

    response = client.post("/search", json={"keyword": "cafe", "location": "shibuya", "apiKey": API_KEY})

    assert response.status_code == 500
    assert response.get_json() == {"error": "internal server error"}


def test_usage_is_read_only(client):
    for _ in range(3):
        response = client.post("/usage", json={"apiKey": f" {API_KEY} "})
        assert response.status_code == 200

    body = response.get_json()
    assert body["keyId"] == key_id(API_KEY)
    assert body["free"] == 2
    assert body["paid"] == 0
    assert body["total"] == 2
    assert body["freePerRun"] == 20
    assert body["paidPerRun"] == 40


def test_usage_requires_key(client):
    assert client.post("/usage", json={}).status_code == 400
    assert client.post("/usage", json={"apiKey": 123}).status_code == 400


def test_topup_requires_admin_secret(client):
    payload = {"apiKey": API_KEY, "addPaid": 5}
    assert client.post("/credits/topup", json=payload).status_code == 401
    assert client.post("/credits/topup", json=payload, headers={"X-Admin-Secret": "wrong"}).status_code == 401


def test_topup_disabled_without_configured_secret(client, monkeypatch):
    monkeypatch.setattr(server, "get_settings", lambda: Settings(admin_secret=""))
    response = client.post("/credits/topup", json={"apiKey": API_KEY}, headers={"X-Admin-Secret": ""})
    assert response.status_code == 401


def test_topup_funds_pools(client):
    headers = {"X-Admin-Secret": ADMIN_SECRET}
    response = client.post("/credits/topup", json={"apiKey": API_KEY, "addPaid": 10, "addFree": "3"}, headers=headers)

    assert response.status_code == 200
    body = response.get_json()
    assert body["ok"] is True
    assert body["keyId"] == key_id(API_KEY)
    assert body["after"] == {"free": 5, "paid": 10, "total": 15}

    search = client.post("/search", json={"keyword": "cafe", "location": "shibuya", "apiKey": API_KEY})
    assert search.get_json()["mode"] == "paid"
    assert search.get_json()["perRun"] == 40


def test_topup_applies_both_pools_in_one_ledger_call(client, monkeypatch):
    ledger = server.get_ledger()
    calls = []
    original = ledger.top_up

    def record(key_hash, **amounts):
        calls.append(amounts)
        return original(key_hash, **amounts)

    def refuse(*args, **kwargs):
        raise AssertionError("top-ups must not fund pools one at a time")

    monkeypatch.setattr(ledger, "top_up", record)
    monkeypatch.setattr(ledger, "fund", refuse)

    response = client.post(
        "/credits/topup", json={"apiKey": API_KEY, "addFree": 1, "addPaid": 4}, headers={"X-Admin-Secret": ADMIN_SECRET}
    )

    assert response.status_code == 200
    assert calls == [{"free": 1, "paid": 4}]
    assert response.get_json()["after"] == {"free": 3, "paid": 4, "total": 7}


def test_topup_by_key_hash_and_force_init(client):
    headers = {"X-Admin-Secret": ADMIN_SECRET}
    ledger_id = key_id(API_KEY)
    client.post("/credits/topup", json={"keyHash": ledger_id, "addPaid": 4}, headers=headers)

    response = client.post("/credits/topup", json={"keyHash": ledger_id, "forceInit": True}, headers=headers)

    assert response.get_json()["after"] == {"free": 2, "paid": 0, "total": 2}


@pytest.mark.parametrize(
    "payload",
    [
        {"addPaid": 1},
        {"apiKey": API_KEY, "addPaid": -1},
        {"apiKey": API_KEY, "addPaid": "many"},
        {"apiKey": API_KEY, "addPaid": 1.5},
        {"keyHash": "not-a-hash", "addPaid": 1},
    ],
)
def test_topup_validates_payload(client, payload):
    response = client.post("/credits/topup", json=payload, headers={"X-Admin-Secret": ADMIN_SECRET})
    assert response.status_code == 400

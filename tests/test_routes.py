import pytest
from fastapi.testclient import TestClient

from mcqgen.main import app
from mcqgen.services import registry
from mcqgen.services.observability import observability


client = TestClient(app)

TOKEN = "test-admin-token"
HEADERS = {"X-Admin-Token": TOKEN}

NOTES = (
    "The Reserve Bank of India was established on 1 April 1935 under the Reserve Bank of India Act 1934. "
    "It manages monetary policy, issues currency and regulates commercial banks. "
    "The Monetary Policy Committee has six members and meets at least four times a year. "
) * 5


def make_key(n: int) -> str:
    return "AIzaSy" + f"{n:033d}"


@pytest.fixture(autouse=True)
def fresh_pool(monkeypatch):
    monkeypatch.setenv("LLM_PROVIDER", "mock")
    monkeypatch.setenv("ADMIN_TOKEN", TOKEN)
    monkeypatch.delenv("GEMINI_API_KEYS", raising=False)
    registry.reset()
    yield
    registry.reset()


def test_key_routes_require_admin_token():
    assert client.get("/keys").status_code == 401
    assert client.get("/keys", headers={"X-Admin-Token": "wrong"}).status_code == 401
    assert client.get("/keys", headers=HEADERS).status_code == 200


def test_bulk_add_halts_and_listing_masks_keys():
    res = client.post("/keys/bulk", json={"keys": [make_key(1), "bogus", make_key(2)]}, headers=HEADERS)
    assert res.status_code == 200
    assert [r["status"] for r in res.json()] == ["success", "invalid"]

    listing = client.get("/keys", headers=HEADERS).json()
    assert listing["total"] == 1
    assert listing["available"] == 1
    assert make_key(1) not in str(listing)
    assert listing["keys"][0]["status"] == "idle"


def test_delete_unknown_key_is_404_and_clear_empties_pool():
    client.post("/keys/bulk", json={"keys": [make_key(1)]}, headers=HEADERS)
    assert client.delete("/keys/nope", headers=HEADERS).status_code == 404

    key_id = client.get("/keys", headers=HEADERS).json()["keys"][0]["key_id"]
    assert client.delete(f"/keys/{key_id}", headers=HEADERS).json()["total"] == 0

    client.post("/keys/bulk", json={"keys": [make_key(2), make_key(3)]}, headers=HEADERS)
    assert client.delete("/keys", headers=HEADERS).json()["total"] == 0


def test_generate_returns_requested_count():
    client.post("/keys/bulk", json={"keys": [make_key(1), make_key(2)]}, headers=HEADERS)

    res = client.post("/generate", json={"text": NOTES, "count": 5, "difficulty": "easy"})
    assert res.status_code == 200
    body = res.json()
    assert body["requested"] == 5
    assert body["produced"] == 5
    assert len(body["mcqs"]) == 5
    assert body["cancelled"] is False
    first = body["mcqs"][0]
    assert len(first["options"]) == 4
    assert first["correct"] == "a"


def test_generate_rejects_short_text_and_bad_count():
    assert client.post("/generate", json={"text": "tiny", "count": 5}).status_code == 400
    assert client.post("/generate", json={"text": NOTES, "count": 0}).status_code == 422


def test_estimate_is_clamped():
    res = client.post("/generate/estimate", json={"text": NOTES})
    assert res.status_code == 200
    assert res.json()["count"] == 20


def test_health_reports_pool_state():
    assert client.get("/health").json() == {"status": "ok", "keys_total": 0, "keys_available": 0}
    client.post("/keys/bulk", json={"keys": [make_key(1)]}, headers=HEADERS)
    assert client.get("/health").json()["keys_available"] == 1


def test_internal_metrics_and_reset_roundtrip():
    observability.reset()
    observability.incr("unit_test_counter")
    observability.observe_ms("unit_test_timer", 12.5)
    observability.add_trace({"event": "unit-test"})

    metrics = client.get("/internal/metrics", headers=HEADERS)
    assert metrics.status_code == 200
    data = metrics.json()
    assert data["counters"]["unit_test_counter"] == 1
    assert data["timers"]["unit_test_timer"]["count"] == 1
    assert len(data["recent_runs"]) >= 1

    assert client.post("/internal/metrics/reset", headers=HEADERS).status_code == 200

    post_data = client.get("/internal/metrics", headers=HEADERS).json()
    assert post_data["counters"] == {}
    assert post_data["timers"] == {}
    assert post_data["recent_runs"] == []

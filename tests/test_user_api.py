from tests.utils.auth import admin_headers
from tests.utils.purchases import subscribe


def test_me_defaults_to_free(client, headers, user_id):
    data = client.get("/v1/user/me", headers=headers).json()["data"]
    assert data["id"] == user_id
    assert data["plan"] == "free"
    assert data["adsEnabled"] is True
    assert data["subscription"]["active"] is False


def test_me_with_subscription(client, headers, user_id):
    subscribe(user_id, "pro_monthly")
    data = client.get("/v1/user/me", headers=headers).json()["data"]
    assert data["plan"] == "pro"
    assert data["planName"] == "Pro"
    assert data["adsEnabled"] is False


def test_usage(client, headers):
    client.get("/v1/analysis/quick/AAPL?level=2", headers=headers)
    data = client.get("/v1/user/usage", headers=headers).json()["data"]
    assert data["plan"] == "free"
    assert data["usage"]["level2"]["used"] == 1
    assert data["usage"]["level2"]["remaining"] == 4
    assert data["usage"]["level1"]["limit"] == "unlimited"
    assert data["adSummary"]["totalAdsWatched"] == 0


def test_check_limit(client, headers):
    allowed = client.get("/v1/user/check-limit?type=level2", headers=headers).json()["data"]
    assert allowed["allowed"] is True
    assert "adUnlock" not in allowed

    denied = client.get("/v1/user/check-limit?type=level3", headers=headers).json()["data"]
    assert denied["allowed"] is False
    assert denied["adUnlock"]["reason"] == "NOT_AVAILABLE"
    assert denied["upgradeHint"]["recommendedPlan"] == "basic"


def test_stats(client, headers):
    client.get("/v1/analysis/quick/AAPL", headers=headers)
    data = client.get("/v1/user/stats?days=7", headers=headers).json()["data"]
    assert data["days"] == 7
    assert data["totalRequests"] == 1
    assert data["byLevel"]["1"]["requests"] == 1


def test_admin_usage_reset(client, headers, user_id):
    client.get("/v1/analysis/quick/AAPL?level=2", headers=headers)

    denied = client.post("/v1/user/usage/reset", headers=headers, json={"userId": user_id})
    assert denied.status_code == 403

    resp = client.post(
        "/v1/user/usage/reset",
        headers=admin_headers(),
        json={"userId": user_id, "usageType": "level2"},
    )
    assert resp.status_code == 200
    assert resp.json()["data"] == {"userId": user_id, "usageType": "level2"}
    usage = client.get("/v1/user/usage", headers=headers).json()["data"]
    assert usage["usage"]["level2"]["used"] == 0

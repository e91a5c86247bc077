import base64
import json
import uuid
from datetime import datetime, timedelta, timezone

import pytest

from stockai.controllers import payment
from stockai.main import app
from stockai.services.hmac import sign
from stockai.services.store_verifiers import get_store_verifier
from stockai.services.subscriptions import VerifiedPurchase


class FakeVerifier:
    def __init__(self) -> None:
        self.expires_at = datetime.now(timezone.utc) + timedelta(days=30)
        self.transaction_id = uuid.uuid4().hex

    async def verify_apple(self, receipt: str) -> VerifiedPurchase:
        return VerifiedPurchase(
            product_id=receipt,
            transaction_id=self.transaction_id,
            platform="apple",
            expires_at=self.expires_at,
            receipt=receipt,
        )

    async def verify_google(self, product_id: str, purchase_token: str) -> VerifiedPurchase:
        return VerifiedPurchase(
            product_id=product_id,
            transaction_id=purchase_token,
            platform="google",
            expires_at=self.expires_at,
        )


@pytest.fixture
def verifier(client):
    fake = FakeVerifier()
    app.dependency_overrides[get_store_verifier] = lambda: fake
    return fake


def _google_rtdn(kind: int, token: str) -> dict:
    data = {"subscriptionNotification": {"notificationType": kind, "purchaseToken": token, "subscriptionId": "pro_monthly"}}
    return {"message": {"data": base64.b64encode(json.dumps(data).encode()).decode()}}


def test_products(client):
    items = client.get("/v1/payment/products").json()["data"]
    ids = {i["productId"]: i for i in items}
    assert ids["pro_monthly"]["plan"] == "pro"
    assert ids["com.stockai.analyzer.premium.yearly"]["period"] == "year"


def test_verify_google_activates_plan(client, headers):
    token = uuid.uuid4().hex
    resp = client.post(
        "/v1/payment/verify/google",
        headers=headers,
        json={"productId": "pro_monthly", "purchaseToken": token},
    )
    assert resp.status_code == 200
    sub = resp.json()["data"]["subscription"]
    assert sub["plan"] == "pro"
    assert sub["status"] == "active"
    assert sub["productId"] == "pro_monthly"

    status = client.get("/v1/payment/subscription", headers=headers).json()["data"]
    assert status["active"] is True
    assert status["plan"] == "pro"
    assert status["limits"]["level3"] == 30


def test_verify_apple_idempotent(client, headers, verifier):
    first = client.post("/v1/payment/verify/apple", headers=headers, json={"receiptData": "basic_monthly"})
    second = client.post("/v1/payment/verify/apple", headers=headers, json={"receiptData": "basic_monthly"})
    assert first.status_code == second.status_code == 200
    assert first.json()["data"]["subscription"]["id"] == second.json()["data"]["subscription"]["id"]
    assert len(client.get("/v1/payment/history", headers=headers).json()["data"]) == 1


def test_unknown_product(client, headers):
    resp = client.post(
        "/v1/payment/verify/google",
        headers=headers,
        json={"productId": "gold_monthly", "purchaseToken": uuid.uuid4().hex},
    )
    assert resp.status_code == 400
    assert resp.json()["detail"]["code"] == "UNKNOWN_PRODUCT"


def test_cancel(client, headers):
    assert client.post("/v1/payment/cancel", headers=headers).status_code == 404

    client.post(
        "/v1/payment/verify/google",
        headers=headers,
        json={"productId": "basic_yearly", "purchaseToken": uuid.uuid4().hex},
    )
    resp = client.post("/v1/payment/cancel", headers=headers, json={"reason": "switching apps"})
    assert resp.status_code == 200
    assert resp.json()["data"]["subscription"]["status"] == "cancelled"
    assert client.get("/v1/payment/subscription", headers=headers).json()["data"]["plan"] == "basic"


def test_restore(client, headers, verifier):
    bad = client.post("/v1/payment/restore", headers=headers, json={"platform": "apple"})
    assert bad.status_code == 400

    verifier.expires_at = datetime.now(timezone.utc) - timedelta(days=1)
    expired = client.post(
        "/v1/payment/restore", headers=headers, json={"platform": "apple", "receiptData": "pro_monthly"}
    )
    assert expired.status_code == 400
    assert expired.json()["detail"]["code"] == "NOTHING_TO_RESTORE"

    verifier.expires_at = datetime.now(timezone.utc) + timedelta(days=5)
    restored = client.post(
        "/v1/payment/restore", headers=headers, json={"platform": "apple", "receiptData": "pro_monthly"}
    )
    assert restored.status_code == 200
    assert restored.json()["data"]["subscription"]["plan"] == "pro"


def test_google_webhook_cancel(client, headers):
    token = uuid.uuid4().hex
    client.post(
        "/v1/payment/verify/google",
        headers=headers,
        json={"productId": "pro_monthly", "purchaseToken": token},
    )
    resp = client.post("/v1/payment/webhook/google", json=_google_rtdn(3, token))
    assert resp.json() == {"received": True, "applied": True}
    status = client.get("/v1/payment/subscription", headers=headers).json()["data"]
    assert status["status"] == "cancelled"
    assert status["plan"] == "pro"


def test_google_webhook_revoke_reverts_to_free(client, headers):
    token = uuid.uuid4().hex
    client.post(
        "/v1/payment/verify/google",
        headers=headers,
        json={"productId": "pro_monthly", "purchaseToken": token},
    )
    client.post("/v1/payment/webhook/google", json=_google_rtdn(13, token))
    assert client.get("/v1/payment/subscription", headers=headers).json()["data"]["plan"] == "free"


def test_webhook_unknown_transaction(client):
    resp = client.post("/v1/payment/webhook/google", json=_google_rtdn(3, "never-seen"))
    assert resp.status_code == 200
    assert resp.json() == {"received": True, "applied": False}


def test_webhook_malformed_json(client):
    resp = client.post(
        "/v1/payment/webhook/apple",
        content=b"{not json",
        headers={"Content-Type": "application/json"},
    )
    assert resp.status_code == 400


def test_webhook_signature(client, monkeypatch):
    monkeypatch.setattr(payment.settings, "webhook_hmac_secret", "relay-secret")
    raw = json.dumps(_google_rtdn(3, "never-seen")).encode()

    resp = client.post("/v1/payment/webhook/google", content=raw, headers={"X-Signature": "bad"})
    assert resp.status_code == 403

    resp = client.post(
        "/v1/payment/webhook/google",
        content=raw,
        headers={"X-Signature": f"sha256={sign(raw, 'relay-secret')}"},
    )
    assert resp.status_code == 200

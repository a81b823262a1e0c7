import pytest
from fastapi.testclient import TestClient

from app.main import create_app
from app.schemas.billing import PlatformPurchaseResult, PlatformPurchaseStatus
from app.services.session_service import AvatarSession

PREFIX = "/api/v1"
IMAGE = ("product.png", b"\x89PNG not really", "image/png")


@pytest.fixture
def session(settings, store, gen_client, platform, scheduler, clock):
    return AvatarSession(settings, store, gen_client, platform, scheduler, clock=clock)


@pytest.fixture
def client(session):
    with TestClient(create_app(session=session)) as c:
        yield c


@pytest.fixture
def signed_in_client(client):
    r = client.post(f"{PREFIX}/session/sign-in", json={"identity": "user-1", "email": "u@example.com"})
    assert r.status_code == 200
    return client


def _submit(client, duration="10", fmt="portrait"):
    return client.post(
        f"{PREFIX}/generations",
        files={"image": IMAGE},
        data={"prompt": "a sneaker on a beach", "format": fmt, "duration": duration},
    )


def test_me_signed_out(client):
    r = client.get(f"{PREFIX}/me")
    assert r.status_code == 200
    body = r.json()
    assert body["signedIn"] is False
    assert body["credits"] == 0


def test_sign_in_publishes_state(signed_in_client):
    body = signed_in_client.get(f"{PREFIX}/me").json()
    assert body["signedIn"] is True
    assert body["identity"] == "user-1"
    assert body["email"] == "u@example.com"
    assert body["isGenerating"] is False


def test_protected_routes_need_sign_in(client):
    r = client.get(f"{PREFIX}/generations")
    assert r.status_code == 401
    assert r.json()["detail"]["code"] == "NOT_SIGNED_IN"


def test_submit_without_credits_is_402(signed_in_client, gen_client):
    r = _submit(signed_in_client, duration="15")
    assert r.status_code == 402
    detail = r.json()["detail"]
    assert detail["code"] == "INSUFFICIENT_CREDITS"
    assert detail["required"] == 70
    assert detail["available"] == 0
    assert gen_client.submitted == []


def test_submit_accepted(signed_in_client, session, gen_client):
    session.ledger.add_credits(100)
    r = _submit(signed_in_client, fmt="landscape")
    assert r.status_code == 202
    body = r.json()
    assert body["jobId"]
    assert body["reservedCost"] == 50
    assert body["state"] == "scheduled_wait"
    assert gen_client.submitted[0].aspect_ratio.value == "landscape"
    assert signed_in_client.get(f"{PREFIX}/me").json()["isGenerating"] is True
    # Nothing is charged until the video comes back.
    assert session.ledger.credits == 100


def test_submit_rejects_unknown_duration(signed_in_client, session):
    session.ledger.add_credits(100)
    r = _submit(signed_in_client, duration="12")
    assert r.status_code == 400


def test_suspend_and_resume(signed_in_client, session, scheduler):
    session.ledger.add_credits(100)
    _submit(signed_in_client)
    assert signed_in_client.post(f"{PREFIX}/generations/suspend").status_code == 200
    assert scheduler.live == []
    assert signed_in_client.post(f"{PREFIX}/generations/resume").status_code == 200
    assert len(scheduler.live) == 1


def test_catalog(client, settings):
    r = client.get(f"{PREFIX}/billing/catalog")
    assert r.status_code == 200
    products = {p["productType"]: p for p in r.json()["products"]}
    assert set(products) == {"subscription", "pack_small", "pack_medium", "pack_large"}
    assert products["pack_large"]["credits"] == settings.pack_large_credits
    assert products["subscription"]["displayPrice"] == "9.99 EUR"


def test_pack_purchase_requires_subscription(signed_in_client, platform):
    r = signed_in_client.post(f"{PREFIX}/billing/purchase", json={"productType": "pack_small"})
    assert r.status_code == 403
    assert r.json()["detail"]["code"] == "PURCHASE_REJECTED"
    assert platform.purchases == []


def test_pending_purchase(signed_in_client, platform):
    platform.purchase_result = PlatformPurchaseResult(
        status=PlatformPurchaseStatus.PENDING, redirect_url="https://checkout.example.com/s"
    )
    r = signed_in_client.post(f"{PREFIX}/billing/purchase", json={"productType": "subscription"})
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "pending"
    assert body["redirectUrl"] == "https://checkout.example.com/s"


def test_delete_account(signed_in_client, session):
    session.ledger.add_credits(10)
    assert signed_in_client.delete(f"{PREFIX}/session/account").status_code == 204
    assert signed_in_client.get(f"{PREFIX}/me").json()["signedIn"] is False


def test_sign_out(signed_in_client):
    body = signed_in_client.post(f"{PREFIX}/session/sign-out").json()
    assert body["signedIn"] is False


def test_stripe_webhook_not_configured(client, monkeypatch):
    from app import config

    monkeypatch.setattr(config.get_settings(), "stripe_webhook_secret", "")
    r = client.post("/webhooks/stripe", content=b"{}")
    assert r.status_code == 501

from unittest.mock import patch

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from database import get_db
from main import app
from services.session_token import create_session_token


TEST_USER_ID = "billing-user"
TEST_AUTH_HEADER = {"Authorization": f"Bearer {create_session_token(TEST_USER_ID)['token']}"}


@pytest_asyncio.fixture
async def billing_client(session_maker):
    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.pop(get_db, None)


@pytest.mark.asyncio
async def test_new_user_starts_with_empty_balance(billing_client):
    resp = await billing_client.get("/billing/credits", headers=TEST_AUTH_HEADER)

    assert resp.status_code == 200
    payload = resp.json()
    assert payload["credits_total"] == 0
    assert payload["credits_available"] == 0
    assert payload["recent_entries"] == []


@pytest.mark.asyncio
async def test_welcome_bonus_is_granted_on_first_contact(billing_client):
    with patch("config.settings.WELCOME_BONUS_CREDITS", 10):
        resp = await billing_client.get("/billing/credits", headers=TEST_AUTH_HEADER)
        again = await billing_client.get("/billing/credits", headers=TEST_AUTH_HEADER)

    assert resp.json()["credits_available"] == 10
    assert resp.json()["bonus_credits"] == 10
    assert again.json()["credits_available"] == 10
    assert [entry["transaction_type"] for entry in again.json()["recent_entries"]] == ["bonus"]


@pytest.mark.asyncio
async def test_purchase_and_promo_flow(billing_client):
    purchase = await billing_client.post(
        "/billing/purchase",
        json={"package_id": "growth", "promo_code": "LAUNCH25"},
        headers=TEST_AUTH_HEADER,
    )
    assert purchase.status_code == 200
    assert purchase.json()["balance"]["credits_available"] == 245

    repeat = await billing_client.post("/billing/promo", json={"promo_code": "launch25"}, headers=TEST_AUTH_HEADER)
    assert repeat.status_code == 400
    assert "already redeemed" in repeat.json()["detail"]

    bogus = await billing_client.post("/billing/promo", json={"promo_code": "FREE1000"}, headers=TEST_AUTH_HEADER)
    assert bogus.status_code == 400

    unknown = await billing_client.post("/billing/purchase", json={"package_id": "platinum"}, headers=TEST_AUTH_HEADER)
    assert unknown.status_code == 400


@pytest.mark.asyncio
async def test_transactions_and_usage_endpoints(billing_client):
    await billing_client.post("/billing/purchase", json={"package_id": "starter"}, headers=TEST_AUTH_HEADER)
    scan = await billing_client.post(
        "/scan",
        json={"query": "best seo tools", "brand_name": "Acme", "brand_domain": "acme.com"},
        headers=TEST_AUTH_HEADER,
    )
    assert scan.status_code == 200

    history = await billing_client.get("/billing/transactions", headers=TEST_AUTH_HEADER)
    assert history.status_code == 200
    assert sorted(item["transaction_type"] for item in history.json()["items"]) == ["purchase", "usage"]

    usage_only = await billing_client.get("/billing/transactions?transaction_type=usage", headers=TEST_AUTH_HEADER)
    [usage] = usage_only.json()["items"]
    assert usage["amount"] == -5
    assert usage["feature"] == "ai_visibility_scan"

    invalid = await billing_client.get("/billing/transactions?transaction_type=gift", headers=TEST_AUTH_HEADER)
    assert invalid.status_code == 400

    stats = await billing_client.get("/billing/usage", headers=TEST_AUTH_HEADER)
    assert stats.status_code == 200
    assert stats.json()["total_charged"] == 5
    assert stats.json()["total_added"] == 50
    assert stats.json()["net_used_by_feature"] == {"ai_visibility_scan": 5}


@pytest.mark.asyncio
async def test_billing_rejects_cross_user_scope(billing_client):
    resp = await billing_client.get("/billing/credits?user_id=someone-else", headers=TEST_AUTH_HEADER)
    assert resp.status_code == 403

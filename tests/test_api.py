"""
FreightConnect API Tests - HTTP surface over an in-memory database
"""
import pytest
from httpx import ASGITransport, AsyncClient

from auth import create_access_token
from conftest import seed_lead, seed_trip, seed_user
from core.dependencies import get_db
from database import TOKEN_WALLETS
from models import UserRole
from server import app


def auth_headers(actor):
    token = create_access_token({"user_id": actor.id, "role": actor.role.value})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
async def client(db):
    app.dependency_overrides[get_db] = lambda: db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
async def users(db):
    return {
        "admin": await seed_user(db, UserRole.ADMIN, "Admin"),
        "driver": await seed_user(db, UserRole.DRIVER, "Ravi Driver"),
        "customer": await seed_user(db, UserRole.CUSTOMER, "Anu Customer"),
    }


class TestHealthAndAuth:
    """Health check and authentication"""

    async def test_health_endpoint(self, client):
        response = await client.get("/api/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    async def test_missing_token(self, client):
        response = await client.get("/api/trips")
        assert response.status_code == 401
        assert response.json()["error_type"] == "UnauthorizedError"

    async def test_invalid_token(self, client):
        response = await client.get("/api/trips", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401

    async def test_admin_only_route(self, client, users):
        response = await client.post(
            "/api/tokens/bands/lead-tokens",
            json={"fromKm": 0, "toKm": 100, "cost": 20},
            headers=auth_headers(users["driver"])
        )
        assert response.status_code == 403


class TestTokenRoutes:
    """Bands, usage quotes, wallet and plans"""

    async def test_band_lifecycle(self, client, users):
        admin = auth_headers(users["admin"])
        created = await client.post(
            "/api/tokens/bands/lead-tokens", json={"fromKm": 0, "toKm": 100, "cost": 20}, headers=admin
        )
        assert created.status_code == 201
        band_id = created.json()["band"]["id"]

        overlap = await client.post(
            "/api/tokens/bands/lead-tokens", json={"fromKm": 50, "toKm": 150, "cost": 20}, headers=admin
        )
        assert overlap.status_code == 409
        assert overlap.json()["error_type"] == "OverlapError"

        updated = await client.put(f"/api/tokens/bands/lead-tokens/{band_id}", json={"cost": 25}, headers=admin)
        assert updated.json()["band"]["cost"] == 25

        quote = await client.get("/api/tokens/usage/lead", params={"distanceKm": 42}, headers=admin)
        assert quote.status_code == 200
        assert quote.json()["tokensRequired"] == 25

        deleted = await client.delete(f"/api/tokens/bands/lead-tokens/{band_id}", headers=admin)
        assert deleted.status_code == 200
        listed = await client.get("/api/tokens/bands/lead-tokens", headers=admin)
        assert listed.json()["bands"] == []

    async def test_unknown_band_kind(self, client, users):
        response = await client.get("/api/tokens/bands/bogus", headers=auth_headers(users["admin"]))
        assert response.status_code == 422

    async def test_invalid_band_body(self, client, users):
        response = await client.post(
            "/api/tokens/bands/trip-tokens",
            json={"fromKm": 10, "toKm": 5, "cost": 1},
            headers=auth_headers(users["admin"])
        )
        assert response.status_code == 422

    async def test_unpriced_quote(self, client, users):
        response = await client.get(
            "/api/tokens/usage/trip", params={"distanceKm": 10}, headers=auth_headers(users["driver"])
        )
        assert response.status_code == 422
        assert response.json()["error_type"] == "NotPricedError"

    async def test_wallet_credit_debit(self, client, users):
        admin = auth_headers(users["admin"])
        driver = users["driver"]
        body = {"driverId": driver.id, "amount": 40, "reason": "Goodwill"}

        credited = await client.post("/api/tokens/wallet/credit", json=body, headers=admin)
        assert credited.json()["balance"] == 40

        too_much = await client.post("/api/tokens/wallet/debit", json={**body, "amount": 100}, headers=admin)
        assert too_much.status_code == 400
        assert too_much.json()["error_type"] == "InsufficientTokensError"

        balance = await client.get("/api/tokens/wallet/balance", headers=auth_headers(driver))
        assert balance.json()["balance"] == 40

        txns = await client.get("/api/tokens/wallet/transactions", headers=auth_headers(driver))
        assert txns.json()["pagination"]["total"] == 1

    async def test_wallet_adjust_unknown_driver(self, client, users):
        body = {"driverId": "64b7f0f0f0f0f0f0f0f0f0f0", "amount": 10, "reason": "Goodwill"}
        for path in ("/api/tokens/wallet/credit", "/api/tokens/wallet/debit"):
            response = await client.post(path, json=body, headers=auth_headers(users["admin"]))
            assert response.status_code == 404
            assert response.json()["detail"] == "Driver not found"

    async def test_wallet_adjust_rejects_non_driver(self, db, client, users):
        body = {"driverId": users["customer"].id, "amount": 10, "reason": "Goodwill"}
        response = await client.post("/api/tokens/wallet/credit", json=body, headers=auth_headers(users["admin"]))
        assert response.status_code == 422
        assert response.json()["error_type"] == "ValidationError"
        assert await db[TOKEN_WALLETS].count_documents({}) == 0

    async def test_free_token_grant_requires_driver(self, client, users):
        admin = auth_headers(users["admin"])
        await client.post("/api/tokens/free-tokens", json={"tokensOnRegistration": 15}, headers=admin)
        missing = await client.post(
            "/api/tokens/free-tokens/grant", json={"driverId": "64b7f0f0f0f0f0f0f0f0f0f0"}, headers=admin
        )
        assert missing.status_code == 404
        customer = await client.post(
            "/api/tokens/free-tokens/grant", json={"driverId": users["customer"].id}, headers=admin
        )
        assert customer.status_code == 422

    async def test_wallet_adjust_requires_reason(self, client, users):
        response = await client.post(
            "/api/tokens/wallet/credit",
            json={"driverId": users["driver"].id, "amount": 5},
            headers=auth_headers(users["admin"])
        )
        assert response.status_code == 422

    async def test_plan_purchase(self, client, users):
        admin = auth_headers(users["admin"])
        driver = auth_headers(users["driver"])
        created = await client.post(
            "/api/tokens/plans",
            json={"name": "Starter", "tokensAmount": 100, "priceMinor": 49900},
            headers=admin
        )
        assert created.status_code == 201
        plan_id = created.json()["plan"]["id"]

        listed = await client.get("/api/tokens/plans", headers=driver)
        assert len(listed.json()["plans"]) == 1

        purchased = await client.post("/api/tokens/purchase", json={"planId": plan_id}, headers=driver)
        assert purchased.status_code == 200
        assert purchased.json()["walletBalance"] == 100

    async def test_free_tokens(self, client, users):
        admin = auth_headers(users["admin"])
        saved = await client.post(
            "/api/tokens/free-tokens", json={"tokensOnRegistration": 15}, headers=admin
        )
        assert saved.status_code == 200
        granted = await client.post(
            "/api/tokens/free-tokens/grant", json={"driverId": users["driver"].id}, headers=admin
        )
        assert granted.json() == {"credited": True, "balance": 15}

    async def test_invalid_object_id(self, client, users):
        response = await client.post(
            "/api/tokens/purchase", json={"planId": "nope"}, headers=auth_headers(users["driver"])
        )
        assert response.status_code == 400
        assert response.json()["error_type"] == "InvalidId"


class TestListingRoutes:
    """Trip and lead listings"""

    async def test_trip_listing(self, db, client, users):
        for _ in range(3):
            await seed_trip(db, users["driver"])
        await seed_trip(db, users["driver"], isActive=False)

        response = await client.get("/api/trips", params={"limit": 2}, headers=auth_headers(users["customer"]))
        assert response.status_code == 200
        data = response.json()
        assert len(data["items"]) == 2
        assert data["pagination"] == {
            "page": 1, "limit": 2, "total": 3, "totalPages": 2, "hasNext": True, "hasPrev": False
        }
        assert data["searchMode"] == "single_point"

    async def test_trip_listing_bad_location(self, client, users):
        response = await client.get(
            "/api/trips", params={"pickupLocation": "north"}, headers=auth_headers(users["customer"])
        )
        assert response.status_code == 422
        assert response.json()["error_type"] == "ValidationError"

    async def test_customers_see_own_leads(self, db, client, users):
        other = await seed_user(db, UserRole.CUSTOMER)
        await seed_lead(db, users["customer"])
        await seed_lead(db, other)

        own = await client.get("/api/leads", headers=auth_headers(users["customer"]))
        assert own.json()["pagination"]["total"] == 1
        everyone = await client.get("/api/leads", headers=auth_headers(users["driver"]))
        assert everyone.json()["pagination"]["total"] == 2

    @pytest.mark.parametrize("path,params", [
        ("/api/trips", {"searchRadius": "0"}),
        ("/api/trips", {"searchRadius": "-250"}),
        ("/api/trips", {"radius": "abc"}),
        ("/api/leads", {"radius": "abc"}),
        ("/api/leads", {"searchRadius": "0"}),
    ])
    async def test_unusable_radius_falls_back_to_default(self, db, client, users, path, params):
        await seed_trip(db, users["driver"])
        await seed_lead(db, users["customer"])

        response = await client.get(path, params=params, headers=auth_headers(users["driver"]))
        assert response.status_code == 200
        assert response.json()["pagination"]["total"] == 1


class TestConnectRequestRoutes:
    """Connect request round trip"""

    async def test_round_trip(self, db, client, users):
        admin = auth_headers(users["admin"])
        driver = auth_headers(users["driver"])
        customer = auth_headers(users["customer"])
        lead_id = await seed_lead(db, users["customer"])
        trip_id = await seed_trip(db, users["driver"])

        await client.post("/api/tokens/bands/lead-tokens", json={"fromKm": 0, "toKm": 500, "cost": 50}, headers=admin)
        await client.post(
            "/api/tokens/wallet/credit",
            json={"driverId": users["driver"].id, "amount": 50, "reason": "Top up"},
            headers=admin
        )

        created = await client.post("/api/connect-requests", json={
            "recipientId": users["customer"].id,
            "customerRequestId": lead_id,
            "tripId": trip_id,
            "message": "Can take your load"
        }, headers=driver)
        assert created.status_code == 201
        request_id = created.json()["connectRequest"]["id"]

        duplicate = await client.post("/api/connect-requests", json={
            "recipientId": users["customer"].id, "customerRequestId": lead_id, "tripId": trip_id
        }, headers=driver)
        assert duplicate.status_code == 409

        hidden = await client.get(f"/api/connect-requests/{request_id}/disclosure", headers=driver)
        assert hidden.json() == {"show": False, "contact": None}

        accepted = await client.put(
            f"/api/connect-requests/{request_id}/respond", json={"action": "accept"}, headers=customer
        )
        assert accepted.status_code == 200
        assert accepted.json()["connectRequest"]["status"] == "accepted"

        confirmed = await client.put(f"/api/connect-requests/{request_id}/accept", headers=driver)
        assert confirmed.json()["connectRequest"]["contactDetailsShared"] is True

        shown = await client.get(f"/api/connect-requests/{request_id}/disclosure", headers=driver)
        assert shown.json()["show"] is True
        assert shown.json()["contact"]["name"] == "Anu Customer"
        assert "whatsappNumber" in shown.json()["contact"]

        balance = await client.get("/api/tokens/wallet/balance", headers=driver)
        assert balance.json()["balance"] == 0

        received = await client.get("/api/connect-requests", params={"type": "received"}, headers=customer)
        assert received.json()["pagination"]["total"] == 1

        verification = await client.get(f"/api/connect-requests/{request_id}/verification", headers=customer)
        assert verification.json()["compatibility"]["overall"] is True

    async def test_customer_pair_rejected(self, db, client, users):
        other = await seed_user(db, UserRole.CUSTOMER)
        lead_id = await seed_lead(db, users["customer"])
        trip_id = await seed_trip(db, users["driver"])
        response = await client.post("/api/connect-requests", json={
            "recipientId": other.id, "customerRequestId": lead_id, "tripId": trip_id
        }, headers=auth_headers(users["customer"]))
        assert response.status_code == 422

    async def test_not_found(self, client, users):
        response = await client.get(
            "/api/connect-requests/64b7f0f0f0f0f0f0f0f0f0f0", headers=auth_headers(users["driver"])
        )
        assert response.status_code == 404

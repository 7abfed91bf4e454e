"""
Integration tests for the REST API endpoints.

The app runs against the shared in-memory SQLite schema.  ``get_db`` and
``get_booking_service`` are overridden so every request gets its own
committed session and the frozen test clock.  The expiry worker is
patched out and rate limiting is disabled.
"""

from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio
from fastapi import Depends
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.app import create_app
from src.api.dependencies import get_booking_service, get_db
from src.api.middleware import limiter
from src.services.booking import BookingService

SCHEDULED = "2026-03-05T15:00:00Z"


@pytest_asyncio.fixture
async def client(session_factory, clock, users):
    async def _get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def _get_service(db: AsyncSession = Depends(get_db)) -> BookingService:
        return BookingService(db, clock=clock)

    with patch("src.workers.expiry.start_expiry_loop", new=AsyncMock()), patch(
        "src.workers.expiry.stop_expiry_loop", new=AsyncMock()
    ):
        app = create_app()
        app.dependency_overrides[get_db] = _get_db
        app.dependency_overrides[get_booking_service] = _get_service
        limiter.enabled = False
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            yield ac
        limiter.enabled = True


def ride_payload(users, **overrides) -> dict:
    payload = {
        "rider_id": users.rider.id,
        "pickup_location": "80 Jesse Hill Jr Dr SE, Atlanta, GA",
        "dropoff_location": "1364 Clifton Rd, Atlanta, GA",
        "pickup": {"latitude": 33.7522, "longitude": -84.3816},
        "dropoff": {"latitude": 33.7925, "longitude": -84.3226},
        "scheduled_time": SCHEDULED,
        "vehicle_type": "standard",
        "rider_bid": 60,
    }
    payload.update(overrides)
    return payload


async def create_ride(client, users, **overrides) -> dict:
    resp = await client.post("/api/v1/rides", json=ride_payload(users, **overrides))
    assert resp.status_code == 201, resp.text
    return resp.json()


async def place_bid(client, ride_id, driver_id, amount) -> dict:
    resp = await client.post(
        "/api/v1/bids",
        json={"ride_id": ride_id, "driver_id": driver_id, "amount": amount},
    )
    assert resp.status_code == 201, resp.text
    return resp.json()["bid"]


class TestHealth:
    @pytest.mark.asyncio
    async def test_health(self, client):
        resp = await client.get("/api/v1/admin/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}


class TestFareQuote:
    @pytest.mark.asyncio
    async def test_itemised_quote(self, client):
        resp = await client.post(
            "/api/v1/fares/quote",
            json={
                "vehicle_type": "wheelchair",
                "pickup_stairs": "4-10",
                "needs_ramp": True,
                "route": {"distance": "5.2 mi", "duration": "22 mins"},
            },
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["suggested_price"] == 125.87
        assert data["breakdown"]["subtotal"] == 111.0
        assert data["warnings"] == []

    @pytest.mark.asyncio
    async def test_unparsable_route_is_a_warning(self, client):
        resp = await client.post(
            "/api/v1/fares/quote",
            json={"route": {"distance": "far", "duration": "a while"}},
        )
        assert resp.status_code == 200
        assert resp.json()["suggested_price"] == 56.7
        assert len(resp.json()["warnings"]) == 2

    @pytest.mark.asyncio
    async def test_unknown_vehicle_type(self, client):
        resp = await client.post("/api/v1/fares/quote", json={"vehicle_type": "helicopter"})
        assert resp.status_code == 422


class TestRides:
    @pytest.mark.asyncio
    async def test_create_ride(self, client, users):
        data = await create_ride(client, users)
        assert data["status"] == "requested"
        assert data["suggested_price"] == 56.7
        assert data["reference_number"].startswith("RIDE-")
        assert data["is_urgent"] is False
        assert data["warnings"] == []

    @pytest.mark.asyncio
    async def test_idempotent_replay(self, client, users):
        first = await create_ride(client, users, idempotency_key="retry-me")
        replay = await client.post(
            "/api/v1/rides", json=ride_payload(users, idempotency_key="retry-me")
        )
        assert replay.status_code == 200
        assert replay.json()["id"] == first["id"]

        listed = await client.get("/api/v1/rides", params={"rider_id": users.rider.id})
        assert [r["id"] for r in listed.json()] == [first["id"]]

    @pytest.mark.asyncio
    async def test_sentinel_coordinates_rejected(self, client, users):
        resp = await client.post(
            "/api/v1/rides",
            json=ride_payload(users, dropoff={"latitude": 0, "longitude": 0}),
        )
        assert resp.status_code == 422
        assert resp.json()["code"] == "validation_error"
        assert resp.json()["detail"].startswith("Destination")

    @pytest.mark.asyncio
    async def test_unknown_rider(self, client, users):
        resp = await client.post("/api/v1/rides", json=ride_payload(users, rider_id=9999))
        assert resp.status_code == 404
        assert resp.json()["code"] == "not_found"

    @pytest.mark.asyncio
    async def test_invalid_promo_warns(self, client, users):
        data = await create_ride(client, users, promo_code="NOSUCH")
        assert data["promo_code"] is None
        assert data["warnings"] == ["Promo code not applied: Invalid promo code"]

    @pytest.mark.asyncio
    async def test_get_missing_ride(self, client):
        resp = await client.get("/api/v1/rides/12345")
        assert resp.status_code == 404


class TestNegotiationFlow:
    @pytest.mark.asyncio
    async def test_bid_counter_accept(self, client, users):
        ride = await create_ride(client, users)
        bid = await place_bid(client, ride["id"], users.driver.id, 55)
        other = await place_bid(client, ride["id"], users.other_driver.id, 58)

        resp = await client.post(
            f"/api/v1/bids/{bid['id']}/counter",
            json={
                "amount": 50,
                "by_party": "rider",
                "actor_id": users.rider.id,
                "message": "Can you do 50?",
            },
        )
        assert resp.status_code == 200
        assert resp.json()["bid"]["status"] == "countered"
        assert resp.json()["bid"]["bid_count"] == 1

        board = (await client.get(f"/api/v1/bids/ride/{ride['id']}")).json()
        assert board["ride"]["status"] == "bidding"
        assert board["best_offer"]["id"] == other["id"]
        assert board["bounds"]["low"] == pytest.approx(39.69)
        assert board["bounds"]["high"] == pytest.approx(73.71)

        resp = await client.post(
            f"/api/v1/bids/{bid['id']}/accept", json={"rider_id": users.rider.id}
        )
        assert resp.status_code == 409

        resp = await client.post(
            f"/api/v1/bids/{bid['id']}/driver-accept", json={"driver_id": users.driver.id}
        )
        assert resp.status_code == 200
        accepted = resp.json()
        assert accepted["ride"]["status"] == "scheduled"
        assert accepted["ride"]["final_price"] == 50
        assert accepted["ride"]["driver_id"] == users.driver.id

        resp = await client.post(f"/api/v1/bids/{other['id']}/accept")
        assert resp.status_code == 409
        assert resp.json()["code"] == "state_conflict"

        history = (await client.get(f"/api/v1/bids/{bid['id']}/history")).json()
        assert [(h["party"], h["amount"], h["message"]) for h in history] == [
            ("rider", 50, "Can you do 50?")
        ]

    @pytest.mark.asyncio
    async def test_accept_retry_returns_current_state(self, client, users):
        ride = await create_ride(client, users)
        bid = await place_bid(client, ride["id"], users.driver.id, 55)
        url = f"/api/v1/bids/{bid['id']}/accept"

        first = await client.post(url, json={"rider_id": users.rider.id})
        retry = await client.post(url, json={"rider_id": users.rider.id})

        assert first.status_code == retry.status_code == 200
        assert retry.json()["bid"]["status"] == "accepted"
        assert retry.json()["ride"]["status"] == "scheduled"
        assert retry.json()["ride"]["final_price"] == first.json()["ride"]["final_price"] == 55

    @pytest.mark.asyncio
    async def test_withdraw_and_bid_again(self, client, users):
        ride = await create_ride(client, users)
        bid = await place_bid(client, ride["id"], users.driver.id, 55)
        url = f"/api/v1/bids/{bid['id']}"

        resp = await client.request("DELETE", url, json={"driver_id": users.other_driver.id})
        assert resp.status_code == 403

        resp = await client.request("DELETE", url, json={"driver_id": users.driver.id})
        assert resp.status_code == 200
        assert resp.json()["bid"]["status"] == "withdrawn"

        resp = await client.request("DELETE", url, json={"driver_id": users.driver.id})
        assert resp.status_code == 409
        assert resp.json()["detail"] == "Cannot withdraw bid with status: withdrawn"

        again = await place_bid(client, ride["id"], users.driver.id, 52)
        assert again["status"] == "pending"

    @pytest.mark.asyncio
    async def test_unverified_driver_forbidden(self, client, users):
        ride = await create_ride(client, users)
        resp = await client.post(
            "/api/v1/bids",
            json={"ride_id": ride["id"], "driver_id": users.unverified_driver.id, "amount": 55},
        )
        assert resp.status_code == 403
        assert resp.json()["code"] == "forbidden"

    @pytest.mark.asyncio
    async def test_out_of_band_bid(self, client, users):
        ride = await create_ride(client, users)
        resp = await client.post(
            "/api/v1/bids",
            json={"ride_id": ride["id"], "driver_id": users.driver.id, "amount": 100},
        )
        assert resp.status_code == 422
        assert "between $39.69 and $73.71" in resp.json()["detail"]

    @pytest.mark.asyncio
    async def test_counter_limit(self, client, users):
        ride = await create_ride(client, users)
        bid = await place_bid(client, ride["id"], users.driver.id, 55)
        url = f"/api/v1/bids/{bid['id']}/counter"
        for amount, party in ((50, "rider"), (54, "driver"), (52, "rider")):
            resp = await client.post(url, json={"amount": amount, "by_party": party})
            assert resp.status_code == 200

        resp = await client.post(url, json={"amount": 53, "by_party": "driver"})
        assert resp.status_code == 409
        assert resp.json() == {"detail": "Maximum 3 bids reached", "code": "capacity_exceeded"}


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_with_reason(self, client, users):
        ride = await create_ride(client, users)
        await place_bid(client, ride["id"], users.driver.id, 55)

        resp = await client.request(
            "DELETE",
            f"/api/v1/rides/{ride['id']}",
            json={"reason": "Appointment cancelled", "rider_id": users.rider.id},
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["ride"]["status"] == "cancelled"
        assert data["ride"]["cancellation_reason"] == "Appointment cancelled"
        assert data["quote"]["fee"] == 0

        board = (await client.get(f"/api/v1/bids/ride/{ride['id']}")).json()
        assert [b["status"] for b in board["bids"]] == ["rejected"]

    @pytest.mark.asyncio
    async def test_cancel_twice(self, client, users):
        ride = await create_ride(client, users)
        assert (await client.delete(f"/api/v1/rides/{ride['id']}")).status_code == 200
        resp = await client.delete(f"/api/v1/rides/{ride['id']}")
        assert resp.status_code == 200
        assert resp.json()["quote"] is None

    @pytest.mark.asyncio
    async def test_fee_preview_after_scheduling(self, client, users, clock):
        ride = await create_ride(client, users)
        bid = await place_bid(client, ride["id"], users.driver.id, 60)
        await client.post(f"/api/v1/bids/{bid['id']}/accept")

        clock.advance(days=3, hours=-1)
        resp = await client.get(f"/api/v1/rides/{ride['id']}/cancellation-quote")
        assert resp.status_code == 200
        assert resp.json()["tier"] == "full"
        assert resp.json()["fee"] == 60


class TestPaymentAndStatus:
    @pytest.mark.asyncio
    async def test_payment_and_progress(self, client, users):
        ride = await create_ride(client, users)
        bid = await place_bid(client, ride["id"], users.driver.id, 50)
        await client.post(f"/api/v1/bids/{bid['id']}/accept")
        base = f"/api/v1/rides/{ride['id']}"

        resp = await client.patch(f"{base}/status", json={"status": "en_route"})
        assert resp.status_code == 409
        assert resp.json()["code"] == "invalid_transition"

        resp = await client.post(f"{base}/payment")
        assert resp.status_code == 200
        assert resp.json()["charge"]["amount"] == 50

        resp = await client.post(
            f"{base}/payment/callback", json={"succeeded": False, "failure_reason": "Declined"}
        )
        assert resp.json()["status"] == "payment_pending"

        resp = await client.post(f"{base}/payment/callback", json={"succeeded": True})
        assert resp.json()["status"] == "paid"

        resp = await client.patch(
            f"{base}/status", json={"status": "en_route", "driver_id": users.other_driver.id}
        )
        assert resp.status_code == 403

        for status in ("en_route", "en_route", "arrived", "in_progress", "completed"):
            resp = await client.patch(
                f"{base}/status", json={"status": status, "driver_id": users.driver.id}
            )
            assert resp.status_code == 200
            assert resp.json()["status"] == status


class TestPromoCodes:
    @pytest.mark.asyncio
    async def test_create_validate_and_apply(self, client, users):
        resp = await client.post(
            "/api/v1/admin/promo-codes",
            json={"code": "care15", "discount_type": "fixed_amount", "discount_value": 15},
        )
        assert resp.status_code == 201
        assert resp.json()["code"] == "CARE15"

        dup = await client.post(
            "/api/v1/admin/promo-codes",
            json={"code": "CARE15", "discount_type": "percentage", "discount_value": 5},
        )
        assert dup.status_code == 409

        resp = await client.post(
            "/api/v1/promo-codes/validate", json={"code": "Care15", "amount": 80}
        )
        assert resp.json()["valid"] is True
        assert resp.json()["final_amount"] == 65

        ride = await create_ride(client, users)
        bid = await place_bid(client, ride["id"], users.driver.id, 55)
        await client.post(f"/api/v1/bids/{bid['id']}/accept")
        resp = await client.post(f"/api/v1/rides/{ride['id']}/promo", json={"code": "CARE15"})
        assert resp.status_code == 200
        assert resp.json()["ride"]["discounted_price"] == 40

    @pytest.mark.asyncio
    async def test_unknown_code_is_not_an_error(self, client):
        resp = await client.post(
            "/api/v1/promo-codes/validate", json={"code": "NOPE", "amount": 80}
        )
        assert resp.status_code == 200
        assert resp.json()["valid"] is False


class TestEdits:
    @pytest.mark.asyncio
    async def test_edit_round_trip(self, client, users):
        ride = await create_ride(client, users)
        base = f"/api/v1/rides/{ride['id']}"

        resp = await client.post(f"{base}/edit", json={"dropoff_location": "550 Peachtree St NE"})
        assert resp.status_code == 200
        assert resp.json()["status"] == "edit_pending"
        assert resp.json()["pending_edit"] == {"dropoff_location": "550 Peachtree St NE"}

        resp = await client.post(f"{base}/edit", json={"dropoff_location": "Somewhere else"})
        assert resp.status_code == 409

        resp = await client.post(f"{base}/edit/resolve", json={"approved": True})
        assert resp.json()["status"] == "bidding"
        assert resp.json()["dropoff_location"] == "550 Peachtree St NE"


class TestAdminExpiry:
    @pytest.mark.asyncio
    async def test_manual_sweep(self, client, users, clock):
        urgent = await create_ride(client, users, scheduled_time="2026-03-02T20:00:00Z")
        assert urgent["is_urgent"] is True
        await create_ride(client, users)

        assert (await client.get("/api/v1/admin/expired-rides")).json() == []

        clock.advance(hours=24)
        overdue = (await client.get("/api/v1/admin/expired-rides")).json()
        assert [r["id"] for r in overdue] == [urgent["id"]]

        resp = await client.post("/api/v1/admin/expire-rides")
        assert resp.status_code == 200
        assert resp.json()["expired"] == 1
        assert resp.json()["rides"][0]["status"] == "cancelled"

        ride = (await client.get(f"/api/v1/rides/{urgent['id']}")).json()
        assert ride["status"] == "cancelled"
        assert ride["cancellation_fee"] == 0

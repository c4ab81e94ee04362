"""Tests for the REST API surface: routing, actor headers and error mapping."""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import httpx
import pytest
import pytest_asyncio

from staffing_broker.domain.collaborators import EntityRef
from staffing_broker.domain.enums import EntityKind
from staffing_broker.infrastructure.database.orm_models import WorkerReservation
from staffing_broker.main import create_app

from conftest import CUSTOMER, OTHER_CUSTOMER

STAFF_HEADERS = {"X-Actor-Id": "ops-1", "X-Actor-Roles": "operations"}
CUSTOMER_HEADERS = {"X-Actor-Id": CUSTOMER}
OTHER_HEADERS = {"X-Actor-Id": OTHER_CUSTOMER}


@pytest_asyncio.fixture
async def client(settings, runner, clock):
    app = create_app(settings, runner=runner, clock=clock)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


def _window(clock) -> dict:
    today = clock.now().date()
    return {
        "start_date": (today + timedelta(days=1)).isoformat(),
        "end_date": (today + timedelta(days=366)).isoformat(),
    }


async def _register(client: httpx.AsyncClient, number: str = "W-API-0001") -> dict:
    response = await client.post(
        "/api/v1/workers",
        json={"worker_number": number, "name": "Api Worker", "nationality_code": "PH"},
        headers=STAFF_HEADERS,
    )
    assert response.status_code == 201, response.text
    return response.json()


class TestHealthAndHeaders:
    @pytest.mark.asyncio
    async def test_health_reports_database(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["database"] == "healthy"
        assert body["redis"] == "disabled"

    @pytest.mark.asyncio
    async def test_request_id_is_echoed(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/health", headers={"X-Request-ID": "req-42"})
        assert response.headers["X-Request-ID"] == "req-42"

    @pytest.mark.asyncio
    async def test_request_id_generated_when_missing(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/health")
        assert response.headers.get("X-Request-ID")

    @pytest.mark.asyncio
    async def test_missing_actor_is_rejected(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/api/v1/reservations")
        assert response.status_code == 403
        assert response.json()["error"] == "UNAUTHORIZED"

    @pytest.mark.asyncio
    async def test_customer_cannot_register_workers(self, client: httpx.AsyncClient) -> None:
        response = await client.post(
            "/api/v1/workers",
            json={"worker_number": "W-NOPE", "name": "Nope"},
            headers=CUSTOMER_HEADERS,
        )
        assert response.status_code == 403
        assert response.json()["error"] == "UNAUTHORIZED"


class TestWorkerRoutes:
    @pytest.mark.asyncio
    async def test_register_and_fetch(self, client: httpx.AsyncClient) -> None:
        created = await _register(client)
        assert created["status"] == "Ready"
        assert created["onboarding_stage"] == "MedicalCheck"

        response = await client.get(f"/api/v1/workers/{created['id']}")
        assert response.status_code == 200
        assert response.json()["worker_number"] == "W-API-0001"

    @pytest.mark.asyncio
    async def test_duplicate_number_conflicts(self, client: httpx.AsyncClient) -> None:
        await _register(client)
        response = await client.post(
            "/api/v1/workers",
            json={"worker_number": "W-API-0001", "name": "Again"},
            headers=STAFF_HEADERS,
        )
        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_unknown_worker_is_404(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/api/v1/workers/00000000-0000-0000-0000-000000000000")
        assert response.status_code == 404
        body = response.json()
        assert body["error"] == "NOT_FOUND"
        assert body["message"]

    @pytest.mark.asyncio
    async def test_list_filters_by_status(self, client: httpx.AsyncClient) -> None:
        await _register(client, "W-API-0001")
        await _register(client, "W-API-0002")

        response = await client.get("/api/v1/workers", params={"status": "Ready"})
        assert response.status_code == 200
        assert [w["worker_number"] for w in response.json()] == ["W-API-0001", "W-API-0002"]

        response = await client.get("/api/v1/workers", params={"status": "Blocked"})
        assert response.json() == []

    @pytest.mark.asyncio
    async def test_release_refused_while_reserved(self, client: httpx.AsyncClient, clock) -> None:
        worker = await _register(client)
        reserved = await client.post(
            "/api/v1/reservations",
            json={"worker_id": worker["id"], **_window(clock)},
            headers=CUSTOMER_HEADERS,
        )
        assert reserved.status_code == 201

        response = await client.post(
            f"/api/v1/workers/{worker['id']}/release",
            json={"reason": "stale"},
            headers=STAFF_HEADERS,
        )
        assert response.status_code == 409
        assert response.json()["error"] == "NOT_PROCESSABLE"

        worker_now = await client.get(f"/api/v1/workers/{worker['id']}")
        assert worker_now.json()["status"] == "ReservedAwaitingContract"


class TestReservationRoutes:
    @pytest.mark.asyncio
    async def test_second_customer_gets_not_available(self, client: httpx.AsyncClient, clock) -> None:
        worker = await _register(client)
        first = await client.post(
            "/api/v1/reservations",
            json={"worker_id": worker["id"], **_window(clock)},
            headers=CUSTOMER_HEADERS,
        )
        assert first.status_code == 201
        assert first.json()["state"] == "AwaitingContract"

        second = await client.post(
            "/api/v1/reservations",
            json={"worker_id": worker["id"], **_window(clock)},
            headers=OTHER_HEADERS,
        )
        assert second.status_code == 409
        assert second.json()["error"] == "NOT_AVAILABLE"

    @pytest.mark.asyncio
    async def test_only_back_office_processes(self, client: httpx.AsyncClient, clock) -> None:
        worker = await _register(client)
        reservation = (
            await client.post(
                "/api/v1/reservations",
                json={"worker_id": worker["id"], **_window(clock)},
                headers=CUSTOMER_HEADERS,
            )
        ).json()

        response = await client.post(
            f"/api/v1/reservations/{reservation['id']}/process",
            json={"action": "approve"},
            headers=CUSTOMER_HEADERS,
        )
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_lapsed_reservation_is_gone(self, client: httpx.AsyncClient, clock) -> None:
        worker = await _register(client)
        reservation = (
            await client.post(
                "/api/v1/reservations",
                json={"worker_id": worker["id"], **_window(clock)},
                headers=CUSTOMER_HEADERS,
            )
        ).json()

        clock.advance(minutes=11)
        response = await client.post(
            f"/api/v1/reservations/{reservation['id']}/process",
            json={"action": "approve"},
            headers=STAFF_HEADERS,
        )
        assert response.status_code == 410
        assert response.json()["error"] == "EXPIRED"

        fetched = await client.get(
            f"/api/v1/reservations/{reservation['id']}", headers=CUSTOMER_HEADERS
        )
        assert fetched.json()["state"] == "Expired"
        worker_now = await client.get(f"/api/v1/workers/{worker['id']}")
        assert worker_now.json()["status"] == "Ready"

    @pytest.mark.asyncio
    async def test_invalid_extension_is_422(self, client: httpx.AsyncClient, clock) -> None:
        worker = await _register(client)
        reservation = (
            await client.post(
                "/api/v1/reservations",
                json={"worker_id": worker["id"], **_window(clock)},
                headers=CUSTOMER_HEADERS,
            )
        ).json()

        response = await client.post(
            f"/api/v1/reservations/{reservation['id']}/process",
            json={"action": "extend", "extension_minutes": 5},
            headers=STAFF_HEADERS,
        )
        assert response.status_code == 422
        assert response.json()["error"] == "VALIDATION_ERROR"


class TestOtpPaymentFlow:
    @pytest.mark.asyncio
    async def test_reserve_to_active_contract(
        self, client: httpx.AsyncClient, clock, otp_sender, factory
    ) -> None:
        worker = await _register(client)

        reservation = await client.post(
            "/api/v1/reservations",
            json={"worker_id": worker["id"], **_window(clock)},
            headers=CUSTOMER_HEADERS,
        )
        assert reservation.status_code == 201
        reservation_id = reservation.json()["id"]

        approved = await client.post(
            f"/api/v1/reservations/{reservation_id}/process",
            json={"action": "approve", "notes": "documents checked"},
            headers=STAFF_HEADERS,
        )
        assert approved.status_code == 200
        assert approved.json()["state"] == "AwaitingPayment"
        assert approved.json()["processed_by"] == "ops-1"

        contract = await client.post(
            "/api/v1/contracts",
            json={
                "reservation_id": reservation_id,
                "original_amount": "1200.00",
                "discount_amount": "200.00",
                "terms_accepted": True,
                "payment_on_signing": True,
            },
            headers=CUSTOMER_HEADERS,
        )
        assert contract.status_code == 201, contract.text
        contract_body = contract.json()
        assert contract_body["status"] == "AwaitingPayment"
        assert Decimal(contract_body["total_amount"]) == Decimal("1000.00")
        contract_id = contract_body["id"]

        invoice = await client.get(
            f"/api/v1/contracts/{contract_id}/invoice", headers=CUSTOMER_HEADERS
        )
        assert invoice.json()["status"] == "Unpaid"

        session = await client.post(
            "/api/v1/payment-sessions",
            json={"contract_id": contract_id, "phone": "+966500000000"},
            headers=CUSTOMER_HEADERS,
        )
        assert session.status_code == 201
        session_id = session.json()["id"]
        assert "otp_hash" not in session.json()
        assert len(otp_sender.deliveries) == 1

        code = otp_sender.last_code
        wrong = "000000" if code != "000000" else "111111"
        rejected = await client.post(
            f"/api/v1/payment-sessions/{session_id}/verify",
            json={"code": wrong},
            headers=CUSTOMER_HEADERS,
        )
        assert rejected.status_code == 400
        assert rejected.json()["error"] == "INVALID_CODE"
        assert rejected.json()["details"] == {"attempts_remaining": 4}

        status = await client.get(
            f"/api/v1/payment-sessions/{session_id}", headers=CUSTOMER_HEADERS
        )
        assert status.json()["attempts_remaining"] == 4
        assert status.json()["status"] == "pending"

        verified = await client.post(
            f"/api/v1/payment-sessions/{session_id}/verify",
            json={"code": code},
            headers=CUSTOMER_HEADERS,
        )
        assert verified.status_code == 200
        assert verified.json()["status"] == "completed"

        active = await client.get(f"/api/v1/contracts/{contract_id}", headers=CUSTOMER_HEADERS)
        assert active.json()["status"] == "Active"
        worker_now = await client.get(f"/api/v1/workers/{worker['id']}")
        assert worker_now.json()["status"] == "AssignedToContract"
        assert worker_now.json()["current_contract_id"] == contract_id

        payments = await client.get(
            f"/api/v1/contracts/{contract_id}/payments", headers=CUSTOMER_HEADERS
        )
        assert [p["status"] for p in payments.json()] == ["completed"]

        audit = await client.get(
            f"/api/v1/admin/audit/contract/{contract_id}", headers=STAFF_HEADERS
        )
        assert audit.status_code == 200
        assert "Active" in [e["new_status"] for e in audit.json()]

    @pytest.mark.asyncio
    async def test_other_customer_cannot_pay(self, client: httpx.AsyncClient, factory) -> None:
        contract = await factory.contract(CUSTOMER)
        response = await client.post(
            "/api/v1/payment-sessions",
            json={"contract_id": str(contract.id), "phone": "+966500000000"},
            headers=OTHER_HEADERS,
        )
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_malformed_code_fails_validation(self, client: httpx.AsyncClient, factory) -> None:
        contract = await factory.contract(CUSTOMER)
        session = await client.post(
            "/api/v1/payment-sessions",
            json={"contract_id": str(contract.id), "phone": "+966500000000"},
            headers=CUSTOMER_HEADERS,
        )
        response = await client.post(
            f"/api/v1/payment-sessions/{session.json()['id']}/verify",
            json={"code": "12ab"},
            headers=CUSTOMER_HEADERS,
        )
        assert response.status_code == 422


class TestReadOwnership:
    @pytest.mark.asyncio
    async def test_reservation_read_is_owner_scoped(
        self, client: httpx.AsyncClient, factory
    ) -> None:
        reservation = await factory.reservation(customer_id=CUSTOMER)
        url = f"/api/v1/reservations/{reservation.id}"

        assert (await client.get(url, headers=OTHER_HEADERS)).status_code == 403
        assert (await client.get(url, headers=CUSTOMER_HEADERS)).status_code == 200
        assert (await client.get(url, headers=STAFF_HEADERS)).status_code == 200

    @pytest.mark.asyncio
    async def test_foreign_read_leaves_lapsed_reservation_alone(
        self, client: httpx.AsyncClient, factory, clock
    ) -> None:
        reservation = await factory.reservation(customer_id=CUSTOMER)
        clock.advance(minutes=11)
        url = f"/api/v1/reservations/{reservation.id}"

        response = await client.get(url, headers=OTHER_HEADERS)
        assert response.status_code == 403
        stored = await factory.reload(WorkerReservation, reservation.id)
        assert stored.state == "AwaitingContract"

        owned = await client.get(url, headers=CUSTOMER_HEADERS)
        assert owned.json()["state"] == "Expired"

    @pytest.mark.asyncio
    async def test_contract_reads_are_owner_scoped(
        self, client: httpx.AsyncClient, factory
    ) -> None:
        contract = await factory.contract(CUSTOMER)
        for suffix in ("", "/invoice", "/payments"):
            url = f"/api/v1/contracts/{contract.id}{suffix}"
            assert (await client.get(url, headers=OTHER_HEADERS)).status_code == 403, url
            assert (await client.get(url, headers=STAFF_HEADERS)).status_code == 200, url

    @pytest.mark.asyncio
    async def test_payment_session_status_is_owner_scoped(
        self, client: httpx.AsyncClient, factory
    ) -> None:
        contract = await factory.contract(CUSTOMER)
        session = await client.post(
            "/api/v1/payment-sessions",
            json={"contract_id": str(contract.id), "phone": "+966500000000"},
            headers=CUSTOMER_HEADERS,
        )
        url = f"/api/v1/payment-sessions/{session.json()['id']}"

        response = await client.get(url, headers=OTHER_HEADERS)
        assert response.status_code == 403
        assert response.json()["error"] == "UNAUTHORIZED"
        assert (await client.get(url, headers=STAFF_HEADERS)).status_code == 200


class TestAdminRoutes:
    @pytest.mark.asyncio
    async def test_sweep_requires_back_office(self, client: httpx.AsyncClient) -> None:
        response = await client.post("/api/v1/admin/sweeps", headers=CUSTOMER_HEADERS)
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_sweep_expires_lapsed_reservation(
        self, client: httpx.AsyncClient, clock, factory
    ) -> None:
        reservation = await factory.reservation()
        clock.advance(minutes=30)

        response = await client.post("/api/v1/admin/sweeps", headers=STAFF_HEADERS)
        assert response.status_code == 200
        body = response.json()
        assert body["reservations_expired"] == 1
        assert body["total"] == 1

        events = await factory.events(EntityRef(EntityKind.RESERVATION, reservation.id))
        assert "Expired" in [e.new_status for e in events]

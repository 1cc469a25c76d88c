"""
Tests for the signal API endpoints.

The application is built around an engine wired with in-memory SQLite and
fake collaborators, then driven through FastAPI's TestClient (which runs
the lifespan).
"""

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from signal_engine.core.config import Settings
from signal_engine.interfaces.signals.dependencies import build_engine
from signal_engine.main import create_app
from signal_engine.shared.security.rate_limiting import limiter
from tests.conftest import FakeSource, proposal


@pytest.fixture
def source() -> FakeSource:
    return FakeSource(
        [
            proposal("X", quantity=10, price="500", confidence=80),
            proposal("Y", quantity=10, price="600", confidence=90),
        ]
    )


@pytest.fixture
def client(db_engine, channel, gateway, source, clock, portfolio):
    settings = Settings(
        _env_file=None,
        scheduler_enabled=False,
        notify_pacing_seconds=0,
        reconcile_pacing_seconds=0,
        generation_pacing_seconds=0,
    )
    engine = build_engine(
        settings,
        db_engine=db_engine,
        channel=channel,
        gateway=gateway,
        source=source,
        clock=clock,
    )
    limiter.reset()
    with TestClient(create_app(engine)) as test_client:
        yield test_client


class TestHealthEndpoint:
    def test_health(self, client):
        response = client.get("/api/v1/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["database"] == "ok"
        assert body["scheduler"]["running"] is False
        assert body["scheduler"]["jobs"] == []


class TestSignalEndpoints:
    def test_generate_then_list(self, client):
        response = client.post("/api/v1/signals/generate", json={"portfolio_id": 1})

        assert response.status_code == 200
        body = response.json()
        assert [(s["symbol"], s["quantity"]) for s in body["created"]] == [("Y", 10), ("X", 8)]

        listed = client.get("/api/v1/signals", params={"portfolio_id": 1}).json()
        assert len(listed["signals"]) == 2
        assert all(s["status"] == "PENDING" for s in listed["signals"])

    def test_generate_for_unknown_portfolio(self, client):
        response = client.post("/api/v1/signals/generate", json={"portfolio_id": 42})
        assert response.status_code == 404
        assert response.json() == {"error": "Portfolio not found"}

    def test_generate_rejects_invalid_body(self, client):
        response = client.post("/api/v1/signals/generate", json={"portfolio_id": 0})
        assert response.status_code == 422

    def test_get_signal_with_audit_trail(self, client, signal_repo, clock):
        signal = signal_repo.create(1, proposal("TCS", quantity=2, price="3500"), clock())
        client.post(f"/api/v1/signals/{signal.id}/actions", json={"action": "ACK", "actor": "alice"})

        body = client.get(f"/api/v1/signals/{signal.id}").json()

        assert body["status"] == "ACKED"
        assert body["trigger"]["description"].startswith("Limit: ₹3500")
        assert body["actions"][0]["action"] == "ACK"
        assert body["actions"][0]["note"] == "by alice"

    def test_missing_signal(self, client):
        response = client.get("/api/v1/signals/999")
        assert response.status_code == 404
        assert response.json() == {"error": "Signal not found"}

    def test_filter_by_status(self, client, signal_repo, clock):
        kept = signal_repo.create(1, proposal("A"), clock())
        dismissed = signal_repo.create(1, proposal("B"), clock())
        client.post(f"/api/v1/signals/{dismissed.id}/actions", json={"action": "DISMISS"})

        body = client.get(
            "/api/v1/signals", params={"portfolio_id": 1, "status": "PENDING"}
        ).json()

        assert [s["id"] for s in body["signals"]] == [kept.id]


class TestActionEndpoint:
    def test_second_press_is_already_handled(self, client, signal_repo, clock):
        signal = signal_repo.create(1, proposal("A"), clock())
        url = f"/api/v1/signals/{signal.id}/actions"

        first = client.post(url, json={"action": "DISMISS"})
        second = client.post(url, json={"action": "ACK"})

        assert first.json()["outcome"] == "OK"
        assert second.status_code == 200
        assert second.json()["outcome"] == "ALREADY_HANDLED"

    def test_unknown_action_rejected(self, client, signal_repo, clock):
        signal = signal_repo.create(1, proposal("A"), clock())
        response = client.post(f"/api/v1/signals/{signal.id}/actions", json={"action": "BUY_MORE"})
        assert response.status_code == 422

    def test_action_on_missing_signal(self, client):
        response = client.post("/api/v1/signals/999/actions", json={"action": "ACK"})
        assert response.status_code == 404

    def test_execute_then_fill_via_order_update(self, client, signal_repo, clock, gateway):
        signal = signal_repo.create(1, proposal("X", quantity=4, price="500"), clock())

        executed = client.post(
            f"/api/v1/signals/{signal.id}/actions", json={"action": "EXECUTE"}
        ).json()
        assert executed["outcome"] == "EXECUTED"
        assert executed["order_id"] == "ORD-1"
        assert len(gateway.placed) == 1

        update = client.post(
            "/api/v1/orders/updates",
            json={"order_id": "ORD-1", "status": "complete", "filled_quantity": 4, "average_price": "500"},
        )
        assert update.json()["outcome"] == "EXECUTED"

        cash = client.get("/api/v1/portfolios/1/cash").json()
        assert Decimal(cash["raw_cash"]) == Decimal("8000")
        assert Decimal(cash["reserved_cash"]) == Decimal("0")


class TestCashEndpoint:
    def test_reserved_cash(self, client, signal_repo, clock):
        signal_repo.create(1, proposal("X", quantity=4, price="500"), clock())

        cash = client.get("/api/v1/portfolios/1/cash").json()

        assert Decimal(cash["raw_cash"]) == Decimal("10000")
        assert Decimal(cash["reserved_cash"]) == Decimal("2000")
        assert Decimal(cash["effective_cash"]) == Decimal("8000")

    def test_unknown_portfolio(self, client):
        assert client.get("/api/v1/portfolios/99/cash").status_code == 404


class TestJobEndpoint:
    def test_run_notify(self, client, signal_repo, channel, clock):
        signal_repo.create(1, proposal("A"), clock())

        response = client.post("/api/v1/jobs/notify/run")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "completed"
        assert body["details"]["delivered"] == 1
        assert len(channel.delivered) == 1

    def test_unknown_job(self, client):
        assert client.post("/api/v1/jobs/rebalance/run").status_code == 404

"""Tests for the typer CLI and the Rich stream dashboard."""

from __future__ import annotations

from rich.layout import Layout
from typer.testing import CliRunner

from bakehouse_kiosk import runner
from bakehouse_kiosk.client.sse_client import EventStreamClient
from bakehouse_kiosk.client.visualizer import Visualizer
from bakehouse_kiosk.shared.errors import ApiError, PaymentTimeoutError
from bakehouse_kiosk.shared.models import DomainEvent, PaymentQR, PaymentStatus

cli = CliRunner()


class FakeApi:
    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return None


def _fake_payments(outcome):
    class FakePayments:
        def __init__(self, api):
            self.api = api

        async def create_payment_qr(self, order_id, amount):
            if isinstance(outcome, ApiError) and outcome.status_code == 404:
                raise outcome
            return PaymentQR(qr_id="qr_1", qr_string="BAKEHOUSE|ORD-1|9.50|ab", order_number="ORD-1", amount=amount)

        async def poll_payment_status(self, order_id, on_status_update, max_attempts, interval_s):
            if isinstance(outcome, Exception):
                raise outcome
            on_status_update(outcome)
            return outcome

    return FakePayments


def test_watch_rejects_unknown_topic():
    result = cli.invoke(runner.app, ["watch", "--topic", "payroll"])
    assert result.exit_code == 1
    assert "Invalid topic" in result.output


def test_pay_reports_success(monkeypatch):
    paid = PaymentStatus(paid=True, order_id=1, order_number="ORD-1", payment_status="paid")
    monkeypatch.setattr(runner, "ApiClient", FakeApi)
    monkeypatch.setattr(runner, "PaymentService", _fake_payments(paid))

    result = cli.invoke(runner.app, ["pay", "1", "9.5", "--interval", "0", "--max-attempts", "2"])

    assert result.exit_code == 0
    assert "Paid!" in result.output


def test_pay_exits_non_zero_on_api_error(monkeypatch):
    monkeypatch.setattr(runner, "ApiClient", FakeApi)
    monkeypatch.setattr(runner, "PaymentService", _fake_payments(ApiError("Order not found", status_code=404)))

    result = cli.invoke(runner.app, ["pay", "1", "9.5"])

    assert result.exit_code == 1
    assert "Order not found" in result.output


def test_pay_exits_non_zero_on_timeout(monkeypatch):
    monkeypatch.setattr(runner, "ApiClient", FakeApi)
    monkeypatch.setattr(runner, "PaymentService", _fake_payments(PaymentTimeoutError(1, 2)))

    result = cli.invoke(runner.app, ["pay", "1", "9.5", "--interval", "0", "--max-attempts", "2"])

    assert result.exit_code == 1
    assert "Payment timeout" in result.output


def test_dashboard_renders_events_and_states():
    client = EventStreamClient("http://kiosk.test/api/sse/orders", {"order.created": lambda p: None})
    viz = Visualizer(client, "orders")

    viz.on_status_change("open")
    viz.on_event(DomainEvent(name="order.created", payload={"order_id": 1}))
    viz.on_event(DomainEvent(name="order.archived", payload={"note": "x" * 80}))

    assert viz.status == "OPEN"
    assert viz.recent_events[0][1] == "order.archived"
    assert viz.recent_events[0][2].endswith("...")
    assert viz.recent_events[0][3] == "no"
    assert viz.recent_events[1][3] == "yes"
    assert isinstance(viz.generate_layout(), Layout)

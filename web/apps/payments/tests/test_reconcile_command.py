from io import StringIO

import pytest
from django.core.management import call_command

from apps.payments.adapters import SnapGatewayStub
from apps.payments.domain import GatewayStatus, UpstreamError
from apps.payments.management.commands import reconcile_pending_payments as cmd


@pytest.fixture
def gateway(monkeypatch):
    gw = SnapGatewayStub()
    monkeypatch.setattr(cmd, "get_gateway", lambda: gw)
    return gw


def _run(*args):
    out = StringIO()
    call_command("reconcile_pending_payments", *args, stdout=out, no_color=True)
    return out.getvalue()


@pytest.mark.django_db
def test_poller_applies_final_statuses(make_order, gateway):
    paid = make_order()
    paid.transaction_id = str(paid.id)
    paid.save()
    batch = "BULK-1700000000000-2-0a1b2c3d"
    exp = [make_order(transaction_id=batch) for _ in range(2)]
    gateway.statuses[str(paid.id)] = GatewayStatus(str(paid.id), "settlement")
    gateway.statuses[batch] = GatewayStatus(batch, "expire")

    out = _run()

    paid.refresh_from_db()
    assert paid.status == "paid"
    for o in exp:
        o.refresh_from_db()
        assert o.status == "expired"
    assert "Checked 2, updated 2 transactions." in out


@pytest.mark.django_db
def test_poller_skips_unknown_and_still_pending(make_order, gateway):
    unopened = make_order()
    unopened.transaction_id = str(unopened.id)
    unopened.save()
    waiting = make_order(transaction_id="BULK-1700000000000-2-aaaaaaaa")
    gateway.statuses[waiting.transaction_id] = GatewayStatus(waiting.transaction_id, "pending")
    make_order()  # nunca inició pago: no se consulta

    out = _run()

    assert "not found at gateway" in out
    assert "Checked 2, updated 0 transactions." in out
    unopened.refresh_from_db()
    waiting.refresh_from_db()
    assert unopened.status == waiting.status == "pending"


@pytest.mark.django_db
def test_poller_continues_after_upstream_error(make_order, gateway, monkeypatch):
    a = make_order(transaction_id="BULK-1700000000000-1-aaaaaaaa")
    b = make_order(transaction_id="BULK-1700000000000-1-bbbbbbbb")
    gateway.statuses[b.transaction_id] = GatewayStatus(b.transaction_id, "settlement")
    real = gateway.get_status

    def flaky(txid):
        if txid == a.transaction_id:
            raise UpstreamError("UPSTREAM_UNAVAILABLE", detail="timeout")
        return real(txid)

    monkeypatch.setattr(gateway, "get_status", flaky)

    out = _run("--max", "10")

    assert "UPSTREAM_UNAVAILABLE" in out
    b.refresh_from_db()
    assert b.status == "paid"


@pytest.mark.django_db
def test_poller_respects_max(make_order, gateway):
    for i in range(3):
        make_order(transaction_id=f"BULK-1700000000000-1-0000000{i}")
    out = _run("--max", "2")
    assert "Checked 2," in out

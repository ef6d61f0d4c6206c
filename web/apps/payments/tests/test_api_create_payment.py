from uuid import uuid4

import pytest

from apps.orders.models import OrderModel, Recipient
from apps.payments import providers
from apps.payments.adapters import SnapGatewayStub
from apps.payments.domain import StorageError, UpstreamError

CREATE_URL = "/api/payments/create/"


@pytest.fixture
def gateway(monkeypatch):
    gw = SnapGatewayStub()
    monkeypatch.setattr(providers, "get_gateway", lambda: gw)
    return gw


@pytest.mark.django_db
def test_single_order_payment_stamps_linkage(api, make_order, gateway):
    o = make_order(("Nasi Goreng", "25000", 1))

    r = api.post(CREATE_URL, {"orderId": str(o.id)}, format="json")

    assert r.status_code == 200, r.content
    body = r.json()
    assert body["success"] is True
    assert body["orderIds"] == [str(o.id)]
    assert body["totalAmount"] == 25000
    assert body["snapToken"] and body["redirectUrl"]

    o.refresh_from_db()
    assert o.transaction_id == str(o.id)
    assert o.snap_token == body["snapToken"]
    assert o.payment_url == body["redirectUrl"]
    assert o.status == "pending"
    assert gateway.requests[0]["customer_details"]["email"] == "parent@example.com"


@pytest.mark.django_db
def test_batch_payment_shares_one_transaction(api, make_order, gateway):
    a = make_order(("Nasi Goreng", "25000", 1))
    b = make_order(("Ayam Bakar", "40000", 1))

    r = api.post(CREATE_URL, {"orderIds": [str(a.id), str(b.id)]}, format="json")

    assert r.status_code == 200
    body = r.json()
    assert body["totalAmount"] == 65000
    assert sorted(body["orderIds"]) == sorted([str(a.id), str(b.id)])

    a.refresh_from_db()
    b.refresh_from_db()
    assert a.transaction_id == b.transaction_id
    assert a.transaction_id.startswith("BULK-")
    assert a.snap_token == b.snap_token == body["snapToken"]
    assert gateway.requests[0]["transaction_details"]["gross_amount"] == 65000


@pytest.mark.django_db
def test_foreign_and_paid_orders_are_skipped(api, make_order, other_user, gateway):
    mine = make_order(("Nasi Goreng", "25000", 1))
    paid = make_order(status=OrderModel.Status.PAID)
    rcp = Recipient.objects.create(owner=other_user, name="Sari")
    foreign = make_order(owner=other_user, recipient_obj=rcp)

    r = api.post(CREATE_URL, {"orderIds": [str(mine.id), str(paid.id), str(foreign.id)]}, format="json")

    assert r.status_code == 200
    assert r.json()["orderIds"] == [str(mine.id)]
    foreign.refresh_from_db()
    assert foreign.transaction_id is None


@pytest.mark.django_db
def test_no_payable_orders_returns_404(api, make_order, gateway):
    paid = make_order(status=OrderModel.Status.PAID)
    r = api.post(CREATE_URL, {"orderIds": [str(paid.id), str(uuid4())]}, format="json")
    assert r.status_code == 404
    assert r.json()["code"] == "ORDERS_NOT_FOUND"
    assert gateway.requests == []


@pytest.mark.django_db
@pytest.mark.parametrize("payload", [{}, {"orderIds": []}, {"orderId": "123"}, {"orderIds": ["x", "y"]}])
def test_bad_input_returns_400(api, payload, gateway):
    r = api.post(CREATE_URL, payload, format="json")
    assert r.status_code == 400
    body = r.json()
    assert body["success"] is False
    assert body["code"] == "VALIDATION_ERROR"


@pytest.mark.django_db
def test_gateway_failure_returns_502_without_leaking_details(api, make_order, monkeypatch, gateway):
    o = make_order()

    def boom(payload):
        raise UpstreamError("UPSTREAM_REJECTED", detail='{"error_messages":["Access denied"]}', status_code=401)

    monkeypatch.setattr(gateway, "create_transaction", boom)
    r = api.post(CREATE_URL, {"orderId": str(o.id)}, format="json")

    assert r.status_code == 502
    body = r.json()
    assert body["code"] == "UPSTREAM_ERROR"
    assert "Access denied" not in r.content.decode()
    o.refresh_from_db()
    assert o.transaction_id is None and o.snap_token is None


@pytest.mark.django_db
def test_storage_failure_returns_503(api, make_order, monkeypatch, gateway):
    from apps.payments.repository import DjangoOrderStore

    o = make_order()

    def fail(self, *a, **k):
        raise StorageError("STORAGE_UNAVAILABLE", detail="attach_payment: db down")

    monkeypatch.setattr(DjangoOrderStore, "attach_payment", fail)
    r = api.post(CREATE_URL, {"orderId": str(o.id)}, format="json")
    assert r.status_code == 503
    assert r.json()["code"] == "STORAGE_ERROR"


@pytest.mark.django_db
def test_create_payment_requires_authentication(client, make_order):
    o = make_order()
    r = client.post(CREATE_URL, data={"orderId": str(o.id)}, content_type="application/json")
    assert r.status_code in (401, 403)

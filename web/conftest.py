import datetime as dt
from decimal import Decimal

import pytest
from django.contrib.auth import get_user_model
from django.utils import timezone
from rest_framework.test import APIClient

from apps.orders.models import MenuItem, OrderItemModel, OrderModel, Recipient
from apps.payments.signature import compute_signature

SERVER_KEY = "SB-Mid-server-test-key"


@pytest.fixture(autouse=True)
def use_stubs_for_tests(settings):
    settings.USE_HTTP_ADAPTERS = False
    settings.MIDTRANS_SERVER_KEY = SERVER_KEY


@pytest.fixture(autouse=True)
def reset_gateway_circuit():
    # el breaker es global al módulo; no arrastrar estado entre tests
    from apps.payments.http_adapters import _gateway_cb
    _gateway_cb.on_success()
    yield
    _gateway_cb.on_success()


@pytest.fixture
def user(db):
    return get_user_model().objects.create_user(username="parent", email="parent@example.com", password="x")


@pytest.fixture
def other_user(db):
    return get_user_model().objects.create_user(username="other", email="other@example.com", password="x")


@pytest.fixture
def api(user):
    c = APIClient()
    c.force_authenticate(user=user)
    return c


@pytest.fixture
def recipient(user):
    return Recipient.objects.create(owner=user, name="Budi", class_name="3A")


@pytest.fixture
def menu(db):
    return {
        "nasi": MenuItem.objects.create(name="Nasi Goreng", price=Decimal("25000.00"), category="main"),
        "ayam": MenuItem.objects.create(name="Ayam Bakar", price=Decimal("40000.00"), category="main"),
        "jus": MenuItem.objects.create(name="Jus Jeruk", price=Decimal("8000.00"), category="drink"),
    }


@pytest.fixture
def make_order(user, recipient):
    """Build an order directly in the DB: ``make_order(("Nasi", "25000", 1), ...)``."""
    def _make(*lines, owner=None, recipient_obj=None, status=OrderModel.Status.PENDING, transaction_id=None):
        owner = owner or user
        rcp = recipient_obj or recipient
        lines = lines or (("Nasi Goreng", "25000", 1),)
        total = sum((Decimal(price) * qty for _, price, qty in lines), Decimal("0"))
        o = OrderModel.objects.create(
            owner=owner,
            recipient=rcp,
            total_amount=total,
            delivery_date=timezone.localdate() + dt.timedelta(days=1),
            status=status,
            transaction_id=transaction_id,
        )
        for name, price, qty in lines:
            OrderItemModel.objects.create(order=o, menu_item_name=name, quantity=qty, unit_price=Decimal(price))
        return o

    return _make


@pytest.fixture
def signed_notification():
    """Build a gateway notification body signed with the test server key."""
    def _build(order_id, transaction_status="settlement", status_code="200", gross_amount="25000.00",
               fraud_status=None, server_key=SERVER_KEY, **extra):
        body = {
            "order_id": order_id,
            "status_code": status_code,
            "gross_amount": gross_amount,
            "transaction_status": transaction_status,
            "signature_key": compute_signature(order_id, status_code, gross_amount, server_key),
        }
        if fraud_status is not None:
            body["fraud_status"] = fraud_status
        body.update(extra)
        return body

    return _build

import datetime as dt

import pytest
from django.utils import timezone

from apps.orders.models import IdempotencyKey, OrderModel

CREATE_URL = "/api/orders/"


@pytest.fixture
def payload(recipient, menu):
    return {
        "recipient_id": str(recipient.id),
        "delivery_date": (timezone.localdate() + dt.timedelta(days=1)).isoformat(),
        "items": [{"menu_item_id": str(menu["nasi"].id), "quantity": 2}],
    }


@pytest.mark.django_db
def test_idempotent_same_payload_returns_same_order_on_retry(api, payload):
    key = "idem-same-1"

    # 1º intento
    r1 = api.post(CREATE_URL, payload, format="json", HTTP_IDEMPOTENCY_KEY=key)
    assert r1.status_code == 201
    body1 = r1.json()

    # 2º intento (replay)
    r2 = api.post(CREATE_URL, payload, format="json", HTTP_IDEMPOTENCY_KEY=key)
    assert r2.status_code == 201
    assert r2.json() == body1
    assert r2.headers.get("Idempotent-Replay") == "true"
    assert OrderModel.objects.count() == 1


@pytest.mark.django_db
def test_idempotent_conflict_on_different_payload_with_same_key(api, payload):
    key = "idem-conflict-1"

    r1 = api.post(CREATE_URL, payload, format="json", HTTP_IDEMPOTENCY_KEY=key)
    assert r1.status_code == 201

    payload["items"][0]["quantity"] = 3
    r2 = api.post(CREATE_URL, payload, format="json", HTTP_IDEMPOTENCY_KEY=key)
    assert r2.status_code == 409
    assert r2.json()["detail"] == "IDEMPOTENCY_CONFLICT"


@pytest.mark.django_db
def test_idempotent_replay_preserves_error_status(api, payload, menu):
    menu["nasi"].is_available = False
    menu["nasi"].save()
    key = "idem-422"

    r1 = api.post(CREATE_URL, payload, format="json", HTTP_IDEMPOTENCY_KEY=key)
    assert r1.status_code == 422

    r2 = api.post(CREATE_URL, payload, format="json", HTTP_IDEMPOTENCY_KEY=key)
    assert r2.status_code == 422
    assert r2.json() == r1.json()
    assert r2.headers.get("Idempotent-Replay") == "true"


@pytest.mark.django_db
def test_unfinished_key_returns_in_progress(api, user, payload):
    from apps.orders.idempotency import get_or_create_idempotent

    # simula una petición concurrente que aún no terminó
    get_or_create_idempotent(user, "idem-busy", payload)

    r = api.post(CREATE_URL, payload, format="json", HTTP_IDEMPOTENCY_KEY="idem-busy")
    assert r.status_code == 409
    assert r.json()["detail"] == "IDEMPOTENCY_IN_PROGRESS"


@pytest.mark.django_db
def test_keys_are_scoped_per_user(api, other_user, payload):
    from apps.orders.idempotency import scoped_key

    r = api.post(CREATE_URL, payload, format="json", HTTP_IDEMPOTENCY_KEY="shared")
    assert r.status_code == 201
    assert not IdempotencyKey.objects.filter(key=scoped_key(other_user, "shared")).exists()


@pytest.mark.django_db
def test_storage_failure_frees_key_for_retry(api, payload, monkeypatch):
    from django.db import OperationalError

    from apps.orders.repository import OrderRepository

    real_create = OrderRepository.create
    calls = {"n": 0}

    def flaky_create(self, owner, dto):
        calls["n"] += 1
        if calls["n"] == 1:
            raise OperationalError("server closed the connection unexpectedly")
        return real_create(self, owner, dto)

    monkeypatch.setattr(OrderRepository, "create", flaky_create)

    r1 = api.post(CREATE_URL, payload, format="json", HTTP_IDEMPOTENCY_KEY="k1")
    assert r1.status_code == 503
    assert r1.json()["detail"] == "STORAGE_UNAVAILABLE"

    # el reintento con la misma clave debe crear el pedido, no quedar en 409
    r2 = api.post(CREATE_URL, payload, format="json", HTTP_IDEMPOTENCY_KEY="k1")
    assert r2.status_code == 201
    assert r2.headers.get("Idempotent-Replay") is None
    assert OrderModel.objects.count() == 1

    r3 = api.post(CREATE_URL, payload, format="json", HTTP_IDEMPOTENCY_KEY="k1")
    assert r3.status_code == 201
    assert r3.json() == r2.json()
    assert r3.headers.get("Idempotent-Replay") == "true"

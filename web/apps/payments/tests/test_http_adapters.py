import httpx
import pytest

from apps.payments.domain import TransactionNotFound, UpstreamError
from apps.payments.breaker import CircuitBreaker
from apps.payments.http_adapters import HttpSnapGateway, _gateway_cb

PAYLOAD = {
    "transaction_details": {"order_id": "3f2b8c1e-0d4a-4e8b-9c3a-7b6d5e4f3a21", "gross_amount": 25000},
    "item_details": [{"id": "m1", "price": 25000, "quantity": 1, "name": "Nasi Goreng"}],
    "customer_details": {"first_name": "Budi", "email": "parent@example.com"},
}


@pytest.fixture(autouse=True)
def fast_retries(settings, monkeypatch):
    settings.HTTP_RETRY_MAX = 3
    settings.HTTP_RETRY_BACKOFF_BASE = 0.0
    monkeypatch.setattr("time.sleep", lambda *a, **k: None, raising=True)


def _gw():
    return HttpSnapGateway(server_key="SB-Mid-server-test-key", snap_url="http://snap", api_url="http://api", timeout=1)


def _patch(monkeypatch, responses, calls):
    def fake_request(self, method, url, json=None, headers=None, **kwargs):
        calls.append({"method": method, "url": url, "json": json, "headers": dict(headers or {})})
        r = responses[min(len(calls), len(responses)) - 1]
        if isinstance(r, Exception):
            raise r
        return r

    monkeypatch.setattr(httpx.Client, "request", fake_request, raising=True)


def test_create_transaction_posts_payload_and_returns_session(monkeypatch):
    calls = []
    _patch(monkeypatch, [httpx.Response(201, json={"token": "tok-1", "redirect_url": "https://pay/tok-1"})], calls)

    session = _gw().create_transaction(PAYLOAD)

    assert session.token == "tok-1"
    assert session.redirect_url == "https://pay/tok-1"
    assert calls[0]["method"] == "POST"
    assert calls[0]["url"] == "http://snap/snap/v1/transactions"
    assert calls[0]["json"] == PAYLOAD
    assert calls[0]["headers"]["X-Circuit-State"] == "CLOSED"


def test_retries_on_5xx_then_succeeds(monkeypatch):
    calls = []
    _patch(monkeypatch, [
        httpx.Response(503, text="busy"),
        httpx.Response(201, json={"token": "tok-2", "redirect_url": "https://pay/tok-2"}),
    ], calls)

    assert _gw().create_transaction(PAYLOAD).token == "tok-2"
    assert len(calls) == 2
    assert calls[1]["headers"]["X-Retry-Count"] == "1"


def test_retries_on_transport_error_until_exhausted(monkeypatch):
    calls = []
    _patch(monkeypatch, [httpx.ConnectError("refused")], calls)

    with pytest.raises(UpstreamError) as ei:
        _gw().create_transaction(PAYLOAD)
    assert str(ei.value) == "UPSTREAM_UNAVAILABLE"
    assert len(calls) == 3


def test_no_retry_on_4xx(monkeypatch):
    calls = []
    _patch(monkeypatch, [httpx.Response(401, json={"error_messages": ["Access denied"]})], calls)

    with pytest.raises(UpstreamError) as ei:
        _gw().create_transaction(PAYLOAD)
    assert str(ei.value) == "UPSTREAM_REJECTED"
    assert ei.value.status_code == 401
    assert "Access denied" in ei.value.detail
    assert len(calls) == 1
    # 4xx no abre el circuito
    assert _gateway_cb.state == "CLOSED"


def test_2xx_without_token_is_bad_response(monkeypatch):
    _patch(monkeypatch, [httpx.Response(201, json={"redirect_url": "x"})], [])
    with pytest.raises(UpstreamError) as ei:
        _gw().create_transaction(PAYLOAD)
    assert str(ei.value) == "UPSTREAM_BAD_RESPONSE"


def test_get_status_parses_body(monkeypatch):
    calls = []
    _patch(monkeypatch, [httpx.Response(200, json={
        "status_code": "200",
        "order_id": "BULK-1700000000000-2-0a1b2c3d",
        "transaction_status": "settlement",
        "fraud_status": "accept",
        "gross_amount": "65000.00",
    })], calls)

    st = _gw().get_status("BULK-1700000000000-2-0a1b2c3d")

    assert calls[0]["method"] == "GET"
    assert calls[0]["url"] == "http://api/v2/BULK-1700000000000-2-0a1b2c3d/status"
    assert st.transaction_status == "settlement"
    assert st.fraud_status == "accept"
    assert st.gross_amount == "65000.00"


@pytest.mark.parametrize("resp", [
    httpx.Response(404, json={"status_code": "404"}),
    httpx.Response(200, json={"status_code": "404", "status_message": "Transaction doesn't exist."}),
])
def test_get_status_not_found(monkeypatch, resp):
    _patch(monkeypatch, [resp], [])
    with pytest.raises(TransactionNotFound):
        _gw().get_status("3f2b8c1e-0d4a-4e8b-9c3a-7b6d5e4f3a21")


def test_circuit_opens_after_repeated_outages(monkeypatch, settings):
    settings.HTTP_RETRY_MAX = 1
    calls = []
    _patch(monkeypatch, [httpx.Response(500, text="down")], calls)

    for _ in range(_gateway_cb.fail_threshold):
        with pytest.raises(UpstreamError):
            _gw().create_transaction(PAYLOAD)
    assert _gateway_cb.state == "OPEN"

    n = len(calls)
    with pytest.raises(UpstreamError) as ei:
        _gw().create_transaction(PAYLOAD)
    assert str(ei.value) == "CIRCUIT_OPEN"
    # falla rápido, sin tocar la red
    assert len(calls) == n


def test_breaker_half_open_trial_call(monkeypatch):
    clock = {"t": 1000.0}
    monkeypatch.setattr("time.monotonic", lambda: clock["t"])
    cb = CircuitBreaker("t", fail_threshold=2, reset_timeout=10)

    cb.on_failure()
    cb.on_failure()
    assert cb.state == "OPEN"

    clock["t"] += 11
    assert cb.before_call() == "HALF_OPEN"
    # solo una sonda a la vez
    with pytest.raises(UpstreamError):
        cb.before_call()

    cb.on_failure()
    assert cb.state == "OPEN"

    clock["t"] += 11
    cb.before_call()
    cb.on_success()
    assert cb.state == "CLOSED"

"""HTTP client for the Midtrans gateway with retries and a circuit breaker.

``HttpSnapGateway`` implements ``GatewayPort`` using ``httpx``:

- Snap transaction creation: ``POST <snap base>/snap/v1/transactions``.
- Status lookup: ``GET <api base>/v2/<transaction id>/status``.
- Basic auth with the server key as username and an empty password; the
  sandbox or production base URLs are picked by ``MIDTRANS_IS_PRODUCTION``.
- Request correlation: ``X-Request-ID`` from the ContextVar set by
  ``RequestIdMiddleware``.
- One circuit breaker for the gateway so a dead upstream fails fast instead
  of pinning every gunicorn thread for the full timeout.
- Retry with exponential backoff for transport errors and 5xx only. A 4xx
  is a rejected payload or bad credentials and is never retried.

Every failure surfaces as ``UpstreamError``; the gateway's body is kept on
the exception for logs and never returned to the client.
"""

import logging
import time
from typing import Optional

import httpx
from django.conf import settings

from mealorders.middleware import REQUEST_ID_CTX

from .breaker import CircuitBreaker
from .domain import GatewayPort, GatewayStatus, SnapSession, TransactionNotFound, UpstreamError

logger = logging.getLogger("payments")

MAX_LOGGED_BODY = 2000


_gateway_cb = CircuitBreaker(
    "midtrans",
    getattr(settings, "HTTP_CIRCUIT_FAIL_THRESHOLD", 5),
    getattr(settings, "HTTP_CIRCUIT_RESET_TIMEOUT", 30.0),
)


# ---------------- Helpers ---------------- #

def snap_base_url() -> str:
    if getattr(settings, "MIDTRANS_IS_PRODUCTION", False):
        return settings.MIDTRANS_SNAP_PRODUCTION_URL
    return settings.MIDTRANS_SNAP_SANDBOX_URL


def api_base_url() -> str:
    if getattr(settings, "MIDTRANS_IS_PRODUCTION", False):
        return settings.MIDTRANS_API_PRODUCTION_URL
    return settings.MIDTRANS_API_SANDBOX_URL


def _request_headers(extra: Optional[dict] = None) -> dict:
    """Build JSON headers plus ``X-Request-ID`` when a request is in scope."""
    headers: dict[str, str] = {"Accept": "application/json", "Content-Type": "application/json"}
    rid = REQUEST_ID_CTX.get()
    if rid and rid != "-":
        headers["X-Request-ID"] = rid
    if extra:
        headers.update(extra)
    return headers


def _retry_policy():
    """Return retry configuration as (max_attempts, backoff_base_seconds)."""
    return (
        max(1, getattr(settings, "HTTP_RETRY_MAX", 3)),
        getattr(settings, "HTTP_RETRY_BACKOFF_BASE", 0.15),
    )


def _should_retry(resp: Optional[httpx.Response], exc: Optional[Exception]) -> bool:
    """Retry only on transport errors or HTTP 5xx."""
    if exc is not None:
        return True
    if resp is not None and 500 <= resp.status_code < 600:
        return True
    return False


def _body_text(resp) -> str:
    try:
        return (resp.text or "")[:MAX_LOGGED_BODY]
    except Exception:
        return ""


# ---------------- Gateway Adapter ---------------- #

class HttpSnapGateway(GatewayPort):
    """Midtrans client implementing ``GatewayPort``."""

    def __init__(self, server_key: str | None = None, snap_url: str | None = None,
                 api_url: str | None = None, timeout: float | None = None):
        self.server_key = server_key if server_key is not None else settings.MIDTRANS_SERVER_KEY
        self.snap_url = (snap_url or snap_base_url()).rstrip("/")
        self.api_url = (api_url or api_base_url()).rstrip("/")
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECS

    def _send(self, method: str, url: str, op: str, json: dict | None = None) -> httpx.Response:
        """Send with breaker precheck and retries; return the final non-5xx response.

        Raises:
            UpstreamError: Circuit open, transport failure or 5xx after the
                last attempt.
        """
        max_attempts, backoff = _retry_policy()
        tries = 0

        state = _gateway_cb.before_call()
        headers = _request_headers({"X-Circuit-State": state, "X-Retry-Count": "0"})

        try:
            with httpx.Client(timeout=self.timeout, auth=(self.server_key, "")) as client:
                while True:
                    resp = None
                    exc = None
                    try:
                        resp = client.request(method, url, json=json, headers=headers)
                        if not _should_retry(resp, None):
                            # 2xx/4xx are answers, not outages
                            _gateway_cb.on_success()
                            return resp
                    except httpx.RequestError as e:
                        exc = e

                    tries += 1
                    headers["X-Retry-Count"] = str(tries)
                    logger.warning(
                        "gateway call failed",
                        extra={
                            "op": op,
                            "attempt": tries,
                            "status_code": getattr(resp, "status_code", None),
                            "error": str(exc) if exc else None,
                        },
                    )

                    if tries >= max_attempts:
                        _gateway_cb.on_failure()
                        if exc is not None:
                            raise UpstreamError("UPSTREAM_UNAVAILABLE", detail=str(exc)) from exc
                        raise UpstreamError(
                            "UPSTREAM_UNAVAILABLE", detail=_body_text(resp), status_code=resp.status_code
                        )

                    sleep_s = backoff * (2 ** (tries - 1))
                    cap = getattr(settings, "HTTP_RETRY_MAX_SLEEP", 0.5)
                    if sleep_s > 0:
                        time.sleep(min(sleep_s, cap))
        finally:
            _gateway_cb.on_finish()

    def create_transaction(self, payload: dict) -> SnapSession:
        """Create a Snap transaction.

        Args:
            payload: ``transaction_details``, ``item_details`` and
                ``customer_details`` as built by the initiator.

        Returns:
            SnapSession: Token and redirect URL.

        Raises:
            UpstreamError: Non-2xx answer, transport failure, or a 2xx body
                without a token.
        """
        resp = self._send("POST", f"{self.snap_url}/snap/v1/transactions", "create_transaction", json=payload)
        if not (200 <= resp.status_code < 300):
            body = _body_text(resp)
            logger.error(
                "gateway rejected transaction",
                extra={
                    "transaction_id": payload.get("transaction_details", {}).get("order_id"),
                    "status_code": resp.status_code,
                    "upstream_body": body,
                },
            )
            raise UpstreamError("UPSTREAM_REJECTED", detail=body, status_code=resp.status_code)

        try:
            data = resp.json()
        except ValueError as e:
            raise UpstreamError("UPSTREAM_BAD_RESPONSE", detail=_body_text(resp), status_code=resp.status_code) from e
        token = data.get("token")
        if not token:
            raise UpstreamError("UPSTREAM_BAD_RESPONSE", detail=_body_text(resp), status_code=resp.status_code)
        return SnapSession(token=token, redirect_url=data.get("redirect_url") or "")

    def get_status(self, transaction_id: str) -> GatewayStatus:
        """Fetch the current transaction status.

        The status API answers unknown transactions either with HTTP 404 or
        with HTTP 200 and ``"status_code": "404"`` in the body; both raise
        ``TransactionNotFound``.
        """
        resp = self._send("GET", f"{self.api_url}/v2/{transaction_id}/status", "get_status")
        if resp.status_code == 404:
            raise TransactionNotFound("TRANSACTION_NOT_FOUND", detail=_body_text(resp), status_code=404)
        if not (200 <= resp.status_code < 300):
            raise UpstreamError("UPSTREAM_REJECTED", detail=_body_text(resp), status_code=resp.status_code)
        try:
            data = resp.json()
        except ValueError as e:
            raise UpstreamError("UPSTREAM_BAD_RESPONSE", detail=_body_text(resp), status_code=resp.status_code) from e
        if str(data.get("status_code", "")) == "404":
            raise TransactionNotFound("TRANSACTION_NOT_FOUND", detail=str(data.get("status_message", "")), status_code=404)
        return GatewayStatus(
            transaction_id=str(data.get("order_id") or transaction_id),
            transaction_status=str(data.get("transaction_status") or ""),
            fraud_status=data.get("fraud_status"),
            status_code=str(data.get("status_code") or ""),
            gross_amount=str(data.get("gross_amount") or ""),
        )

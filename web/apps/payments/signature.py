"""Webhook signature computation and verification.

The gateway signs each notification with
``SHA512(order_id + status_code + gross_amount + server_key)`` rendered as
lowercase hex. The values are concatenated exactly as received, so
``gross_amount`` stays a string (``"65000.00"``), never a parsed number.
"""

import hashlib
import hmac
import logging

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured

logger = logging.getLogger("payments")


def _server_key() -> str:
    key = getattr(settings, "MIDTRANS_SERVER_KEY", "")
    if not key:
        logger.error("MIDTRANS_SERVER_KEY missing in settings")
        raise ImproperlyConfigured("MIDTRANS_SERVER_KEY setting is required to verify notifications")
    return key


def compute_signature(order_id: str, status_code: str, gross_amount: str, server_key: str | None = None) -> str:
    """Return the hex SHA-512 signature for a notification."""
    key = server_key if server_key is not None else _server_key()
    raw = f"{order_id}{status_code}{gross_amount}{key}".encode("utf-8")
    return hashlib.sha512(raw).hexdigest()


def verify_signature(order_id: str, status_code: str, gross_amount: str, received: str | None,
                     server_key: str | None = None) -> bool:
    """Recompute the signature and compare it in constant time.

    An empty or missing ``received`` value never verifies.
    """
    if not received:
        return False
    expected = compute_signature(order_id, status_code, gross_amount, server_key)
    return hmac.compare_digest(expected.encode("ascii"), received.strip().lower().encode("utf-8"))

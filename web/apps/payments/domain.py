"""Domain types, ports and rules for order-payment reconciliation.

This module holds everything the payment core agrees on independently of
Django and HTTP:

- ``OrderStatus`` and the terminal-state rule (``paid``, ``failed`` and
  ``expired`` are absorbing; only ``pending`` orders ever change).
- ``map_transaction_status``: gateway ``transaction_status``/``fraud_status``
  to the internal order status.
- Gateway transaction identifiers: the sole order id for a single payment,
  a synthesized ``BULK-...`` id for a batch.
- The error taxonomy raised by the initiator and the reconciler.
- Ports (``OrderStorePort``, ``GatewayPort``) implemented by the Django
  repository, the httpx client and the in-process stubs.
"""

import re
import secrets
import time
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import List, Optional, Protocol


# ---- Enums ----
class OrderStatus(str, Enum):
    """Order lifecycle. ``PENDING`` is the only initial and non-terminal state."""

    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self is not OrderStatus.PENDING


class Outcome(str, Enum):
    """What the reconciler decided for one notification.

    ``APPLIED`` and ``IGNORED`` are both acknowledged with 2xx; only
    ``REJECTED`` (bad signature) is a client error.
    """

    APPLIED = "applied"
    IGNORED = "ignored"
    REJECTED = "rejected"


# ---- Errors ----
class PaymentError(Exception):
    """Base class for payment core failures.

    Attributes:
        code: Stable machine-readable code returned to API clients.
        detail: Diagnostic text for logs only; never sent to end users.
    """

    code = "PAYMENT_ERROR"

    def __init__(self, message: str = "", detail: str | None = None):
        super().__init__(message or self.code)
        self.detail = detail


class PaymentValidationError(PaymentError):
    code = "VALIDATION_ERROR"


class OrdersNotFound(PaymentError):
    code = "ORDERS_NOT_FOUND"


class UpstreamError(PaymentError):
    code = "UPSTREAM_ERROR"

    def __init__(self, message: str = "", detail: str | None = None, status_code: int | None = None):
        super().__init__(message, detail)
        self.status_code = status_code


class InvalidSignature(PaymentError):
    code = "INVALID_SIGNATURE"


class StorageError(PaymentError):
    code = "STORAGE_ERROR"


class TransactionNotFound(UpstreamError):
    """The gateway has no record of the transaction (status lookup 404)."""

    code = "TRANSACTION_NOT_FOUND"


# ---- Status mapping ----
def map_transaction_status(transaction_status: str | None, fraud_status: str | None = None) -> OrderStatus:
    """Map a gateway transaction status to the internal order status.

    Evaluated in priority order:

    - ``capture`` with fraud status ``accept`` -> ``PAID``
    - ``settlement`` (any fraud status) -> ``PAID``
    - ``cancel`` or ``deny`` -> ``FAILED``
    - ``expire`` -> ``EXPIRED``
    - anything else, ``pending`` and ``capture``/``challenge`` included ->
      ``PENDING``, which the reconciler treats as a no-op.

    Unknown values never map to ``FAILED``.
    """
    ts = (transaction_status or "").strip().lower()
    fs = (fraud_status or "").strip().lower()

    if ts == "capture" and fs == "accept":
        return OrderStatus.PAID
    if ts == "settlement":
        return OrderStatus.PAID
    if ts in ("cancel", "deny"):
        return OrderStatus.FAILED
    if ts == "expire":
        return OrderStatus.EXPIRED
    return OrderStatus.PENDING


# ---- Transaction identifiers ----
UUID_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)
BATCH_PREFIX = "BULK"
BATCH_RE = re.compile(r"^BULK-\d{13}-\d{1,4}(?:-[0-9a-f]{8})?$")


def is_order_id(value: str) -> bool:
    return bool(value) and bool(UUID_RE.match(value))


def is_batch_id(value: str) -> bool:
    return bool(value) and bool(BATCH_RE.match(value))


def new_batch_id(count: int) -> str:
    """Synthesize a batch transaction id for ``count`` orders.

    Format ``BULK-<epoch millis>-<count>-<8 hex>``. The millisecond timestamp
    and count keep it traceable in the gateway dashboard; the random suffix
    keeps two batches minted in the same millisecond apart.
    """
    return f"{BATCH_PREFIX}-{int(time.time() * 1000)}-{count}-{secrets.token_hex(4)}"


def to_minor_units(amount: Decimal) -> int:
    """Round a decimal amount half-up to an integer number of minor units."""
    return int(Decimal(amount).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


# ---- Entities / DTOs ----
@dataclass(frozen=True)
class LineItem:
    """A line of a payable order, as sent to the gateway."""

    menu_item_id: str
    name: str
    quantity: int
    unit_price: Decimal


@dataclass
class PayableOrder:
    """A pending order loaded for payment initiation.

    Attributes:
        id: Order identifier (UUID string).
        total_amount: Stored total, fixed at creation.
        recipient_name: Child the order is for; used on the gateway receipt.
        items: Order lines.
    """

    id: str
    total_amount: Decimal
    recipient_name: str = ""
    items: List[LineItem] = field(default_factory=list)


@dataclass(frozen=True)
class Customer:
    first_name: str
    email: str


@dataclass(frozen=True)
class SnapSession:
    """Gateway answer to a transaction creation."""

    token: str
    redirect_url: str


@dataclass(frozen=True)
class PaymentInitiation:
    """Result returned to the client after a successful initiation."""

    snap_token: str
    redirect_url: str
    order_ids: List[str]
    total_amount: int
    transaction_id: str


@dataclass(frozen=True)
class GatewayStatus:
    """Transaction status pulled from the gateway status endpoint."""

    transaction_id: str
    transaction_status: str
    fraud_status: Optional[str] = None
    status_code: Optional[str] = None
    gross_amount: Optional[str] = None


@dataclass(frozen=True)
class ReconcileResult:
    """Decision taken for one notification.

    Attributes:
        outcome: ``APPLIED``, ``IGNORED`` or ``REJECTED``.
        transaction_id: Identifier carried by the notification.
        target_status: Mapped order status (``None`` when rejected before mapping).
        matched: Orders resolved from the identifier.
        updated: Orders actually moved out of ``pending``.
        reason: Short machine-readable reason for logs and the response body.
    """

    outcome: Outcome
    transaction_id: str
    target_status: Optional[OrderStatus] = None
    matched: int = 0
    updated: int = 0
    reason: str = ""


# ---- Ports (DIP) ----
class OrderStorePort(Protocol):
    """Storage operations the payment core needs from the order store."""

    def pending_for_owner(self, owner_id, order_ids: List[str]) -> List[PayableOrder]:
        """Return the caller's ``pending`` orders among ``order_ids``, with lines."""
        raise NotImplementedError()

    def attach_payment(self, order_ids: List[str], snap_token: str, redirect_url: str, transaction_id: str) -> int:
        """Stamp gateway linkage on every order; return the number of rows written."""
        raise NotImplementedError()

    def resolve_transaction(self, transaction_id: str, include_superseded: bool = False) -> List[str]:
        """Return ids of every order the transaction id resolves to.

        With ``include_superseded`` a UUID-shaped id also matches the order
        with that primary key after its linkage moved to a later transaction.
        """
        raise NotImplementedError()

    def transition_pending(self, order_ids: List[str], status: OrderStatus) -> int:
        """Set ``status`` on those orders still ``pending``; return rows changed."""
        raise NotImplementedError()

    def total_amount(self, order_ids: List[str]) -> Decimal:
        """Sum of the stored totals of ``order_ids``."""
        raise NotImplementedError()


class GatewayPort(Protocol):
    """Operations on the hosted payment gateway."""

    def create_transaction(self, payload: dict) -> SnapSession:
        """Create a Snap transaction and return its token and redirect URL.

        Raises:
            UpstreamError: On transport failures or non-2xx answers.
        """
        raise NotImplementedError()

    def get_status(self, transaction_id: str) -> GatewayStatus:
        """Fetch the current status of ``transaction_id``.

        Raises:
            TransactionNotFound: When the gateway has no such transaction.
            UpstreamError: On transport failures or other non-2xx answers.
        """
        raise NotImplementedError()

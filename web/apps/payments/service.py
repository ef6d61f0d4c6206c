"""Payment initiation and webhook reconciliation services.

``PaymentInitiator`` is the request-time half: it turns a set of the
caller's pending orders into one gateway transaction and stamps the
resulting linkage on every order. ``WebhookReconciler`` is the asynchronous
half: it authenticates gateway notifications and moves the referenced
orders out of ``pending`` exactly once.

Neither service touches Django or HTTP directly; both work through the
ports declared in ``domain``.
"""

import logging
from decimal import Decimal, InvalidOperation
from typing import Iterable, List

from .domain import (
    Customer,
    GatewayPort,
    InvalidSignature,
    OrderStatus,
    OrderStorePort,
    OrdersNotFound,
    Outcome,
    PayableOrder,
    PaymentInitiation,
    PaymentValidationError,
    ReconcileResult,
    StorageError,
    is_batch_id,
    is_order_id,
    map_transaction_status,
    new_batch_id,
    to_minor_units,
)
from .signature import verify_signature

logger = logging.getLogger("payments")

MAX_ITEM_FIELD = 50  # gateway limit for item id and name
MAX_ORDERS_PER_PAYMENT = 50
LINKAGE_WRITE_ATTEMPTS = 2
ROUNDING_ITEM_ID = "rounding-adjustment"


def normalize_order_ids(order_ids: Iterable[str]) -> List[str]:
    """Validate and de-duplicate order ids, keeping the caller's order.

    Raises:
        PaymentValidationError: When the list is empty, too long, or holds
            a value that is not a UUID.
    """
    out: List[str] = []
    seen = set()
    for raw in order_ids or []:
        oid = str(raw).strip().lower()
        if not is_order_id(oid):
            raise PaymentValidationError("INVALID_ORDER_ID", detail=f"not an order id: {raw!r}")
        if oid not in seen:
            seen.add(oid)
            out.append(oid)
    if not out:
        raise PaymentValidationError("ORDER_ID_REQUIRED")
    if len(out) > MAX_ORDERS_PER_PAYMENT:
        raise PaymentValidationError("TOO_MANY_ORDERS")
    return out


def build_item_details(orders: List[PayableOrder], gross_amount: int) -> List[dict]:
    """Flatten every order's lines into the gateway ``item_details`` list.

    When more than one order is paid, each name is suffixed with the
    recipient so the receipt reads per child. Prices are rounded per unit;
    if the rounded lines do not add up to ``gross_amount`` one adjustment
    line carries the difference, because the gateway rejects a mismatch.
    """
    batched = len(orders) > 1
    items: List[dict] = []
    for order in orders:
        for line in order.items:
            name = line.name or "Menu Item"
            if batched and order.recipient_name:
                name = f"{name} ({order.recipient_name})"
            items.append({
                "id": (line.menu_item_id or "menu-item")[:MAX_ITEM_FIELD],
                "price": to_minor_units(line.unit_price),
                "quantity": line.quantity,
                "name": name[:MAX_ITEM_FIELD],
            })

    diff = gross_amount - sum(it["price"] * it["quantity"] for it in items)
    if diff:
        items.append({"id": ROUNDING_ITEM_ID, "price": diff, "quantity": 1, "name": "Pembulatan"})
    return items


class PaymentInitiator:
    """Create one gateway transaction for one or more pending orders.

    The gross amount is always the sum of the stored order totals, never a
    client-supplied figure, and the chosen transaction id is written to
    every order so the later webhook can find all of them.
    """

    def __init__(self, store: OrderStorePort, gateway: GatewayPort, fallback_email: str = ""):
        """Initialize the service with its ports.

        Args:
            store: Order store used to load orders and persist linkage.
            gateway: Gateway client used to create the transaction.
            fallback_email: Customer email used when the caller has none.
        """
        self.store = store
        self.gateway = gateway
        self.fallback_email = fallback_email

    def initiate(self, owner_id, order_ids: Iterable[str], owner_email: str = "") -> PaymentInitiation:
        """Initiate payment for the caller's pending orders among ``order_ids``.

        Ids that are unknown, foreign or no longer pending are skipped; the
        response lists the ones actually included.

        Args:
            owner_id: Primary key of the authenticated caller.
            order_ids: Requested order ids.
            owner_email: Caller email for the gateway customer descriptor.

        Returns:
            PaymentInitiation: token, redirect URL, processed ids, total and
            transaction id.

        Raises:
            PaymentValidationError: Bad input or nothing payable.
            OrdersNotFound: No requested id is a pending order of the caller.
            UpstreamError: The gateway call failed.
            StorageError: The linkage could not be written to every order.
        """
        ids = normalize_order_ids(order_ids)

        orders = self.store.pending_for_owner(owner_id, ids)
        if not orders:
            raise OrdersNotFound("ORDERS_NOT_FOUND")

        processed = [o.id for o in orders]
        gross_amount = to_minor_units(sum((Decimal(o.total_amount) for o in orders), Decimal("0")))
        if gross_amount <= 0:
            raise PaymentValidationError("NOTHING_TO_PAY")

        transaction_id = processed[0] if len(processed) == 1 else new_batch_id(len(processed))
        customer = Customer(
            first_name=next((o.recipient_name for o in orders if o.recipient_name), "Customer"),
            email=owner_email or self.fallback_email,
        )
        payload = {
            "transaction_details": {"order_id": transaction_id, "gross_amount": gross_amount},
            "item_details": build_item_details(orders, gross_amount),
            "customer_details": {"first_name": customer.first_name, "email": customer.email},
        }

        skipped = sorted(set(ids) - set(processed))
        logger.info(
            "initiating payment",
            extra={
                "transaction_id": transaction_id,
                "order_ids": processed,
                "skipped_order_ids": skipped,
                "gross_amount": gross_amount,
            },
        )

        session = self.gateway.create_transaction(payload)

        written = 0
        for attempt in range(1, LINKAGE_WRITE_ATTEMPTS + 1):
            written = self.store.attach_payment(processed, session.token, session.redirect_url, transaction_id)
            if written == len(processed):
                break
            logger.warning(
                "payment linkage write incomplete",
                extra={"transaction_id": transaction_id, "attempt": attempt, "written": written},
            )
        if written != len(processed):
            logger.error(
                "payment linkage partially written",
                extra={"transaction_id": transaction_id, "expected": len(processed), "written": written},
            )
            raise StorageError("LINKAGE_INCOMPLETE", detail=f"{written}/{len(processed)} orders stamped")

        return PaymentInitiation(
            snap_token=session.token,
            redirect_url=session.redirect_url,
            order_ids=processed,
            total_amount=gross_amount,
            transaction_id=transaction_id,
        )


class WebhookReconciler:
    """Apply gateway notifications to orders, idempotently.

    Every notification ends in one of three outcomes:

    - ``REJECTED``: the signature does not match; nothing is read or written.
    - ``IGNORED``: an unrecognized id, no matching orders, a non-final gateway status,
      or orders that are already final.
    - ``APPLIED``: at least one matched order left ``pending``.

    The status write is a compare-and-set on ``pending`` so redeliveries and
    out-of-order notifications cannot overwrite a final status.
    """

    def __init__(self, store: OrderStorePort, server_key: str | None = None):
        self.store = store
        self.server_key = server_key

    def verify(self, notification) -> None:
        """Raise ``InvalidSignature`` unless the notification is authentic."""
        ok = verify_signature(
            notification.order_id,
            notification.status_code,
            notification.gross_amount,
            notification.signature_key,
            server_key=self.server_key,
        )
        if not ok:
            raise InvalidSignature("INVALID_SIGNATURE")

    def handle(self, notification) -> ReconcileResult:
        """Verify and apply one notification.

        Args:
            notification: Object exposing ``order_id``, ``status_code``,
                ``gross_amount``, ``transaction_status``, ``fraud_status``
                and ``signature_key``.

        Returns:
            ReconcileResult: The decision taken.

        Raises:
            StorageError: When the store keeps failing after its retries.
        """
        try:
            self.verify(notification)
        except InvalidSignature:
            logger.warning(
                "notification signature mismatch",
                extra={
                    "transaction_id": notification.order_id,
                    "transaction_status": notification.transaction_status,
                    "gross_amount": notification.gross_amount,
                },
            )
            return ReconcileResult(Outcome.REJECTED, notification.order_id, reason="INVALID_SIGNATURE")

        return self.apply_status(
            notification.order_id,
            notification.transaction_status,
            notification.fraud_status,
            source="webhook",
            gross_amount=notification.gross_amount,
        )

    def apply_status(self, transaction_id: str, transaction_status: str | None,
                     fraud_status: str | None = None, source: str = "webhook",
                     gross_amount: str | None = None) -> ReconcileResult:
        """Apply an already-authenticated gateway status to the matching orders.

        Used by ``handle`` after signature verification and by the status
        poller, whose data comes from an authenticated pull.

        Only a settlement reaches an order whose linkage moved to a later
        transaction; failure or expiry of the superseded transaction leaves
        it to the transaction it now belongs to.
        """
        if not (is_order_id(transaction_id) or is_batch_id(transaction_id)):
            logger.info("ignoring unrecognized transaction id", extra={"transaction_id": transaction_id, "source": source})
            return ReconcileResult(Outcome.IGNORED, transaction_id, reason="UNRECOGNIZED_ID")

        target = map_transaction_status(transaction_status, fraud_status)
        order_ids = self.store.resolve_transaction(transaction_id, include_superseded=target is OrderStatus.PAID)

        if not order_ids:
            logger.info(
                "no orders for transaction",
                extra={"transaction_id": transaction_id, "transaction_status": transaction_status, "source": source},
            )
            return ReconcileResult(Outcome.IGNORED, transaction_id, target, reason="NO_MATCHING_ORDERS")

        if target is OrderStatus.PENDING:
            return ReconcileResult(
                Outcome.IGNORED, transaction_id, target, matched=len(order_ids), reason="NO_STATUS_CHANGE"
            )

        if gross_amount:
            self._check_gross(transaction_id, order_ids, gross_amount, source)

        updated = self.store.transition_pending(order_ids, target)
        outcome = Outcome.APPLIED if updated else Outcome.IGNORED
        logger.info(
            "notification reconciled",
            extra={
                "transaction_id": transaction_id,
                "transaction_status": transaction_status,
                "fraud_status": fraud_status,
                "target_status": target.value,
                "matched": len(order_ids),
                "updated": updated,
                "outcome": outcome.value,
                "source": source,
            },
        )
        return ReconcileResult(
            outcome,
            transaction_id,
            target,
            matched=len(order_ids),
            updated=updated,
            reason="" if updated else "ALREADY_FINAL",
        )

    def _check_gross(self, transaction_id: str, order_ids: List[str], gross_amount: str, source: str) -> None:
        """Warn when the gateway gross differs from the stored totals of the matched orders."""
        try:
            reported = to_minor_units(Decimal(gross_amount))
        except (InvalidOperation, ValueError):
            logger.warning(
                "unparseable gross amount",
                extra={"transaction_id": transaction_id, "gross_amount": gross_amount, "source": source},
            )
            return
        stored = to_minor_units(self.store.total_amount(order_ids))
        if reported != stored:
            logger.warning(
                "gross amount mismatch",
                extra={
                    "transaction_id": transaction_id,
                    "order_ids": order_ids,
                    "gross_amount": reported,
                    "stored_total": stored,
                    "source": source,
                },
            )

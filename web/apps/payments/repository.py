"""Django ORM implementation of ``OrderStorePort``.

Batch writes are single ``UPDATE`` statements inside a transaction, so a
batch of N orders either changes as a whole or not at all. Status changes
carry a ``status = 'pending'`` guard (compare-and-set) instead of a
read-modify-write under a lock.

Transient database failures (``OperationalError``, ``InterfaceError``) are
retried with exponential backoff up to ``STORAGE_RETRY_MAX`` attempts and
then surface as ``StorageError``.
"""

import logging
import time
from decimal import Decimal
from typing import Callable, List, TypeVar

from django.conf import settings
from django.db import InterfaceError, OperationalError, transaction
from django.db.models import Q, Sum
from django.utils import timezone

from apps.orders.models import OrderModel

from .domain import LineItem, OrderStatus, PayableOrder, StorageError, is_order_id

logger = logging.getLogger("payments")

T = TypeVar("T")

RETRYABLE_DB_ERRORS = (OperationalError, InterfaceError)


def _storage_retry_policy():
    """Return retry configuration as (max_attempts, backoff_base_seconds)."""
    return (
        max(1, getattr(settings, "STORAGE_RETRY_MAX", 3)),
        getattr(settings, "STORAGE_RETRY_BACKOFF_BASE", 0.1),
    )


def with_storage_retry(op: str, fn: Callable[[], T]) -> T:
    """Run ``fn`` retrying transient DB errors; raise ``StorageError`` when exhausted."""
    attempts, backoff = _storage_retry_policy()
    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except RETRYABLE_DB_ERRORS as e:
            logger.warning(
                "storage operation failed",
                extra={"op": op, "attempt": attempt, "max_attempts": attempts, "error": str(e)},
            )
            if attempt >= attempts:
                raise StorageError("STORAGE_UNAVAILABLE", detail=f"{op}: {e}") from e
            if backoff:
                time.sleep(backoff * (2 ** (attempt - 1)))
    raise StorageError("STORAGE_UNAVAILABLE", detail=op)


def _to_payable(o: OrderModel) -> PayableOrder:
    return PayableOrder(
        id=str(o.id),
        total_amount=o.total_amount,
        recipient_name=o.recipient.name if o.recipient_id else "",
        items=[
            LineItem(
                menu_item_id=str(it.menu_item_id) if it.menu_item_id else "",
                name=it.menu_item_name,
                quantity=it.quantity,
                unit_price=it.unit_price,
            )
            for it in o.items.all()
        ],
    )


class DjangoOrderStore:
    """Order store backed by the ``orders`` and ``order_items`` tables."""

    def pending_for_owner(self, owner_id, order_ids: List[str]) -> List[PayableOrder]:
        """Load the owner's pending orders among ``order_ids``, in request order."""
        def run():
            qs = (
                OrderModel.objects.filter(id__in=order_ids, owner_id=owner_id, status=OrderModel.Status.PENDING)
                .select_related("recipient")
                .prefetch_related("items")
            )
            return list(qs)

        rows = with_storage_retry("pending_for_owner", run)
        rank = {oid: i for i, oid in enumerate(order_ids)}
        rows.sort(key=lambda o: rank.get(str(o.id), len(rank)))
        return [_to_payable(o) for o in rows]

    def attach_payment(self, order_ids: List[str], snap_token: str, redirect_url: str, transaction_id: str) -> int:
        """Stamp token, redirect URL and transaction id on every order at once.

        Returns:
            int: Rows written. Less than ``len(order_ids)`` means some orders
            disappeared between load and write; the caller decides.
        """
        def run():
            with transaction.atomic():
                return OrderModel.objects.filter(id__in=order_ids).update(
                    snap_token=snap_token,
                    payment_url=redirect_url,
                    transaction_id=transaction_id,
                    updated_at=timezone.now(),
                )

        return with_storage_retry("attach_payment", run)

    def resolve_transaction(self, transaction_id: str, include_superseded: bool = False) -> List[str]:
        """Ids of every order stamped with ``transaction_id``.

        A UUID-shaped id also matches the order with that primary key while
        it carries no linkage yet. With ``include_superseded`` it matches
        even when a later batch initiation overwrote the linkage; the
        reconciler asks for that only for settlements, so a paid single-order
        page still settles its order while its expiry cannot end an order
        that now belongs to a batch.
        """
        cond = Q(transaction_id=transaction_id)
        if is_order_id(transaction_id):
            if include_superseded:
                cond |= Q(id=transaction_id)
            else:
                cond |= Q(id=transaction_id, transaction_id__isnull=True)

        def run():
            return [str(pk) for pk in OrderModel.objects.filter(cond).values_list("id", flat=True)]

        return with_storage_retry("resolve_transaction", run)

    def transition_pending(self, order_ids: List[str], status: OrderStatus) -> int:
        """Move still-pending orders to ``status`` in one conditional update."""
        def run():
            with transaction.atomic():
                return OrderModel.objects.filter(id__in=order_ids, status=OrderModel.Status.PENDING).update(
                    status=status.value,
                    updated_at=timezone.now(),
                )

        return with_storage_retry("transition_pending", run)

    def total_amount(self, order_ids: List[str]) -> Decimal:
        def run():
            agg = OrderModel.objects.filter(id__in=order_ids).aggregate(total=Sum("total_amount"))
            return agg["total"] or Decimal("0")

        return with_storage_retry("total_amount", run)

    def pending_transactions(self, limit: int, created_after=None) -> List[str]:
        """Distinct transaction ids of pending orders, oldest first (for the poller)."""
        qs = OrderModel.objects.filter(status=OrderModel.Status.PENDING, transaction_id__isnull=False)
        if created_after is not None:
            qs = qs.filter(created_at__gte=created_after)
        out: List[str] = []
        for txid in qs.order_by("created_at").values_list("transaction_id", flat=True):
            if txid and txid not in out:
                out.append(txid)
            if len(out) >= limit:
                break
        return out

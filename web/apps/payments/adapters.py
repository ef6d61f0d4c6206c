"""In-process stub adapters for the payment ports.

``SnapGatewayStub`` implements ``GatewayPort`` without network calls and
``InMemoryOrderStore`` implements ``OrderStorePort`` on plain dicts. They
are used by unit tests and by local development when
``USE_HTTP_ADAPTERS`` is off.
"""

import uuid
from dataclasses import replace
from decimal import Decimal
from typing import Dict, List, Optional

from .domain import (
    GatewayPort,
    GatewayStatus,
    OrderStatus,
    OrderStorePort,
    PayableOrder,
    SnapSession,
    TransactionNotFound,
    UpstreamError,
    is_order_id,
)


class SnapGatewayStub(GatewayPort):
    """Deterministic gateway.

    Accepts any payload with a positive ``gross_amount`` and answers with a
    random token and a sandbox-looking redirect URL. Every payload is kept in
    ``requests`` so tests can assert on what would have been sent. Statuses
    for ``get_status`` are seeded through ``statuses``.
    """

    def __init__(self, statuses: Optional[Dict[str, GatewayStatus]] = None):
        self.requests: List[dict] = []
        self.statuses: Dict[str, GatewayStatus] = dict(statuses or {})

    def create_transaction(self, payload: dict) -> SnapSession:
        self.requests.append(payload)
        gross = payload.get("transaction_details", {}).get("gross_amount", 0)
        if gross <= 0:
            raise UpstreamError("UPSTREAM_ERROR", detail="gross_amount must be positive", status_code=400)
        token = str(uuid.uuid4())
        return SnapSession(token=token, redirect_url=f"https://app.sandbox.midtrans.com/snap/v4/redirection/{token}")

    def get_status(self, transaction_id: str) -> GatewayStatus:
        try:
            return self.statuses[transaction_id]
        except KeyError:
            raise TransactionNotFound("TRANSACTION_NOT_FOUND", status_code=404) from None


class InMemoryOrderStore(OrderStorePort):
    """Dict-backed order store with the same compare-and-set semantics.

    Attributes:
        orders: Order id -> ``PayableOrder``.
        owners: Order id -> owner id.
        statuses: Order id -> ``OrderStatus``.
        linkage: Order id -> dict with ``snap_token``, ``redirect_url``,
            ``transaction_id``.
    """

    def __init__(self):
        self.orders: Dict[str, PayableOrder] = {}
        self.owners: Dict[str, object] = {}
        self.statuses: Dict[str, OrderStatus] = {}
        self.linkage: Dict[str, dict] = {}
        self.writes = 0

    def add(self, owner_id, total_amount, recipient_name: str = "", items=None,
            status: OrderStatus = OrderStatus.PENDING, order_id: str | None = None) -> str:
        oid = order_id or str(uuid.uuid4())
        self.orders[oid] = PayableOrder(
            id=oid, total_amount=Decimal(str(total_amount)), recipient_name=recipient_name, items=list(items or [])
        )
        self.owners[oid] = owner_id
        self.statuses[oid] = status
        return oid

    def pending_for_owner(self, owner_id, order_ids: List[str]) -> List[PayableOrder]:
        return [
            replace(self.orders[oid])
            for oid in order_ids
            if oid in self.orders and self.owners[oid] == owner_id and self.statuses[oid] is OrderStatus.PENDING
        ]

    def attach_payment(self, order_ids: List[str], snap_token: str, redirect_url: str, transaction_id: str) -> int:
        n = 0
        for oid in order_ids:
            if oid in self.orders:
                self.linkage[oid] = {
                    "snap_token": snap_token,
                    "redirect_url": redirect_url,
                    "transaction_id": transaction_id,
                }
                n += 1
        self.writes += 1
        return n

    def resolve_transaction(self, transaction_id: str, include_superseded: bool = False) -> List[str]:
        out = [oid for oid, link in self.linkage.items() if link["transaction_id"] == transaction_id]
        if is_order_id(transaction_id) and transaction_id in self.orders and transaction_id not in out:
            if include_superseded or transaction_id not in self.linkage:
                out.append(transaction_id)
        return out

    def transition_pending(self, order_ids: List[str], status: OrderStatus) -> int:
        n = 0
        for oid in order_ids:
            if self.statuses.get(oid) is OrderStatus.PENDING:
                self.statuses[oid] = status
                n += 1
        self.writes += 1
        return n

    def total_amount(self, order_ids: List[str]) -> Decimal:
        return sum((self.orders[oid].total_amount for oid in order_ids if oid in self.orders), Decimal("0"))

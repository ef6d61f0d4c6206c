"""Repository layer for order intake and order reads.

Keeps the views free of ORM details: creation takes a validated
``CreateOrderDTO`` and returns the persisted ``OrderModel``; reads are
always scoped to the owning user.
"""

import logging

from django.db import transaction

from .models import MenuItem, OrderItemModel, OrderModel, Recipient
from .schemas import CreateOrderDTO

logger = logging.getLogger("orders")


class OrderRepository:
    """Persist and read orders using the Django ORM."""

    @transaction.atomic
    def create(self, owner, dto: CreateOrderDTO) -> OrderModel:
        """Create a ``pending`` order with price snapshots from the menu.

        Args:
            owner: Authenticated user placing the order.
            dto: Validated creation payload.

        Returns:
            OrderModel: The persisted order with its line items.

        Raises:
            ValueError: ``RECIPIENT_NOT_FOUND`` when the recipient does not
                belong to ``owner``; ``MENU_ITEM_UNAVAILABLE`` when any menu
                item is unknown or not available; ``NOTHING_TO_PAY`` when the
                total is zero.
        """
        recipient = Recipient.objects.filter(id=dto.recipient_id, owner=owner).first()
        if recipient is None:
            raise ValueError("RECIPIENT_NOT_FOUND")

        wanted = [it.menu_item_id for it in dto.items]
        menu = {m.id: m for m in MenuItem.objects.filter(id__in=wanted, is_available=True)}
        if len(menu) != len(set(wanted)):
            raise ValueError("MENU_ITEM_UNAVAILABLE")

        lines = [(menu[it.menu_item_id], it.quantity) for it in dto.items]
        total = sum((m.price * q for m, q in lines), start=0)
        if total <= 0:
            raise ValueError("NOTHING_TO_PAY")

        order = OrderModel.objects.create(
            owner=owner,
            recipient=recipient,
            total_amount=total,
            delivery_date=dto.delivery_date,
            status=OrderModel.Status.PENDING,
            notes=dto.notes,
        )
        for m, q in lines:
            OrderItemModel.objects.create(
                order=order,
                menu_item=m,
                menu_item_name=m.name,
                quantity=q,
                unit_price=m.price,
            )
        logger.info(
            "order created",
            extra={"order_id": str(order.id), "total_amount": str(total), "items": len(lines)},
        )
        return order

    def for_owner(self, owner, status: str | None = None):
        qs = (
            OrderModel.objects.filter(owner=owner)
            .select_related("recipient")
            .prefetch_related("items")
            .order_by("-created_at")
        )
        if status:
            qs = qs.filter(status=status)
        return qs

    def get_for_owner(self, owner, order_id) -> OrderModel | None:
        return self.for_owner(owner).filter(id=order_id).first()

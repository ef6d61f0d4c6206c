"""HTTP views for order intake and order reads.

Views stay small: validate with Pydantic, delegate to ``OrderRepository``,
serialize with ``OrderReadDTO``. Status is read-only here; it only changes
through the payment webhook.

Idempotency: ``POST /api/orders/`` honours an ``Idempotency-Key`` header.
The first request stores its response; retries with the same payload replay
it with ``Idempotent-Replay: true``; a different payload under the same key
returns 409.
"""
import logging

from django.core.paginator import Paginator
from django.db import DatabaseError
from pydantic import ValidationError
from rest_framework import status
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView

from .idempotency import finalize, get_or_create_idempotent, release
from .models import OrderModel
from .repository import OrderRepository
from .schemas import CreateOrderDTO, OrderReadDTO

logger = logging.getLogger("orders")

MAX_PAGE_SIZE = 100

_ERROR_STATUS = {
    "RECIPIENT_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "MENU_ITEM_UNAVAILABLE": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "NOTHING_TO_PAY": status.HTTP_422_UNPROCESSABLE_ENTITY,
}


def serialize_order(o: OrderModel) -> dict:
    dto = OrderReadDTO(
        id=o.id,
        recipient_id=o.recipient_id,
        recipient_name=o.recipient.name,
        delivery_date=o.delivery_date,
        status=o.status,
        total_amount=o.total_amount,
        notes=o.notes,
        snap_token=o.snap_token,
        payment_url=o.payment_url,
        transaction_id=o.transaction_id,
        items=[
            {
                "menu_item_id": it.menu_item_id,
                "menu_item_name": it.menu_item_name,
                "quantity": it.quantity,
                "unit_price": it.unit_price,
                "subtotal": it.subtotal,
            }
            for it in o.items.all()
        ],
        created_at=o.created_at,
        updated_at=o.updated_at,
    )
    return dto.model_dump(mode="json")


class OrdersCollectionView(APIView):
    """List the caller's orders or create a new pending order."""

    throttle_classes = [ScopedRateThrottle]

    def get_throttles(self):
        # DRF evaluates throttles in initial(), before get/post
        self.throttle_scope = "orders_list" if self.request.method == "GET" else "orders_create"
        return [throttle() for throttle in self.throttle_classes]

    def get(self, request):
        try:
            page = max(1, int(request.GET.get("page", 1)))
            page_size = min(MAX_PAGE_SIZE, max(1, int(request.GET.get("page_size", 20))))
        except ValueError:
            return Response({"detail": "INVALID_PAGINATION"}, status=status.HTTP_400_BAD_REQUEST)

        wanted_status = request.GET.get("status") or None
        if wanted_status and wanted_status not in OrderModel.Status.values:
            return Response({"detail": "INVALID_STATUS"}, status=status.HTTP_400_BAD_REQUEST)

        qs = OrderRepository().for_owner(request.user, status=wanted_status)
        p = Paginator(qs, page_size)
        page_obj = p.get_page(page)

        return Response(
            {
                "count": p.count,
                "page": page_obj.number,
                "page_size": page_size,
                "results": [serialize_order(o) for o in page_obj.object_list],
            },
            status=200,
        )

    def post(self, request):
        """Create a pending order.

        Returns:
            Response: One of the following responses.
            - 201 with the order body when created.
            - 200/4xx replay of the stored response for a retried key.
            - 409 with ``IDEMPOTENCY_CONFLICT`` for a reused key with a
              different payload, ``IDEMPOTENCY_IN_PROGRESS`` while the first
              request has not finished.
            - 400 for DTO validation errors.
            - 404 with ``RECIPIENT_NOT_FOUND`` for a foreign/unknown recipient.
            - 422 with ``MENU_ITEM_UNAVAILABLE``, or ``NOTHING_TO_PAY`` for a
              zero total (free orders could never be paid).
            - 503 with ``STORAGE_UNAVAILABLE``; the idempotency key is freed.
        """
        idem_key = request.headers.get("Idempotency-Key")

        try:
            dto = CreateOrderDTO.model_validate(request.data)
        except ValidationError as e:
            return Response(
                {"detail": "VALIDATION_ERROR", "errors": [{"loc": list(err["loc"]), "msg": err["msg"]} for err in e.errors()]},
                status=status.HTTP_400_BAD_REQUEST,
            )

        rec = None
        if idem_key:
            try:
                existing, rec = get_or_create_idempotent(request.user, idem_key, request.data)
            except ValueError:
                return Response({"detail": "IDEMPOTENCY_CONFLICT"}, status=status.HTTP_409_CONFLICT)
            if existing:
                if not rec.response_status:
                    return Response({"detail": "IDEMPOTENCY_IN_PROGRESS"}, status=status.HTTP_409_CONFLICT)
                resp = Response(rec.response_body, status=rec.response_status)
                resp["Idempotent-Replay"] = "true"
                return resp

        try:
            order = OrderRepository().create(request.user, dto)
        except ValueError as e:
            code = str(e)
            body = {"detail": code}
            status_code = _ERROR_STATUS.get(code, status.HTTP_400_BAD_REQUEST)
            if rec:
                finalize(rec, status_code, body)
            return Response(body, status=status_code)
        except DatabaseError as e:
            logger.error("order creation failed", extra={"error": str(e), "user_id": request.user.pk})
            if rec:
                release(rec)
            return Response({"detail": "STORAGE_UNAVAILABLE"}, status=status.HTTP_503_SERVICE_UNAVAILABLE)

        order = OrderRepository().get_for_owner(request.user, order.id)
        body = serialize_order(order)
        if rec:
            finalize(rec, status.HTTP_201_CREATED, body, order_id=order.id)
        return Response(body, status=status.HTTP_201_CREATED)


class RetrieveOrderView(APIView):
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_detail"

    def get(self, request, oid):
        o = OrderRepository().get_for_owner(request.user, oid)
        if o is None:
            return Response({"detail": "NOT_FOUND"}, status=status.HTTP_404_NOT_FOUND)
        return Response(serialize_order(o), status=200)

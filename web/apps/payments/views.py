"""HTTP views for payment initiation and gateway notifications.

``CreatePaymentView`` is called by the parent's browser with their session
or bearer token. ``PaymentWebhookView`` is called by the gateway only: it
carries no session, is CSRF-exempt and unthrottled, and relies entirely on
the notification signature.

Webhook status codes matter to the gateway: anything non-2xx is redelivered
and repeated 4xx/5xx can get the endpoint disabled. So benign notifications
(unrecognized ids, unknown transactions, already-final orders) are always 200; only
a bad signature is 401 and only an exhausted storage retry is 500.
"""
import logging

from pydantic import ValidationError
from rest_framework import status
from rest_framework.exceptions import ParseError
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView

from . import providers
from .domain import (
    InvalidSignature,
    OrdersNotFound,
    Outcome,
    PaymentError,
    PaymentValidationError,
    StorageError,
    UpstreamError,
)
from .schemas import CreatePaymentIn, CreatePaymentOut, NotificationIn

logger = logging.getLogger("payments")

# Generic, user-facing messages; details only go to logs
USER_MESSAGES = {
    PaymentValidationError.code: "Permintaan pembayaran tidak valid",
    OrdersNotFound.code: "Pesanan tidak ditemukan atau sudah dibayar",
    UpstreamError.code: "Gagal membuat pembayaran, silakan coba lagi",
    StorageError.code: "Gagal menyimpan data pembayaran, silakan coba lagi",
    InvalidSignature.code: "Tanda tangan tidak valid",
}

_ERROR_STATUS = [
    (PaymentValidationError, status.HTTP_400_BAD_REQUEST),
    (OrdersNotFound, status.HTTP_404_NOT_FOUND),
    (UpstreamError, status.HTTP_502_BAD_GATEWAY),
    (StorageError, status.HTTP_503_SERVICE_UNAVAILABLE),
]


def _error_response(e: PaymentError) -> Response:
    status_code = next((s for cls, s in _ERROR_STATUS if isinstance(e, cls)), status.HTTP_500_INTERNAL_SERVER_ERROR)
    # TransactionNotFound and other UpstreamError subclasses share the parent's message
    family = next((cls.code for cls, _ in _ERROR_STATUS if isinstance(e, cls)), e.code)
    return Response(
        {"success": False, "error": USER_MESSAGES.get(family, USER_MESSAGES[UpstreamError.code]), "code": family},
        status=status_code,
    )


class CreatePaymentView(APIView):
    """Start a gateway payment for one or more of the caller's pending orders."""

    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "payments_create"

    def post(self, request):
        """Create a Snap transaction.

        Returns:
            Response: One of the following responses.
            - 200 ``{success, snapToken, redirectUrl, orderIds, totalAmount}``.
            - 400 ``VALIDATION_ERROR`` for a missing or malformed id.
            - 404 ``ORDERS_NOT_FOUND`` when no id is a pending order of the caller.
            - 502 ``UPSTREAM_ERROR`` when the gateway fails or rejects.
            - 503 ``STORAGE_ERROR`` when linkage could not be stamped on every order.
        """
        try:
            dto = CreatePaymentIn.model_validate(request.data)
        except ValidationError:
            return _error_response(PaymentValidationError("VALIDATION_ERROR"))

        initiator = providers.get_payment_initiator()
        try:
            result = initiator.initiate(request.user.pk, dto.all_ids(), owner_email=request.user.email or "")
        except PaymentError as e:
            log = logger.error if isinstance(e, (UpstreamError, StorageError)) else logger.info
            log(
                "payment initiation failed",
                extra={"code": e.code, "reason": str(e), "detail": e.detail, "user_id": request.user.pk},
            )
            return _error_response(e)

        out = CreatePaymentOut(
            snap_token=result.snap_token,
            redirect_url=result.redirect_url,
            order_ids=result.order_ids,
            total_amount=result.total_amount,
        )
        return Response(out.model_dump(by_alias=True), status=status.HTTP_200_OK)


class PaymentWebhookView(APIView):
    """Receive gateway HTTP notifications."""

    authentication_classes = []
    permission_classes = [AllowAny]
    throttle_classes = []

    def post(self, request):
        try:
            data = request.data
        except ParseError:
            return Response({"success": False, "error": "INVALID_JSON"}, status=status.HTTP_400_BAD_REQUEST)
        if not isinstance(data, dict):
            return Response({"success": False, "error": "INVALID_NOTIFICATION"}, status=status.HTTP_400_BAD_REQUEST)

        try:
            notification = NotificationIn.model_validate(dict(data))
        except ValidationError:
            return Response({"success": False, "error": "INVALID_NOTIFICATION"}, status=status.HTTP_400_BAD_REQUEST)

        reconciler = providers.get_webhook_reconciler()
        try:
            result = reconciler.handle(notification)
        except StorageError as e:
            logger.error(
                "webhook storage failure",
                extra={"transaction_id": notification.order_id, "detail": e.detail},
            )
            return Response({"success": False, "error": "STORAGE_ERROR"}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)

        if result.outcome is Outcome.REJECTED:
            return Response({"success": False, "error": "Invalid signature"}, status=status.HTTP_401_UNAUTHORIZED)

        return Response(
            {
                "success": True,
                "outcome": result.outcome.value,
                "status": result.target_status.value if result.target_status else None,
                "matched": result.matched,
                "updated": result.updated,
                "message": result.reason or "Notification processed",
            },
            status=status.HTTP_200_OK,
        )

"""Factories wiring the payment services to their ports.

``USE_HTTP_ADAPTERS`` selects the real Midtrans client; when it is off
(tests, local development without gateway credentials) the in-process
``SnapGatewayStub`` is used instead. The order store is always the Django
one.
"""

from django.conf import settings

from .adapters import SnapGatewayStub
from .domain import GatewayPort
from .http_adapters import HttpSnapGateway
from .repository import DjangoOrderStore
from .service import PaymentInitiator, WebhookReconciler


def get_gateway() -> GatewayPort:
    if getattr(settings, "USE_HTTP_ADAPTERS", True):
        return HttpSnapGateway()
    return SnapGatewayStub()


def get_payment_initiator() -> PaymentInitiator:
    """Return a ``PaymentInitiator`` bound to the Django store and the configured gateway."""
    return PaymentInitiator(
        store=DjangoOrderStore(),
        gateway=get_gateway(),
        fallback_email=getattr(settings, "PAYMENT_FALLBACK_EMAIL", ""),
    )


def get_webhook_reconciler() -> WebhookReconciler:
    """Return a ``WebhookReconciler`` verifying with ``MIDTRANS_SERVER_KEY``."""
    return WebhookReconciler(store=DjangoOrderStore())

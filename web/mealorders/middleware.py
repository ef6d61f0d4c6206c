"""Request correlation and payload guards for the API.

``RequestIdMiddleware`` gives every request an identifier, read from the
incoming ``X-Request-Id`` header or generated server-side, and publishes it
through a ContextVar so log records emitted deep inside the payment core
(gateway calls, webhook reconciliation) carry the same id as the access log.
Gateway webhooks do not send the header, so each notification gets a fresh
id that is echoed back in ``X-Request-ID``.

``ApiSizeLimitMiddleware`` rejects oversized bodies on ``/api/`` before DRF
parses them. Webhook notifications are a few hundred bytes; anything larger
than ``API_MAX_BYTES`` is not a gateway payload.
"""

import uuid
import contextvars
from django.conf import settings
from django.http import JsonResponse

from django.utils.deprecation import MiddlewareMixin

REQUEST_ID_CTX = contextvars.ContextVar("request_id", default="-")


class RequestIdMiddleware(MiddlewareMixin):
    """Set ``request.request_id`` and echo it on the response.

    Attributes:
        HEADER (str): Incoming header name as found in ``request.META``.
        RESPONSE_HEADER (str): Header added to outgoing responses.
    """

    HEADER = "HTTP_X_REQUEST_ID"
    RESPONSE_HEADER = "X-Request-ID"

    def process_request(self, request):
        """Reuse the client-provided id or mint a UUIDv4 and store it.

        Args:
            request: Django HttpRequest instance.
        """
        rid = request.META.get(self.HEADER) or str(uuid.uuid4())
        request.request_id = rid
        REQUEST_ID_CTX.set(rid)

    def process_response(self, request, response):
        """Attach the request id header, falling back to the ContextVar.

        Args:
            request: Django HttpRequest (may lack ``request_id`` in error handlers).
            response: Django HttpResponse to modify.

        Returns:
            The same response with ``X-Request-ID`` set.
        """
        rid = getattr(request, "request_id", REQUEST_ID_CTX.get())
        response[self.RESPONSE_HEADER] = rid
        REQUEST_ID_CTX.set("-")
        return response


class ApiSizeLimitMiddleware(MiddlewareMixin):
    """Return 413 for ``/api/`` requests whose Content-Length exceeds the cap."""

    def process_request(self, request):
        if not request.path.startswith("/api/"):
            return None
        clen = request.META.get("CONTENT_LENGTH")
        if clen and clen.isdigit() and int(clen) > getattr(settings, "API_MAX_BYTES", 256 * 1024):
            return JsonResponse({"success": False, "detail": "PAYLOAD_TOO_LARGE"}, status=413)
        return None

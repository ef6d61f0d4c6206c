from django.conf import settings
from django.db import DatabaseError, connection
from django.http import JsonResponse

from apps.payments.http_adapters import _gateway_cb


def health_view(_request):
    db_ok = False
    try:
        with connection.cursor() as cur:
            cur.execute("SELECT 1;")
        db_ok = True
    except DatabaseError:
        db_ok = False

    gateway = {
        "configured": bool(getattr(settings, "MIDTRANS_SERVER_KEY", "")),
        "mode": "production" if getattr(settings, "MIDTRANS_IS_PRODUCTION", False) else "sandbox",
        "circuit": _gateway_cb.state,
    }

    # An open gateway circuit degrades payments but the API stays up
    ok = db_ok
    code = 200 if ok else 503
    return JsonResponse(
        {"ok": ok, "components": {"db": {"ok": db_ok}, "gateway": gateway}},
        status=code,
    )

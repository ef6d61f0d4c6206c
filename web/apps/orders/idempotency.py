"""Idempotency keys for order creation.

A parent double-tapping "Pesan" on a flaky connection must not create two
orders for the same child and day. The client sends an ``Idempotency-Key``
header; the first request stores the response, retries with the same payload
replay it, and a reused key with a different payload is a conflict.

Keys are namespaced by owner so two users picking the same key never see
each other's responses.
"""

import hashlib, json
from django.db import transaction, IntegrityError
from .models import IdempotencyKey


def _hash(payload: dict) -> str:
    """Return the SHA-256 hex digest of the canonical JSON form of ``payload``."""
    body = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(body.encode("utf-8")).hexdigest()


def scoped_key(owner, key: str) -> str:
    return f"{owner.pk}:{key}"


@transaction.atomic
def get_or_create_idempotent(owner, key: str, payload: dict):
    """Get-or-create the idempotency record for ``owner`` and ``key``.

    Behavior:
        - New key: create the record and return ``(False, rec)``; the caller
          finalizes it with the response.
        - Existing key, same payload: lock it and return ``(True, rec)``.
        - Existing key, different payload: raise
          ``ValueError("IDEMPOTENCY_CONFLICT")``.

    Args:
        owner: Authenticated user the key belongs to.
        key: Client-provided idempotency key.
        payload: Raw request payload used for the request hash.

    Returns:
        tuple[bool, IdempotencyKey]: ``(existing, rec)``.

    Raises:
        ValueError: If the key exists with a different payload hash.
    """
    h = _hash(payload)
    k = scoped_key(owner, key)

    try:
        # Savepoint: an IntegrityError only rolls back this block
        with transaction.atomic():
            rec = IdempotencyKey.objects.create(key=k, request_hash=h, response_status=0, response_body={})
            return False, rec
    except IntegrityError:
        rec = IdempotencyKey.objects.select_for_update().get(key=k)
        if rec.request_hash != h:
            raise ValueError("IDEMPOTENCY_CONFLICT")
        return True, rec


def finalize(rec: IdempotencyKey, status_code: int, body: dict, order_id=None):
    """Store the final response so later retries can replay it.

    Args:
        rec: Record returned by ``get_or_create_idempotent``.
        status_code: HTTP status of the response.
        body: JSON-serializable response body.
        order_id: Created order, when there is one.
    """
    rec.response_status = status_code
    rec.response_body = body
    if order_id is not None:
        rec.order_id = order_id
    rec.save(update_fields=["response_status", "response_body", "order"])


def release(rec: IdempotencyKey):
    """Drop an unfinished record so a retry with the same key starts over."""
    IdempotencyKey.objects.filter(key=rec.key, response_status=0).delete()

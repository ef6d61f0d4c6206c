import hashlib

import pytest
from django.core.exceptions import ImproperlyConfigured

from apps.payments.signature import compute_signature, verify_signature

KEY = "SB-Mid-server-test-key"
OID = "3f2b8c1e-0d4a-4e8b-9c3a-7b6d5e4f3a21"


def test_compute_signature_is_sha512_of_concatenation():
    expected = hashlib.sha512(f"{OID}20025000.00{KEY}".encode()).hexdigest()
    assert compute_signature(OID, "200", "25000.00", KEY) == expected


def test_verify_accepts_matching_signature():
    sig = compute_signature(OID, "200", "25000.00", KEY)
    assert verify_signature(OID, "200", "25000.00", sig, server_key=KEY)
    assert verify_signature(OID, "200", "25000.00", sig.upper(), server_key=KEY)


@pytest.mark.parametrize("field", ["order_id", "status_code", "gross_amount", "key"])
def test_verify_rejects_any_altered_input(field):
    vals = {"order_id": OID, "status_code": "200", "gross_amount": "25000.00", "key": KEY}
    sig = compute_signature(vals["order_id"], vals["status_code"], vals["gross_amount"], vals["key"])
    vals[field] = vals[field] + "1"
    assert not verify_signature(vals["order_id"], vals["status_code"], vals["gross_amount"], sig,
                                server_key=vals["key"])


def test_gross_amount_is_compared_textually():
    sig = compute_signature(OID, "200", "25000.00", KEY)
    assert not verify_signature(OID, "200", "25000", sig, server_key=KEY)


@pytest.mark.parametrize("received", [None, "", "not-hex", "ü" * 10])
def test_verify_rejects_empty_or_garbage(received):
    assert not verify_signature(OID, "200", "25000.00", received, server_key=KEY)


def test_missing_server_key_is_a_configuration_error(settings):
    settings.MIDTRANS_SERVER_KEY = ""
    with pytest.raises(ImproperlyConfigured):
        compute_signature(OID, "200", "25000.00")

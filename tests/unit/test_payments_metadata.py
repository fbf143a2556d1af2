import json
from decimal import Decimal

import pytest

from storefront.carts.models import CartSnapshot, Identity
from storefront.payments import metadata as meta
from storefront.payments.errors import EmptyCartError, MetadataDecodeError, PayloadTooLargeError
from storefront.payments.schemas import CheckoutIntentRequest
from tests.fakes import ADDRESS, line


def _checkout(**overrides) -> CheckoutIntentRequest:
    body = {"guestEmail": "ana@example.com", "shippingAddress": ADDRESS, "notes": "Porte B"}
    body.update(overrides)
    return CheckoutIntentRequest.model_validate(body)

def _snapshot(identity, *lines):
    return CartSnapshot(identity=identity, cart_id="cart-1", lines=tuple(lines))


def test_encode_amount_and_flat_string_bag():
    guest = Identity(guest_token="g1")
    amount, bag = meta.encode(guest, _snapshot(guest, line("p1", "10.00", 2), line("p2", "5.50", 1)), _checkout())
    assert amount == 3111
    assert all(isinstance(k, str) and isinstance(v, str) for k, v in bag.items())
    assert bag["v"] == "1"
    assert bag["guestToken"] == "g1"
    assert bag["userId"] == ""
    assert bag["subtotal"] == "25.50"
    assert bag["tax"] == "5.61"
    assert bag["total"] == "31.11"
    assert json.loads(bag["shippingAddress"])["postalCode"] == "1000"

def test_encode_is_deterministic():
    user = Identity(user_id="u1")
    snapshot = _snapshot(user, line("p1", "20.00", 1))
    assert meta.encode(user, snapshot, _checkout()) == meta.encode(user, snapshot, _checkout())

def test_billing_defaults_to_shipping():
    user = Identity(user_id="u1")
    _, bag = meta.encode(user, _snapshot(user, line("p1", "20.00", 1)), _checkout())
    assert bag["billingAddress"] == bag["shippingAddress"]

def test_encode_rejects_empty_cart():
    guest = Identity(guest_token="g1")
    with pytest.raises(EmptyCartError):
        meta.encode(guest, CartSnapshot(identity=guest), _checkout())

def test_encode_fails_fast_on_long_value():
    guest = Identity(guest_token="g1")
    with pytest.raises(PayloadTooLargeError) as exc:
        meta.encode(guest, _snapshot(guest, line("p1", "20.00", 1)), _checkout(notes="x" * 501))
    assert "notes" in exc.value.detail

def test_value_of_exactly_500_chars_is_accepted():
    guest = Identity(guest_token="g1")
    _, bag = meta.encode(guest, _snapshot(guest, line("p1", "20.00", 1)), _checkout(notes="x" * 500))
    assert len(bag["notes"]) == 500

def test_check_limits_key_count_and_length():
    with pytest.raises(PayloadTooLargeError):
        meta.check_limits({f"k{i}": "v" for i in range(51)})
    with pytest.raises(PayloadTooLargeError):
        meta.check_limits({"k" * 41: "v"})
    meta.check_limits({f"k{i}": "v" for i in range(50)})

def test_decode_is_inverse_of_encode():
    user = Identity(user_id="u1")
    checkout = _checkout(shippingMethod="express", billingAddress=dict(ADDRESS, city="Maribor"))
    _, bag = meta.encode(user, _snapshot(user, line("p1", "20.00", 1)), checkout)

    decoded = meta.decode(bag)
    assert decoded.identity == user
    assert decoded.shipping_address == ADDRESS
    assert decoded.billing_address["city"] == "Maribor"
    assert decoded.guest_email == "ana@example.com"
    assert decoded.notes == "Porte B"
    assert decoded.shipping_method == "express"
    assert decoded.totals.total == Decimal("24.40")
    assert decoded.version == "1"

def test_decode_ignores_unknown_keys():
    guest = Identity(guest_token="g1")
    _, bag = meta.encode(guest, _snapshot(guest, line("p1", "20.00", 1)), _checkout())
    bag["coupon"] = "SUMMER"
    decoded = meta.decode(bag)
    assert decoded.identity == guest
    assert decoded.extra == {"coupon": "SUMMER"}

def test_decode_without_version_reads_as_v1():
    bag = {"guestToken": "g1", "shippingAddress": json.dumps(ADDRESS)}
    decoded = meta.decode(bag)
    assert decoded.version == "1"
    assert decoded.billing_address == ADDRESS
    assert decoded.totals is None

def test_decode_rejects_unknown_version():
    with pytest.raises(MetadataDecodeError):
        meta.decode({"v": "2", "guestToken": "g1", "shippingAddress": json.dumps(ADDRESS)})

def test_decode_rejects_bad_address_or_missing_identity():
    with pytest.raises(MetadataDecodeError):
        meta.decode({"v": "1", "guestToken": "g1", "shippingAddress": "{not json"})
    with pytest.raises(MetadataDecodeError):
        meta.decode({"v": "1", "shippingAddress": json.dumps(ADDRESS)})

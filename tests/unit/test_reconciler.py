import logging

from storefront.carts.models import CartSnapshot, Identity
from storefront.orders.repository import ORDER_PROCESSING, PAYMENT_PAID
from storefront.payments import metadata as meta
from storefront.payments import reconciler as rec
from storefront.payments import service
from storefront.payments.schemas import CheckoutIntentRequest
from storefront.payments.stripe_client import EVENT_FAILED, EVENT_SUCCEEDED
from tests.fakes import ADDRESS, intent_event, line


def _bag_for(store, identity, *lines):
    """Met les lignes au panier et renvoie (montant, métadonnées) comme au checkout."""
    store.put_cart(identity, *lines)
    snapshot = CartSnapshot(identity=identity, cart_id="cart", lines=tuple(lines))
    checkout = CheckoutIntentRequest.model_validate({"shippingAddress": ADDRESS})
    return meta.encode(identity, snapshot, checkout)


def test_succeeded_creates_paid_order_and_clears_cart(store, reconciler, guest):
    amount, bag = _bag_for(store, guest, line("p1", "20.00", 1))

    result = reconciler.handle(intent_event(EVENT_SUCCEEDED, "pi_1", bag, amount))

    assert result.status == rec.ORDER_CREATED
    assert len(store.orders) == 1
    order = store.order_for_intent("pi_1")
    assert order["id"] == result.order_id
    assert order["payment_status"] == PAYMENT_PAID
    assert order["status"] == ORDER_PROCESSING
    assert order["total"] == "24.40"
    assert order["guest_token"] == guest.guest_token
    assert [i["product_sku"] for i in store.order_items[order["id"]]] == ["SKU-p1"]
    assert store.cart_lines(guest) == []

def test_redelivery_is_idempotent(store, reconciler, guest):
    amount, bag = _bag_for(store, guest, line("p1", "10.00", 2), line("p2", "5.50", 1))
    event = intent_event(EVENT_SUCCEEDED, "pi_1", bag, amount)

    statuses = [reconciler.handle(event).status for _ in range(3)]

    assert statuses == [rec.ORDER_CREATED, rec.ALREADY_RECONCILED, rec.ALREADY_RECONCILED]
    assert len(store.orders) == 1
    assert store.cart_lines(guest) == []

def test_identities_are_isolated(store, reconciler):
    alice = Identity(user_id="alice")
    bob = Identity(guest_token="bob-token")
    _, bag_a = _bag_for(store, alice, line("p1", "10.00", 1))
    _, bag_b = _bag_for(store, bob, line("p2", "30.00", 1))

    assert reconciler.handle(intent_event(EVENT_SUCCEEDED, "pi_a", bag_a)).status == rec.ORDER_CREATED

    assert store.cart_lines(alice) == []
    assert [l.product_id for l in store.cart_lines(bob)] == ["p2"]
    assert store.order_for_intent("pi_b") is None

    assert reconciler.handle(intent_event(EVENT_SUCCEEDED, "pi_b", bag_b)).status == rec.ORDER_CREATED
    assert store.order_for_intent("pi_a")["user_id"] == "alice"
    assert store.order_for_intent("pi_b")["guest_token"] == "bob-token"

def test_concurrent_delivery_losing_the_race_is_success(store, orders, reconciler, guest):
    amount, bag = _bag_for(store, guest, line("p1", "20.00", 1))
    event = intent_event(EVENT_SUCCEEDED, "pi_1", bag, amount)
    reconciler.handle(event)

    # Le lookup initial ne voit pas encore la commande, l'index unique tranche
    store.put_cart(guest, line("p1", "20.00", 1))
    orders.stale_lookups = 1
    result = reconciler.handle(event)

    assert result.status == rec.ALREADY_RECONCILED
    assert len(store.orders) == 1

def test_empty_cart_after_concurrent_commit_is_already_reconciled(store, orders, reconciler, guest):
    amount, bag = _bag_for(store, guest, line("p1", "20.00", 1))
    event = intent_event(EVENT_SUCCEEDED, "pi_1", bag, amount)
    reconciler.handle(event)

    orders.stale_lookups = 1
    assert reconciler.handle(event).status == rec.ALREADY_RECONCILED
    assert store.incidents == []

def test_empty_cart_without_order_records_incident(store, reconciler, guest, caplog):
    amount, bag = _bag_for(store, guest, line("p1", "20.00", 1))
    store.carts[guest]["lines"] = []

    with caplog.at_level(logging.ERROR):
        result = reconciler.handle(intent_event(EVENT_SUCCEEDED, "pi_1", bag, amount))

    assert result.status == rec.MATERIALIZATION_FAILED
    assert store.orders == {}
    assert store.incidents[0]["payment_intent_id"] == "pi_1"
    assert "pi_1" in caplog.text

def test_materialization_error_is_logged_and_reported(store, materializer, reconciler, guest, caplog):
    amount, bag = _bag_for(store, guest, line("p1", "20.00", 1))
    materializer.error = RuntimeError("connection reset")

    with caplog.at_level(logging.ERROR):
        result = reconciler.handle(intent_event(EVENT_SUCCEEDED, "pi_1", bag, amount))

    assert result.status == rec.MATERIALIZATION_FAILED
    assert "connection reset" in store.incidents[0]["reason"]
    assert [l.product_id for l in store.cart_lines(guest)] == ["p1"]

def test_undecodable_metadata_is_a_materialization_failure(store, reconciler):
    event = intent_event(EVENT_SUCCEEDED, "pi_1", {"v": "9", "guestToken": "g"})
    result = reconciler.handle(event)
    assert result.status == rec.MATERIALIZATION_FAILED
    assert store.incidents and store.orders == {}

def test_lookup_failure_is_reported_without_materializing(store, orders, reconciler, guest, caplog):
    _, bag = _bag_for(store, guest, line("p1", "20.00", 1))
    orders.fail_lookup = True

    with caplog.at_level(logging.ERROR):
        result = reconciler.handle(intent_event(EVENT_SUCCEEDED, "pi_1", bag))

    assert result.status == rec.MATERIALIZATION_FAILED
    assert store.orders == {}
    assert [l.product_id for l in store.cart_lines(guest)] == ["p1"]
    assert "orders storage unavailable" in store.incidents[0]["reason"]
    assert "pi_1" in caplog.text

def test_amount_mismatch_is_logged_not_blocking(store, reconciler, guest, caplog):
    _, bag = _bag_for(store, guest, line("p1", "20.00", 1))
    with caplog.at_level(logging.WARNING):
        result = reconciler.handle(intent_event(EVENT_SUCCEEDED, "pi_1", bag, amount=999))
    assert result.status == rec.ORDER_CREATED
    assert "amount mismatch" in caplog.text

def test_failed_payment_clears_cart_and_creates_nothing(store, reconciler, guest):
    _, bag = _bag_for(store, guest, line("p1", "20.00", 1))

    result = reconciler.handle(intent_event(EVENT_FAILED, "pi_1", bag))

    assert result.status == rec.PAYMENT_FAILED
    assert store.orders == {}
    assert store.cart_lines(guest) == []

def test_failed_payment_clear_error_is_swallowed(store, carts, reconciler, guest):
    _, bag = _bag_for(store, guest, line("p1", "20.00", 1))
    carts.fail_clear = True
    assert reconciler.handle(intent_event(EVENT_FAILED, "pi_1", bag)).status == rec.PAYMENT_FAILED

def test_legacy_intent_marks_existing_order_paid(store, reconciler):
    order = store.add_unpaid_order()

    result = reconciler.handle(intent_event(EVENT_SUCCEEDED, "pi_legacy", {"orderId": order["id"], "orderNumber": "ORD-1"}))

    assert result.status == rec.ORDER_MARKED_PAID
    assert order["payment_status"] == PAYMENT_PAID
    assert order["payment_intent_id"] == "pi_legacy"
    assert reconciler.handle(intent_event(EVENT_SUCCEEDED, "pi_legacy", {"orderId": order["id"]})).status == rec.ALREADY_RECONCILED

def test_unknown_event_types_are_ignored(store, reconciler):
    result = reconciler.handle({"type": "charge.refunded", "data": {"object": {"id": "ch_1"}}})
    assert result.status == rec.IGNORED
    assert result.as_dict() == {"status": "ignored"}
    assert store.orders == {}

def test_order_intent_is_marked_paid_on_success(store, orders, gateway, reconciler):
    order = store.add_unpaid_order()
    service.create_payment_intent_for_order(order["id"], orders=orders, gateway=gateway)
    created = gateway.created[0]
    event = intent_event(EVENT_SUCCEEDED, created["id"], created["metadata"], created["amount"])

    result = reconciler.handle(event)

    assert result.status == rec.ORDER_MARKED_PAID
    assert result.order_id == order["id"]
    assert order["payment_status"] == PAYMENT_PAID
    assert order["status"] == ORDER_PROCESSING
    assert reconciler.handle(event).status == rec.ALREADY_RECONCILED
    assert len(store.orders) == 1

def test_unpaid_order_found_by_intent_is_marked_paid(store, reconciler):
    order = store.add_unpaid_order(intent_id="pi_7")

    result = reconciler.handle(intent_event(EVENT_SUCCEEDED, "pi_7", {}))

    assert result.status == rec.ORDER_MARKED_PAID
    assert order["payment_status"] == PAYMENT_PAID

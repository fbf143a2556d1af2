"""
Cas d'usage 'payments': orchestre panier, encodeur d'intent et passerelle Stripe.
"""
import logging
from decimal import Decimal
from typing import Any, Dict, Optional

from storefront.carts.models import Identity
from storefront.carts.repository import CartRepository
from storefront.orders.repository import PAYMENT_PAID, OrderRepository
from storefront.payments import metadata as payments_metadata
from storefront.payments.cart import money, to_minor_units
from storefront.payments.errors import CheckoutError, EmptyCartError, OrderNotFoundError
from storefront.payments.schemas import CheckoutIntentRequest
from storefront.payments.stripe_client import StripeGateway

logger = logging.getLogger(__name__)

def _major_units(amount_minor_units: int) -> float:
    return amount_minor_units / 100

def create_checkout_intent(
    identity: Optional[Identity],
    checkout: CheckoutIntentRequest,
    *,
    carts: CartRepository,
    gateway: StripeGateway,
) -> Dict[str, Any]:
    """
    Crée l'intent de paiement pour le panier courant de l'identité.
    - Sans identité: pas de panier => EmptyCartError, ni stockage ni Stripe sollicités
    - Le montant vient des lignes persistées, jamais du client
    - Aucune commande n'est créée ici: le webhook s'en charge une fois le paiement confirmé
    Retour: {"clientSecret", "paymentIntentId", "amount"} (amount en unités majeures)
    """
    if identity is None:
        raise EmptyCartError()
    snapshot = carts.get_snapshot(identity)
    amount, bag = payments_metadata.encode(identity, snapshot, checkout)
    intent = gateway.create_intent(amount, bag)
    logger.info(
        "payments.checkout_intent created intent_id=%s amount=%s items=%s identity=%s",
        intent["intent_id"], amount, len(snapshot.lines), identity.describe(),
    )
    return {
        "clientSecret": intent["client_secret"],
        "paymentIntentId": intent["intent_id"],
        "amount": _major_units(amount),
    }

def create_payment_intent_for_order(
    order_id: str,
    *,
    orders: OrderRepository,
    gateway: StripeGateway,
) -> Dict[str, Any]:
    """
    Flux legacy: intent pour une commande déjà créée.
    - Intent déjà associé => on renvoie son client_secret (pas de second débit)
    - Sinon création avec metadata {orderId, orderNumber} et tampon sur la commande
    """
    order = orders.find_by_id(order_id)
    if not order:
        raise OrderNotFoundError()
    if order.get("payment_status") == PAYMENT_PAID:
        raise CheckoutError("Order already paid")

    existing_intent = order.get("payment_intent_id")
    if existing_intent:
        intent = gateway.retrieve_intent(existing_intent)
        return {"clientSecret": intent["client_secret"]}

    amount = to_minor_units(Decimal(str(order.get("total") or "0")))
    intent = gateway.create_intent(
        amount,
        {"orderId": str(order["id"]), "orderNumber": str(order.get("order_number") or "")},
    )
    orders.set_payment_intent(order["id"], intent["intent_id"])
    logger.info(
        "payments.order_intent created order_id=%s intent_id=%s total=%s",
        order["id"], intent["intent_id"], money(Decimal(str(order.get("total") or "0"))),
    )
    return {"clientSecret": intent["client_secret"]}

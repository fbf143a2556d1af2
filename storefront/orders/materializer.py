"""
Matérialisation d'une commande à partir d'un checkout payé.

Tout passe par la fonction Postgres `materialize_order` (supabase/migrations):
dans une seule transaction elle insère `orders` et `order_items` puis vide le
panier source. Soit tout existe, soit rien n'a changé.
L'index unique sur orders.payment_intent_id garantit au plus une commande par
intent, y compris avec plusieurs instances du service.
"""
import logging
import secrets
import string
import time
from typing import Any, Callable, Dict, Optional

from postgrest.exceptions import APIError
from supabase import Client

from storefront import config
from storefront.carts.models import CartSnapshot, Identity
from storefront.infra import supabase_client
from storefront.orders.repository import ORDER_PROCESSING, PAYMENT_PAID
from storefront.payments.cart import Totals, compute_totals, money
from storefront.payments.errors import DuplicateOrderError, EmptyCartError
from storefront.payments.metadata import DecodedCheckout

logger = logging.getLogger(__name__)

_BASE36 = string.digits + string.ascii_uppercase

def _base36(n: int) -> str:
    out = ""
    while True:
        n, r = divmod(n, 36)
        out = _BASE36[r] + out
        if n == 0:
            return out

def generate_order_number() -> str:
    """ORD-<horodatage base36>-<4 caractères aléatoires>."""
    random_part = "".join(secrets.choice(_BASE36) for _ in range(4))
    return f"ORD-{_base36(int(time.time() * 1000))}-{random_part}"


class OrderMaterializer:
    def __init__(self, client_factory: Optional[Callable[[], Client]] = None, vat_rate=None):
        self._client_factory = client_factory
        self._vat_rate = vat_rate

    def _client(self) -> Client:
        if self._client_factory is not None:
            return self._client_factory()
        return supabase_client.get_service_supabase()

    def _totals(self, checkout: DecodedCheckout, snapshot: CartSnapshot) -> Totals:
        # Les montants encodés sont ceux réellement débités; recalcul seulement s'ils manquent
        if checkout.totals is not None:
            return checkout.totals
        return compute_totals(snapshot.subtotal, self._vat_rate if self._vat_rate is not None else config.VAT_RATE, config.SHIPPING_COST)

    def build_params(
        self,
        identity: Identity,
        checkout: DecodedCheckout,
        snapshot: CartSnapshot,
        intent_id: str,
    ) -> Dict[str, Any]:
        totals = self._totals(checkout, snapshot)
        order = {
            "order_number": generate_order_number(),
            "user_id": identity.user_id,
            "guest_token": identity.guest_token,
            "guest_email": checkout.guest_email,
            "subtotal": money(totals.subtotal),
            "tax": money(totals.tax),
            "shipping_cost": money(totals.shipping_cost),
            "discount": "0.00",
            "total": money(totals.total),
            "shipping_address": checkout.shipping_address,
            "billing_address": checkout.billing_address,
            "notes": checkout.notes,
            "shipping_method": checkout.shipping_method,
            "status": ORDER_PROCESSING,
            "payment_status": PAYMENT_PAID,
            "payment_intent_id": intent_id,
        }
        return {
            "p_order": order,
            "p_items": [line.snapshot() for line in snapshot.lines],
            "p_cart_id": snapshot.cart_id,
        }

    def materialize(
        self,
        identity: Identity,
        checkout: DecodedCheckout,
        snapshot: CartSnapshot,
        intent_id: str,
    ) -> Dict[str, Any]:
        """
        Crée la commande payée, ses lignes figées, et vide le panier (atomique).
        - Panier vide => EmptyCartError
        - Violation d'unicité sur payment_intent_id => DuplicateOrderError
        Retour: la ligne orders créée.
        """
        if snapshot.is_empty:
            raise EmptyCartError()
        params = self.build_params(identity, checkout, snapshot, intent_id)
        try:
            res = self._client().rpc("materialize_order", params).execute()
        except APIError as e:
            if supabase_client.is_unique_violation(e):
                raise DuplicateOrderError(intent_id) from e
            raise
        order = supabase_client.first_row(res.data)
        if not order:
            raise RuntimeError(f"materialize_order returned no row for intent {intent_id}")
        logger.info(
            "orders.materialized order_id=%s order_number=%s intent_id=%s items=%s identity=%s",
            order.get("id"), order.get("order_number"), intent_id, len(snapshot.lines), identity.describe(),
        )
        return order

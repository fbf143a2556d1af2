"""
Accès aux données pour la feature 'carts' (tables carts, cart_items, products).
"""
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Optional
import logging

from supabase import Client

from storefront.infra import supabase_client
from storefront.carts.models import CartLine, CartSnapshot, Identity

logger = logging.getLogger(__name__)

# module storefront.carts.repository
def _to_decimal(value: Any) -> Decimal:
    # Prix persisté illisible: on échoue plutôt que de facturer 0
    if value is None:
        raise ValueError("cart item without price")
    try:
        return Decimal(str(value))
    except InvalidOperation as e:
        raise ValueError(f"invalid cart item price: {value!r}") from e

def _to_line(row: Dict[str, Any]) -> Optional[CartLine]:
    """Convertit une ligne cart_items (+ products) en CartLine; None si quantité < 1 ou produit absent."""
    product_id = str(row.get("product_id") or "")
    qty = int(row.get("quantity") or 0)
    if not product_id or qty < 1:
        return None
    product = row.get("products") or {}
    return CartLine(
        product_id=product_id,
        variant_id=row.get("variant_id") or None,
        quantity=qty,
        unit_price=_to_decimal(row.get("price")),
        name=str(product.get("name") or ""),
        sku=str(product.get("sku") or ""),
    )


class CartRepository:
    """Lecture du panier et vidage, via le client service-role."""

    def __init__(self, client_factory: Optional[Callable[[], Client]] = None):
        self._client_factory = client_factory

    def _client(self) -> Client:
        if self._client_factory is not None:
            return self._client_factory()
        return supabase_client.get_service_supabase()

    def _find_cart(self, client: Client, identity: Identity) -> Optional[Dict[str, Any]]:
        query = client.table("carts").select("id")
        if identity.user_id:
            query = query.eq("user_id", identity.user_id)
        else:
            query = query.eq("guest_token", identity.guest_token)
        res = query.limit(1).execute()
        return supabase_client.first_row(res.data)

    def get_snapshot(self, identity: Identity) -> CartSnapshot:
        """
        Retourne les lignes actuelles du panier de l'identité.
        - Panier inexistant => snapshot vide (cart_id None).
        - Les erreurs Supabase et les prix illisibles sont propagés: un panier illisible n'est pas un panier vide.
        """
        client = self._client()
        cart = self._find_cart(client, identity)
        if not cart:
            return CartSnapshot(identity=identity)
        res = (
            client.table("cart_items")
            .select("id, product_id, variant_id, quantity, price, products(name, sku)")
            .eq("cart_id", cart["id"])
            .order("created_at")
            .execute()
        )
        lines = tuple(line for line in (_to_line(r) for r in res.data or []) if line is not None)
        return CartSnapshot(identity=identity, cart_id=str(cart["id"]), lines=lines)

    def clear(self, identity: Identity) -> bool:
        """
        Vide le panier (supprime les lignes, remet le sous-total en cache à 0).
        Retourne False si l'identité n'a pas de panier.
        """
        client = self._client()
        cart = self._find_cart(client, identity)
        if not cart:
            return False
        client.table("cart_items").delete().eq("cart_id", cart["id"]).execute()
        client.table("carts").update({"subtotal": "0.00"}).eq("id", cart["id"]).execute()
        logger.info("carts.repository.clear cart_id=%s identity=%s", cart["id"], identity.describe())
        return True

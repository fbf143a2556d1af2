"""
Modèles du panier (lecture seule côté checkout).
Le panier appartient soit à un utilisateur enregistré (user_id), soit à un invité (guest_token).
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple


@dataclass(frozen=True)
class Identity:
    user_id: Optional[str] = None
    guest_token: Optional[str] = None

    def __post_init__(self):
        if bool(self.user_id) == bool(self.guest_token):
            raise ValueError("Identity requires exactly one of user_id or guest_token")

    @classmethod
    def from_values(cls, user_id: Optional[str], guest_token: Optional[str]) -> Optional["Identity"]:
        """L'utilisateur enregistré l'emporte sur le token invité; None si aucun des deux."""
        user_id = (user_id or "").strip()
        guest_token = (guest_token or "").strip()
        if user_id:
            return cls(user_id=user_id)
        if guest_token:
            return cls(guest_token=guest_token)
        return None

    def describe(self) -> str:
        return f"user:{self.user_id}" if self.user_id else f"guest:{self.guest_token}"


@dataclass(frozen=True)
class CartLine:
    product_id: str
    quantity: int
    unit_price: Decimal
    name: str = ""
    sku: str = ""
    variant_id: Optional[str] = None

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity

    def snapshot(self) -> Dict[str, Any]:
        # Copie figée pour order_items: un changement de prix/catalogue ultérieur ne modifie pas la commande
        return {
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "product_name": self.name,
            "product_sku": self.sku,
            "quantity": self.quantity,
            "unit_price": f"{self.unit_price:.2f}",
            "total": f"{self.line_total:.2f}",
        }


@dataclass(frozen=True)
class CartSnapshot:
    identity: Identity
    cart_id: Optional[str] = None
    lines: Tuple[CartLine, ...] = field(default_factory=tuple)

    @property
    def is_empty(self) -> bool:
        return not self.lines

    @property
    def subtotal(self) -> Decimal:
        """Somme recalculée depuis les lignes persistées (jamais depuis l'entrée client)."""
        return sum((line.line_total for line in self.lines), Decimal("0"))

"""
Logique panier pure (pas de Stripe, pas de DB): calcul des totaux du checkout.
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

CENT = Decimal("0.01")

# module storefront.payments.cart
@dataclass(frozen=True)
class Totals:
    subtotal: Decimal
    tax: Decimal
    shipping_cost: Decimal
    total: Decimal

    @property
    def amount_minor_units(self) -> int:
        return to_minor_units(self.total)

    def as_strings(self) -> dict:
        """Montants affichables (2 décimales) pour les métadonnées et la commande."""
        return {
            "subtotal": money(self.subtotal),
            "tax": money(self.tax),
            "shippingCost": money(self.shipping_cost),
            "total": money(self.total),
        }

def to_minor_units(amount: Decimal) -> int:
    """
    Convertit un montant en centimes, arrondi au demi supérieur.
    N'est appliqué qu'au total final: arrondir par ligne cumulerait les erreurs.
    """
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))

def money(amount: Decimal) -> str:
    return str(Decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP))

def compute_totals(subtotal: Decimal, vat_rate: Decimal, shipping_cost: Decimal = Decimal("0")) -> Totals:
    """
    Politique de prix: fonction pure du sous-total et des taux configurés.
    - tax = subtotal * vat_rate (pas d'arrondi intermédiaire)
    - total = subtotal + tax + shipping_cost
    """
    subtotal = Decimal(subtotal)
    tax = subtotal * Decimal(vat_rate)
    shipping_cost = Decimal(shipping_cost)
    return Totals(subtotal=subtotal, tax=tax, shipping_cost=shipping_cost, total=subtotal + tax + shipping_cost)

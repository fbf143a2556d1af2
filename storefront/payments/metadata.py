"""
Sérialisation/désérialisation des métadonnées Stripe du checkout.

Stripe limite les métadonnées à des paires clé/valeur texte plates:
50 clés max, clés de 40 caractères max, valeurs de 500 caractères max.
Les adresses sont sérialisées en JSON dans une seule valeur. On échoue tôt
(PayloadTooLargeError) plutôt que de tronquer: une adresse tronquée ne se
décoderait plus au moment du webhook.

Format versionné (clé "v"): un décodeur v1 ignore les clés qu'il ne connaît pas,
pour que l'ajout de champs ne casse pas les intents déjà en vol.
"""
import json
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Mapping, Optional, Tuple

from storefront import config
from storefront.carts.models import CartSnapshot, Identity
from storefront.payments.cart import Totals, compute_totals
from storefront.payments.errors import EmptyCartError, MetadataDecodeError, PayloadTooLargeError
from storefront.payments.schemas import CheckoutIntentRequest

METADATA_VERSION = "1"
SUPPORTED_VERSIONS = {"1"}
MAX_KEYS = 50
MAX_KEY_LENGTH = 40
MAX_VALUE_LENGTH = 500

# module storefront.payments.metadata
@dataclass(frozen=True)
class DecodedCheckout:
    identity: Identity
    shipping_address: Dict[str, Any]
    billing_address: Dict[str, Any]
    guest_email: Optional[str] = None
    notes: Optional[str] = None
    shipping_method: Optional[str] = None
    totals: Optional[Totals] = None
    version: str = METADATA_VERSION
    extra: Dict[str, str] = field(default_factory=dict)


def _dumps(value: Dict[str, Any]) -> str:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False, sort_keys=True)

def check_limits(metadata: Mapping[str, str]) -> None:
    """Vérifie les limites Stripe; soulève PayloadTooLargeError en nommant le champ fautif."""
    if len(metadata) > MAX_KEYS:
        raise PayloadTooLargeError(f"Too many metadata keys ({len(metadata)} > {MAX_KEYS})")
    for key, value in metadata.items():
        if not isinstance(value, str):
            raise TypeError(f"metadata value for {key!r} must be str")
        if len(key) > MAX_KEY_LENGTH:
            raise PayloadTooLargeError(f"Metadata key too long: {key}")
        if len(value) > MAX_VALUE_LENGTH:
            raise PayloadTooLargeError(f"Field '{key}' is too long ({len(value)} > {MAX_VALUE_LENGTH} characters)")

def make_metadata(identity: Identity, checkout: CheckoutIntentRequest, totals: Totals) -> Dict[str, str]:
    """Construit le sac de métadonnées (toutes les valeurs sont des str)."""
    metadata = {
        "v": METADATA_VERSION,
        "userId": identity.user_id or "",
        "guestToken": identity.guest_token or "",
        "guestEmail": str(checkout.guest_email or ""),
        "shippingAddress": _dumps(checkout.shipping_address.to_metadata()),
        "billingAddress": _dumps(checkout.effective_billing_address.to_metadata()),
        "notes": checkout.notes or "",
        "shippingMethod": checkout.shipping_method or "",
    }
    metadata.update(totals.as_strings())
    check_limits(metadata)
    return metadata

def encode(
    identity: Identity,
    snapshot: CartSnapshot,
    checkout: CheckoutIntentRequest,
    *,
    vat_rate: Optional[Decimal] = None,
    shipping_cost: Optional[Decimal] = None,
) -> Tuple[int, Dict[str, str]]:
    """
    Encodeur d'intent: (identité, panier, saisie checkout) -> (montant en centimes, métadonnées).
    - Panier vide => EmptyCartError (aucun appel Stripe ne doit suivre).
    - Pur: ne modifie pas le panier.
    """
    if snapshot.is_empty:
        raise EmptyCartError()
    totals = compute_totals(
        snapshot.subtotal,
        config.VAT_RATE if vat_rate is None else vat_rate,
        config.SHIPPING_COST if shipping_cost is None else shipping_cost,
    )
    return totals.amount_minor_units, make_metadata(identity, checkout, totals)


def _load_address(metadata: Mapping[str, Any], key: str) -> Dict[str, Any]:
    raw = metadata.get(key)
    if not raw:
        raise MetadataDecodeError(f"Missing {key} in metadata")
    try:
        value = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise MetadataDecodeError(f"Invalid {key} in metadata") from e
    if not isinstance(value, dict):
        raise MetadataDecodeError(f"Invalid {key} in metadata")
    return value

def _load_totals(metadata: Mapping[str, Any]) -> Optional[Totals]:
    try:
        return Totals(
            subtotal=Decimal(str(metadata["subtotal"])),
            tax=Decimal(str(metadata["tax"])),
            shipping_cost=Decimal(str(metadata.get("shippingCost") or "0")),
            total=Decimal(str(metadata["total"])),
        )
    except (KeyError, InvalidOperation):
        return None

KNOWN_KEYS = {
    "v", "userId", "guestToken", "guestEmail", "shippingAddress", "billingAddress",
    "notes", "shippingMethod", "subtotal", "tax", "shippingCost", "total",
}

def decode(metadata: Mapping[str, Any]) -> DecodedCheckout:
    """
    Inverse de make_metadata, appelé par le webhook.
    - "v" absent: lu comme v1 (même jeu de clés avant versionnage).
    - Version inconnue, identité absente ou adresse illisible => MetadataDecodeError.
    """
    metadata = metadata or {}
    version = str(metadata.get("v") or METADATA_VERSION)
    if version not in SUPPORTED_VERSIONS:
        raise MetadataDecodeError(f"Unsupported metadata version: {version}")
    identity = Identity.from_values(metadata.get("userId"), metadata.get("guestToken"))
    if identity is None:
        raise MetadataDecodeError("Missing identity in metadata")
    shipping = _load_address(metadata, "shippingAddress")
    billing = _load_address(metadata, "billingAddress") if metadata.get("billingAddress") else shipping
    return DecodedCheckout(
        identity=identity,
        shipping_address=shipping,
        billing_address=billing,
        guest_email=metadata.get("guestEmail") or None,
        notes=metadata.get("notes") or None,
        shipping_method=metadata.get("shippingMethod") or None,
        totals=_load_totals(metadata),
        version=version,
        extra={k: str(v) for k, v in metadata.items() if k not in KNOWN_KEYS},
    )

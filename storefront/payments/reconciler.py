"""
Réconciliation des événements Stripe (webhook) avec l'état local.

Stripe livre au moins une fois, dans n'importe quel ordre, avec des rejeux.
Pour un même intent, N livraisons de payment_intent.succeeded produisent
exactement une commande et un panier vide. La garantie repose sur l'index
unique orders.payment_intent_id, pas sur un verrou du process.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional

from storefront.carts.models import Identity
from storefront.carts.repository import CartRepository
from storefront.orders.materializer import OrderMaterializer
from storefront.orders.repository import PAYMENT_PAID, OrderRepository
from storefront.payments import metadata as payments_metadata
from storefront.payments.cart import to_minor_units
from storefront.payments.errors import DuplicateOrderError
from storefront.payments.stripe_client import EVENT_FAILED, EVENT_SUCCEEDED

logger = logging.getLogger(__name__)

ORDER_CREATED = "order_created"
ALREADY_RECONCILED = "already_reconciled"
ORDER_MARKED_PAID = "order_marked_paid"
PAYMENT_FAILED = "payment_failed"
MATERIALIZATION_FAILED = "materialization_failed"
IGNORED = "ignored"


@dataclass(frozen=True)
class ReconciliationResult:
    status: str
    intent_id: Optional[str] = None
    order_id: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"status": self.status}
        if self.order_id:
            out["orderId"] = self.order_id
        return out


def _intent_from_event(event: Dict[str, Any]) -> Dict[str, Any]:
    data = (event or {}).get("data") or {}
    obj = data.get("object") or {}
    return obj if isinstance(obj, dict) else {}


# module storefront.payments.reconciler
class Reconciler:
    def __init__(
        self,
        orders: Optional[OrderRepository] = None,
        carts: Optional[CartRepository] = None,
        materializer: Optional[OrderMaterializer] = None,
    ):
        self.orders = orders or OrderRepository()
        self.carts = carts or CartRepository()
        self.materializer = materializer or OrderMaterializer()

    def handle(self, event: Dict[str, Any]) -> ReconciliationResult:
        """
        Dispatch par type d'événement:
        - payment_intent.succeeded      -> on_succeeded
        - payment_intent.payment_failed -> on_failed
        - autre                         -> ignored
        """
        event_type = (event or {}).get("type") or ""
        intent = _intent_from_event(event)
        intent_id = str(intent.get("id") or "")
        if event_type == EVENT_SUCCEEDED:
            return self.on_succeeded(intent)
        if event_type == EVENT_FAILED:
            return self.on_failed(intent)
        logger.info("payments.webhook ignored type=%s intent_id=%s", event_type, intent_id)
        return ReconciliationResult(IGNORED, intent_id or None)

    def on_succeeded(self, intent: Dict[str, Any]) -> ReconciliationResult:
        intent_id = str(intent.get("id") or "")
        if not intent_id:
            logger.warning("payments.webhook succeeded event without intent id")
            return ReconciliationResult(IGNORED)
        metadata = intent.get("metadata") or {}

        try:
            existing = self.orders.find_by_payment_intent(intent_id)
        except Exception as e:
            # Lookup en échec: rien n'est matérialisé, l'incident est tracé
            logger.exception("payments.webhook order lookup failed intent_id=%s", intent_id)
            self.orders.record_incident(intent_id, f"lookup: {type(e).__name__}: {e}")
            return ReconciliationResult(MATERIALIZATION_FAILED, intent_id)

        if existing and existing.get("payment_status") == PAYMENT_PAID:
            logger.info("payments.webhook already reconciled intent_id=%s order_id=%s", intent_id, existing.get("id"))
            return ReconciliationResult(ALREADY_RECONCILED, intent_id, existing.get("id"))

        # Flux legacy: la commande existe avant paiement, l'intent y est déjà rattaché
        legacy_order_id = metadata.get("orderId") or (existing or {}).get("id")
        if legacy_order_id:
            return self._mark_legacy_paid(legacy_order_id, intent_id)

        try:
            return self._materialize(intent, metadata, intent_id)
        except DuplicateOrderError:
            # Une livraison concurrente a gagné la course sur l'index unique
            logger.info("payments.webhook concurrent delivery lost race intent_id=%s", intent_id)
            return ReconciliationResult(ALREADY_RECONCILED, intent_id, self._order_id_for(intent_id))
        except Exception as e:
            logger.exception("payments.webhook materialization failed intent_id=%s", intent_id)
            self.orders.record_incident(intent_id, f"{type(e).__name__}: {e}")
            return ReconciliationResult(MATERIALIZATION_FAILED, intent_id)

    def _mark_legacy_paid(self, order_id: str, intent_id: str) -> ReconciliationResult:
        try:
            row = self.orders.mark_paid(order_id, intent_id)
        except DuplicateOrderError:
            return ReconciliationResult(ALREADY_RECONCILED, intent_id, self._order_id_for(intent_id))
        except Exception as e:
            logger.exception("payments.webhook mark_paid failed order_id=%s intent_id=%s", order_id, intent_id)
            self.orders.record_incident(intent_id, f"mark_paid {order_id}: {type(e).__name__}: {e}")
            return ReconciliationResult(MATERIALIZATION_FAILED, intent_id, order_id)
        logger.info("payments.webhook order marked paid order_id=%s intent_id=%s", order_id, intent_id)
        return ReconciliationResult(ORDER_MARKED_PAID, intent_id, row.get("id") or order_id)

    def _order_id_for(self, intent_id: str) -> Optional[str]:
        try:
            existing = self.orders.find_by_payment_intent(intent_id)
        except Exception:
            logger.exception("payments.webhook order lookup failed intent_id=%s", intent_id)
            return None
        return (existing or {}).get("id")

    def _materialize(self, intent: Dict[str, Any], metadata: Dict[str, Any], intent_id: str) -> ReconciliationResult:
        checkout = payments_metadata.decode(metadata)
        snapshot = self.carts.get_snapshot(checkout.identity)

        if snapshot.is_empty:
            # Panier déjà vidé: une autre livraison a peut-être matérialisé entre-temps
            existing = self.orders.find_by_payment_intent(intent_id)
            if existing:
                return ReconciliationResult(ALREADY_RECONCILED, intent_id, existing.get("id"))
            logger.error(
                "payments.webhook paid intent with empty cart intent_id=%s identity=%s",
                intent_id, checkout.identity.describe(),
            )
            self.orders.record_incident(intent_id, "Payment succeeded but cart is empty")
            return ReconciliationResult(MATERIALIZATION_FAILED, intent_id)

        self._check_amounts(intent, checkout, snapshot, intent_id)
        order = self.materializer.materialize(checkout.identity, checkout, snapshot, intent_id)
        return ReconciliationResult(ORDER_CREATED, intent_id, order.get("id"))

    @staticmethod
    def _check_amounts(intent, checkout, snapshot, intent_id: str) -> None:
        # Le montant débité fait foi; un écart avec le panier courant est signalé, pas bloquant
        if checkout.totals is None:
            return
        if snapshot.subtotal != checkout.totals.subtotal:
            logger.warning(
                "payments.webhook cart changed since intent creation intent_id=%s charged_subtotal=%s cart_subtotal=%s",
                intent_id, checkout.totals.subtotal, snapshot.subtotal,
            )
        amount = intent.get("amount_received") or intent.get("amount")
        if amount is not None and int(amount) != to_minor_units(Decimal(checkout.totals.total)):
            logger.warning(
                "payments.webhook amount mismatch intent_id=%s amount=%s expected=%s",
                intent_id, amount, to_minor_units(checkout.totals.total),
            )

    def on_failed(self, intent: Dict[str, Any]) -> ReconciliationResult:
        """
        Paiement refusé: aucune commande créée. Le panier est vidé (best-effort),
        l'utilisateur repart d'un checkout propre.
        """
        intent_id = str(intent.get("id") or "") or None
        metadata = intent.get("metadata") or {}
        identity = Identity.from_values(metadata.get("userId"), metadata.get("guestToken"))
        if identity is not None:
            try:
                self.carts.clear(identity)
            except Exception:
                logger.exception("payments.webhook cart clear failed after payment failure intent_id=%s", intent_id)
        logger.info("payments.webhook payment failed intent_id=%s", intent_id)
        return ReconciliationResult(PAYMENT_FAILED, intent_id)


def get_reconciler() -> Reconciler:
    """Dépendance FastAPI (surchargée en tests via app.dependency_overrides)."""
    return Reconciler()

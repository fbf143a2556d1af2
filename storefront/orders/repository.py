"""
Accès aux données pour la feature 'orders' (tables orders, payment_incidents).
"""
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional
import logging

from postgrest.exceptions import APIError
from supabase import Client

from storefront.infra import supabase_client
from storefront.payments.errors import DuplicateOrderError

logger = logging.getLogger(__name__)

PAYMENT_UNPAID = "unpaid"
PAYMENT_PAID = "paid"
PAYMENT_FAILED = "failed"

ORDER_PENDING = "pending"
ORDER_PROCESSING = "processing"

ORDER_SUMMARY_COLUMNS = "id, order_number, user_id, guest_token, total, status, payment_status, payment_intent_id"

# module storefront.orders.repository
class OrderRepository:
    def __init__(self, client_factory: Optional[Callable[[], Client]] = None):
        self._client_factory = client_factory

    def _client(self) -> Client:
        if self._client_factory is not None:
            return self._client_factory()
        return supabase_client.get_service_supabase()

    def find_by_payment_intent(self, intent_id: str) -> Optional[Dict[str, Any]]:
        """
        Lookup autoritaire "une commande existe-t-elle pour cet intent ?".
        Les erreurs sont propagées: un lookup en échec ne doit pas être lu comme "aucune commande".
        """
        if not intent_id:
            return None
        res = (
            self._client()
            .table("orders")
            .select(ORDER_SUMMARY_COLUMNS)
            .eq("payment_intent_id", intent_id)
            .limit(1)
            .execute()
        )
        return supabase_client.first_row(res.data)

    def find_by_id(self, order_id: str) -> Optional[Dict[str, Any]]:
        if not order_id:
            return None
        res = self._client().table("orders").select(ORDER_SUMMARY_COLUMNS).eq("id", order_id).limit(1).execute()
        return supabase_client.first_row(res.data)

    def _update(self, order_id: str, values: Dict[str, Any], intent_id: Optional[str]) -> Dict[str, Any]:
        try:
            res = self._client().table("orders").update(values).eq("id", order_id).execute()
        except APIError as e:
            if intent_id and supabase_client.is_unique_violation(e):
                raise DuplicateOrderError(intent_id) from e
            raise
        row = supabase_client.first_row(res.data)
        if not row:
            raise LookupError(f"Order not found: {order_id}")
        return row

    def set_payment_intent(self, order_id: str, intent_id: str) -> Dict[str, Any]:
        return self._update(order_id, {"payment_intent_id": intent_id}, intent_id)

    def mark_paid(self, order_id: str, intent_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Marque la commande payée (idempotent: rejouer l'appel réécrit les mêmes valeurs).
        - payment_status=paid, status=processing, paid_at=now
        - tamponne payment_intent_id si fourni
        """
        values: Dict[str, Any] = {
            "payment_status": PAYMENT_PAID,
            "status": ORDER_PROCESSING,
            "paid_at": datetime.now(timezone.utc).isoformat(),
        }
        if intent_id:
            values["payment_intent_id"] = intent_id
        return self._update(order_id, values, intent_id)

    def record_incident(self, intent_id: str, reason: str) -> Optional[dict]:
        """
        Trace "paiement réussi mais commande absente" pour suivi manuel.
        Best-effort: un échec ici est loggé, jamais propagé au webhook.
        """
        try:
            res = (
                self._client()
                .table("payment_incidents")
                .insert({"payment_intent_id": intent_id, "reason": (reason or "")[:1000]})
                .execute()
            )
            return supabase_client.first_row(res.data) or {"status": "ok"}
        except Exception:
            logger.exception("orders.repository.record_incident failed intent_id=%s", intent_id)
            return None

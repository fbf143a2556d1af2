import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from storefront import config
from storefront.carts.models import Identity
from storefront.carts.repository import CartRepository
from storefront.orders.repository import OrderRepository
from storefront.payments import service as payments_service
from storefront.payments import stripe_client
from storefront.payments.errors import CheckoutError
from storefront.payments.reconciler import Reconciler, get_reconciler
from storefront.payments.schemas import CheckoutIntentRequest
from storefront.utils.rate_limit import optional_rate_limit
from storefront.utils.security import get_optional_identity

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/payments", tags=["Payments API"])

def get_cart_repository() -> CartRepository:
    return CartRepository()

def get_order_repository() -> OrderRepository:
    return OrderRepository()

def get_gateway() -> stripe_client.StripeGateway:
    try:
        return stripe_client.get_gateway()
    except CheckoutError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)

# module storefront.payments.views
@router.post("/create-checkout-intent", dependencies=[Depends(optional_rate_limit(times=10, seconds=60))])
async def create_checkout_intent(
    body: CheckoutIntentRequest,
    identity: Optional[Identity] = Depends(get_optional_identity),
    carts: CartRepository = Depends(get_cart_repository),
    gateway: stripe_client.StripeGateway = Depends(get_gateway),
):
    """
    Crée un PaymentIntent Stripe pour le panier courant (utilisateur ou invité).
    - Entrée JSON: { guestEmail?, shippingAddress, billingAddress?, notes?, shippingMethod? }
    - Identité: Bearer/cookie (utilisateur) sinon en-tête x-guest-token
    - Sécurité: rate limit (10 req / 60s)
    - Réponse: { clientSecret, paymentIntentId, amount }
    - Erreurs: 400 panier vide / paiement non configuré / métadonnées trop longues,
      422 body invalide, 502 Stripe indisponible
    """
    try:
        result = await run_in_threadpool(
            payments_service.create_checkout_intent, identity, body, carts=carts, gateway=gateway
        )
        return JSONResponse(result)
    except CheckoutError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
    except HTTPException:
        raise
    except Exception:
        logger.exception("Erreur create_checkout_intent")
        raise HTTPException(status_code=500, detail="Checkout failed")

@router.post("/create-payment-intent/{order_id}")
async def create_payment_intent(
    order_id: str,
    orders: OrderRepository = Depends(get_order_repository),
    gateway: stripe_client.StripeGateway = Depends(get_gateway),
):
    """
    Flux legacy: PaymentIntent pour une commande existante.
    - Réutilise l'intent déjà associé à la commande s'il existe
    - Réponse: { clientSecret }
    - Erreurs: 404 commande inconnue, 400 commande déjà payée
    """
    try:
        result = await run_in_threadpool(
            payments_service.create_payment_intent_for_order, order_id, orders=orders, gateway=gateway
        )
        return JSONResponse(result)
    except CheckoutError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
    except Exception:
        logger.exception("Erreur create_payment_intent order_id=%s", order_id)
        raise HTTPException(status_code=500, detail="Payment intent creation failed")

@router.post("/webhook", include_in_schema=False)
async def webhook_stripe(request: Request, reconciler: Reconciler = Depends(get_reconciler)):
    """
    Webhook Stripe (PaymentIntent).
    - Signature: vérifiée sur le body brut (stripe-signature + STRIPE_WEBHOOK_SECRET) avant toute lecture d'état
    - payment_intent.succeeded: matérialise la commande (idempotent par intent)
    - payment_intent.payment_failed: vide le panier, aucune commande
    - Réponse: {"status": <résultat>} en 200, même si la matérialisation échoue
      (l'incident est tracé; un 5xx ferait rejouer Stripe en boucle)
    - Erreurs: 400 si signature invalide ou secret webhook absent
    """
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")
    try:
        event = stripe_client.parse_event(
            payload, sig_header, config.STRIPE_WEBHOOK_SECRET, config.STRIPE_WEBHOOK_TOLERANCE
        )
    except CheckoutError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)

    try:
        result = await run_in_threadpool(reconciler.handle, event)
    except Exception:
        # Erreur inattendue hors des chemins tracés par le réconciliateur
        logger.exception("Erreur webhook_stripe type=%s", event.get("type"))
        raise HTTPException(status_code=500, detail="Webhook processing failed")
    logger.info(
        "payments.webhook type=%s intent_id=%s status=%s order_id=%s",
        event.get("type"), result.intent_id, result.status, result.order_id,
    )
    return JSONResponse(result.as_dict())

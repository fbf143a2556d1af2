"""
Adaptateur Stripe: centralise les appels et la configuration Stripe.
- StripeGateway: création/lecture de PaymentIntent, construit une fois pour la durée du process.
- parse_event: vérifie la signature du webhook sur le body brut puis décode l'événement.
"""
import json
import logging
from functools import lru_cache
from typing import Any, Dict, Optional

import stripe

from storefront import config
from storefront.payments.errors import (
    InvalidSignatureError,
    MetadataDecodeError,
    PaymentRequestRejectedError,
    PaymentServiceNotConfiguredError,
    ProviderUnavailableError,
)

logger = logging.getLogger(__name__)

EVENT_SUCCEEDED = "payment_intent.succeeded"
EVENT_FAILED = "payment_intent.payment_failed"

# module storefront.payments.stripe_client
def require_stripe(timeout: float) -> stripe:
    """
    Prépare le module stripe pour des appels bornés:
    - pas de retry réseau interne (le client peut relancer toute la requête checkout)
    - timeout HTTP explicite, aucun appel ne bloque indéfiniment
    """
    stripe.max_network_retries = 0
    stripe.default_http_client = stripe.RequestsClient(timeout=timeout)
    return stripe


class StripeGateway:
    """Passerelle PaymentIntent. La clé est passée par appel, pas via stripe.api_key global."""

    def __init__(self, api_key: str, *, currency: str = "eur", timeout: float = 10.0):
        if not api_key:
            raise PaymentServiceNotConfiguredError()
        self.api_key = api_key
        self.currency = currency
        self.timeout = timeout
        require_stripe(timeout)

    def _call(self, fn, **params):
        try:
            return fn(api_key=self.api_key, **params)
        except (stripe.APIConnectionError, stripe.RateLimitError, stripe.APIError) as e:
            logger.warning("payments.stripe_client provider unavailable: %s", e)
            raise ProviderUnavailableError() from e
        except stripe.AuthenticationError as e:
            logger.error("payments.stripe_client authentication failed: %s", e)
            raise PaymentServiceNotConfiguredError() from e
        except stripe.InvalidRequestError as e:
            # Paramètres refusés (ex: montant sous le minimum Stripe): erreur client, pas 500
            logger.warning("payments.stripe_client request rejected code=%s: %s", e.code, e)
            raise PaymentRequestRejectedError(e.user_message or None) from e

    def create_intent(self, amount_minor_units: int, metadata: Dict[str, str]) -> Dict[str, str]:
        """
        Crée un PaymentIntent.
        Retour: {"client_secret": "...", "intent_id": "pi_..."}
        """
        intent = self._call(
            stripe.PaymentIntent.create,
            amount=int(amount_minor_units),
            currency=self.currency,
            automatic_payment_methods={"enabled": True},
            metadata=metadata,
        )
        return {"client_secret": intent.client_secret, "intent_id": intent.id}

    def retrieve_intent(self, intent_id: str) -> Dict[str, str]:
        intent = self._call(stripe.PaymentIntent.retrieve, id=intent_id)
        return {"client_secret": intent.client_secret, "intent_id": intent.id}


@lru_cache(maxsize=1)
def _cached_gateway(api_key: str, currency: str, timeout: float) -> StripeGateway:
    return StripeGateway(api_key, currency=currency, timeout=timeout)

def get_gateway() -> StripeGateway:
    """Dépendance FastAPI: passerelle unique tant que la configuration ne change pas."""
    if not config.STRIPE_SECRET_KEY:
        raise PaymentServiceNotConfiguredError()
    return _cached_gateway(config.STRIPE_SECRET_KEY, config.CHECKOUT_CURRENCY, config.STRIPE_TIMEOUT_SECONDS)


def parse_event(
    payload: bytes,
    sig_header: Optional[str],
    secret: str,
    tolerance: int = stripe.Webhook.DEFAULT_TOLERANCE,
) -> Dict[str, Any]:
    """
    Parse et valide un événement Stripe signé (webhook).
    - Vérifie la signature HMAC-SHA256 du body brut (comparaison à temps constant côté SDK)
    - Body modifié, en-tête absent ou horodatage hors tolérance => InvalidSignatureError
    Retour: l'événement sous forme de dict.
    """
    if not secret:
        raise PaymentServiceNotConfiguredError("Webhook secret not configured")
    try:
        text = payload.decode("utf-8")
        stripe.WebhookSignature.verify_header(text, sig_header or "", secret, tolerance)
    except (stripe.SignatureVerificationError, UnicodeDecodeError) as e:
        logger.warning("payments.webhook signature rejected: %s", e)
        raise InvalidSignatureError() from e
    try:
        event = json.loads(text)
    except ValueError as e:
        raise MetadataDecodeError("Invalid Stripe webhook payload") from e
    if not isinstance(event, dict):
        raise MetadataDecodeError("Invalid Stripe webhook payload")
    return event

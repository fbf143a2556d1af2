"""
Taxonomie des erreurs du checkout.
Chaque erreur porte le code HTTP que la vue renvoie (HTTPException(status_code, detail)).
"""


class CheckoutError(Exception):
    status_code = 400
    default_detail = "Checkout error"

    def __init__(self, detail: str = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class EmptyCartError(CheckoutError):
    default_detail = "Cart is empty"


class PayloadTooLargeError(CheckoutError):
    default_detail = "Checkout data exceeds payment metadata limits"


class PaymentServiceNotConfiguredError(CheckoutError):
    default_detail = "Payment service not configured"


class ProviderUnavailableError(CheckoutError):
    status_code = 502
    default_detail = "Payment provider unavailable"


class InvalidSignatureError(CheckoutError):
    default_detail = "Webhook signature verification failed"


class MetadataDecodeError(CheckoutError):
    default_detail = "Invalid checkout metadata"


class DuplicateOrderError(Exception):
    """Une commande référence déjà ce payment intent (violation de l'index unique)."""

    def __init__(self, intent_id: str):
        self.intent_id = intent_id
        super().__init__(f"Order already exists for payment intent {intent_id}")


class OrderNotFoundError(CheckoutError):
    status_code = 404
    default_detail = "Order not found"


class PaymentRequestRejectedError(CheckoutError):
    default_detail = "Payment request rejected by provider"

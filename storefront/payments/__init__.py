"""
Module 'payments' (feature-first): point d'entrée public.
Réunit calcul des totaux, métadonnées Stripe et passerelle Stripe.
La réconciliation (reconciler) et les cas d'usage (service) s'importent depuis leur module:
ils dépendent de storefront.orders, qui dépend lui-même de payments.errors.
"""

from .cart import Totals, compute_totals, money, to_minor_units
from .metadata import DecodedCheckout, check_limits, decode, encode, make_metadata
from .stripe_client import StripeGateway, get_gateway, parse_event, require_stripe

__all__ = [
    # cart
    "Totals",
    "compute_totals",
    "money",
    "to_minor_units",
    # metadata
    "DecodedCheckout",
    "check_limits",
    "decode",
    "encode",
    "make_metadata",
    # stripe
    "StripeGateway",
    "get_gateway",
    "parse_event",
    "require_stripe",
]

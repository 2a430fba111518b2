"""
Module 'payments' (feature-first): point d'entrée public.
Réunit panier, livraison, metadata Stripe, client Stripe et services checkout / portail.
"""

from .basket import BillingMode, LineItem, Basket, parse_basket, resolve_mode
from .shipping import ShippingOption, shipping_cost, shipping_label, FREE_SHIPPING_THRESHOLD
from .cart import to_line_items, shipping_line_item
from .metadata import CheckoutMetadata, make_metadata, extract_metadata
from .stripe_client import require_stripe, create_session, create_portal_session, verify_event, parse_event
from .service import CheckoutSessionResult, create_checkout_session

__all__ = [
    # basket
    "BillingMode",
    "LineItem",
    "Basket",
    "parse_basket",
    "resolve_mode",
    # shipping
    "ShippingOption",
    "shipping_cost",
    "shipping_label",
    "FREE_SHIPPING_THRESHOLD",
    # cart
    "to_line_items",
    "shipping_line_item",
    # metadata
    "CheckoutMetadata",
    "make_metadata",
    "extract_metadata",
    # stripe
    "require_stripe",
    "create_session",
    "create_portal_session",
    "verify_event",
    "parse_event",
    # services
    "CheckoutSessionResult",
    "create_checkout_session",
]

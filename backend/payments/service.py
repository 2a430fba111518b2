"""
Cas d'usage 'payments': orchestre basket, shipping, metadata, cart et stripe_client.
- create_checkout_session: panier validé -> session Stripe Checkout {sessionId, url}
- create_portal_session: profil -> session du portail de facturation Stripe
"""
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional

from backend import config
from backend.membership import repository as profiles
from . import cart
from . import stripe_client
from .basket import Basket, optional_text, parse_basket, resolve_mode
from .errors import NotFoundError, ShopError, UpstreamProviderError
from .metadata import make_metadata
from .shipping import ShippingOption, parse_subtotal, shipping_cost

logger = logging.getLogger(__name__)

CHECKOUT_FAILED_PREFIX = "Checkout failed: "


@dataclass(frozen=True)
class CheckoutSessionResult:
    session_id: str
    url: str

    def to_dict(self) -> Dict[str, str]:
        return {"sessionId": self.session_id, "url": self.url}


@dataclass(frozen=True)
class ShippingSelection:
    option: ShippingOption
    subtotal: Optional[Decimal] = None


def parse_shipping(body: Dict[str, Any]) -> ShippingSelection:
    """Option (défaut domestic) + sous-total optionnel; sans sous-total, pas de ligne de livraison."""
    raw_subtotal = body.get("subtotal")
    subtotal = parse_subtotal(raw_subtotal) if raw_subtotal is not None else None
    return ShippingSelection(option=ShippingOption.parse(body.get("shippingOption")), subtotal=subtotal)


def build_line_items(basket: Basket, shipping: ShippingSelection):
    line_items = cart.to_line_items(basket)
    if shipping.subtotal is not None:
        digital_only = basket.is_digital_only(config.CLUB_MEMBERSHIP_SLUG)
        cost = shipping_cost(shipping.option, shipping.subtotal, digital_only)
        line_items.append(cart.shipping_line_item(shipping.option, cost))
    return line_items


def create_checkout_session(body: Dict[str, Any], base_url: str) -> CheckoutSessionResult:
    """
    Panier -> session Stripe Checkout.
    Étapes:
      1) parse_basket, livraison, userId/userEmail, metadata (400 avant tout appel externe)
      2) resolve_mode: un Price.retrieve par price_ref distinct, rejet des paniers mixtes
      3) line_items, puis création de la session
    """
    if not isinstance(body, dict):
        body = {}
    basket = parse_basket(body)
    shipping = parse_shipping(body)
    user_id = optional_text(body, "userId")
    user_email = optional_text(body, "userEmail")
    shipping_option = ShippingOption.parse(body["shippingOption"]) if body.get("shippingOption") else None
    metadata = make_metadata(basket, user_id, shipping_option)

    try:
        mode = resolve_mode(basket, stripe_client.retrieve_price_mode)
        line_items = build_line_items(basket, shipping)
        session = stripe_client.create_session(
            line_items=line_items,
            mode=mode,
            success_url=f"{base_url}{config.CHECKOUT_SUCCESS_PATH}",
            cancel_url=f"{base_url}{config.CHECKOUT_CANCEL_PATH}",
            metadata=metadata,
            customer_email=user_email,
        )
    except UpstreamProviderError as e:
        raise UpstreamProviderError(CHECKOUT_FAILED_PREFIX + e.message) from e

    if not session.get("id") or not session.get("url"):
        raise UpstreamProviderError(CHECKOUT_FAILED_PREFIX + stripe_client.GENERIC_PROVIDER_ERROR)
    logger.info("payments.checkout session=%s mode=%s items=%s", session["id"], mode.value, len(basket))
    return CheckoutSessionResult(session_id=session["id"], url=session["url"])


def create_portal_session(user_id: Optional[str], base_url: str) -> str:
    """
    Ouvre le portail de facturation Stripe pour le client enregistré sur le profil.
    - userId absent -> 401
    - profil ou stripe_customer_id absent -> 404
    - erreur Stripe -> 500
    """
    if not isinstance(user_id, str) or not user_id.strip():
        raise ShopError("Unauthorized - userId required", status_code=401)
    stripe_client.require_stripe()
    profile = profiles.get_profile_by_id(user_id.strip())
    if profile is None:
        raise NotFoundError("Profile not found")
    if not profile.stripe_customer_id:
        logger.warning("payments.portal no stripe customer user_id=%s", profile.id)
        raise NotFoundError("No Stripe customer found. Please contact support.")
    url = stripe_client.create_portal_session(
        customer_id=profile.stripe_customer_id,
        return_url=f"{base_url}{config.PORTAL_RETURN_PATH}",
    )
    logger.info("payments.portal session created user_id=%s", profile.id)
    return url

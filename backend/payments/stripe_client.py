"""
Adaptateur Stripe: centralise les appels, la configuration et la traduction des erreurs Stripe.
- Les appels réseau passent par un RequestsClient à timeout borné (STRIPE_TIMEOUT_SECONDS).
- La vérification de signature se fait sur les octets bruts du body, jamais sur un JSON re-sérialisé.
"""
import json
import logging
from typing import Any, Dict, List, Optional

import stripe
from fastapi import Request

from backend import config
from .basket import BillingMode
from .errors import AuthenticationError, ClientInputError, ConfigurationError, UpstreamProviderError

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "stripe-signature"
GENERIC_PROVIDER_ERROR = "Payment provider error. Please try again later."
INVALID_REQUEST_FALLBACK = "Invalid request to payment provider (e.g. invalid price or product)."
PROVIDER_AUTH_ERROR = "Payment provider configuration error. Check STRIPE_SECRET_KEY (use sk_test_... or sk_live_...)."

_http_client_timeout: Optional[int] = None

# module backend.payments.stripe_client
def require_stripe():
    """
    Prépare et retourne le module stripe prêt à l'emploi.
    - Configure stripe.api_key via STRIPE_SECRET_KEY; sans clé -> ConfigurationError (500 "not configured").
    - Installe un client HTTP à timeout borné pour ne pas bloquer un handler indéfiniment.
    """
    global _http_client_timeout
    if not config.STRIPE_SECRET_KEY:
        logger.error("stripe.require_stripe STRIPE_SECRET_KEY missing")
        raise ConfigurationError("Stripe is not configured. Set STRIPE_SECRET_KEY.")
    stripe.api_key = config.STRIPE_SECRET_KEY
    if _http_client_timeout != config.STRIPE_TIMEOUT_SECONDS:
        stripe.default_http_client = stripe.RequestsClient(timeout=config.STRIPE_TIMEOUT_SECONDS)
        _http_client_timeout = config.STRIPE_TIMEOUT_SECONDS
    return stripe


def translate_stripe_error(err: Exception):
    """
    Classe une erreur Stripe en erreur applicative:
    - requête invalide (price inexistant, etc.) -> message Stripe exposé à l'appelant
    - authentification (clé secrète refusée) -> erreur de configuration opérateur, 500
    - autre -> message générique (pas de fuite de détails liés aux identifiants)
    """
    if isinstance(err, stripe.InvalidRequestError):
        return UpstreamProviderError(_stripe_message(err) or INVALID_REQUEST_FALLBACK)
    if isinstance(err, stripe.AuthenticationError):
        return AuthenticationError(PROVIDER_AUTH_ERROR, status_code=500)
    return UpstreamProviderError(GENERIC_PROVIDER_ERROR)


def _stripe_message(err: Exception) -> str:
    return str(getattr(err, "user_message", None) or "").strip()


def retrieve_price_mode(price_ref: str) -> BillingMode:
    """Interroge Stripe pour le type de facturation d'un price (recurring -> abonnement)."""
    require_stripe()
    try:
        price = stripe.Price.retrieve(price_ref)
    except stripe.StripeError as e:
        logger.warning("stripe.retrieve_price_mode failed price=%s: %s", price_ref, e)
        raise translate_stripe_error(e) from e
    return BillingMode.RECURRING if getattr(price, "type", None) == "recurring" else BillingMode.ONE_TIME


def create_session(
    *,
    line_items: List[Dict[str, Any]],
    mode: BillingMode,
    success_url: str,
    cancel_url: str,
    metadata: Dict[str, str],
    customer_email: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Crée une session Stripe Checkout (atomique côté Stripe: créée entièrement ou pas du tout).
    Retour: {"id": "cs_test_...", "url": "https://checkout.stripe.com/..."}
    """
    require_stripe()
    params: Dict[str, Any] = {
        "payment_method_types": ["card"],
        "line_items": line_items,
        "mode": mode.value,
        "success_url": success_url,
        "cancel_url": cancel_url,
        "metadata": metadata,
        "allow_promotion_codes": True,
    }
    if customer_email:
        params["customer_email"] = customer_email
    try:
        session = stripe.checkout.Session.create(**params)
    except stripe.StripeError as e:
        logger.exception("stripe.create_session failed mode=%s", mode.value)
        raise translate_stripe_error(e) from e
    return {"id": getattr(session, "id", None), "url": getattr(session, "url", None)}


def create_portal_session(*, customer_id: str, return_url: str) -> str:
    """Ouvre une session du portail de facturation Stripe pour un client existant; retourne l'URL."""
    require_stripe()
    try:
        session = stripe.billing_portal.Session.create(customer=customer_id, return_url=return_url)
    except stripe.StripeError as e:
        logger.exception("stripe.create_portal_session failed customer=%s", customer_id)
        raise UpstreamProviderError("Failed to create portal session") from e
    return getattr(session, "url", None)


def verify_event(payload: bytes, sig_header: Optional[str]) -> Dict[str, Any]:
    """
    Authentifie un événement webhook puis le décode.
    - Secret absent -> ConfigurationError (500)
    - En-tête absent -> ClientInputError (400)
    - Signature invalide -> AuthenticationError (400)
    - Body non UTF-8 ou non JSON -> ClientInputError (400)
    Retour: dict de l'événement (type, data.object, ...).
    """
    if not config.STRIPE_WEBHOOK_SECRET:
        logger.error("stripe.verify_event STRIPE_WEBHOOK_SECRET missing")
        raise ConfigurationError("Webhook not configured")
    if not sig_header:
        raise ClientInputError("Missing Stripe-Signature header")
    try:
        text = payload.decode("utf-8")
    except UnicodeDecodeError:
        raise ClientInputError("Invalid body")
    try:
        stripe.WebhookSignature.verify_header(text, sig_header, config.STRIPE_WEBHOOK_SECRET, stripe.Webhook.DEFAULT_TOLERANCE)
    except stripe.SignatureVerificationError as e:
        logger.warning("stripe.verify_event signature verification failed: %s", e)
        raise AuthenticationError(f"Webhook signature verification failed: {_stripe_message(e) or e}")
    try:
        event = json.loads(text)
    except ValueError:
        raise ClientInputError("Invalid body")
    if not isinstance(event, dict):
        raise ClientInputError("Invalid body")
    return event


async def parse_event(request: Request) -> Dict[str, Any]:
    """
    Lit le body brut + en-tête Stripe-Signature puis délègue à verify_event.
    """
    try:
        payload = await request.body()
    except Exception:
        logger.exception("stripe.parse_event failed to read body")
        raise ClientInputError("Invalid body")
    return verify_event(payload, request.headers.get(SIGNATURE_HEADER))

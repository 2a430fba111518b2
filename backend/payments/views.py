import logging
from typing import Any, Dict

from fastapi import APIRouter, BackgroundTasks, Depends, Request, Response
from fastapi.responses import JSONResponse

from backend import config
from backend.utils.rate_limit import rate_limit
from backend.payments import service as payments_service
from backend.payments import stripe_client
from backend.payments.errors import ClientInputError, ShopError
from backend.membership import service as membership_service
from backend.notifications import service as notifications

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/payments", tags=["Payments API"])

INVALID_JSON = "Invalid JSON body"
METHOD_NOT_ALLOWED = "Method not allowed"


def request_base_url(request: Request) -> str:
    """SITE_URL si configurée, sinon reconstruite depuis X-Forwarded-Proto / X-Forwarded-Host / Host."""
    if config.SITE_URL:
        return config.SITE_URL
    proto = request.headers.get("x-forwarded-proto") or request.url.scheme or "https"
    host = request.headers.get("x-forwarded-host") or request.headers.get("host") or "localhost:8000"
    return f"{proto.split(',')[0].strip()}://{host.split(',')[0].strip()}"


async def _json_body(request: Request) -> Dict[str, Any]:
    try:
        body = await request.json()
    except ValueError:
        raise ClientInputError(INVALID_JSON)
    if not isinstance(body, dict):
        raise ClientInputError(INVALID_JSON)
    return body


def _send_welcome(outcome: membership_service.GrantOutcome) -> None:
    profile = outcome.profile
    notifications.send_member_welcome_email(
        outcome.notify_email,
        profile.member_since if profile else None,
        profile.membership_expiration if profile else None,
    )

# module backend.payments.views
@router.post(
    "/checkout",
    dependencies=[Depends(rate_limit("checkout", config.CHECKOUT_RATE_LIMIT, config.RATE_LIMIT_WINDOW_SECONDS))],
)
async def create_checkout_session(request: Request):
    """
    Crée une session Checkout Stripe pour un panier.
    - Entrée JSON: { "lineItems": [ {priceId, quantity, productId, productTitle, productSlug}, ... ] }
      ou forme legacy { priceId, productId, productTitle, productSlug },
      + optionnels userId, userEmail, shippingOption (domestic|regional|pickup), subtotal
    - Sécurité: rate limit par IP (CHECKOUT_RATE_LIMIT / RATE_LIMIT_WINDOW_SECONDS)
    - Réponse: {"sessionId": "cs_...", "url": "https://checkout.stripe.com/..."}
    - Erreurs: 400 panier invalide ou mixte, 500 Stripe / configuration
    """
    body = await _json_body(request)
    result = payments_service.create_checkout_session(body, request_base_url(request))
    return JSONResponse(result.to_dict())


@router.options("/checkout", include_in_schema=False)
async def checkout_options():
    return Response(status_code=200)


@router.api_route("/checkout", methods=["GET", "PUT", "PATCH", "DELETE"], include_in_schema=False)
async def checkout_method_not_allowed():
    raise ShopError(METHOD_NOT_ALLOWED, status_code=405, headers={"Allow": "POST"})


@router.post("/webhook", include_in_schema=False)
async def webhook_stripe(request: Request, background_tasks: BackgroundTasks):
    """
    Webhook Stripe: attribue l'adhésion sur checkout.session.completed.
    - Signature: stripe_client.parse_event (octets bruts + Stripe-Signature + STRIPE_WEBHOOK_SECRET)
    - Attribution: membership_service.handle_event (filtre, résolution du profil, fusion, écriture)
    - Email de bienvenue: tâche de fond après la réponse, erreurs journalisées seulement
    - Réponse: {"received": true} pour tout événement authentifié, y compris ignoré
    - Erreurs: 400 signature/body invalide, 500 store non configuré ou écriture refusée
    """
    event = await stripe_client.parse_event(request)
    outcome = membership_service.handle_event(event)
    logger.info("payments.webhook type=%s outcome=%s", event.get("type"), outcome.state.value)
    if outcome.granted and outcome.notify_email:
        background_tasks.add_task(_send_welcome, outcome)
    return {"received": True}


@router.post(
    "/portal",
    dependencies=[Depends(rate_limit("portal", config.PORTAL_RATE_LIMIT, config.RATE_LIMIT_WINDOW_SECONDS))],
)
async def create_portal_session(request: Request):
    """
    Portail de facturation Stripe (gestion de l'abonnement).
    - Entrée JSON: {"userId": "<uuid>"}
    - Réponse: {"url": "https://billing.stripe.com/..."}
    - Erreurs: 401 sans userId, 404 profil ou client Stripe absent, 500 Stripe / configuration
    """
    try:
        body = await _json_body(request)
    except ClientInputError:
        body = {}
    url = payments_service.create_portal_session(body.get("userId"), request_base_url(request))
    return {"url": url}

"""
Cas d'usage 'membership': traite un événement Stripe déjà authentifié.
Received -> Verified (fait par stripe_client.verify_event) -> Filtered -> Resolved -> Granted | Skipped.
- Les cas « rien à faire » ne lèvent jamais d'erreur: le webhook répond 200 dans tous les cas.
- L'écriture est conditionnée (verrou optimiste) puis relue/re-fusionnée si une autre livraison a gagné.
"""
import logging
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Any, Dict, Optional

from backend import config
from backend.payments.errors import ProfileWriteError
from backend.payments.metadata import CheckoutMetadata, extract_metadata
from . import repository
from .models import MembershipProfile, merge_grant

logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"
MAX_WRITE_ATTEMPTS = 3


class GrantState(str, Enum):
    GRANTED = "granted"
    SKIPPED_EVENT_TYPE = "skipped_event_type"
    SKIPPED_PRODUCT = "skipped_product"
    SKIPPED_NO_PROFILE = "skipped_no_profile"


@dataclass(frozen=True)
class GrantOutcome:
    state: GrantState
    profile: Optional[MembershipProfile] = None
    notify_email: Optional[str] = None

    @property
    def granted(self) -> bool:
        return self.state is GrantState.GRANTED


def _session_object(event: Dict[str, Any]) -> Dict[str, Any]:
    obj = (event.get("data") or {}).get("object") or {}
    return obj if isinstance(obj, dict) else {}


def payer_email(session: Dict[str, Any]) -> Optional[str]:
    """Email du payeur: customer_details.email puis customer_email."""
    details = session.get("customer_details") or {}
    email = (details.get("email") if isinstance(details, dict) else None) or session.get("customer_email")
    if isinstance(email, str) and email.strip():
        return email.strip()
    return None


def resolve_profile(meta: CheckoutMetadata, email: Optional[str]) -> Optional[MembershipProfile]:
    """userId des métadonnées (sauf invité), sinon recherche par email insensible à la casse."""
    if not meta.is_guest:
        return repository.get_profile_by_id(meta.user_id)
    if email:
        return repository.find_profile_by_email(email)
    return None


def _write_grant(profile: MembershipProfile, plan_name: str, today: date, customer_id: Optional[str]) -> MembershipProfile:
    current = profile
    for attempt in range(1, MAX_WRITE_ATTEMPTS + 1):
        merged = merge_grant(current, plan_name, today, stripe_customer_id=customer_id)
        if repository.update_profile_if_unchanged(current, merged):
            return merged
        logger.warning("membership.grant concurrent update user_id=%s attempt=%s", current.id, attempt)
        refreshed = repository.get_profile_by_id(current.id)
        if refreshed is None:
            break
        current = refreshed
    raise ProfileWriteError("Failed to update membership")


def handle_event(event: Dict[str, Any], today: Optional[date] = None) -> GrantOutcome:
    """
    Applique l'attribution d'adhésion pour un événement vérifié.
    Retourne le GrantOutcome; seules les erreurs du store (config, écriture) remontent.
    """
    if event.get("type") != CHECKOUT_COMPLETED:
        return GrantOutcome(GrantState.SKIPPED_EVENT_TYPE)

    meta = extract_metadata(event)
    if not meta.includes_product(config.CLUB_MEMBERSHIP_SLUG):
        return GrantOutcome(GrantState.SKIPPED_PRODUCT)

    session = _session_object(event)
    email = payer_email(session)
    profile = resolve_profile(meta, email)
    if profile is None:
        logger.warning(
            "membership.grant no profile found session=%s user_id=%s",
            session.get("id"), meta.user_id,
        )
        return GrantOutcome(GrantState.SKIPPED_NO_PROFILE)

    customer = session.get("customer")
    customer_id = customer if isinstance(customer, str) and customer else None
    granted = _write_grant(profile, config.CLUB_PLAN_NAME, today or date.today(), customer_id)
    logger.info(
        "membership.grant granted user_id=%s expiration=%s session=%s",
        granted.id, granted.membership_expiration, session.get("id"),
    )
    return GrantOutcome(GrantState.GRANTED, profile=granted, notify_email=email or granted.email)

"""Couche d'accès aux données (Supabase) pour les profils d'adhésion.
Table: profiles (clé: id). Lectures et écritures passent par le client service-role.
Contrairement aux lectures « best-effort » du reste de l'app, une erreur Supabase remonte ici
(ProfileWriteError): le webhook doit répondre 500 pour que Stripe redélivre l'événement.
"""
import logging
from typing import Any, Dict, Optional

import backend.infra.supabase_client as supabase_client
from backend.payments.errors import ProfileWriteError
from .models import MembershipProfile

logger = logging.getLogger(__name__)

PROFILES_TABLE = "profiles"
PROFILE_COLUMNS = (
    "id, email, is_member, membership_plans, member_since, "
    "membership_expiration, membership_source, stripe_customer_id"
)


def _escape_like(value: str) -> str:
    # Un email peut contenir "_" : on neutralise les jokers LIKE
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _first_row(res) -> Optional[Dict[str, Any]]:
    rows = getattr(res, "data", None) or []
    if isinstance(rows, dict):
        return rows
    return rows[0] if rows else None


def get_profile_by_id(user_id: str) -> Optional[MembershipProfile]:
    """Profil par id, ou None si introuvable."""
    if not user_id:
        return None
    client = supabase_client.get_service_supabase()
    try:
        res = (
            client
            .table(PROFILES_TABLE)
            .select(PROFILE_COLUMNS)
            .eq("id", user_id)
            .limit(1)
            .execute()
        )
    except Exception:
        logger.exception("membership.repository.get_profile_by_id failed user_id=%s", user_id)
        raise ProfileWriteError("Failed to read profile")
    row = _first_row(res)
    return MembershipProfile.from_row(row) if row else None


def find_profile_by_email(email: str) -> Optional[MembershipProfile]:
    """
    Profil par email, insensible à la casse (ilike sans jokers).
    Les emails sont supposés uniques: en cas de doublon, la première ligne est retenue.
    """
    email = (email or "").strip()
    if not email:
        return None
    client = supabase_client.get_service_supabase()
    try:
        res = (
            client
            .table(PROFILES_TABLE)
            .select(PROFILE_COLUMNS)
            .ilike("email", _escape_like(email))
            .limit(1)
            .execute()
        )
    except Exception:
        logger.exception("membership.repository.find_profile_by_email failed")
        raise ProfileWriteError("Failed to read profile")
    row = _first_row(res)
    return MembershipProfile.from_row(row) if row else None


def update_profile_if_unchanged(previous: MembershipProfile, merged: MembershipProfile) -> bool:
    """
    Écrit l'attribution seulement si membership_expiration n'a pas bougé depuis la lecture
    (verrou optimiste). Retourne False si une autre livraison a écrit entre-temps.
    """
    client = supabase_client.get_service_supabase()
    query = (
        client
        .table(PROFILES_TABLE)
        .update(merged.grant_update())
        .eq("id", previous.id)
    )
    if previous.membership_expiration is None:
        query = query.is_("membership_expiration", "null")
    else:
        query = query.eq("membership_expiration", previous.membership_expiration.isoformat())
    try:
        res = query.execute()
    except Exception:
        logger.exception("membership.repository.update_profile_if_unchanged failed user_id=%s", previous.id)
        raise ProfileWriteError("Failed to update membership")
    return bool(getattr(res, "data", None))

# module backend.membership.models
"""Modèle du profil d'adhésion et fusion idempotente d'une attribution (grant).
- membership_plans est un ensemble (frozenset) en interne, une liste triée en base.
- merge_grant est pure: union des plans + max des expirations, donc rejouer le même
  événement (redélivrance Stripe) laisse le profil inchangé.
"""
from dataclasses import dataclass, field, replace
from datetime import date
from typing import Any, Dict, FrozenSet, Iterable, Optional

MEMBERSHIP_SOURCE = "supabase"


def _parse_date(value: Any) -> Optional[date]:
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value.strip():
        try:
            return date.fromisoformat(value.strip()[:10])
        except ValueError:
            return None
    return None


def _parse_plans(value: Any) -> FrozenSet[str]:
    if isinstance(value, (list, tuple, set, frozenset)):
        return frozenset(str(p) for p in value if p)
    return frozenset()


def one_year_after(day: date) -> date:
    """Même jour l'année suivante; un 29 février devient le 1er mars."""
    try:
        return day.replace(year=day.year + 1)
    except ValueError:
        return date(day.year + 1, 3, 1)


@dataclass(frozen=True)
class MembershipProfile:
    id: str
    email: Optional[str] = None
    is_member: bool = False
    membership_plans: FrozenSet[str] = field(default_factory=frozenset)
    member_since: Optional[date] = None
    membership_expiration: Optional[date] = None
    membership_source: Optional[str] = None
    stripe_customer_id: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "MembershipProfile":
        return cls(
            id=str(row.get("id")),
            email=row.get("email") or None,
            is_member=bool(row.get("is_member")),
            membership_plans=_parse_plans(row.get("membership_plans")),
            member_since=_parse_date(row.get("member_since")),
            membership_expiration=_parse_date(row.get("membership_expiration")),
            membership_source=row.get("membership_source") or None,
            stripe_customer_id=row.get("stripe_customer_id") or None,
        )

    def grant_update(self) -> Dict[str, Any]:
        """Colonnes écrites par une attribution, en une seule mise à jour."""
        payload: Dict[str, Any] = {
            "is_member": self.is_member,
            "membership_plans": sorted(self.membership_plans),
            "member_since": self.member_since.isoformat() if self.member_since else None,
            "membership_expiration": self.membership_expiration.isoformat() if self.membership_expiration else None,
            "membership_source": self.membership_source,
        }
        if self.stripe_customer_id:
            payload["stripe_customer_id"] = self.stripe_customer_id
        return payload


def merge_plans(existing: Iterable[str], plan_name: str) -> FrozenSet[str]:
    return frozenset(existing) | {plan_name}


def merge_expiration(existing: Optional[date], computed: date) -> date:
    # L'adhésion s'allonge, ne raccourcit jamais
    if existing is None:
        return computed
    return max(existing, computed)


def merge_grant(
    profile: MembershipProfile,
    plan_name: str,
    today: date,
    stripe_customer_id: Optional[str] = None,
) -> MembershipProfile:
    """Applique une attribution d'adhésion d'un an à partir de `today`."""
    already_member = profile.is_member and profile.member_since is not None
    return replace(
        profile,
        is_member=True,
        membership_plans=merge_plans(profile.membership_plans, plan_name),
        member_since=profile.member_since if already_member else today,
        membership_expiration=merge_expiration(profile.membership_expiration, one_year_after(today)),
        membership_source=MEMBERSHIP_SOURCE,
        stripe_customer_id=profile.stripe_customer_id or stripe_customer_id or None,
    )

"""
Calcul des frais de livraison (fonction pure, pas de Stripe, pas de DB).
Règles, par ordre de priorité:
  1) panier 100% numérique (uniquement l'adhésion) -> 0
  2) retrait sur place (pickup) -> 0
  3) sous-total >= seuil de gratuité -> 0
  4) sinon forfait par zone (domestic / regional)
"""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from enum import Enum
from typing import Any, Optional

from .errors import ClientInputError

FREE_SHIPPING_THRESHOLD = Decimal("99.00")
DOMESTIC_SHIPPING = Decimal("5.90")
REGIONAL_SHIPPING = Decimal("9.90")
ZERO = Decimal("0.00")


class ShippingOption(str, Enum):
    DOMESTIC = "domestic"
    REGIONAL = "regional"
    PICKUP = "pickup"

    @classmethod
    def parse(cls, value: Optional[str]) -> "ShippingOption":
        """Accepte aussi les alias historiques de la boutique ("de", "eu"); défaut: domestic."""
        raw = str(value or "").strip().lower()
        return _ALIASES.get(raw, cls.DOMESTIC)


_ALIASES = {
    "domestic": ShippingOption.DOMESTIC,
    "de": ShippingOption.DOMESTIC,
    "regional": ShippingOption.REGIONAL,
    "eu": ShippingOption.REGIONAL,
    "pickup": ShippingOption.PICKUP,
}

_RATES = {
    ShippingOption.DOMESTIC: DOMESTIC_SHIPPING,
    ShippingOption.REGIONAL: REGIONAL_SHIPPING,
}

SHIPPING_LABELS = {
    ShippingOption.DOMESTIC: "Shipping (Standard – Domestic)",
    ShippingOption.REGIONAL: "Shipping (Standard – Regional)",
    ShippingOption.PICKUP: "Shipping (Local pickup)",
}


def parse_subtotal(value: Any) -> Decimal:
    """
    Convertit le sous-total reçu (nombre JSON) en Decimal >= 0.
    - chaîne, bool, NaN, infini ou négatif -> ClientInputError(400)
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ClientInputError("subtotal must be a number")
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ClientInputError("subtotal must be a number")
    if not amount.is_finite() or amount < 0:
        raise ClientInputError("subtotal must be a non-negative number")
    return amount


def shipping_cost(option: ShippingOption, subtotal: Decimal, is_digital_only: bool) -> Decimal:
    if is_digital_only:
        return ZERO
    if option is ShippingOption.PICKUP:
        return ZERO
    if subtotal >= FREE_SHIPPING_THRESHOLD:
        return ZERO
    return _RATES[option]


def shipping_label(option: ShippingOption, cost: Decimal) -> str:
    label = SHIPPING_LABELS[option]
    return f"{label} – Free" if cost == 0 else label


def to_minor_units(amount: Decimal) -> int:
    """Montant en centimes pour Stripe (unit_amount)."""
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))

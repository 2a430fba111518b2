"""
Panier: validation structurelle et résolution du mode de facturation.
- Le corps de requête arrive sous deux formes (lineItems[] ou article unique legacy);
  parse_basket() les ramène à un Basket canonique avant toute autre logique.
- resolve_mode() interroge le fournisseur une fois par price_ref distinct et rejette
  les paniers qui mélangent paiement unique et abonnement.
"""
import math
from enum import Enum
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, StrictStr, ValidationError, field_validator

from .errors import ClientInputError

INVALID_LINE_ITEMS = "Invalid lineItems: each item must have priceId, quantity, productId, productTitle, productSlug"
MISSING_ITEMS = "Either lineItems array or single priceId + productId + productTitle + productSlug is required"
MIXED_MODES = "Basket cannot mix one-time payment and subscription items. Please checkout separately."


class BillingMode(str, Enum):
    ONE_TIME = "payment"
    RECURRING = "subscription"


class LineItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    price_ref: StrictStr
    quantity: int
    product_id: StrictStr
    product_title: StrictStr
    product_slug: StrictStr

    @field_validator("price_ref", "product_id", "product_title", "product_slug")
    @classmethod
    def _non_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be empty")
        return v

    @field_validator("quantity", mode="before")
    @classmethod
    def _floor_quantity(cls, v: Any) -> int:
        # Quantité fractionnaire arrondie à l'entier inférieur, minimum 1
        if isinstance(v, bool) or not isinstance(v, (int, float)):
            raise ValueError("quantity must be a number")
        if isinstance(v, float) and not math.isfinite(v):
            raise ValueError("quantity must be finite")
        return max(1, math.floor(v))

    @classmethod
    def from_payload(cls, raw: Any) -> "LineItem":
        if not isinstance(raw, dict):
            raise ClientInputError(INVALID_LINE_ITEMS)
        try:
            return cls(
                price_ref=raw.get("priceId"),
                quantity=raw.get("quantity"),
                product_id=raw.get("productId"),
                product_title=raw.get("productTitle"),
                product_slug=raw.get("productSlug"),
            )
        except ValidationError:
            raise ClientInputError(INVALID_LINE_ITEMS)


class Basket:
    """Séquence ordonnée, non vide et immuable de LineItem."""

    def __init__(self, items: List[LineItem]):
        if not items:
            raise ClientInputError(MISSING_ITEMS)
        self._items: Tuple[LineItem, ...] = tuple(items)

    @property
    def items(self) -> Tuple[LineItem, ...]:
        return self._items

    def __iter__(self) -> Iterator[LineItem]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def distinct_price_refs(self) -> List[str]:
        """price_ref distincts dans l'ordre de première apparition."""
        return list(dict.fromkeys(item.price_ref for item in self._items))

    def is_digital_only(self, membership_slug: str) -> bool:
        return len(self._items) > 0 and all(item.product_slug == membership_slug for item in self._items)

    def contains_slug(self, slug: str) -> bool:
        return any(item.product_slug == slug for item in self._items)


def parse_basket(body: Dict[str, Any]) -> Basket:
    """
    Résout l'union LineItemArray | LegacySingleItem en Basket.
    - lineItems non vide: chaque entrée doit être complète et typée, sinon 400.
    - sinon priceId + productId + productTitle + productSlug (quantité 1).
    - aucun des deux: 400.
    """
    raw_items = body.get("lineItems")
    if isinstance(raw_items, list) and raw_items:
        return Basket([LineItem.from_payload(raw) for raw in raw_items])

    legacy_fields = ("priceId", "productId", "productTitle", "productSlug")
    if all(isinstance(body.get(f), str) and body.get(f) for f in legacy_fields):
        return Basket([LineItem.from_payload({**{f: body[f] for f in legacy_fields}, "quantity": 1})])

    raise ClientInputError(MISSING_ITEMS)


def optional_text(body: Dict[str, Any], field: str) -> Optional[str]:
    """Champ texte facultatif (userId, userEmail): absent ou vide -> None, autre type que str -> 400."""
    value = body.get(field)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ClientInputError(f"{field} must be a string")
    return value.strip() or None


def resolve_mode(basket: Basket, lookup_mode: Callable[[str], BillingMode]) -> BillingMode:
    """
    Détermine le mode du panier: le premier price_ref distinct fixe le mode,
    tout price_ref suivant d'un autre mode rejette le panier (400).
    lookup_mode est appelé une seule fois par price_ref distinct.
    """
    mode = None
    for price_ref in basket.distinct_price_refs():
        item_mode = lookup_mode(price_ref)
        if mode is None:
            mode = item_mode
        elif item_mode is not mode:
            raise ClientInputError(MIXED_MODES)
    return mode

"""
Sérialisation/désérialisation des métadonnées Stripe (seul canal pour relier le webhook au panier).
- Aplatissement uniquement à la frontière Stripe: ids et slugs séparés par des virgules,
  titres séparés par des pipes (un titre peut contenir une virgule).
- Le webhook relit ces champs via CheckoutMetadata, jamais en parsant les chaînes ailleurs.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from .basket import Basket
from .errors import ClientInputError
from .shipping import ShippingOption

GUEST_USER_ID = "guest"
# Limite Stripe: 500 caractères par valeur de métadonnée
METADATA_VALUE_MAX = 500
BASKET_TOO_LARGE = "Basket too large: please checkout fewer items at once"

# module backend.payments.metadata
def make_metadata(basket: Basket, user_id: Optional[str], shipping_option: Optional[ShippingOption]) -> Dict[str, str]:
    """
    Construit le sac de métadonnées de la session.
    - userId: identifiant du propriétaire du panier, ou "guest" pour un achat anonyme.
    - shippingOption: présent seulement si le client a choisi une option.
    - une valeur au-delà de METADATA_VALUE_MAX -> ClientInputError(400), jamais tronquée.
    """
    metadata = {
        "productIds": ",".join(item.product_id for item in basket),
        "productTitles": "|".join(item.product_title for item in basket),
        "productSlugs": ",".join(item.product_slug for item in basket),
        "userId": (user_id or "").strip() or GUEST_USER_ID,
    }
    if shipping_option is not None:
        metadata["shippingOption"] = shipping_option.value
    if any(len(v) > METADATA_VALUE_MAX for v in metadata.values()):
        raise ClientInputError(BASKET_TOO_LARGE)
    return metadata


def _split(value: Any, sep: str) -> Tuple[str, ...]:
    if not isinstance(value, str) or not value:
        return ()
    return tuple(part.strip() for part in value.split(sep) if part.strip())


@dataclass(frozen=True)
class CheckoutMetadata:
    product_ids: Tuple[str, ...] = field(default_factory=tuple)
    product_titles: Tuple[str, ...] = field(default_factory=tuple)
    product_slugs: Tuple[str, ...] = field(default_factory=tuple)
    user_id: Optional[str] = None
    shipping_option: Optional[str] = None

    @classmethod
    def from_metadata(cls, metadata: Optional[Dict[str, Any]]) -> "CheckoutMetadata":
        meta = metadata if isinstance(metadata, dict) else {}
        user_id = meta.get("userId")
        return cls(
            product_ids=_split(meta.get("productIds"), ","),
            product_titles=_split(meta.get("productTitles"), "|"),
            product_slugs=_split(meta.get("productSlugs"), ","),
            user_id=user_id if isinstance(user_id, str) and user_id.strip() else None,
            shipping_option=meta.get("shippingOption") or None,
        )

    @property
    def is_guest(self) -> bool:
        return self.user_id is None or self.user_id == GUEST_USER_ID

    def includes_product(self, slug: str) -> bool:
        return slug in self.product_slugs


def extract_metadata(event: Dict[str, Any]) -> CheckoutMetadata:
    """
    Extrait les métadonnées depuis un event Stripe (webhook).
    - Attend event.data.object.metadata.{productIds, productTitles, productSlugs, userId, shippingOption}
    - Tolérant: champs absents -> tuples vides / None.
    """
    if not isinstance(event, dict):
        return CheckoutMetadata()
    data_obj = (event.get("data") or {}).get("object") or {}
    return CheckoutMetadata.from_metadata(data_obj.get("metadata"))

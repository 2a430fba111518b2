"""
Construction des line_items Stripe (pas d'appel réseau, pas de DB).
"""
from decimal import Decimal
from typing import Any, Dict, List

from .basket import Basket
from .shipping import ShippingOption, shipping_label, to_minor_units

CURRENCY = "eur"

# module backend.payments.cart
def to_line_items(basket: Basket) -> List[Dict[str, Any]]:
    """
    Une ligne Stripe par ligne de panier: {"price": "<price_ref>", "quantity": <int>}.
    Les quantités ne sont pas agrégées: l'ordre et le découpage du panier sont conservés.
    """
    return [{"price": item.price_ref, "quantity": item.quantity} for item in basket]


def shipping_line_item(option: ShippingOption, cost: Decimal) -> Dict[str, Any]:
    """
    Ligne synthétique de livraison, visible par l'acheteur même lorsqu'elle est offerte
    (libellé suffixé « – Free » et unit_amount 0).
    """
    return {
        "quantity": 1,
        "price_data": {
            "currency": CURRENCY,
            "unit_amount": to_minor_units(cost),
            "product_data": {"name": shipping_label(option, cost)},
        },
    }

"""
Taxonomie d'erreurs du pipeline checkout / adhésion.
- Chaque erreur porte son code HTTP; le handler global rend {"error": message}.
- NotificationError n'est jamais remontée à l'appelant (journalisée seulement).
"""
from typing import Dict, Optional


class ShopError(Exception):
    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None, headers: Optional[Dict[str, str]] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.headers = headers


class ClientInputError(ShopError):
    """Panier mal formé, champ manquant, modes de facturation mélangés, signature absente."""
    status_code = 400


class AuthenticationError(ShopError):
    """Signature invalide (400, côté appelant) ou clés fournisseur refusées (500, côté opérateur)."""
    status_code = 400


class UpstreamProviderError(ShopError):
    status_code = 500


class ConfigurationError(ShopError):
    status_code = 500


class NotFoundError(ShopError):
    status_code = 404


class ProfileWriteError(ShopError):
    status_code = 500


class NotificationError(ShopError):
    pass

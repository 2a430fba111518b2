from typing import Optional
from supabase import create_client, Client

from backend import config
from backend.payments.errors import ConfigurationError

_service_supabase: Optional[Client] = None

def get_service_supabase() -> Client:
    """
    Client Supabase « service role » (bypass RLS): seul le serveur écrit dans profiles.
    Sans URL ou clé service -> ConfigurationError (l'endpoint répond 500 au lieu de planter).
    """
    global _service_supabase
    if not config.SUPABASE_URL or not config.SUPABASE_SERVICE_KEY:
        raise ConfigurationError("Server configuration error")
    if _service_supabase is None:
        _service_supabase = create_client(config.SUPABASE_URL, config.SUPABASE_SERVICE_KEY)
    return _service_supabase

def reset_clients() -> None:
    """Oublie le client mis en cache (changement de configuration, tests)."""
    global _service_supabase
    _service_supabase = None

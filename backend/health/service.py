from urllib.parse import urlparse
import socket

from backend import config
import backend.infra.supabase_client as supabase_client
from backend.membership.repository import PROFILES_TABLE

# module backend.health.service
def health_config_info():
    """Intégrations configurées (booléens uniquement, jamais les valeurs des secrets)."""
    return {
        "stripe": bool(config.STRIPE_SECRET_KEY),
        "stripe_webhook": bool(config.STRIPE_WEBHOOK_SECRET),
        "supabase": bool(config.SUPABASE_URL and config.SUPABASE_SERVICE_KEY),
        "sendgrid": bool(config.SENDGRID_API_KEY),
        "site_url": config.SITE_URL or None,
        "membership_slug": config.CLUB_MEMBERSHIP_SLUG,
    }

def _check_table(client, name: str):
    try:
        res = client.table(name).select("id").limit(1).execute()
        cnt = len(res.data or [])
        return {"ok": True, "rows": cnt}
    except Exception as e:
        return {"ok": False, "error": str(e)}

def health_supabase_info():
    """Résolution DNS de l'hôte Supabase puis lecture d'une ligne de profiles."""
    parsed = urlparse(config.SUPABASE_URL) if config.SUPABASE_URL else None
    hostname = parsed.hostname if parsed else None
    dns_ok = None
    dns_error = None
    if hostname:
        try:
            socket.getaddrinfo(hostname, 443)
            dns_ok = True
        except OSError as e:
            dns_ok = False
            dns_error = str(e)

    info = {
        "hostname": hostname,
        "dns_ok": dns_ok,
        "dns_error": dns_error,
        "connect_ok": False,
        "error": None,
        "tables": {},
    }
    try:
        client = supabase_client.get_service_supabase()
        info["tables"][PROFILES_TABLE] = _check_table(client, PROFILES_TABLE)
        info["connect_ok"] = True
    except Exception as e:
        info["error"] = str(e)
    return info

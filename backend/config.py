# backend.config
from pathlib import Path
import os
from dotenv import load_dotenv

# Calculer le chemin du projet puis charger .env de manière explicite
BASE_DIR = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"
load_dotenv(dotenv_path=ENV_PATH, override=False)

"""
Configuration centrale du backend boutique / adhésion club.

- Charge le fichier .env à la racine du projet (BASE_DIR/.env)
- Normalise et expose les secrets/URLs (Stripe, Supabase, SendGrid, Redis)
- Fournit les chemins de redirection du checkout et du portail client
- Une clé absente ne fait jamais planter le process: l'endpoint concerné répond 500 "not configured"
"""

def _clean_env(v: str) -> str:
    """
    Nettoie une valeur d'environnement:
    - supprime les espaces et guillemets (simples, doubles) et backticks
    - retourne toujours une chaîne (jamais None)
    """
    return (v or "").strip().strip("'").strip('"').strip("`")

def _int_env(name: str, default: int) -> int:
    try:
        return int(_clean_env(os.getenv(name) or "") or default)
    except ValueError:
        return default

# Supabase: URL et clé service (le webhook écrit dans profiles, hors RLS)
SUPABASE_URL = _clean_env(os.getenv("SUPABASE_URL") or os.getenv("VITE_SUPABASE_URL") or "")
SUPABASE_SERVICE_KEY = _clean_env(os.getenv("SUPABASE_SERVICE_KEY") or os.getenv("SUPABASE_SERVICE_ROLE_KEY") or "")

if SUPABASE_URL and not SUPABASE_URL.startswith("http"):
    SUPABASE_URL = "https://" + SUPABASE_URL
if SUPABASE_URL.endswith("/"):
    SUPABASE_URL = SUPABASE_URL.rstrip("/")

# Stripe: clé secrète, secret de signature webhook, timeout réseau borné
STRIPE_SECRET_KEY = _clean_env(os.getenv("STRIPE_SECRET_KEY") or "")
STRIPE_WEBHOOK_SECRET = _clean_env(os.getenv("STRIPE_WEBHOOK_SECRET") or "")
STRIPE_TIMEOUT_SECONDS = _int_env("STRIPE_TIMEOUT_SECONDS", 8)

# Site public: base des URLs de redirection (sinon dérivée des en-têtes X-Forwarded-*)
SITE_URL = _clean_env(os.getenv("SITE_URL") or os.getenv("NEXT_PUBLIC_SITE_URL") or os.getenv("BASE_URL") or "").rstrip("/")

CHECKOUT_SUCCESS_PATH = os.getenv("CHECKOUT_SUCCESS_PATH", "/checkout/success?session_id={CHECKOUT_SESSION_ID}")
CHECKOUT_CANCEL_PATH = os.getenv("CHECKOUT_CANCEL_PATH", "/shop")
PORTAL_RETURN_PATH = os.getenv("PORTAL_RETURN_PATH", "/members")

# Produit adhésion: slug (produit numérique, pas de livraison) et nom du plan écrit dans le profil
CLUB_MEMBERSHIP_SLUG = _clean_env(os.getenv("CLUB_MEMBERSHIP_SLUG") or "kandie-gang-cycling-club-membership")
CLUB_PLAN_NAME = _clean_env(os.getenv("CLUB_PLAN_NAME") or "Kandie Gang Cycling Club Membership")

# Emails transactionnels (SendGrid)
SENDGRID_API_KEY = _clean_env(os.getenv("SENDGRID_API_KEY") or "")
WELCOME_FROM_EMAIL = _clean_env(os.getenv("WELCOME_FROM_EMAIL") or "Kandie Gang <hello@kandiegang.com>")

# Rate limiting: compteurs partagés dans Redis, budgets par route
RATE_LIMIT_REDIS_URL = _clean_env(os.getenv("RATE_LIMIT_REDIS_URL") or "redis://127.0.0.1:6379/0")
CHECKOUT_RATE_LIMIT = _int_env("CHECKOUT_RATE_LIMIT", 10)
PORTAL_RATE_LIMIT = _int_env("PORTAL_RATE_LIMIT", 5)
RATE_LIMIT_WINDOW_SECONDS = _int_env("RATE_LIMIT_WINDOW_SECONDS", 60)

# Sécurité HTTP / CORS
COOKIE_SECURE = (os.getenv("COOKIE_SECURE", "false").lower() == "true")
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
ALLOWED_HOSTS = [h.strip() for h in os.getenv("ALLOWED_HOSTS", "localhost,127.0.0.1,testserver").split(",") if h.strip()]

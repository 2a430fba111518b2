"""
Email de bienvenue envoyé après une attribution d'adhésion (SendGrid).
Best-effort: n'échoue jamais vers l'appelant, retourne True/False et journalise.
"""
import logging
from datetime import date
from typing import Optional

from jinja2 import DictLoader, Environment, select_autoescape
from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail

from backend import config
from backend.payments.errors import NotificationError

logger = logging.getLogger(__name__)

WELCOME_SUBJECT = "Welcome to the Kandie Gang Cycling Club"

_TEMPLATES = {
    "welcome.html": """<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><meta name="viewport" content="width=device-width, initial-scale=1.0"></head>
<body style="font-family: system-ui, -apple-system, sans-serif; line-height: 1.6; color: #1F2223; max-width: 560px; margin: 0 auto; padding: 24px;">
  <h1 style="font-size: 1.5rem; color: #46519C; font-weight: 600;">{{ subject }}</h1>
  <p>Thank you for becoming a member. You're in.</p>
  <p>Your membership is active for one year:</p>
  <ul style="margin: 16px 0;">
    <li><strong>Start:</strong> {{ member_since }}</li>
    <li><strong>Expires:</strong> {{ membership_expiration }}</li>
  </ul>
  <p><a href="{{ members_url }}" style="display: inline-block; background: #46519C; color: white; text-decoration: none; padding: 12px 24px; border-radius: 9999px; font-weight: 600;">Go to Members Area</a></p>
  <p style="margin-top: 32px; font-size: 0.875rem; color: #5f6264;">Kandie Gang Cycling Club</p>
</body>
</html>
""",
    "welcome.txt": """{{ subject }}

Thank you for becoming a member. You're in.

Your membership is active for one year:
Start: {{ member_since }}
Expires: {{ membership_expiration }}

Go to Members Area: {{ members_url }}

Kandie Gang Cycling Club
""",
}

_env = Environment(loader=DictLoader(_TEMPLATES), autoescape=select_autoescape(["html"]))


def members_url() -> str:
    base = config.SITE_URL or "http://localhost:8000"
    return f"{base}{config.PORTAL_RETURN_PATH}"


def render_welcome(member_since: Optional[date], membership_expiration: Optional[date]):
    """Retourne (html, texte) de l'email de bienvenue."""
    context = {
        "subject": WELCOME_SUBJECT,
        "member_since": member_since.isoformat() if member_since else "",
        "membership_expiration": membership_expiration.isoformat() if membership_expiration else "",
        "members_url": members_url(),
    }
    return _env.get_template("welcome.html").render(context), _env.get_template("welcome.txt").render(context)


def send_member_welcome_email(to: str, member_since: Optional[date], membership_expiration: Optional[date]) -> bool:
    """
    Envoie l'email de bienvenue.
    - SENDGRID_API_KEY absente -> warning, False
    - erreur SendGrid ou statut non 2xx -> NotificationError journalisée, False
    """
    if not to:
        logger.warning("notifications.welcome no recipient")
        return False
    if not config.SENDGRID_API_KEY:
        logger.warning("notifications.welcome SENDGRID_API_KEY missing, email skipped")
        return False

    html, text = render_welcome(member_since, membership_expiration)
    message = Mail(
        from_email=config.WELCOME_FROM_EMAIL,
        to_emails=to,
        subject=WELCOME_SUBJECT,
        html_content=html,
        plain_text_content=text,
    )
    try:
        response = SendGridAPIClient(config.SENDGRID_API_KEY).send(message)
        if not 200 <= response.status_code < 300:
            raise NotificationError(f"SendGrid status {response.status_code}")
    except Exception as e:
        err = e if isinstance(e, NotificationError) else NotificationError(f"Failed to send email: {e}")
        logger.error("notifications.welcome failed: %s", err.message)
        return False
    logger.info("notifications.welcome sent")
    return True

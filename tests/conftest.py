import hashlib
import hmac
import json
import time
from dataclasses import replace
from types import SimpleNamespace
from typing import Any, Dict, Generator, List, Optional

import pytest
import stripe
from fastapi.testclient import TestClient

from backend import config
from backend.app_setup.factory import create_app
from backend.membership.models import MembershipProfile
from backend.utils.rate_limit import MemoryWindowStore

WEBHOOK_SECRET = "whsec_test_secret"
MEMBERSHIP_SLUG = "club-membership"
PLAN_NAME = "Club Membership"

# Marquage automatique selon le dossier
def pytest_collection_modifyitems(config, items):
    for item in items:
        nodeid = item.nodeid.replace("\\", "/")
        if "/tests/unit/" in nodeid or nodeid.startswith("tests/unit/"):
            item.add_marker(pytest.mark.unit)
        elif "/tests/integration/" in nodeid or nodeid.startswith("tests/integration/"):
            item.add_marker(pytest.mark.integration)

# Configuration déterministe, indépendante du .env local
@pytest.fixture(autouse=True)
def _test_config(monkeypatch):
    monkeypatch.setattr(config, "STRIPE_SECRET_KEY", "sk_test_dummy")
    monkeypatch.setattr(config, "STRIPE_WEBHOOK_SECRET", WEBHOOK_SECRET)
    monkeypatch.setattr(config, "SUPABASE_URL", "https://project.supabase.test")
    monkeypatch.setattr(config, "SUPABASE_SERVICE_KEY", "service-role-key")
    monkeypatch.setattr(config, "SITE_URL", "https://shop.example")
    monkeypatch.setattr(config, "SENDGRID_API_KEY", "")
    monkeypatch.setattr(config, "CLUB_MEMBERSHIP_SLUG", MEMBERSHIP_SLUG)
    monkeypatch.setattr(config, "CLUB_PLAN_NAME", PLAN_NAME)

@pytest.fixture()
def app():
    # Store None -> le lifespan ne tente pas Redis et le rate limiting est désactivé
    application = create_app()
    application.state.rate_limit_store = None
    return application

@pytest.fixture()
def client(app) -> Generator[TestClient, None, None]:
    with TestClient(app) as c:
        yield c

@pytest.fixture()
def limited_client(app) -> Generator[TestClient, None, None]:
    """Client dont l'app compte les requêtes en mémoire."""
    app.state.rate_limit_store = MemoryWindowStore()
    with TestClient(app) as c:
        yield c


class FakeProfileStore:
    """Remplace backend.membership.repository: profils en mémoire, écriture conditionnelle."""

    def __init__(self):
        self.rows: Dict[str, MembershipProfile] = {}
        self.reads = 0
        self.updates: List[MembershipProfile] = []

    def add(self, id: str, email: Optional[str] = None, **fields) -> MembershipProfile:
        profile = MembershipProfile(id=id, email=email, **fields)
        self.rows[id] = profile
        return profile

    def get_profile_by_id(self, user_id: str) -> Optional[MembershipProfile]:
        self.reads += 1
        return self.rows.get(user_id)

    def find_profile_by_email(self, email: str) -> Optional[MembershipProfile]:
        self.reads += 1
        for profile in self.rows.values():
            if profile.email and profile.email.lower() == email.lower():
                return profile
        return None

    def update_profile_if_unchanged(self, previous: MembershipProfile, merged: MembershipProfile) -> bool:
        current = self.rows.get(previous.id)
        if current is None or current.membership_expiration != previous.membership_expiration:
            return False
        self.rows[previous.id] = merged
        self.updates.append(merged)
        return True

    @property
    def touched(self) -> bool:
        return self.reads > 0 or bool(self.updates)

    def bump(self, user_id: str, **fields) -> None:
        """Simule une écriture concurrente sur un profil."""
        self.rows[user_id] = replace(self.rows[user_id], **fields)


@pytest.fixture()
def profile_store(monkeypatch) -> FakeProfileStore:
    store = FakeProfileStore()
    monkeypatch.setattr("backend.membership.repository.get_profile_by_id", store.get_profile_by_id)
    monkeypatch.setattr("backend.membership.repository.find_profile_by_email", store.find_profile_by_email)
    monkeypatch.setattr("backend.membership.repository.update_profile_if_unchanged", store.update_profile_if_unchanged)
    return store


class FakeStripe:
    """Enregistre les appels Stripe (Price.retrieve, checkout / billing_portal Session.create)."""

    def __init__(self):
        self.prices: Dict[str, str] = {}
        self.price_lookups: List[str] = []
        self.sessions: List[Dict[str, Any]] = []
        self.portal_sessions: List[Dict[str, Any]] = []
        self.error: Optional[Exception] = None

    def retrieve_price(self, price_ref, **kwargs):
        self.price_lookups.append(price_ref)
        if price_ref not in self.prices:
            raise stripe.InvalidRequestError(f"No such price: '{price_ref}'", "price")
        return SimpleNamespace(id=price_ref, type=self.prices[price_ref])

    def create_checkout_session(self, **params):
        if self.error:
            raise self.error
        self.sessions.append(params)
        return SimpleNamespace(id="cs_test_123", url="https://checkout.stripe.com/c/pay/cs_test_123")

    def create_portal_session(self, **params):
        if self.error:
            raise self.error
        self.portal_sessions.append(params)
        return SimpleNamespace(url="https://billing.stripe.com/p/session/test_123")


@pytest.fixture()
def fake_stripe(monkeypatch) -> FakeStripe:
    fake = FakeStripe()
    monkeypatch.setattr(stripe.Price, "retrieve", fake.retrieve_price)
    monkeypatch.setattr(stripe.checkout.Session, "create", fake.create_checkout_session)
    monkeypatch.setattr(stripe.billing_portal.Session, "create", fake.create_portal_session)
    return fake


def sign_payload(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: Optional[int] = None) -> str:
    """En-tête Stripe-Signature valide: t=<ts>,v1=HMAC_SHA256(secret, "<ts>.<payload>")."""
    ts = int(timestamp if timestamp is not None else time.time())
    signed = f"{ts}.".encode("utf-8") + payload
    sig = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={ts},v1={sig}"


def checkout_completed_event(
    slugs: str = MEMBERSHIP_SLUG,
    user_id: str = "guest",
    email: Optional[str] = "rider@example.com",
    customer: Optional[str] = "cus_123",
    event_type: str = "checkout.session.completed",
) -> Dict[str, Any]:
    return {
        "id": "evt_test_1",
        "type": event_type,
        "data": {
            "object": {
                "id": "cs_test_123",
                "customer": customer,
                "customer_details": {"email": email},
                "metadata": {
                    "productIds": "p1",
                    "productTitles": "Club Membership",
                    "productSlugs": slugs,
                    "userId": user_id,
                },
            }
        },
    }


def event_bytes(event: Dict[str, Any]) -> bytes:
    return json.dumps(event).encode("utf-8")

from datetime import date

import pytest

from backend import config
from backend.membership.models import one_year_after
from conftest import PLAN_NAME, checkout_completed_event, event_bytes, sign_payload

WEBHOOK_URL = "/api/v1/payments/webhook"


@pytest.fixture()
def sent_emails(monkeypatch):
    sent = []

    def _fake_send(to, member_since, membership_expiration):
        sent.append({"to": to, "member_since": member_since, "membership_expiration": membership_expiration})
        return True

    monkeypatch.setattr("backend.notifications.service.send_member_welcome_email", _fake_send)
    return sent


def _post_event(client, event, header=None):
    body = event_bytes(event)
    headers = {"Content-Type": "application/json"}
    signature = sign_payload(body) if header is None else header
    if signature:
        headers["Stripe-Signature"] = signature
    return client.post(WEBHOOK_URL, content=body, headers=headers)


def test_membership_grant_and_welcome_email(client, profile_store, sent_emails):
    profile_store.add(
        "user-1",
        email="rider@example.com",
        membership_plans=frozenset({"Guide"}),
        membership_expiration=date(2025, 1, 1),
    )
    event = checkout_completed_event(slugs="socks,club-membership", user_id="user-1")
    res = _post_event(client, event)

    assert res.status_code == 200
    assert res.json() == {"received": True}
    saved = profile_store.rows["user-1"]
    assert saved.membership_plans == {"Guide", PLAN_NAME}
    assert saved.membership_expiration == max(date(2025, 1, 1), one_year_after(date.today()))
    assert saved.is_member is True
    assert sent_emails == [{
        "to": "rider@example.com",
        "member_since": saved.member_since,
        "membership_expiration": saved.membership_expiration,
    }]


def test_duplicate_delivery_is_harmless(client, profile_store, sent_emails):
    profile_store.add("user-1", email="rider@example.com")
    event = checkout_completed_event(user_id="user-1")
    assert _post_event(client, event).status_code == 200
    first = profile_store.rows["user-1"]
    assert _post_event(client, event).status_code == 200
    assert profile_store.rows["user-1"] == first


def test_invalid_signature_touches_nothing(client, profile_store, sent_emails):
    profile_store.add("user-1", email="rider@example.com")
    event = checkout_completed_event(user_id="user-1")
    res = _post_event(client, event, header=sign_payload(b"something else"))
    assert res.status_code == 400
    assert "signature verification failed" in res.json()["error"]
    assert not profile_store.touched
    assert sent_emails == []


def test_missing_signature_header(client, profile_store, sent_emails):
    res = _post_event(client, checkout_completed_event(), header="")
    assert res.status_code == 400
    assert res.json() == {"error": "Missing Stripe-Signature header"}
    assert not profile_store.touched


@pytest.mark.parametrize("event", [
    checkout_completed_event(event_type="customer.subscription.updated"),
    checkout_completed_event(slugs="jersey,socks"),
    checkout_completed_event(email="unknown@example.com"),
])
def test_irrelevant_events_are_acknowledged(client, profile_store, sent_emails, event):
    res = _post_event(client, event)
    assert res.status_code == 200
    assert res.json() == {"received": True}
    assert profile_store.updates == []
    assert sent_emails == []


def test_store_misconfiguration_is_a_500(client, sent_emails, monkeypatch):
    import backend.infra.supabase_client as supabase_client

    supabase_client.reset_clients()
    monkeypatch.setattr(config, "SUPABASE_URL", "")
    res = _post_event(client, checkout_completed_event())
    assert res.status_code == 500
    assert res.json() == {"error": "Server configuration error"}
    assert sent_emails == []


def test_webhook_secret_missing_is_a_500(client, profile_store, monkeypatch):
    monkeypatch.setattr(config, "STRIPE_WEBHOOK_SECRET", "")
    res = _post_event(client, checkout_completed_event())
    assert res.status_code == 500
    assert res.json() == {"error": "Webhook not configured"}


def test_failed_email_does_not_change_response(client, profile_store, monkeypatch):
    profile_store.add("user-1", email="rider@example.com")
    monkeypatch.setattr("backend.notifications.service.send_member_welcome_email", lambda *args: False)
    res = _post_event(client, checkout_completed_event(user_id="user-1"))
    assert res.status_code == 200
    assert profile_store.rows["user-1"].is_member is True

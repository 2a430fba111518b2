from datetime import date

import pytest

from backend.membership import service as membership_service
from backend.membership.service import GrantState, handle_event, payer_email
from backend.payments.errors import ProfileWriteError
from conftest import PLAN_NAME, checkout_completed_event

TODAY = date(2025, 6, 1)


def test_other_event_types_are_skipped(profile_store):
    event = checkout_completed_event(event_type="invoice.paid")
    outcome = handle_event(event, today=TODAY)
    assert outcome.state is GrantState.SKIPPED_EVENT_TYPE
    assert not profile_store.touched


def test_sessions_without_membership_are_skipped(profile_store):
    outcome = handle_event(checkout_completed_event(slugs="jersey,socks"), today=TODAY)
    assert outcome.state is GrantState.SKIPPED_PRODUCT
    assert not profile_store.touched


def test_missing_profile_is_a_benign_skip(profile_store):
    outcome = handle_event(checkout_completed_event(email="nobody@example.com"), today=TODAY)
    assert outcome.state is GrantState.SKIPPED_NO_PROFILE
    assert profile_store.updates == []


def test_grant_by_user_id(profile_store):
    profile_store.add("user-1", email="rider@example.com", membership_plans=frozenset({"Guide"}), membership_expiration=date(2025, 1, 1))
    event = checkout_completed_event(slugs="socks,club-membership", user_id="user-1", email="other@example.com")
    outcome = handle_event(event, today=TODAY)

    assert outcome.granted
    saved = profile_store.rows["user-1"]
    assert saved.membership_plans == {"Guide", PLAN_NAME}
    assert saved.membership_expiration == date(2026, 6, 1)
    assert saved.is_member is True
    assert saved.stripe_customer_id == "cus_123"
    assert outcome.notify_email == "other@example.com"


def test_guest_grant_resolves_by_email_case_insensitively(profile_store):
    profile_store.add("user-2", email="Rider@Example.com")
    outcome = handle_event(checkout_completed_event(email="rider@EXAMPLE.com"), today=TODAY)
    assert outcome.granted
    assert outcome.profile.id == "user-2"
    assert profile_store.rows["user-2"].member_since == TODAY


def test_replayed_event_leaves_profile_unchanged(profile_store):
    profile_store.add("user-1", email="rider@example.com")
    event = checkout_completed_event(user_id="user-1")
    handle_event(event, today=TODAY)
    first = profile_store.rows["user-1"]
    handle_event(event, today=TODAY)
    assert profile_store.rows["user-1"] == first


def test_lost_race_is_retried_on_fresh_row(profile_store, monkeypatch):
    profile_store.add("user-1", email="rider@example.com", membership_expiration=date(2025, 1, 1))
    original_update = profile_store.update_profile_if_unchanged
    calls = {"n": 0}

    def racing_update(previous, merged):
        calls["n"] += 1
        if calls["n"] == 1:
            # Une autre livraison a écrit entre la lecture et l'écriture
            profile_store.bump("user-1", membership_expiration=date(2027, 1, 1), membership_plans=frozenset({"Guide"}))
        return original_update(previous, merged)

    monkeypatch.setattr("backend.membership.repository.update_profile_if_unchanged", racing_update)
    outcome = handle_event(checkout_completed_event(user_id="user-1"), today=TODAY)

    assert outcome.granted
    saved = profile_store.rows["user-1"]
    assert saved.membership_expiration == date(2027, 1, 1)
    assert saved.membership_plans == {"Guide", PLAN_NAME}
    assert calls["n"] == 2


def test_persistent_conflict_raises_write_error(profile_store, monkeypatch):
    profile_store.add("user-1", email="rider@example.com")
    monkeypatch.setattr("backend.membership.repository.update_profile_if_unchanged", lambda previous, merged: False)
    with pytest.raises(ProfileWriteError) as exc:
        handle_event(checkout_completed_event(user_id="user-1"), today=TODAY)
    assert exc.value.status_code == 500
    assert profile_store.reads == 1 + membership_service.MAX_WRITE_ATTEMPTS


def test_notify_email_falls_back_to_profile_email(profile_store):
    profile_store.add("user-1", email="stored@example.com")
    outcome = handle_event(checkout_completed_event(user_id="user-1", email=None), today=TODAY)
    assert outcome.notify_email == "stored@example.com"


def test_payer_email_prefers_customer_details():
    assert payer_email({"customer_details": {"email": " a@x.io "}, "customer_email": "b@x.io"}) == "a@x.io"
    assert payer_email({"customer_details": None, "customer_email": "b@x.io"}) == "b@x.io"
    assert payer_email({}) is None

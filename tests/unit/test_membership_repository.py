from datetime import date
from types import SimpleNamespace

import pytest

from backend.membership import repository
from backend.membership.models import MembershipProfile
from backend.payments.errors import ConfigurationError, ProfileWriteError


class FakeQuery:
    """Chaîne postgrest minimale: enregistre les appels et renvoie `data` à execute()."""

    def __init__(self, data=None, error=None):
        self.calls = []
        self.data = data if data is not None else []
        self.error = error

    def __getattr__(self, name):
        def _method(*args, **kwargs):
            self.calls.append((name, args))
            return self
        return _method

    def execute(self):
        if self.error:
            raise self.error
        return SimpleNamespace(data=self.data)


class FakeClient:
    def __init__(self, query):
        self.query = query
        self.tables = []

    def table(self, name):
        self.tables.append(name)
        return self.query


@pytest.fixture()
def fake_client(monkeypatch):
    def _install(query):
        client = FakeClient(query)
        monkeypatch.setattr("backend.infra.supabase_client.get_service_supabase", lambda: client)
        return client
    return _install


def test_get_profile_by_id(fake_client):
    query = FakeQuery(data=[{"id": "u1", "email": "a@x.io", "membership_plans": ["Guide"], "membership_expiration": "2025-01-01"}])
    client = fake_client(query)
    profile = repository.get_profile_by_id("u1")
    assert client.tables == ["profiles"]
    assert ("eq", ("id", "u1")) in query.calls
    assert profile.membership_plans == {"Guide"}
    assert profile.membership_expiration == date(2025, 1, 1)


def test_get_profile_by_id_not_found(fake_client):
    fake_client(FakeQuery(data=[]))
    assert repository.get_profile_by_id("missing") is None
    assert repository.get_profile_by_id("") is None


def test_find_profile_by_email_escapes_wildcards(fake_client):
    query = FakeQuery(data=[{"id": "u1", "email": "first_last@x.io"}])
    fake_client(query)
    profile = repository.find_profile_by_email(" first_last@x.io ")
    assert profile.id == "u1"
    assert ("ilike", ("email", "first\\_last@x.io")) in query.calls
    assert ("limit", (1,)) in query.calls


def test_update_is_conditioned_on_previous_expiration(fake_client):
    query = FakeQuery(data=[{"id": "u1"}])
    fake_client(query)
    previous = MembershipProfile(id="u1", membership_expiration=date(2025, 1, 1))
    merged = MembershipProfile(id="u1", is_member=True, membership_expiration=date(2026, 6, 1))
    assert repository.update_profile_if_unchanged(previous, merged) is True
    assert ("eq", ("membership_expiration", "2025-01-01")) in query.calls
    update_args = next(args for name, args in query.calls if name == "update")
    assert update_args[0]["membership_expiration"] == "2026-06-01"


def test_update_on_never_member_uses_is_null(fake_client):
    query = FakeQuery(data=[])
    fake_client(query)
    previous = MembershipProfile(id="u1")
    assert repository.update_profile_if_unchanged(previous, previous) is False
    assert ("is_", ("membership_expiration", "null")) in query.calls


def test_store_errors_become_profile_write_errors(fake_client):
    fake_client(FakeQuery(error=RuntimeError("boom")))
    with pytest.raises(ProfileWriteError):
        repository.update_profile_if_unchanged(MembershipProfile(id="u1"), MembershipProfile(id="u1"))
    with pytest.raises(ProfileWriteError):
        repository.get_profile_by_id("u1")


def test_missing_store_configuration(monkeypatch):
    from backend import config
    import backend.infra.supabase_client as supabase_client

    supabase_client.reset_clients()
    monkeypatch.setattr(config, "SUPABASE_SERVICE_KEY", "")
    with pytest.raises(ConfigurationError) as exc:
        repository.get_profile_by_id("u1")
    assert exc.value.status_code == 500

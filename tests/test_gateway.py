"""
Unit tests for the local document gateway and its encrypted persistence.
"""
import pytest
from cryptography.fernet import Fernet

from rehabhub import config
from rehabhub import encryption as encryption_module
from rehabhub.exceptions import GatewayError
from rehabhub.gateway import LocalGateway, hash_password, matches


def test_create_read_update_delete(gateway):
    created = gateway.create("sessions", {"id": "ignored", "type": "walk", "meta": {"room": 1}})
    assert created.success

    doc = gateway.read("sessions", created.id).data
    assert doc["id"] == created.id
    assert doc["type"] == "walk"
    assert "created_at" in doc and "updated_at" in doc

    assert gateway.update("sessions", created.id, {"meta.floor": 2, "type": "swim"}).success
    doc = gateway.read("sessions", created.id).data
    assert doc["meta"] == {"room": 1, "floor": 2}
    assert doc["type"] == "swim"

    assert gateway.delete("sessions", created.id).success
    assert not gateway.read("sessions", created.id).success


def test_update_missing_document_fails(gateway):
    result = gateway.update("users", "ghost", {"a": 1})
    assert not result.success
    assert result.error == "No document to update: users/ghost"


def test_query_applies_filters_and_returns_copies(gateway):
    gateway.create("users", {"role": "patient", "age": 30, "tags": ["knee"]})
    gateway.create("users", {"role": "buddy", "age": 25})

    patients = gateway.query("users", [{"field": "role", "operator": "==", "value": "patient"}])
    assert [d["role"] for d in patients.data] == ["patient"]

    patients.data[0]["role"] = "changed"
    again = gateway.query("users", [{"field": "tags", "operator": "array-contains", "value": "knee"}])
    assert again.data[0]["role"] == "patient"

    assert len(gateway.query("users", [{"field": "age", "operator": ">=", "value": 26}]).data) == 1
    assert gateway.query("users", "role == patient").success is False


def test_matches_rejects_incomplete_filter():
    with pytest.raises(GatewayError):
        matches({"a": 1}, [{"field": "a", "operator": "=="}])
    assert matches({"a": 1}, [{"field": "b", "operator": "!=", "value": 2}]) is False


def test_data_survives_reload(data_file, encryptor):
    """Tests that data written by one gateway is decrypted by the next."""
    first = LocalGateway(data_file, encryptor=encryptor)
    created = first.create("care_plans", {"goals": ["walk"]})

    second = LocalGateway(data_file, encryptor=encryptor)

    assert second.read("care_plans", created.id).data["goals"] == ["walk"]
    with open(data_file) as f:
        assert "walk" not in f.read()


def test_unreadable_data_starts_fresh(data_file, encryptor):
    LocalGateway(data_file, encryptor=encryptor).create("users", {"role": "admin"})

    other_key = LocalGateway(data_file, encryptor=Fernet(Fernet.generate_key()))

    assert other_key.query("users").data == []


def test_create_user_account_and_sign_in(gateway):
    """
    Verifies account creation writes a hashed password and a profile, and that
    listeners see the new account signed in then out without changing the
    gateway's current user.
    """
    seen = []
    unsubscribe = gateway.on_auth_state_change(seen.append)

    result = gateway.create_user_account("ada@rehab.test", "secret1", {"display_name": "Ada", "role": "nurse"})

    assert result.success
    uid = result.user["uid"]
    assert seen == [result.user, None]
    assert gateway.current_user is None
    account = gateway._data["accounts"][uid]
    assert account["password_hash"] == hash_password("secret1", account["salt"])[1]
    assert gateway.read("users", uid).data["role"] == "nurse"

    assert not gateway.sign_in("ada@rehab.test", "wrong!").success
    assert gateway.sign_in("ADA@rehab.test", "secret1").success
    assert gateway.current_user["uid"] == uid

    unsubscribe()
    gateway.sign_out()
    assert gateway.current_user is None
    assert seen[-1]["uid"] == uid


@pytest.mark.parametrize("email, password, message", [
    ("bad-email", "secret1", "badly formatted"),
    ("ada@rehab.test", "12345", "at least 6"),
])
def test_create_user_account_rejects_bad_credentials(gateway, email, password, message):
    result = gateway.create_user_account(email, password, {"role": "patient"})
    assert not result.success
    assert message in result.error


def test_delete_user_account_removes_profile(gateway):
    uid = gateway.create_user_account("ada@rehab.test", "secret1", {"role": "patient"}).user["uid"]

    assert gateway.delete_user_account(uid).success
    assert not gateway.read("users", uid).success
    assert not gateway.sign_in("ada@rehab.test", "secret1").success
    assert not gateway.delete_user_account(uid).success


def test_encryption_write_and_load_key(tmp_path, monkeypatch):
    key_file = tmp_path / "secret.key"
    monkeypatch.setattr(config, "KEY_FILE", str(key_file))

    key = encryption_module.write_key()

    assert encryption_module.load_key() == key
    token = encryption_module.get_encryptor().encrypt(b"hello")
    assert Fernet(key).decrypt(token) == b"hello"


def test_get_encryptor_generates_missing_key(tmp_path):
    key_file = tmp_path / "new.key"

    encryptor = encryption_module.get_encryptor(str(key_file))

    assert key_file.exists()
    assert encryptor.decrypt(encryptor.encrypt(b"x")) == b"x"

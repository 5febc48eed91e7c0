"""
Pytest configuration file for the RehabHub test suite.

This file defines shared fixtures used across the test modules. It includes logic to:
- Build an isolated `LocalGateway` on a temporary data file with a throwaway Fernet key,
  so tests never touch production data or the production key.
- Provide a `FlakyGateway` that fails chosen calls on demand, for retry and
  compensation tests.
- Create `RehabStore` instances whose retry policy never really sleeps.
"""
import pytest
from cryptography.fernet import Fernet

from rehabhub.auth import AuthState
from rehabhub.gateway import GatewayResult, LocalGateway
from rehabhub.retry import RetryPolicy
from rehabhub.store import RehabStore


class FlakyGateway(LocalGateway):
    """A `LocalGateway` whose calls can be made to fail a set number of times.

    `failures` maps a method name ('query', 'create', 'update', ...) to how many of
    the next calls should fail; -1 fails forever. `calls` counts every call.
    """

    def __init__(self, data_file, encryptor):
        self.failures = {}
        self.calls = {}
        super().__init__(data_file, encryptor=encryptor)

    def _should_fail(self, name):
        self.calls[name] = self.calls.get(name, 0) + 1
        remaining = self.failures.get(name, 0)
        if remaining == 0:
            return False
        if remaining > 0:
            self.failures[name] = remaining - 1
        return True

    def query(self, collection, filters=None):
        if self._should_fail('query'):
            return GatewayResult.failure('network unavailable')
        return super().query(collection, filters)

    def create(self, collection, record, doc_id=None):
        if self._should_fail('create'):
            return GatewayResult.failure('write rejected')
        return super().create(collection, record, doc_id)

    def update(self, collection, doc_id, patch):
        if self._should_fail('update'):
            return GatewayResult.failure('write rejected')
        return super().update(collection, doc_id, patch)


@pytest.fixture
def encryptor():
    """Provides a Fernet encryptor with a fresh key for test isolation."""
    return Fernet(Fernet.generate_key())


@pytest.fixture
def data_file(tmp_path):
    return str(tmp_path / "records.json")


@pytest.fixture
def gateway(data_file, encryptor):
    return LocalGateway(data_file, encryptor=encryptor)


@pytest.fixture
def flaky_gateway(data_file, encryptor):
    return FlakyGateway(data_file, encryptor)


@pytest.fixture
def sleeps():
    """Records the delays a retry policy asked for instead of sleeping."""
    return []


@pytest.fixture
def retry_policy(sleeps):
    return RetryPolicy(max_attempts=3, sleep=sleeps.append)


@pytest.fixture
def store(gateway, retry_policy):
    """
    Provides a store with an auth state over the isolated gateway.

    Yields:
        RehabStore: A store whose snapshot starts empty.
    """
    auth = AuthState(gateway)
    yield RehabStore(gateway, auth=auth, retry_policy=retry_policy)
    auth.close()


@pytest.fixture
def flaky_store(flaky_gateway, retry_policy):
    auth = AuthState(flaky_gateway)
    yield RehabStore(flaky_gateway, auth=auth, retry_policy=retry_policy)
    auth.close()


def make_buddy(store, name="Buddy One", email=None, tier=None):
    """Adds a buddy through the store and returns its id."""
    data = {
        "email": email or f"{name.lower().replace(' ', '.')}@rehab.test",
        "display_name": name,
        "role": "buddy",
    }
    if tier:
        data["tier"] = tier
    result = store.add_user(data)
    assert result.success, result.error
    return result.id


def make_patient(store, first="Pat", last="Ient", email=None, **extra):
    """Registers a patient through the store and returns its uid."""
    data = {
        "email": email or f"{first.lower()}.{last.lower()}@rehab.test",
        "password": "secret1",
        "first_name": first,
        "last_name": last,
    }
    data.update(extra)
    result = store.add_patient(data)
    assert result.success, result.error
    return result.id

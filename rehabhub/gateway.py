"""
This module defines the document gateway the RehabHub store talks to.

`DocumentGateway` is the contract: a document store with `query`, `create`, `read`,
`update` and `delete`, plus an auth provider that creates accounts and signs users in
and out. Every call returns a `GatewayResult` instead of raising on expected failures.

`LocalGateway` implements the contract on top of a single encrypted JSON file:
- Collections are dictionaries of documents keyed by id.
- Accounts hold a salted SHA-256 password hash per user id.
- The whole dataset is Fernet-encrypted on every write and decrypted on start-up.
  A missing, empty or corrupt file starts a fresh dataset.
"""
# rehabhub/gateway.py

import copy
import hashlib
import json
import logging
import os
import uuid
from abc import ABC, abstractmethod

from cryptography.fernet import InvalidToken

from rehabhub import config
from rehabhub.encryption import get_encryptor
from rehabhub.exceptions import GatewayError
from rehabhub.models import now_iso
from rehabhub.validation import MIN_PASSWORD_LENGTH, is_valid_email

logger = logging.getLogger(__name__)


class GatewayResult:
    """Uniform result of a gateway call.

    Attributes:
        success (bool): True if the call succeeded.
        data: Query results (list of documents) or a single document for `read`.
        id (str): Id of a created document.
        user (dict): `{uid, email, display_name}` for auth calls.
        error (str): Failure description.
    """
    def __init__(self, success, data=None, id=None, user=None, error=None):
        self.success = success
        self.data = data
        self.id = id
        self.user = user
        self.error = error

    @classmethod
    def failure(cls, error):
        return cls(False, error=error)

    def __repr__(self):
        return f"GatewayResult(success={self.success!r}, error={self.error!r})"


class DocumentGateway(ABC):
    """Contract for the remote document store and auth provider."""

    @abstractmethod
    def query(self, collection, filters=None) -> GatewayResult:
        """Returns documents of `collection` matching every `{field, operator, value}` filter."""

    @abstractmethod
    def create(self, collection, record, doc_id=None) -> GatewayResult:
        """Stores a new document and returns its id."""

    @abstractmethod
    def read(self, collection, doc_id) -> GatewayResult:
        """Returns a single document."""

    @abstractmethod
    def update(self, collection, doc_id, patch) -> GatewayResult:
        """Applies a partial update; dotted keys set nested fields."""

    @abstractmethod
    def delete(self, collection, doc_id) -> GatewayResult:
        """Removes a document."""

    @abstractmethod
    def create_user_account(self, email, password, profile) -> GatewayResult:
        """Creates an auth account and its `users` profile document."""

    @abstractmethod
    def delete_user_account(self, uid) -> GatewayResult:
        """Removes an auth account and its profile document."""

    @abstractmethod
    def sign_in(self, email, password) -> GatewayResult:
        """Authenticates an account and makes it the current user."""

    @abstractmethod
    def sign_out(self) -> GatewayResult:
        """Clears the current user."""

    @abstractmethod
    def on_auth_state_change(self, callback):
        """Registers `callback(user_or_none)`; returns a function that unregisters it."""


def _get_path(document, field):
    value = document
    for part in field.split('.'):
        if not isinstance(value, dict) or part not in value:
            return _MISSING
        value = value[part]
    return value


def _set_path(document, field, value):
    parts = field.split('.')
    target = document
    for part in parts[:-1]:
        child = target.get(part)
        if not isinstance(child, dict):
            child = {}
            target[part] = child
        target = child
    target[parts[-1]] = value


_MISSING = object()

_OPERATORS = {
    '==': lambda actual, expected: actual == expected,
    '!=': lambda actual, expected: actual != expected,
    '<': lambda actual, expected: actual < expected,
    '<=': lambda actual, expected: actual <= expected,
    '>': lambda actual, expected: actual > expected,
    '>=': lambda actual, expected: actual >= expected,
    'in': lambda actual, expected: actual in expected,
    'not-in': lambda actual, expected: actual not in expected,
    'array-contains': lambda actual, expected: isinstance(actual, list) and expected in actual,
}


def matches(document, filters) -> bool:
    """Checks a document against a list of filters; missing fields never match."""
    for index, item in enumerate(filters):
        field, operator, value = item.get('field'), item.get('operator'), item.get('value', _MISSING)
        if not field or operator not in _OPERATORS or value is _MISSING:
            raise GatewayError(f"Invalid filter at index {index}: field, operator, and value are required")
        actual = _get_path(document, field)
        if actual is _MISSING:
            return False
        try:
            if not _OPERATORS[operator](actual, value):
                return False
        except TypeError:
            return False
    return True


def hash_password(password, salt=None):
    """Hashes a password with a per-account salt.

    Returns:
        tuple: (salt, password_hash) as hex strings.
    """
    salt = salt or os.urandom(16).hex()
    password_hash = hashlib.sha256((salt + password).encode()).hexdigest()
    return salt, password_hash


class LocalGateway(DocumentGateway):
    """Document store and auth provider backed by one encrypted JSON file."""

    def __init__(self, data_file=None, encryptor=None):
        """Loads the dataset from disk.

        Args:
            data_file (str): Path of the encrypted store. Defaults to `config.DATA_FILE`.
            encryptor: Object with `encrypt`/`decrypt` (a `Fernet`). Defaults to the
                key in `config.KEY_FILE`, generated on first run.
        """
        self.data_file = data_file or config.DATA_FILE
        self._encryptor = encryptor or get_encryptor()
        self.current_user = None
        self._listeners = []
        self._data = self._load_data()

    def _load_data(self):
        """Loads and decrypts the dataset, or starts fresh if it is missing or unreadable."""
        try:
            with open(self.data_file, 'r') as f:
                encrypted_data = f.read()
            if not encrypted_data:
                return self._empty_dataset()
            decrypted_data = self._encryptor.decrypt(encrypted_data.encode()).decode()
            data = json.loads(decrypted_data)
        except FileNotFoundError:
            return self._empty_dataset()
        except (InvalidToken, json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning("Could not load data file %s (%s). Starting with a new dataset.", self.data_file, e)
            return self._empty_dataset()
        data.setdefault('collections', {})
        data.setdefault('accounts', {})
        return data

    @staticmethod
    def _empty_dataset():
        return {"collections": {}, "accounts": {}}

    def _save_data(self):
        """Encrypts and writes the whole dataset."""
        data_to_encrypt = json.dumps(self._data, indent=4, default=str)
        encrypted_data = self._encryptor.encrypt(data_to_encrypt.encode())
        with open(self.data_file, 'w') as f:
            f.write(encrypted_data.decode())

    def _collection(self, name):
        if not name:
            raise GatewayError('Collection name is required')
        return self._data['collections'].setdefault(name, {})

    def query(self, collection, filters=None):
        filters = filters or []
        if not isinstance(filters, list):
            return GatewayResult.failure('Filters must be a list')
        try:
            documents = self._collection(collection)
            found = [
                {'id': doc_id, **copy.deepcopy(doc)}
                for doc_id, doc in documents.items()
                if matches(doc, filters)
            ]
        except GatewayError as e:
            return GatewayResult.failure(str(e))
        return GatewayResult(True, data=found)

    def create(self, collection, record, doc_id=None):
        if not isinstance(record, dict):
            return GatewayResult.failure('Data is required and must be a dictionary')
        try:
            documents = self._collection(collection)
        except GatewayError as e:
            return GatewayResult.failure(str(e))
        doc_id = doc_id or uuid.uuid4().hex
        timestamp = now_iso()
        document = copy.deepcopy(record)
        document.pop('id', None)
        document.setdefault('created_at', timestamp)
        document['updated_at'] = timestamp
        documents[doc_id] = document
        self._save_data()
        return GatewayResult(True, id=doc_id)

    def read(self, collection, doc_id):
        if not collection or not doc_id:
            return GatewayResult.failure('Collection name and document ID are required')
        document = self._collection(collection).get(doc_id)
        if document is None:
            return GatewayResult.failure('Document not found')
        return GatewayResult(True, data={'id': doc_id, **copy.deepcopy(document)})

    def update(self, collection, doc_id, patch):
        if not collection or not doc_id:
            return GatewayResult.failure('Collection name and document ID are required')
        if not isinstance(patch, dict) or not patch:
            return GatewayResult.failure('Update data is required and must be a dictionary')
        document = self._collection(collection).get(doc_id)
        if document is None:
            return GatewayResult.failure(f"No document to update: {collection}/{doc_id}")
        for field, value in patch.items():
            if field == 'id':
                continue
            _set_path(document, field, copy.deepcopy(value))
        document['updated_at'] = now_iso()
        self._save_data()
        return GatewayResult(True, id=doc_id)

    def delete(self, collection, doc_id):
        if not collection or not doc_id:
            return GatewayResult.failure('Collection name and document ID are required')
        if self._collection(collection).pop(doc_id, None) is None:
            return GatewayResult.failure('Document not found')
        self._save_data()
        return GatewayResult(True, id=doc_id)

    def create_user_account(self, email, password, profile):
        """Creates an account without replacing the signed-in user's session.

        Listeners see the new account signed in and then signed out, as a hosted
        auth provider reports it; the gateway's own `current_user` is left as it was.

        Args:
            email (str): Login email; must be unique.
            password (str): Plaintext password, at least six characters.
            profile (dict): `display_name`, `role` and optional staff fields.

        Returns:
            GatewayResult: `user` is `{uid, email, display_name}` on success.
        """
        if not is_valid_email(email):
            return GatewayResult.failure('The email address is badly formatted.')
        if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
            return GatewayResult.failure(f"Password should be at least {MIN_PASSWORD_LENGTH} characters.")
        accounts = self._data['accounts']
        if any(account['email'].lower() == email.lower() for account in accounts.values()):
            return GatewayResult.failure('The email address is already in use by another account.')

        uid = uuid.uuid4().hex
        salt, password_hash = hash_password(password)
        accounts[uid] = {'email': email, 'salt': salt, 'password_hash': password_hash}

        display_name = profile.get('display_name') or profile.get('full_name') or ''
        timestamp = now_iso()
        self._collection('users')[uid] = {
            'uid': uid,
            'email': email,
            'display_name': display_name,
            'role': profile.get('role', 'patient'),
            'department': profile.get('department', ''),
            'phone': profile.get('phone', ''),
            'status': 'active',
            'join_date': timestamp,
            'created_at': timestamp,
            'updated_at': timestamp,
        }
        self._save_data()

        user = {'uid': uid, 'email': email, 'display_name': display_name}
        self._notify(user)
        self._notify(None)
        return GatewayResult(True, user=user)

    def delete_user_account(self, uid):
        if self._data['accounts'].pop(uid, None) is None:
            return GatewayResult.failure('Account not found')
        self._collection('users').pop(uid, None)
        self._save_data()
        return GatewayResult(True, id=uid)

    def sign_in(self, email, password):
        for uid, account in self._data['accounts'].items():
            if account['email'].lower() != (email or '').lower():
                continue
            _, password_hash = hash_password(password, account['salt'])
            if password_hash != account['password_hash']:
                break
            profile = self._collection('users').get(uid, {})
            self.current_user = {'uid': uid, 'email': account['email'],
                                 'display_name': profile.get('display_name', '')}
            self._notify(self.current_user)
            return GatewayResult(True, user=dict(self.current_user))
        return GatewayResult.failure('Invalid email or password')

    def sign_out(self):
        self.current_user = None
        self._notify(None)
        return GatewayResult(True)

    def on_auth_state_change(self, callback):
        self._listeners.append(callback)

        def unsubscribe():
            if callback in self._listeners:
                self._listeners.remove(callback)
        return unsubscribe

    def _notify(self, user):
        for callback in list(self._listeners):
            callback(dict(user) if user else None)

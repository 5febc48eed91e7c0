"""
This module manages the Fernet key that encrypts the local document store.

It uses the `cryptography` library (Fernet symmetric encryption) so that the data
at rest is never readable without the key. The module is responsible for:
- Generating a secret key if one does not already exist.
- Storing and loading the key from the configured key file.
- Building the `Fernet` encryptor used by the local gateway.

Security Note: the key file must be kept secure and out of version control.
"""
# rehabhub/encryption.py

import logging
import os

from cryptography.fernet import Fernet

from rehabhub import config

logger = logging.getLogger(__name__)


def write_key(path=None) -> bytes:
    """Generates a new Fernet key and saves it to `path`.

    Args:
        path (str): Where to write the key. Defaults to `config.KEY_FILE`.

    Returns:
        bytes: The new key.
    """
    path = path or config.KEY_FILE
    key = Fernet.generate_key()
    with open(path, "wb") as key_file:
        key_file.write(key)
    return key


def load_key(path=None) -> bytes:
    """Loads the Fernet key from `path`.

    Raises:
        FileNotFoundError: If the key has not been generated yet.
    """
    with open(path or config.KEY_FILE, "rb") as key_file:
        return key_file.read()


def get_encryptor(path=None) -> Fernet:
    """Returns a Fernet instance, generating and saving a key on first run."""
    path = path or config.KEY_FILE
    if os.path.exists(path):
        key = load_key(path)
    else:
        logger.warning("Encryption key %s not found. Generating a new one.", path)
        key = write_key(path)
    return Fernet(key)

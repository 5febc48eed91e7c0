"""
Runtime configuration for RehabHub.

Defaults live in module-level constants so tests can monkeypatch them, and each
one can be overridden from the environment:

- ``REHABHUB_DATA_FILE``: path of the encrypted document store.
- ``REHABHUB_KEY_FILE``: path of the Fernet key used to encrypt it.
- ``GEMINI_API_KEY``: credentials for review summaries.
- ``REHABHUB_GEMINI_MODEL``: generative model name.
- ``REHABHUB_LOAD_ATTEMPTS`` / ``REHABHUB_RETRY_DELAY``: retry policy for load actions.
"""
# rehabhub/config.py

import os
from dataclasses import dataclass

DATA_FILE = 'records.json'
KEY_FILE = 'secret.key'
GEMINI_MODEL = 'gemma-3-27b-it'
LOAD_ATTEMPTS = 3
RETRY_DELAY_SECONDS = 1.0


@dataclass
class Settings:
    data_file: str = DATA_FILE
    key_file: str = KEY_FILE
    gemini_api_key: str | None = None
    gemini_model: str = GEMINI_MODEL
    load_attempts: int = LOAD_ATTEMPTS
    retry_delay: float = RETRY_DELAY_SECONDS


def load_settings(environ=None) -> Settings:
    """Builds a `Settings` from the environment, falling back to module defaults.

    Args:
        environ: Mapping to read from. Defaults to `os.environ`.

    Returns:
        Settings: The resolved settings.
    """
    env = os.environ if environ is None else environ
    return Settings(
        data_file=env.get('REHABHUB_DATA_FILE', DATA_FILE),
        key_file=env.get('REHABHUB_KEY_FILE', KEY_FILE),
        gemini_api_key=env.get('GEMINI_API_KEY') or None,
        gemini_model=env.get('REHABHUB_GEMINI_MODEL', GEMINI_MODEL),
        load_attempts=int(env.get('REHABHUB_LOAD_ATTEMPTS', LOAD_ATTEMPTS)),
        retry_delay=float(env.get('REHABHUB_RETRY_DELAY', RETRY_DELAY_SECONDS)),
    )

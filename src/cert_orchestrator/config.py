"""Configuration loading and validation from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass

_LETS_ENCRYPT_PRODUCTION = "https://acme-v02.api.letsencrypt.org/directory"
_LETS_ENCRYPT_STAGING = "https://acme-staging-v02.api.letsencrypt.org/directory"
_DIRECTORIES = {"production": _LETS_ENCRYPT_PRODUCTION, "staging": _LETS_ENCRYPT_STAGING}

_DEFAULT_ACCOUNT_KEY_PATH = "account-key.json"
_DEFAULT_REQUEST_TTL_SECONDS = 3600
_DEFAULT_POLL_INTERVAL_SECONDS = 2
_DEFAULT_POLL_MAX_ATTEMPTS = 15
_DEFAULT_VALIDATION_TIMEOUT_SECONDS = 120

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off", ""}


@dataclass(frozen=True)
class AppConfig:
    """Application configuration loaded from environment variables."""

    acme_directory_url: str = _LETS_ENCRYPT_STAGING
    account_key_path: str = _DEFAULT_ACCOUNT_KEY_PATH
    account_key_json: str | None = None
    request_ttl_seconds: int = _DEFAULT_REQUEST_TTL_SECONDS
    poll_interval_seconds: int = _DEFAULT_POLL_INTERVAL_SECONDS
    poll_max_attempts: int = _DEFAULT_POLL_MAX_ATTEMPTS
    validation_timeout_seconds: int = _DEFAULT_VALIDATION_TIMEOUT_SECONDS
    http01_preflight: bool = False


def _positive_int(name: str, default: int) -> int:
    raw = os.environ.get(name, str(default))
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got: {raw!r}")
    if value < 1:
        raise ValueError(f"{name} must be a positive integer, got: {value}")
    return value


def _bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    lowered = raw.strip().lower()
    if lowered in _TRUTHY:
        return True
    if lowered in _FALSY:
        return False
    raise ValueError(f"{name} must be a boolean, got: {raw!r}")


def _directory_url() -> str:
    explicit = os.environ.get("ACME_DIRECTORY_URL")
    if explicit:
        return explicit
    env = os.environ.get("ACME_ENV", "staging").lower()
    if env not in _DIRECTORIES:
        raise ValueError(f"ACME_ENV must be one of {sorted(_DIRECTORIES)}, got: {env!r}")
    return _DIRECTORIES[env]


def load_config() -> AppConfig:
    """Load and validate application configuration from environment variables."""
    return AppConfig(
        acme_directory_url=_directory_url(),
        account_key_path=os.environ.get("ACME_ACCOUNT_KEY_PATH", _DEFAULT_ACCOUNT_KEY_PATH),
        account_key_json=os.environ.get("ACME_ACCOUNT_KEY") or None,
        request_ttl_seconds=_positive_int("REQUEST_TTL_SECONDS", _DEFAULT_REQUEST_TTL_SECONDS),
        poll_interval_seconds=_positive_int("POLL_INTERVAL_SECONDS", _DEFAULT_POLL_INTERVAL_SECONDS),
        poll_max_attempts=_positive_int("POLL_MAX_ATTEMPTS", _DEFAULT_POLL_MAX_ATTEMPTS),
        validation_timeout_seconds=_positive_int("VALIDATION_TIMEOUT_SECONDS", _DEFAULT_VALIDATION_TIMEOUT_SECONDS),
        http01_preflight=_bool("HTTP01_PREFLIGHT", False),
    )

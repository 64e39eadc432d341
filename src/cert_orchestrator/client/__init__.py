"""ACME client factory: build the process-wide client from configuration."""

from __future__ import annotations

from cert_orchestrator.client.acme_v2 import AcmeV2Client
from cert_orchestrator.client.base import AcmeClientFacade
from cert_orchestrator.config import AppConfig
from cert_orchestrator.crypto import load_or_create_account_key


def build_acme_client(config: AppConfig) -> AcmeClientFacade:
    """Load (or create) the account key once and connect to the configured directory.

    Args:
        config: Application configuration.

    Returns:
        A connected AcmeClientFacade.
    """
    account_key = load_or_create_account_key(config.account_key_path, key_json=config.account_key_json)
    return AcmeV2Client(config.acme_directory_url, account_key)

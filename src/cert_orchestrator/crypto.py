"""Key material: the ACME account key, per-request certificate keys and CSRs, chain splitting."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import josepy
from acme import crypto_util
from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

logger = logging.getLogger(__name__)


def generate_account_key() -> josepy.JWKRSA:
    """Generate a new 2048-bit RSA key wrapped as a JWK."""
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    return josepy.JWKRSA(key=private_key)


def serialize_account_key(key: josepy.JWKRSA) -> str:
    """Serialize a JWK RSA key to a JSON string."""
    return json.dumps(key.to_json())


def deserialize_account_key(key_json: str) -> josepy.JWKRSA:
    """Deserialize a JWK RSA key from a JSON string."""
    return josepy.JWKRSA.from_json(json.loads(key_json))


def load_or_create_account_key(path: str | Path, key_json: str | None = None) -> josepy.JWKRSA:
    """Return the process-wide account key.

    ``key_json`` (from ``ACME_ACCOUNT_KEY``) wins. Otherwise the key is read
    from ``path``, or generated and written there with owner-only permissions
    so later starts keep the same CA account.
    """
    if key_json:
        logger.info("Using ACME account key from environment")
        return deserialize_account_key(key_json)

    path = Path(path)
    if path.exists():
        logger.info("Loaded existing ACME account key from %s", path)
        return deserialize_account_key(path.read_text())

    key = generate_account_key()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.touch(mode=0o600)
    path.write_text(serialize_account_key(key))
    logger.info("Generated new ACME account key at %s", path)
    return key


def generate_private_key_pem() -> bytes:
    """Generate a 2048-bit RSA private key and return PEM bytes."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    return key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    )


def make_csr(private_key_pem: bytes, domains: list[str]) -> bytes:
    """Build a PEM CSR carrying every domain as a subjectAltName."""
    return crypto_util.make_csr(private_key_pem, domains)


def split_chain(fullchain_pem: str | bytes) -> tuple[str, str]:
    """Split a full-chain PEM into (leaf certificate, intermediate chain).

    The chain is empty when the CA returned only the leaf.
    """
    if isinstance(fullchain_pem, str):
        fullchain_pem = fullchain_pem.encode()

    certs = x509.load_pem_x509_certificates(fullchain_pem)
    if not certs:
        raise ValueError("No certificates found in fullchain PEM data")

    leaf = certs[0].public_bytes(serialization.Encoding.PEM).decode()
    chain = "".join(c.public_bytes(serialization.Encoding.PEM).decode() for c in certs[1:])
    return leaf, chain

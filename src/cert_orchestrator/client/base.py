"""Abstract base class for ACME clients."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Self

from cert_orchestrator.models import AuthorizationHandle, ChallengeHandle, OrderHandle


class AcmeClientFacade(ABC):
    """The ACME operations the orchestrator needs.

    Implementations raise ``UpstreamFailureError`` for any protocol or
    transport failure.
    """

    def close(self) -> None:
        """Release resources. Override in subclasses that hold open connections."""

    def __enter__(self) -> Self:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    @abstractmethod
    def create_account(self, contact_email: str) -> str:
        """Register the account key with the CA, or find the existing registration.

        Returns:
            The account URL.
        """

    @abstractmethod
    def create_order(self, identifiers: list[str], csr_pem: str) -> OrderHandle:
        """Create an order for ``identifiers`` (the CSR names the same set)."""

    @abstractmethod
    def get_authorizations(self, order: OrderHandle) -> list[AuthorizationHandle]:
        """Fetch the current state of every authorization of ``order``, in order."""

    @abstractmethod
    def get_challenge_key_authorization(self, challenge: ChallengeHandle) -> str:
        """Return the value the user must publish for ``challenge``.

        For ``http-01`` this is the key authorization itself; for ``dns-01`` it
        is the TXT record value derived from it.
        """

    @abstractmethod
    def complete_challenge(self, challenge: ChallengeHandle) -> None:
        """Tell the CA the challenge is ready to be verified.

        Must be idempotent: completing a challenge that is already valid or
        being processed is a no-op.
        """

    @abstractmethod
    def get_order(self, order: OrderHandle) -> OrderHandle:
        """Fetch a fresh snapshot of ``order``."""

    @abstractmethod
    def finalize_order(self, order: OrderHandle, csr_pem: str) -> None:
        """Submit the CSR to the order's finalize URL without waiting for issuance."""

    @abstractmethod
    def get_certificate(self, order: OrderHandle) -> str:
        """Download the issued certificate chain as PEM (leaf first)."""

"""Exception taxonomy for the certificate request orchestrator.

Each error carries the HTTP status the API layer answers with, so callers can
map failures without inspecting exception types one by one.
"""

from __future__ import annotations


class OrchestratorError(Exception):
    """Base class for all orchestrator failures."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidInputError(OrchestratorError):
    """Malformed domain, email or validation method."""

    status_code = 400


class RequestNotFoundError(OrchestratorError):
    """Unknown or expired request id."""

    status_code = 404

    def __init__(self, request_id: str) -> None:
        super().__init__("Certificate request not found or expired")
        self.request_id = request_id


class InvalidStateError(OrchestratorError):
    """Operation invoked out of sequence for the request's current state."""

    status_code = 409


class ChallengeUnavailableError(OrchestratorError):
    """The ACME server offered no challenge of the required type."""

    status_code = 400


class ValidationTimeoutError(OrchestratorError):
    """Challenges did not converge to valid within the polling budget."""

    status_code = 408


class ValidationFailedError(OrchestratorError):
    """The CA marked an authorization invalid; it can never become valid."""

    status_code = 400


class CertificateNotReadyError(OrchestratorError):
    """The order did not become valid within the finalize polling budget."""

    status_code = 503


class UpstreamFailureError(OrchestratorError):
    """The ACME client or server failed."""

    status_code = 502


class OperationCancelledError(OrchestratorError):
    """The caller cancelled the operation or its deadline passed."""

    status_code = 504

"""Translate HTTP-shaped input into orchestrator calls and results into (status, JSON body) pairs."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from cert_orchestrator.errors import InvalidInputError, OrchestratorError
from cert_orchestrator.orchestrator import CertificateOrchestrator
from cert_orchestrator.polling import CancellationToken, Clock, SystemClock

logger = logging.getLogger(__name__)

Response = tuple[int, dict[str, Any]]


def _call(operation: Callable[[], Response]) -> Response:
    try:
        return operation()
    except OrchestratorError as exc:
        return exc.status_code, {"error": exc.message}
    except Exception:
        logger.exception("Unhandled error in certificate API")
        return 500, {"error": "Internal server error"}


def request_certificate(orchestrator: CertificateOrchestrator, body: dict | None) -> Response:
    def operation() -> Response:
        if not isinstance(body, dict):
            raise InvalidInputError("Request body must be a JSON object")
        if not all(body.get(k) for k in ("domain", "email", "validationType")):
            raise InvalidInputError("Domain, email, and validation type are required")
        ticket = orchestrator.request_certificate(body["domain"], body["email"], body["validationType"])
        return 200, ticket.to_dict()

    return _call(operation)


def validate(
    orchestrator: CertificateOrchestrator,
    request_id: str | None,
    timeout_seconds: float,
    clock: Clock | None = None,
) -> Response:
    def operation() -> Response:
        if not request_id:
            raise InvalidInputError("Request ID is required")
        token = CancellationToken.with_timeout(timeout_seconds, clock or SystemClock())
        result = orchestrator.start_validation(request_id, token)
        return (200 if result.success else 400), result.to_dict()

    return _call(operation)


def status(
    orchestrator: CertificateOrchestrator,
    request_id: str | None,
    timeout_seconds: float,
    clock: Clock | None = None,
) -> Response:
    def operation() -> Response:
        if not request_id:
            raise InvalidInputError("Request ID is required")
        token = CancellationToken.with_timeout(timeout_seconds, clock or SystemClock())
        return 200, orchestrator.check_status(request_id, token).to_dict()

    return _call(operation)


def health(directory_url: str, clock: Clock | None = None) -> Response:
    now = (clock or SystemClock()).now()
    return 200, {"status": "healthy", "timestamp": now.isoformat(), "acme": directory_url}

"""Certificate request orchestrator: request, validate and status operations."""

from __future__ import annotations

import logging
import re
import secrets
from datetime import timedelta

from cert_orchestrator.client import build_acme_client
from cert_orchestrator.client.base import AcmeClientFacade
from cert_orchestrator.config import AppConfig
from cert_orchestrator.crypto import generate_private_key_pem, make_csr
from cert_orchestrator.errors import (
    InvalidInputError,
    InvalidStateError,
    OperationCancelledError,
    RequestNotFoundError,
    UpstreamFailureError,
    ValidationFailedError,
    ValidationTimeoutError,
)
from cert_orchestrator.finalizer import OrderFinalizer
from cert_orchestrator.models import (
    CertificateRequest,
    Failed,
    RequestStatus,
    RequestTicket,
    StatusResult,
    Validating,
    ValidationMethod,
    ValidationResult,
)
from cert_orchestrator.polling import CancellationToken, Clock, RetryPolicy, SystemClock
from cert_orchestrator.preflight import Http01Preflight
from cert_orchestrator.selector import ChallengeSelector, effective_method, order_identifiers
from cert_orchestrator.store import RequestStore
from cert_orchestrator.validation import ValidationCoordinator

logger = logging.getLogger(__name__)

_DOMAIN_RE = re.compile(
    r"^(?:\*\.)?[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?(?:\.[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?)*$"
)
_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_MAX_DOMAIN_LENGTH = 253


def _parse_domain(domain: str | None) -> str:
    if not domain or not isinstance(domain, str):
        raise InvalidInputError("Domain is required")
    domain = domain.strip().lower().rstrip(".")
    if len(domain) > _MAX_DOMAIN_LENGTH or not _DOMAIN_RE.match(domain):
        raise InvalidInputError("Invalid domain format")
    return domain


def _parse_email(email: str | None) -> str:
    if not email or not isinstance(email, str):
        raise InvalidInputError("Email is required")
    email = email.strip()
    if not _EMAIL_RE.match(email):
        raise InvalidInputError("Invalid email format")
    return email


def _parse_method(method: str | ValidationMethod | None) -> ValidationMethod:
    try:
        return ValidationMethod(method)
    except ValueError:
        raise InvalidInputError('Validation type must be either "http" or "dns"') from None


class CertificateOrchestrator:
    """Drives certificate requests from creation to delivery.

    The orchestrator owns its request store; every collaborator is injected so
    tests can run against a fake ACME client and virtual time.
    """

    def __init__(
        self,
        acme: AcmeClientFacade,
        store: RequestStore | None = None,
        clock: Clock | None = None,
        policy: RetryPolicy | None = None,
        preflight: Http01Preflight | None = None,
    ) -> None:
        self._acme = acme
        self._clock = clock or SystemClock()
        self._store = store if store is not None else RequestStore(clock=self._clock)
        policy = policy or RetryPolicy()
        self._selector = ChallengeSelector(acme)
        self._coordinator = ValidationCoordinator(acme, policy, self._clock, preflight=preflight)
        self._finalizer = OrderFinalizer(acme, policy, self._clock)

    @property
    def store(self) -> RequestStore:
        return self._store

    def _new_id(self) -> str:
        while True:
            request_id = secrets.token_hex(16)
            if request_id not in self._store:
                return request_id

    def request_certificate(
        self,
        domain: str,
        email: str,
        validation_method: str | ValidationMethod,
    ) -> RequestTicket:
        """Open an ACME order for ``domain`` and return the challenges the user must publish.

        Nothing is stored unless every ACME step succeeds.
        """
        domain = _parse_domain(domain)
        email = _parse_email(email)
        requested = _parse_method(validation_method)
        method = effective_method(domain, requested)
        if method is not requested:
            logger.info("Wildcard domain %s forces %s validation", domain, method)

        identifiers = order_identifiers(domain)
        self._acme.create_account(email)

        private_key_pem = generate_private_key_pem()
        csr_pem = make_csr(private_key_pem, identifiers).decode()
        order = self._acme.create_order(identifiers, csr_pem)
        authorizations = self._acme.get_authorizations(order)
        if not authorizations:
            raise UpstreamFailureError("No authorizations received from ACME server")
        challenges = self._selector.select(authorizations, method)

        request = CertificateRequest(
            id=self._new_id(),
            domain=domain,
            email=email,
            validation_method=method,
            order=order,
            authorizations=tuple(authorizations),
            challenges=tuple(challenges),
            private_key_pem=private_key_pem.decode(),
            csr_pem=csr_pem,
            created_at=self._clock.now(),
        )
        self._store.put(request)
        logger.info("Created certificate request %s for %s (%s)", request.id, domain, method)

        return RequestTicket(
            request_id=request.id,
            domain=domain,
            validation_method=method,
            challenges=request.challenges,
        )

    def start_validation(self, request_id: str, token: CancellationToken | None = None) -> ValidationResult:
        """Ask the CA to validate every challenge and wait, within the polling budget, for the result.

        Validation is one-shot: a request that is not pending is rejected with
        InvalidStateError and left untouched. Timeouts and CA rejections are
        recorded on the request so a later status call can report them.
        """
        request = self._store.get(request_id)
        if request.status is not RequestStatus.PENDING:
            raise InvalidStateError(f"Request is not in pending state (currently {request.status})")

        validating = request.transition(Validating(started_at=self._clock.now()))
        if not self._store.replace(request_id, request, validating):
            raise InvalidStateError("Request is not in pending state")
        logger.info("Starting validation for %s (%s)", request.domain, request_id)

        try:
            challenges = self._coordinator.run(validating, token)
        except OperationCancelledError:
            logger.warning("Validation for %s cancelled; request left validating", request_id)
            raise
        except (ValidationTimeoutError, ValidationFailedError, UpstreamFailureError) as exc:
            self._record_failure(validating, exc.message)
            return ValidationResult(request_id, success=False, status=RequestStatus.FAILED, error=exc.message)

        logger.info("Challenges valid for %s: %s", request_id, ", ".join(c.domain for c in challenges))
        self._finalizer.submit(validating)
        return ValidationResult(request_id, success=True, status=RequestStatus.VALIDATING)

    def _record_failure(self, request: CertificateRequest, error: str) -> None:
        failed = request.transition(Failed(started_at=request.validation_started_at, error=error))
        if self._store.replace(request.id, request, failed):
            logger.warning("Validation failed for %s (%s): %s", request.domain, request.id, error)

    def check_status(self, request_id: str, token: CancellationToken | None = None) -> StatusResult:
        """Report pending, valid (with the certificate, exactly once) or invalid."""
        request = self._store.get(request_id)

        if request.status is RequestStatus.FAILED:
            return StatusResult(RequestStatus.INVALID, error=request.error or "Validation failed")
        if request.status is RequestStatus.PENDING:
            return StatusResult(RequestStatus.PENDING)

        result = self._finalizer.check(request, token)
        if result.status in (RequestStatus.VALID, RequestStatus.INVALID):
            # Only the caller that removes the entry may hand the result out
            if not self._store.delete(request_id, expected=request):
                raise RequestNotFoundError(request_id)
            logger.info("Request %s finished as %s and was removed", request_id, result.status)
        return result

    def sweep_expired(self) -> int:
        return self._store.sweep()


def create_orchestrator(config: AppConfig) -> CertificateOrchestrator:
    """Wire the production collaborators from configuration."""
    clock = SystemClock()
    policy = RetryPolicy(
        max_attempts=config.poll_max_attempts,
        interval=config.poll_interval_seconds,
    )
    store = RequestStore(retention=timedelta(seconds=config.request_ttl_seconds), clock=clock)
    preflight = Http01Preflight() if config.http01_preflight else None
    return CertificateOrchestrator(
        acme=build_acme_client(config),
        store=store,
        clock=clock,
        policy=policy,
        preflight=preflight,
    )

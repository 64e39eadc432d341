"""Drive every selected challenge of a request to valid within a bounded polling budget."""

from __future__ import annotations

import logging

from cert_orchestrator.client.base import AcmeClientFacade
from cert_orchestrator.errors import ValidationFailedError, ValidationTimeoutError
from cert_orchestrator.models import AcmeStatus, AuthorizationHandle, CertificateRequest, SelectedChallenge
from cert_orchestrator.polling import CancellationToken, Clock, RetryPolicy
from cert_orchestrator.preflight import Http01Preflight

logger = logging.getLogger(__name__)

# Authorization states that can never turn valid again
_DEAD = frozenset({AcmeStatus.INVALID, AcmeStatus.EXPIRED, AcmeStatus.DEACTIVATED, AcmeStatus.REVOKED})


def _refresh(
    challenges: tuple[SelectedChallenge, ...],
    authorizations: list[AuthorizationHandle],
) -> tuple[SelectedChallenge, ...]:
    by_url = {authz.url: authz for authz in authorizations}
    refreshed = []
    for selected in challenges:
        authz = by_url.get(selected.authorization_url)
        current = authz.find_by_url(selected.url) if authz else None
        refreshed.append(selected.with_challenge(current) if current else selected)
    return tuple(refreshed)


class ValidationCoordinator:
    """Answer challenges and poll authorizations until all are valid.

    Every authorization must validate; one valid identifier of a wildcard
    order is not enough. Each attempt re-answers whatever is still pending,
    which covers validators that had not picked the challenge up yet.
    """

    def __init__(
        self,
        acme: AcmeClientFacade,
        policy: RetryPolicy,
        clock: Clock,
        preflight: Http01Preflight | None = None,
    ) -> None:
        self._acme = acme
        self._policy = policy
        self._clock = clock
        self._preflight = preflight

    def run(
        self,
        request: CertificateRequest,
        token: CancellationToken | None = None,
    ) -> tuple[SelectedChallenge, ...]:
        """Return the refreshed challenges once every authorization is valid.

        Raises:
            ValidationTimeoutError: the attempt budget ran out.
            ValidationFailedError: the CA gave up on an authorization.
            OperationCancelledError: ``token`` was cancelled or its deadline passed.
        """
        method = request.validation_method.name
        challenges = request.challenges
        authz_status = {authz.url: authz.status for authz in request.authorizations}

        for attempt in self._policy.attempts(self._clock, token):
            for selected in challenges:
                if authz_status.get(selected.authorization_url) is AcmeStatus.VALID:
                    continue
                if (
                    self._preflight is not None
                    and selected.status is AcmeStatus.PENDING
                    and not self._preflight.check(selected)
                ):
                    continue
                self._acme.complete_challenge(selected.challenge)

            authorizations = self._acme.get_authorizations(request.order)
            authz_status = {authz.url: authz.status for authz in authorizations}
            challenges = _refresh(challenges, authorizations)

            outstanding = [
                c
                for c in challenges
                if authz_status.get(c.authorization_url) is not AcmeStatus.VALID and c.status is not AcmeStatus.VALID
            ]
            if not outstanding:
                logger.info("All %d challenge(s) valid for request %s", len(challenges), request.id)
                return challenges

            dead = [
                c for c in outstanding if authz_status.get(c.authorization_url) in _DEAD or c.status in _DEAD
            ]
            if dead:
                detail = "; ".join(f"{c.domain}: {c.challenge.error or 'authorization invalid'}" for c in dead)
                raise ValidationFailedError(f"{method} challenge(s) failed validation: {detail}")

            logger.info(
                "Attempt %d/%d for request %s: waiting on %s",
                attempt,
                self._policy.max_attempts,
                request.id,
                ", ".join(c.domain for c in outstanding),
            )

        raise ValidationTimeoutError(f"{method} challenge(s) not validated in time.")

"""Wildcard handling and per-identifier challenge selection."""

from __future__ import annotations

import logging

from cert_orchestrator.client.base import AcmeClientFacade
from cert_orchestrator.errors import ChallengeUnavailableError
from cert_orchestrator.models import (
    AcmeStatus,
    AuthorizationHandle,
    ChallengeHandle,
    SelectedChallenge,
    ValidationMethod,
)

logger = logging.getLogger(__name__)

_WILDCARD_PREFIX = "*."


def is_wildcard(domain: str) -> bool:
    """True for ``*.example.com``. The only wildcard test in the codebase."""
    return domain.startswith(_WILDCARD_PREFIX)


def base_domain(domain: str) -> str:
    return domain.removeprefix(_WILDCARD_PREFIX)


def order_identifiers(domain: str) -> list[str]:
    """DNS identifiers to order: apex and wildcard for ``*.example.com``, else the name itself."""
    if is_wildcard(domain):
        return [base_domain(domain), domain]
    return [domain]


def effective_method(domain: str, requested: ValidationMethod) -> ValidationMethod:
    """Wildcard names can only be proven over DNS."""
    if is_wildcard(domain):
        return ValidationMethod.DNS
    return requested


class ChallengeSelector:
    """Pick one challenge per authorization for the requested validation method."""

    def __init__(self, acme: AcmeClientFacade) -> None:
        self._acme = acme

    def select(
        self,
        authorizations: list[AuthorizationHandle],
        method: ValidationMethod,
    ) -> list[SelectedChallenge]:
        if any(authz.wildcard or is_wildcard(authz.identifier) for authz in authorizations):
            method = ValidationMethod.DNS

        challenge_type = method.challenge_type
        selected: list[SelectedChallenge] = []
        for authz in authorizations:
            challenge = authz.find(challenge_type) or self._reused(authz)
            if challenge is None:
                raise ChallengeUnavailableError(f"{challenge_type} challenge not available for {authz.name}")
            selected.append(
                SelectedChallenge(
                    domain=authz.name,
                    authorization_url=authz.url,
                    challenge=challenge,
                    key_authorization=self._acme.get_challenge_key_authorization(challenge),
                )
            )
        logger.info(
            "Selected %s for %s",
            challenge_type,
            ", ".join(s.domain for s in selected),
        )
        return selected

    @staticmethod
    def _reused(authz: AuthorizationHandle) -> ChallengeHandle | None:
        # A CA may hand back an authorization validated earlier; it then lists
        # only the challenge that succeeded, possibly of another type.
        if authz.status is not AcmeStatus.VALID:
            return None
        for challenge in authz.challenges:
            if challenge.status is AcmeStatus.VALID:
                return challenge
        return None

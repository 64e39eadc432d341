"""Data classes for certificate requests and the ACME resources they track."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any, ClassVar

from cert_orchestrator.errors import InvalidStateError

HTTP01 = "http-01"
DNS01 = "dns-01"


class ValidationMethod(StrEnum):
    HTTP = "http"
    DNS = "dns"

    @property
    def challenge_type(self) -> str:
        return HTTP01 if self is ValidationMethod.HTTP else DNS01


class RequestStatus(StrEnum):
    PENDING = "pending"
    VALIDATING = "validating"
    VALID = "valid"
    INVALID = "invalid"
    FAILED = "failed"


class AcmeStatus(StrEnum):
    """Status values shared by ACME orders, authorizations and challenges (RFC 8555 §7.1.6)."""

    PENDING = "pending"
    PROCESSING = "processing"
    READY = "ready"
    VALID = "valid"
    INVALID = "invalid"
    DEACTIVATED = "deactivated"
    EXPIRED = "expired"
    REVOKED = "revoked"


@dataclass(frozen=True)
class ChallengeHandle:
    """One challenge offered by an authorization.

    ``resource`` holds the client library's own challenge object; it is opaque
    to the orchestrator and excluded from equality.
    """

    type: str
    url: str
    token: str
    status: AcmeStatus = AcmeStatus.PENDING
    error: str | None = None
    resource: Any = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class AuthorizationHandle:
    """Proof-of-control record for one order identifier.

    ACME reports the wildcard authorization with the apex as identifier and
    ``wildcard`` set, so ``name`` rebuilds the requested form.
    """

    url: str
    identifier: str
    status: AcmeStatus
    challenges: tuple[ChallengeHandle, ...] = ()
    wildcard: bool = False

    @property
    def name(self) -> str:
        return f"*.{self.identifier}" if self.wildcard else self.identifier

    def find(self, challenge_type: str) -> ChallengeHandle | None:
        for challenge in self.challenges:
            if challenge.type == challenge_type:
                return challenge
        return None

    def find_by_url(self, url: str) -> ChallengeHandle | None:
        for challenge in self.challenges:
            if challenge.url == url:
                return challenge
        return None


@dataclass(frozen=True)
class OrderHandle:
    """Snapshot of an ACME order."""

    url: str
    status: AcmeStatus
    identifiers: tuple[str, ...]
    authorization_urls: tuple[str, ...]
    finalize_url: str
    certificate_url: str | None = None

    def to_dict(self) -> dict:
        return {
            "url": self.url,
            "status": str(self.status),
            "identifiers": list(self.identifiers),
            "authorization_urls": list(self.authorization_urls),
            "finalize_url": self.finalize_url,
            "certificate_url": self.certificate_url,
        }

    @classmethod
    def from_dict(cls, data: dict) -> OrderHandle:
        return cls(
            url=data["url"],
            status=AcmeStatus(data["status"]),
            identifiers=tuple(data["identifiers"]),
            authorization_urls=tuple(data["authorization_urls"]),
            finalize_url=data["finalize_url"],
            certificate_url=data.get("certificate_url"),
        )


@dataclass(frozen=True)
class SelectedChallenge:
    """The challenge picked for one authorization, with the value the user must publish."""

    domain: str
    authorization_url: str
    challenge: ChallengeHandle
    key_authorization: str

    @property
    def type(self) -> str:
        return self.challenge.type

    @property
    def token(self) -> str:
        return self.challenge.token

    @property
    def url(self) -> str:
        return self.challenge.url

    @property
    def status(self) -> AcmeStatus:
        return self.challenge.status

    @property
    def record_name(self) -> str | None:
        # RFC 8555 §8.4: *.example.com is proven at _acme-challenge.example.com
        if self.type != DNS01:
            return None
        return f"_acme-challenge.{self.domain.removeprefix('*.')}"

    @property
    def http_path(self) -> str | None:
        if self.type != HTTP01:
            return None
        return f"/.well-known/acme-challenge/{self.token}"

    def with_challenge(self, challenge: ChallengeHandle) -> SelectedChallenge:
        return dataclasses.replace(self, challenge=challenge)

    def to_dict(self) -> dict:
        data = {
            "domain": self.domain,
            "type": self.type,
            "token": self.token,
            "keyAuthorization": self.key_authorization,
            "url": self.url,
            "status": str(self.status),
        }
        if self.record_name:
            data["recordName"] = self.record_name
        if self.http_path:
            data["httpPath"] = self.http_path
        return data


@dataclass(frozen=True)
class Pending:
    status: ClassVar[RequestStatus] = RequestStatus.PENDING


@dataclass(frozen=True)
class Validating:
    started_at: datetime
    status: ClassVar[RequestStatus] = RequestStatus.VALIDATING


@dataclass(frozen=True)
class Failed:
    started_at: datetime
    error: str
    status: ClassVar[RequestStatus] = RequestStatus.FAILED


RequestState = Pending | Validating | Failed

_TRANSITIONS: dict[RequestStatus, frozenset[RequestStatus]] = {
    RequestStatus.PENDING: frozenset({RequestStatus.VALIDATING}),
    RequestStatus.VALIDATING: frozenset({RequestStatus.FAILED}),
    RequestStatus.FAILED: frozenset(),
}


@dataclass(frozen=True)
class CertificateRequest:
    """A certificate request in flight. Instances are replaced, never mutated."""

    id: str
    domain: str
    email: str
    validation_method: ValidationMethod
    order: OrderHandle
    authorizations: tuple[AuthorizationHandle, ...]
    challenges: tuple[SelectedChallenge, ...]
    private_key_pem: str = field(repr=False)
    csr_pem: str = field(repr=False)
    created_at: datetime
    state: RequestState = Pending()

    @property
    def status(self) -> RequestStatus:
        return self.state.status

    @property
    def error(self) -> str | None:
        return self.state.error if isinstance(self.state, Failed) else None

    @property
    def validation_started_at(self) -> datetime | None:
        return getattr(self.state, "started_at", None)

    def transition(self, state: RequestState) -> CertificateRequest:
        """Return a copy in ``state``; raise InvalidStateError for backward or skipped moves."""
        if state.status not in _TRANSITIONS[self.status]:
            raise InvalidStateError(f"Request cannot move from {self.status} to {state.status}")
        return dataclasses.replace(self, state=state)


@dataclass(frozen=True)
class CertificateBundle:
    """Issued certificate material handed back to the caller exactly once."""

    certificate: str
    private_key: str = field(repr=False)
    chain: str
    expires_at: datetime

    def to_dict(self) -> dict:
        return {
            "certificate": self.certificate,
            "privateKey": self.private_key,
            "chainCertificate": self.chain,
            "expiryDate": self.expires_at.isoformat(),
        }


@dataclass(frozen=True)
class RequestTicket:
    """Result of a certificate request: the id plus what the user must publish."""

    request_id: str
    domain: str
    validation_method: ValidationMethod
    challenges: tuple[SelectedChallenge, ...]

    def to_dict(self) -> dict:
        challenges = [c.to_dict() for c in self.challenges]
        validation: dict[str, Any] = {
            "domain": self.domain,
            "method": str(self.validation_method),
            "type": self.validation_method.challenge_type,
        }
        # Single-challenge clients read token/keyAuthorization/url off the validation object.
        if challenges:
            first = challenges[0]
            validation.update(
                token=first["token"],
                keyAuthorization=first["keyAuthorization"],
                url=first["url"],
            )
        validation["challenges"] = challenges
        return {
            "requestId": self.request_id,
            "validationRequired": True,
            "validation": validation,
        }


@dataclass(frozen=True)
class ValidationResult:
    request_id: str
    success: bool
    status: RequestStatus
    error: str | None = None

    def to_dict(self) -> dict:
        data = {"requestId": self.request_id, "success": self.success, "status": str(self.status)}
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass(frozen=True)
class StatusResult:
    """Externally visible status: pending, valid (with certificate) or invalid."""

    status: RequestStatus
    certificate: CertificateBundle | None = None
    error: str | None = None

    def to_dict(self) -> dict:
        data: dict[str, Any] = {"status": str(self.status)}
        if self.certificate is not None:
            data["certificate"] = self.certificate.to_dict()
        if self.error is not None:
            data["error"] = self.error
        return data

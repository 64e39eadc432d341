"""ACME v2 client backed by the ``acme`` library: account, order, challenge and certificate calls."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager

import josepy
import requests
from acme import challenges, errors, messages
from acme.client import ClientNetwork, ClientV2

from cert_orchestrator.client.base import AcmeClientFacade
from cert_orchestrator.errors import UpstreamFailureError
from cert_orchestrator.models import AcmeStatus, AuthorizationHandle, ChallengeHandle, OrderHandle

logger = logging.getLogger(__name__)

_USER_AGENT = "cert-orchestrator"
_SETTLED = (AcmeStatus.VALID, AcmeStatus.PROCESSING)


def _build_client(directory_url: str, account_key: josepy.JWKRSA) -> ClientV2:
    """Construct a ClientV2 instance; the account is attached by create_account."""
    net = ClientNetwork(account_key, user_agent=_USER_AGENT)
    directory = ClientV2.get_directory(directory_url, net)
    return ClientV2(directory, net=net)


def _status(status: messages.Status | None) -> AcmeStatus:
    if status is None:
        return AcmeStatus.PENDING
    try:
        return AcmeStatus(status.name)
    except ValueError:
        # acme registers statuses RFC 8555 does not use, such as "unknown"
        raise UpstreamFailureError(f"Unrecognized ACME status {status.name!r}") from None


def _challenge_handle(challb: messages.ChallengeBody) -> ChallengeHandle:
    chall = challb.chall
    if isinstance(chall, challenges.KeyAuthorizationChallenge):
        typ, token = chall.typ, chall.encode("token")
    else:
        # Unrecognized challenge types keep their raw JSON
        jobj = getattr(chall, "jobj", {}) or {}
        typ, token = jobj.get("type", "unknown"), jobj.get("token", "")
    return ChallengeHandle(
        type=typ,
        url=challb.uri,
        token=token,
        status=_status(challb.status),
        error=challb.error.detail if challb.error else None,
        resource=challb,
    )


def _authorization_handle(url: str, body: messages.Authorization) -> AuthorizationHandle:
    return AuthorizationHandle(
        url=url,
        identifier=body.identifier.value,
        status=_status(body.status),
        challenges=tuple(_challenge_handle(c) for c in body.challenges),
        wildcard=bool(body.wildcard),
    )


def _order_handle(url: str, body: messages.Order) -> OrderHandle:
    return OrderHandle(
        url=url,
        status=_status(body.status),
        identifiers=tuple(i.value for i in body.identifiers),
        authorization_urls=tuple(body.authorizations),
        finalize_url=body.finalize,
        certificate_url=body.certificate,
    )


class AcmeV2Client(AcmeClientFacade):
    """AcmeClientFacade over ``acme.client.ClientV2``.

    One instance serves every request in the process with the same account
    key. Calls are serialised because the underlying ``ClientNetwork`` keeps a
    shared nonce pool.
    """

    def __init__(
        self,
        directory_url: str,
        account_key: josepy.JWKRSA,
        _client: ClientV2 | None = None,
    ) -> None:
        self._account_key = account_key
        self._lock = threading.RLock()
        with self._upstream("loading ACME directory"):
            self._client = _client or _build_client(directory_url, account_key)

    @contextmanager
    def _upstream(self, action: str) -> Iterator[None]:
        with self._lock:
            try:
                yield
            except (errors.Error, josepy.errors.Error, requests.exceptions.RequestException) as exc:
                logger.warning("ACME call failed while %s: %s", action, exc)
                raise UpstreamFailureError(f"ACME server error while {action}: {exc}") from exc

    def _post_as_get(self, url: str) -> requests.Response:
        # POST-as-GET: JWS-signed empty payload per RFC 8555 §6.3
        return self._client.net.post(url, None)

    def create_account(self, contact_email: str) -> str:
        registration = messages.NewRegistration.from_data(email=contact_email, terms_of_service_agreed=True)
        with self._upstream("creating ACME account"):
            try:
                regr = self._client.new_account(registration)
            except errors.ConflictError as exc:
                self._client.net.account = messages.RegistrationResource(
                    uri=exc.location, body=messages.Registration()
                )
                logger.info("Reusing existing ACME account %s", exc.location)
                return exc.location
        logger.info("Registered new ACME account %s", regr.uri)
        return regr.uri

    def create_order(self, identifiers: list[str], csr_pem: str) -> OrderHandle:
        with self._upstream("creating order"):
            orderr = self._client.new_order(csr_pem.encode())
        order = _order_handle(orderr.uri, orderr.body)
        if set(order.identifiers) != set(identifiers):
            raise UpstreamFailureError(
                f"Order identifiers {sorted(order.identifiers)} do not match requested {sorted(identifiers)}"
            )
        logger.info("Created ACME order %s for %s", order.url, identifiers)
        return order

    def get_authorizations(self, order: OrderHandle) -> list[AuthorizationHandle]:
        result: list[AuthorizationHandle] = []
        with self._upstream("fetching authorizations"):
            for url in order.authorization_urls:
                body = messages.Authorization.from_json(self._post_as_get(url).json())
                result.append(_authorization_handle(url, body))
        return result

    def get_challenge_key_authorization(self, challenge: ChallengeHandle) -> str:
        if challenge.resource is None:
            raise ValueError(f"Challenge {challenge.url} was not produced by this client")
        return challenge.resource.chall.validation(self._account_key)

    def _challenge_status(self, url: str) -> AcmeStatus:
        return _status(messages.ChallengeBody.from_json(self._post_as_get(url).json()).status)

    def complete_challenge(self, challenge: ChallengeHandle) -> None:
        if challenge.status in _SETTLED:
            logger.debug("Challenge %s already %s, not answering again", challenge.url, challenge.status)
            return
        if challenge.resource is None:
            raise ValueError(f"Challenge {challenge.url} was not produced by this client")

        challb = challenge.resource
        with self._upstream(f"answering {challenge.type} challenge"):
            try:
                self._client.answer_challenge(challb, challb.chall.response(self._account_key))
            except messages.Error:
                # The server rejects answers to challenges it has already picked up
                if self._challenge_status(challenge.url) not in _SETTLED:
                    raise
                logger.debug("Challenge %s was already being processed", challenge.url)
                return
        logger.info("Answered %s challenge %s", challenge.type, challenge.url)

    def get_order(self, order: OrderHandle) -> OrderHandle:
        with self._upstream("fetching order"):
            body = messages.Order.from_json(self._post_as_get(order.url).json())
        return _order_handle(order.url, body)

    def finalize_order(self, order: OrderHandle, csr_pem: str) -> None:
        with self._upstream("finalizing order"):
            body = messages.Order.from_json(self._post_as_get(order.url).json())
            orderr = messages.OrderResource(body=body, uri=order.url, csr_pem=csr_pem.encode())
            self._client.begin_finalization(orderr)
        logger.info("Submitted CSR for order %s", order.url)

    def get_certificate(self, order: OrderHandle) -> str:
        if not order.certificate_url:
            raise UpstreamFailureError(f"Order {order.url} has no certificate URL")
        with self._upstream("downloading certificate"):
            response = self._post_as_get(order.certificate_url)
        logger.info("Downloaded certificate for order %s", order.url)
        return response.text

    def close(self) -> None:
        """Close the underlying HTTP session."""
        self._client.net.session.close()

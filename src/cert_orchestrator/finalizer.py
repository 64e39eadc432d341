"""Finalize validated orders, poll until issuance and package the certificate."""

from __future__ import annotations

import logging
from datetime import timedelta

from cert_orchestrator.client.base import AcmeClientFacade
from cert_orchestrator.crypto import split_chain
from cert_orchestrator.errors import CertificateNotReadyError, UpstreamFailureError
from cert_orchestrator.models import (
    AcmeStatus,
    CertificateBundle,
    CertificateRequest,
    OrderHandle,
    RequestStatus,
    StatusResult,
)
from cert_orchestrator.polling import CancellationToken, Clock, RetryPolicy

logger = logging.getLogger(__name__)

# Asserted by convention for the CA in use, never read from the certificate
CERTIFICATE_LIFETIME = timedelta(days=90)


class OrderFinalizer:
    """Turn a validated order into a certificate bundle.

    The order status is always fetched before finalizing, so an order that is
    already processing or valid is never finalized a second time.
    """

    def __init__(
        self,
        acme: AcmeClientFacade,
        policy: RetryPolicy,
        clock: Clock,
        lifetime: timedelta = CERTIFICATE_LIFETIME,
    ) -> None:
        self._acme = acme
        self._policy = policy
        self._clock = clock
        self._lifetime = lifetime

    def submit(self, request: CertificateRequest) -> OrderHandle:
        """Submit the CSR if the order is ready; otherwise leave the order alone."""
        order = self._acme.get_order(request.order)
        if order.status is AcmeStatus.READY:
            order = self._finalize(request, order)
        else:
            logger.info("Order %s is %s, not finalizing yet", order.url, order.status)
        return order

    def check(self, request: CertificateRequest, token: CancellationToken | None = None) -> StatusResult:
        """Advance the order as far as it can go and report pending, valid or invalid.

        Raises:
            CertificateNotReadyError: the order kept processing past the polling budget.
        """
        order = self._acme.get_order(request.order)

        if order.status is AcmeStatus.READY:
            order = self._finalize(request, order)
            order = self._poll_until_settled(order, token)
        elif order.status is AcmeStatus.PROCESSING:
            order = self._poll_until_settled(order, token)

        if order.status is AcmeStatus.VALID:
            return StatusResult(RequestStatus.VALID, certificate=self._package(request, order))
        if order.status is AcmeStatus.INVALID:
            logger.warning("Order %s for %s is invalid", order.url, request.domain)
            return StatusResult(RequestStatus.INVALID)
        return StatusResult(RequestStatus.PENDING)

    def _finalize(self, request: CertificateRequest, order: OrderHandle) -> OrderHandle:
        # Another caller may finalize between our get_order and finalize_order
        try:
            self._acme.finalize_order(order, request.csr_pem)
        except UpstreamFailureError:
            current = self._acme.get_order(order)
            if current.status not in (AcmeStatus.PROCESSING, AcmeStatus.VALID):
                raise
            logger.info("Order %s was finalized concurrently and is %s", order.url, current.status)
            return current
        logger.info("Finalized order %s for request %s", order.url, request.id)
        return order

    def _poll_until_settled(self, order: OrderHandle, token: CancellationToken | None) -> OrderHandle:
        for attempt in self._policy.attempts(self._clock, token):
            order = self._acme.get_order(order)
            if order.status in (AcmeStatus.VALID, AcmeStatus.INVALID):
                return order
            logger.debug("Order %s still %s (attempt %d)", order.url, order.status, attempt)
        raise CertificateNotReadyError(f"Certificate for order {order.url} not issued in time")

    def _package(self, request: CertificateRequest, order: OrderHandle) -> CertificateBundle:
        fullchain = self._acme.get_certificate(order)
        try:
            certificate, chain = split_chain(fullchain)
        except ValueError as exc:
            raise UpstreamFailureError(f"CA returned no usable certificate for {request.domain}") from exc

        logger.info("Certificate issued for %s (request %s)", request.domain, request.id)
        return CertificateBundle(
            certificate=certificate,
            private_key=request.private_key_pem,
            chain=chain,
            expires_at=self._clock.now() + self._lifetime,
        )

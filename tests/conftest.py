"""Shared test fixtures for cert-orchestrator."""

import dataclasses
import datetime

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from cert_orchestrator.client.base import AcmeClientFacade
from cert_orchestrator.errors import UpstreamFailureError
from cert_orchestrator.models import AcmeStatus, AuthorizationHandle, ChallengeHandle, OrderHandle
from cert_orchestrator.orchestrator import CertificateOrchestrator
from cert_orchestrator.polling import RetryPolicy

ACME_BASE = "https://acme.test"
START = datetime.datetime(2026, 1, 1, 12, 0, tzinfo=datetime.UTC)


class FakeClock:
    """Virtual time: ``sleep`` advances ``now`` instantly."""

    def __init__(self, start=START):
        self.current = start
        self.sleeps = []

    def now(self):
        return self.current

    def advance(self, seconds):
        self.current += datetime.timedelta(seconds=seconds)

    def sleep(self, seconds, token=None):
        self.sleeps.append(seconds)
        self.advance(seconds)
        if token is not None:
            token.raise_if_cancelled(self.current)


class FakeAcmeClient(AcmeClientFacade):
    """In-memory CA with a scriptable remote validator.

    validator:
        "accept": a completed challenge turns valid immediately;
        "never": completed challenges stay pending forever;
        "reject": a completed challenge turns invalid.
    """

    def __init__(
        self,
        fullchain_pem="",
        validator="accept",
        challenge_types=("http-01", "dns-01"),
        wildcard_challenge_types=("dns-01",),
        polls_until_issued=0,
        fail_on=(),
    ):
        self.fullchain_pem = fullchain_pem
        self.validator = validator
        self.challenge_types = challenge_types
        self.wildcard_challenge_types = wildcard_challenge_types
        self.polls_until_issued = polls_until_issued
        self.fail_on = set(fail_on)
        self.orders = {}
        self.authorizations = {}
        self.accounts = []
        self.completed = []
        self.finalized = []
        self._remaining_polls = {}

    def _maybe_fail(self, name):
        if name in self.fail_on:
            raise UpstreamFailureError(f"ACME server error while {name}")

    # --- scripting helpers ---

    def set_order_status(self, order_url, status):
        self.orders[order_url] = dataclasses.replace(self.orders[order_url], status=status)

    def set_challenge_status(self, challenge_url, status):
        for url, authz in self.authorizations.items():
            if authz.find_by_url(challenge_url):
                challenges = tuple(
                    dataclasses.replace(c, status=status) if c.url == challenge_url else c for c in authz.challenges
                )
                authz_status = status if status in (AcmeStatus.VALID, AcmeStatus.INVALID) else authz.status
                self.authorizations[url] = dataclasses.replace(authz, challenges=challenges, status=authz_status)
        self._update_orders()

    def _update_orders(self):
        for url, order in self.orders.items():
            if order.status is not AcmeStatus.PENDING:
                continue
            statuses = [self.authorizations[a].status for a in order.authorization_urls]
            if any(s is AcmeStatus.INVALID for s in statuses):
                self.set_order_status(url, AcmeStatus.INVALID)
            elif all(s is AcmeStatus.VALID for s in statuses):
                self.set_order_status(url, AcmeStatus.READY)

    # --- facade ---

    def create_account(self, contact_email):
        self._maybe_fail("create_account")
        self.accounts.append(contact_email)
        return f"{ACME_BASE}/acct/1"

    def create_order(self, identifiers, csr_pem):
        self._maybe_fail("create_order")
        n = len(self.orders) + 1
        order_url = f"{ACME_BASE}/order/{n}"
        authz_urls = []
        for i, identifier in enumerate(identifiers):
            wildcard = identifier.startswith("*.")
            url = f"{ACME_BASE}/authz/{n}-{i}"
            types = self.wildcard_challenge_types if wildcard else self.challenge_types
            self.authorizations[url] = AuthorizationHandle(
                url=url,
                identifier=identifier.removeprefix("*."),
                status=AcmeStatus.PENDING,
                challenges=tuple(
                    ChallengeHandle(type=t, url=f"{ACME_BASE}/chall/{n}-{i}-{t}", token=f"token-{n}-{i}-{t}")
                    for t in types
                ),
                wildcard=wildcard,
            )
            authz_urls.append(url)
        self.orders[order_url] = OrderHandle(
            url=order_url,
            status=AcmeStatus.PENDING,
            identifiers=tuple(identifiers),
            authorization_urls=tuple(authz_urls),
            finalize_url=f"{order_url}/finalize",
        )
        return self.orders[order_url]

    def get_authorizations(self, order):
        self._maybe_fail("get_authorizations")
        return [self.authorizations[url] for url in self.orders[order.url].authorization_urls]

    def get_challenge_key_authorization(self, challenge):
        return f"{challenge.token}.account-thumbprint"

    def complete_challenge(self, challenge):
        self._maybe_fail("complete_challenge")
        self.completed.append(challenge.url)
        current = next(
            a.find_by_url(challenge.url) for a in self.authorizations.values() if a.find_by_url(challenge.url)
        )
        if current.status is AcmeStatus.VALID:
            return
        if self.validator == "accept":
            self.set_challenge_status(challenge.url, AcmeStatus.VALID)
        elif self.validator == "reject":
            self.set_challenge_status(challenge.url, AcmeStatus.INVALID)

    def get_order(self, order):
        self._maybe_fail("get_order")
        current = self.orders[order.url]
        if current.status is AcmeStatus.PROCESSING:
            remaining = self._remaining_polls.get(order.url, 0)
            if remaining <= 0:
                current = dataclasses.replace(
                    current, status=AcmeStatus.VALID, certificate_url=f"{order.url}/cert"
                )
                self.orders[order.url] = current
            else:
                self._remaining_polls[order.url] = remaining - 1
        return current

    def finalize_order(self, order, csr_pem):
        self._maybe_fail("finalize_order")
        if self.orders[order.url].status is not AcmeStatus.READY:
            raise UpstreamFailureError("orderNotReady")
        self.finalized.append(order.url)
        self._remaining_polls[order.url] = self.polls_until_issued
        self.set_order_status(order.url, AcmeStatus.PROCESSING)

    def get_certificate(self, order):
        self._maybe_fail("get_certificate")
        return self.fullchain_pem


def _make_self_signed_cert(common_name):
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    cert = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(subject)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(datetime.datetime.now(datetime.UTC))
        .not_valid_after(datetime.datetime.now(datetime.UTC) + datetime.timedelta(days=90))
        .sign(key, hashes.SHA256())
    )
    return cert.public_bytes(serialization.Encoding.PEM).decode()


@pytest.fixture(scope="session")
def leaf_pem():
    return _make_self_signed_cert("example.com")


@pytest.fixture(scope="session")
def intermediate_pem():
    return _make_self_signed_cert("Fake Intermediate CA")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_acme(leaf_pem, intermediate_pem):
    return FakeAcmeClient(fullchain_pem=leaf_pem + intermediate_pem)


@pytest.fixture
def orchestrator(fake_acme, clock):
    return CertificateOrchestrator(fake_acme, clock=clock, policy=RetryPolicy(max_attempts=15, interval=2))

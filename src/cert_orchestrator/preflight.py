"""HTTP-01 self check: confirm the user published the key authorization before asking the CA."""

from __future__ import annotations

import logging

import httpx

from cert_orchestrator.models import HTTP01, SelectedChallenge

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = 10


class Http01Preflight:
    """Fetch ``http://<domain>/.well-known/acme-challenge/<token>`` and compare it to the key authorization.

    A CA marks a challenge invalid for good after one failed check, so the
    validation loop only answers HTTP-01 challenges once this passes.
    Challenges of other types always pass.
    """

    def __init__(self, timeout: float = _DEFAULT_TIMEOUT, _http_client: httpx.Client | None = None) -> None:
        self._client = _http_client or httpx.Client(timeout=timeout, follow_redirects=True)

    def check(self, challenge: SelectedChallenge) -> bool:
        if challenge.type != HTTP01:
            return True

        url = f"http://{challenge.domain}{challenge.http_path}"
        try:
            resp = self._client.get(url)
        except httpx.HTTPError as exc:
            logger.warning("HTTP-01 pre-flight for %s failed: %s", challenge.domain, exc)
            return False

        if resp.status_code != 200:
            logger.warning("HTTP-01 pre-flight for %s got HTTP %d", challenge.domain, resp.status_code)
            return False
        if resp.text.strip() != challenge.key_authorization:
            logger.warning("HTTP-01 pre-flight for %s found unexpected content", challenge.domain)
            return False
        return True

    def close(self) -> None:
        """Close the underlying HTTP client."""
        self._client.close()

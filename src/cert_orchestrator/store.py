"""In-memory, time-bounded table of certificate requests."""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta

from cert_orchestrator.errors import RequestNotFoundError
from cert_orchestrator.models import CertificateRequest
from cert_orchestrator.polling import Clock, SystemClock

logger = logging.getLogger(__name__)

DEFAULT_RETENTION = timedelta(hours=1)


class RequestStore:
    """Keyed request table with TTL eviction.

    Entries are frozen and replaced whole under a single lock, so a reader
    never observes a half-applied transition. ``replace`` and ``delete`` with
    ``expected`` are compare-and-swap on identity: they succeed only if the
    stored entry is still the one the caller read.
    """

    def __init__(self, retention: timedelta = DEFAULT_RETENTION, clock: Clock | None = None) -> None:
        self._retention = retention
        self._clock = clock or SystemClock()
        self._entries: dict[str, CertificateRequest] = {}
        self._lock = threading.Lock()

    @property
    def retention(self) -> timedelta:
        return self._retention

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, request_id: object) -> bool:
        with self._lock:
            return request_id in self._entries

    def _expired(self, request: CertificateRequest, now: datetime) -> bool:
        return request.created_at < now - self._retention

    def put(self, request: CertificateRequest) -> None:
        now = self._clock.now()
        with self._lock:
            if request.id in self._entries:
                raise ValueError(f"Request {request.id} already stored")
            self._entries[request.id] = request
            self._sweep_locked(now)

    def get(self, request_id: str) -> CertificateRequest:
        now = self._clock.now()
        with self._lock:
            request = self._entries.get(request_id)
            if request is None or self._expired(request, now):
                raise RequestNotFoundError(request_id)
            return request

    def replace(self, request_id: str, expected: CertificateRequest, new: CertificateRequest) -> bool:
        with self._lock:
            if self._entries.get(request_id) is not expected:
                return False
            self._entries[request_id] = new
            return True

    def delete(self, request_id: str, expected: CertificateRequest | None = None) -> bool:
        with self._lock:
            current = self._entries.get(request_id)
            if current is None or (expected is not None and current is not expected):
                return False
            del self._entries[request_id]
            return True

    def sweep(self, now: datetime | None = None) -> int:
        """Drop every entry older than the retention window, regardless of status."""
        now = now or self._clock.now()
        with self._lock:
            return self._sweep_locked(now)

    def _sweep_locked(self, now: datetime) -> int:
        expired = [rid for rid, request in self._entries.items() if self._expired(request, now)]
        for rid in expired:
            del self._entries[rid]
        if expired:
            logger.info("Evicted %d expired certificate request(s)", len(expired))
        return len(expired)

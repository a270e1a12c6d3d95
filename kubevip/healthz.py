"""Health check adaptor that reports on a running leader election."""

from __future__ import annotations

import threading

from kubevip.leaderelection import LeaderElector


class HealthzAdaptor:
    """Ties a health endpoint to a leader elector.

    The elector may be attached after the health endpoint is set up. A check
    fails when this process holds the lease but has not renewed it within the
    lease duration plus ``timeout`` seconds.
    """

    def __init__(self, timeout: float) -> None:
        self.timeout = timeout
        self.elector: LeaderElector | None = None
        self._lock = threading.Lock()

    def name(self) -> str:
        """Return the name of this health check."""
        return "leaderElection"

    def check(self, request=None) -> None:
        """Raise LeaseExpiredError if a held lease has gone unrenewed too long."""
        with self._lock:
            if self.elector is None:
                return None
            return self.elector.check(self.timeout)

    def set_leader_election(self, elector: LeaderElector) -> None:
        """Attach the elector whose lease is checked."""
        with self._lock:
            self.elector = elector


def new_leader_healthz_adaptor(timeout: float) -> HealthzAdaptor:
    """Return an adaptor allowing ``timeout`` seconds beyond lease expiry."""
    return HealthzAdaptor(timeout)
"""Pluggable metrics for leader election."""

from __future__ import annotations

import threading


class SwitchMetric:
    """A metric switched on and off per lease name; keeps the names that are on."""

    def __init__(self) -> None:
        self.active: set[str] = set()

    def on(self, name: str) -> None:
        """Mark the lease ``name`` as held by this process."""
        self.active.add(name)

    def off(self, name: str) -> None:
        """Mark the lease ``name`` as not held by this process."""
        self.active.discard(name)


class MetricsProvider:
    """Creates the metrics used by leader election; the base provides plain metrics."""

    def new_leader_metric(self) -> SwitchMetric:
        """Return a new leader metric."""
        return SwitchMetric()


class LeaderMetrics:
    """Adapter through which an elector reports leadership changes."""

    def __init__(self, metric: SwitchMetric | None = None) -> None:
        self.metric = metric

    def leader_on(self, name: str) -> None:
        """Report that leadership of ``name`` was gained."""
        if self.metric is not None:
            self.metric.on(name)

    def leader_off(self, name: str) -> None:
        """Report that leadership of ``name`` was lost."""
        if self.metric is not None:
            self.metric.off(name)


class _LeaderMetricsFactory:
    """Holds the provider; only the first provider set takes effect."""

    def __init__(self) -> None:
        self.provider: MetricsProvider = MetricsProvider()
        self._chosen = False
        self._lock = threading.Lock()

    def set_provider(self, provider: MetricsProvider) -> None:
        with self._lock:
            if not self._chosen:
                self.provider = provider
                self._chosen = True

    def new_leader_metrics(self) -> LeaderMetrics:
        provider = self.provider
        if type(provider) is MetricsProvider:
            return LeaderMetrics()
        return LeaderMetrics(provider.new_leader_metric())


_factory = _LeaderMetricsFactory()


def set_provider(provider: MetricsProvider) -> None:
    """Set the metrics provider for electors created later. Only the first call counts."""
    _factory.set_provider(provider)


def new_leader_metrics() -> LeaderMetrics:
    """Return leader metrics from the current provider."""
    return _factory.new_leader_metrics()
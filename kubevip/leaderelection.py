"""Leader election over a shared lock record.

Only locally observed times are trusted: another client is taken to still hold
the lease while its record keeps changing within the lease duration.
"""

from __future__ import annotations

import json
import logging
import random
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from kubevip.metrics import LeaderMetrics, new_leader_metrics

log = logging.getLogger(__name__)

JITTER_FACTOR = 1.2

_ZERO_TIME = datetime.min.replace(tzinfo=timezone.utc)


def _format_time(moment: datetime | None) -> str | None:
    if moment is None:
        return None
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass
class LeaderElectionRecord:
    """The record stored in the lock."""

    holder_identity: str = ""
    lease_duration_seconds: int = 0
    acquire_time: datetime | None = None
    renew_time: datetime | None = None
    leader_transitions: int = 0

    def to_json(self) -> str:
        """Return the record in its stored JSON form."""
        return json.dumps(
            {
                "holderIdentity": self.holder_identity,
                "leaseDurationSeconds": self.lease_duration_seconds,
                "acquireTime": _format_time(self.acquire_time),
                "renewTime": _format_time(self.renew_time),
                "leaderTransitions": self.leader_transitions,
            },
            separators=(",", ":"),
        )


class LockNotFoundError(LookupError):
    """Raised by a lock whose record does not exist yet."""


class LeaseExpiredError(RuntimeError):
    """Raised when a held lease has not been renewed in time."""


class ResourceLock(ABC):
    """A shared object that stores the leader election record."""

    @abstractmethod
    def get(self) -> tuple[LeaderElectionRecord, str]:
        """Return the record and its raw form; raise LockNotFoundError if absent."""

    @abstractmethod
    def create(self, record: LeaderElectionRecord) -> None:
        """Create the lock holding ``record``."""

    @abstractmethod
    def update(self, record: LeaderElectionRecord) -> None:
        """Replace the record held by the lock."""

    @abstractmethod
    def record_event(self, message: str) -> None:
        """Record an event about the lock."""

    @abstractmethod
    def identity(self) -> str:
        """Return the identity of this candidate."""

    @abstractmethod
    def describe(self) -> str:
        """Return a human readable description of the lock."""


class RealClock:
    """The system clock, in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def since(self, moment: datetime) -> float:
        """Return the seconds elapsed since ``moment``."""
        return (self.now() - moment).total_seconds()


class FakeClock:
    """A clock that only moves when stepped."""

    def __init__(self, moment: datetime) -> None:
        self._moment = moment

    def now(self) -> datetime:
        return self._moment

    def since(self, moment: datetime) -> float:
        return (self._moment - moment).total_seconds()

    def step(self, seconds: float) -> None:
        """Move the clock forward by ``seconds``."""
        self._moment += timedelta(seconds=seconds)


@dataclass
class LeaderCallbacks:
    """Callbacks for leadership events; they run on their own threads."""

    on_started_leading: Callable[[Any], None] | None = None
    on_stopped_leading: Callable[[], None] | None = None
    on_new_leader: Callable[[str], None] | None = None


@dataclass
class LeaderElectionConfig:
    """Settings of a leader election; durations are in seconds."""

    lock: ResourceLock | None = None
    lease_duration: float = 0.0
    renew_deadline: float = 0.0
    retry_period: float = 0.0
    callbacks: LeaderCallbacks = field(default_factory=LeaderCallbacks)
    watch_dog: Any = None
    release_on_cancel: bool = False
    name: str = ""


class _Scope:
    """A stop signal that is also set when its parent is set."""

    def __init__(self, parent=None) -> None:
        self._event = threading.Event()
        self._parent = parent

    def set(self) -> None:
        self._event.set()

    def is_set(self) -> bool:
        return self._event.is_set() or (
            self._parent is not None and self._parent.is_set()
        )

    def wait(self, timeout: float | None = None) -> bool:
        deadline = None if timeout is None else time.monotonic() + timeout
        while not self.is_set():
            step = 0.05
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                step = min(step, remaining)
            self._event.wait(step)
        return True


class LeaderElector:
    """A leader election client."""

    def __init__(
        self,
        config: LeaderElectionConfig,
        *,
        clock=None,
        metrics: LeaderMetrics | None = None,
        observed_record: LeaderElectionRecord | None = None,
        observed_raw_record: str = "",
        observed_time: datetime | None = None,
    ) -> None:
        self.config = config
        self.clock = clock if clock is not None else RealClock()
        self.metrics = metrics if metrics is not None else new_leader_metrics()
        self.observed_record = (
            observed_record if observed_record is not None else LeaderElectionRecord()
        )
        self.observed_raw_record = observed_raw_record
        self.observed_time = observed_time if observed_time is not None else _ZERO_TIME
        self.reported_leader = ""

    def run(self, stop) -> None:
        """Acquire the lease, then renew it until ``stop`` is set or renewal fails."""
        try:
            if not self._acquire(stop):
                return
            leading = _Scope(stop)
            try:
                started = self.config.callbacks.on_started_leading
                if started is not None:
                    threading.Thread(target=started, args=(leading,), daemon=True).start()
                self._renew(leading)
            finally:
                leading.set()
        finally:
            stopped = self.config.callbacks.on_stopped_leading
            if stopped is not None:
                stopped()

    def get_leader(self) -> str:
        """Return the last observed leader, or an empty string."""
        return self.observed_record.holder_identity

    def is_leader(self) -> bool:
        """Return whether the last observed leader is this client."""
        return self.observed_record.holder_identity == self.config.lock.identity()

    def _acquire(self, stop) -> bool:
        lock = self.config.lock
        desc = lock.describe()
        log.info("attempting to acquire leader lease %s...", desc)
        while not stop.is_set():
            succeeded = self.try_acquire_or_renew()
            self.maybe_report_transition()
            if succeeded:
                lock.record_event("became leader")
                self.metrics.leader_on(self.config.name)
                log.info("successfully acquired lease %s", desc)
                return True
            log.debug("failed to acquire lease %s", desc)
            period = self.config.retry_period * (1 + random.random() * JITTER_FACTOR)
            if stop.wait(period):
                break
        return False

    def _renew_within_deadline(self, scope: _Scope) -> bool:
        deadline = time.monotonic() + self.config.renew_deadline
        while not scope.is_set():
            if self.try_acquire_or_renew():
                return True
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            scope.wait(min(self.config.retry_period, remaining))
            if time.monotonic() >= deadline:
                return False
        return False

    def _renew(self, scope: _Scope) -> None:
        lock = self.config.lock
        while not scope.is_set():
            renewed = self._renew_within_deadline(scope)
            self.maybe_report_transition()
            desc = lock.describe()
            if renewed:
                log.debug("successfully renewed lease %s", desc)
            else:
                lock.record_event("stopped leading")
                self.metrics.leader_off(self.config.name)
                log.info("failed to renew lease %s: timed out waiting for the condition", desc)
                scope.set()
                break
            if scope.wait(self.config.retry_period):
                break
        if self.config.release_on_cancel:
            self.release()

    def release(self) -> bool:
        """Give up the lease if this client holds it; return whether that worked."""
        if not self.is_leader():
            return True
        record = LeaderElectionRecord(
            lease_duration_seconds=self.observed_record.lease_duration_seconds,
            leader_transitions=self.observed_record.leader_transitions,
        )
        try:
            self.config.lock.update(record)
        except Exception as exc:  # any lock backend failure is reported, not raised
            log.error("Failed to release lock: %s", exc)
            return False
        self.observed_record = record
        self.observed_time = self.clock.now()
        return True

    def try_acquire_or_renew(self) -> bool:
        """Try once to acquire or renew the lease; return whether it succeeded."""
        lock = self.config.lock
        now = self.clock.now()
        record = LeaderElectionRecord(
            holder_identity=lock.identity(),
            lease_duration_seconds=int(self.config.lease_duration),
            acquire_time=now,
            renew_time=now,
        )

        try:
            old_record, old_raw = lock.get()
        except LockNotFoundError:
            try:
                lock.create(record)
            except Exception as exc:  # any lock backend failure is reported, not raised
                log.error("error initially creating leader election record: %s", exc)
                return False
            self.observed_record = record
            self.observed_time = self.clock.now()
            return True
        except Exception as exc:  # any lock backend failure is reported, not raised
            log.error("error retrieving resource lock %s: %s", lock.describe(), exc)
            return False

        if self.observed_raw_record != old_raw:
            self.observed_record = old_record
            self.observed_raw_record = old_raw
            self.observed_time = self.clock.now()
        if (
            old_record.holder_identity
            and self.observed_time + timedelta(seconds=self.config.lease_duration) > now
            and not self.is_leader()
        ):
            log.debug(
                "lock is held by %s and has not yet expired", old_record.holder_identity
            )
            return False

        if self.is_leader():
            record.acquire_time = old_record.acquire_time
            record.leader_transitions = old_record.leader_transitions
        else:
            record.leader_transitions = old_record.leader_transitions + 1

        try:
            lock.update(record)
        except Exception as exc:  # any lock backend failure is reported, not raised
            log.error("Failed to update lock: %s", exc)
            return False
        self.observed_record = record
        self.observed_time = self.clock.now()
        return True

    def maybe_report_transition(self) -> None:
        """Call on_new_leader, on its own thread, when the observed leader changed."""
        holder = self.observed_record.holder_identity
        if holder == self.reported_leader:
            return
        self.reported_leader = holder
        callback = self.config.callbacks.on_new_leader
        if callback is not None:
            threading.Thread(target=callback, args=(holder,), daemon=True).start()

    def check(self, max_tolerable_expired_lease: float) -> None:
        """Raise LeaseExpiredError if a held lease is expired by more than the tolerance."""
        if not self.is_leader():
            return None
        if (
            self.clock.since(self.observed_time)
            > self.config.lease_duration + max_tolerable_expired_lease
        ):
            raise LeaseExpiredError(
                f"failed election to renew leadership on lease {self.config.name}"
            )
        return None


def new_leader_elector(config: LeaderElectionConfig) -> LeaderElector:
    """Validate ``config`` and return an elector for it."""
    if config.lease_duration <= config.renew_deadline:
        raise ValueError("leaseDuration must be greater than renewDeadline")
    if config.renew_deadline <= JITTER_FACTOR * config.retry_period:
        raise ValueError("renewDeadline must be greater than retryPeriod*JitterFactor")
    if config.lease_duration <= 0:
        raise ValueError("leaseDuration must be greater than zero")
    if config.renew_deadline <= 0:
        raise ValueError("renewDeadline must be greater than zero")
    if config.retry_period <= 0:
        raise ValueError("retryPeriod must be greater than zero")
    if config.callbacks.on_started_leading is None:
        raise ValueError("OnStartedLeading callback must not be nil")
    if config.callbacks.on_stopped_leading is None:
        raise ValueError("OnStoppedLeading callback must not be nil")
    if config.lock is None:
        raise ValueError("Lock must not be nil")
    elector = LeaderElector(config)
    elector.metrics.leader_off(config.name)
    return elector


def run_or_die(stop, config: LeaderElectionConfig) -> None:
    """Run an election with ``config``; an invalid config raises ValueError."""
    elector = new_leader_elector(config)
    if config.watch_dog is not None:
        config.watch_dog.set_leader_election(elector)
    elector.run(stop)
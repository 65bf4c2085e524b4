"""
In-process progress reporting for running lead imports.

The registry keeps the most recent snapshot per batch id and fans each new
snapshot out to every subscriber. A subscriber that joins late immediately
receives the stored snapshot, so a page opened mid-import does not sit empty
until the next chunk finishes.

Entries are created on first publish or subscribe and evicted once a batch
has been idle for ``ttl_seconds`` or finished more than
``done_grace_seconds`` ago. Nothing survives a process restart.
"""

from __future__ import annotations

import enum
import queue
import threading
import time
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Iterator

from flask import Flask, current_app, has_app_context

CHANNEL_PREFIX = "import-leads"

DEFAULT_TTL_SECONDS = 3600
DEFAULT_DONE_GRACE_SECONDS = 300


class ImportStage(str, enum.Enum):
    VALIDATING = "validating"
    DEDUPING = "deduping"
    INSERTING = "inserting"
    DONE = "done"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ImportStage.DONE, ImportStage.FAILED)


def channel_for(batch_id: str) -> str:
    return f"{CHANNEL_PREFIX}:{batch_id}"


@dataclass(frozen=True)
class ProgressSnapshot:
    batch_id: str
    total: int
    processed: int
    inserted: int = 0
    merged: int = 0
    duplicates: int = 0
    errors: int = 0
    stage: ImportStage = ImportStage.VALIDATING
    message: str | None = None

    @property
    def percentage(self) -> int:
        if self.total <= 0:
            return 100
        return min(100, int(round(self.processed * 100 / self.total)))

    @property
    def remaining(self) -> int:
        return max(0, self.total - self.processed)

    @property
    def is_terminal(self) -> bool:
        return self.stage.is_terminal

    def as_dict(self) -> dict[str, Any]:
        return {
            "batch_id": self.batch_id,
            "total": self.total,
            "processed": self.processed,
            "percentage": self.percentage,
            "inserted": self.inserted,
            "merged": self.merged,
            "duplicates": self.duplicates,
            "errors": self.errors,
            "remaining": self.remaining,
            "stage": self.stage.value,
            "message": self.message,
        }


class Subscription:
    """A subscriber's view of one batch; iterate or call :meth:`get`."""

    def __init__(self, registry: "ProgressRegistry", batch_id: str) -> None:
        self.registry = registry
        self.batch_id = batch_id
        self.channel = channel_for(batch_id)
        self._queue: "queue.Queue[ProgressSnapshot]" = queue.Queue()
        self.closed = False

    def deliver(self, snapshot: ProgressSnapshot) -> None:
        if not self.closed:
            self._queue.put(snapshot)

    def get(self, timeout: float | None = None) -> ProgressSnapshot | None:
        """Next snapshot, or ``None`` when ``timeout`` elapses first."""
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> list[ProgressSnapshot]:
        items: list[ProgressSnapshot] = []
        while True:
            try:
                items.append(self._queue.get_nowait())
            except queue.Empty:
                return items

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.registry.unsubscribe(self)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


Listener = Callable[[ProgressSnapshot], None]


@dataclass
class _ProgressEntry:
    snapshot: ProgressSnapshot | None = None
    subscribers: list[Subscription] = field(default_factory=list)
    listeners: list[Listener] = field(default_factory=list)
    touched_at: float = 0.0
    finished_at: float | None = None


class ProgressRegistry:
    """Thread-safe map of batch id to latest snapshot and live subscribers."""

    def __init__(
        self,
        *,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        done_grace_seconds: float = DEFAULT_DONE_GRACE_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.done_grace_seconds = done_grace_seconds
        self._clock = clock
        # Reentrant so a listener may query the registry it is called from
        self._lock = threading.RLock()
        self._entries: dict[str, _ProgressEntry] = {}

    def report(self, snapshot: ProgressSnapshot) -> ProgressSnapshot:
        """
        Store ``snapshot`` as the latest for its batch and broadcast it.

        ``processed`` never moves backwards; a lower value is clamped to the
        previously published one. Subscribers and listeners are served while
        the registry lock is held, so every one of them sees snapshots in
        publication order. Returns the snapshot actually stored.
        """

        with self._lock:
            now = self._clock()
            self._prune_locked(now)
            entry = self._entries.setdefault(snapshot.batch_id, _ProgressEntry())
            previous = entry.snapshot
            if previous is not None and snapshot.processed < previous.processed:
                snapshot = replace(snapshot, processed=previous.processed)
            entry.snapshot = snapshot
            entry.touched_at = now
            if snapshot.is_terminal and entry.finished_at is None:
                entry.finished_at = now
            for subscription in list(entry.subscribers):
                subscription.deliver(snapshot)
            for listener in list(entry.listeners):
                listener(snapshot)
        return snapshot

    def listen(self, batch_id: str, listener: Listener) -> Callable[[], None]:
        """
        Call ``listener`` synchronously with every snapshot published for
        ``batch_id``. Returns a function that removes the listener.
        """

        with self._lock:
            entry = self._entries.setdefault(batch_id, _ProgressEntry(touched_at=self._clock()))
            entry.listeners.append(listener)

        def _remove() -> None:
            with self._lock:
                current = self._entries.get(batch_id)
                if current is not None and listener in current.listeners:
                    current.listeners.remove(listener)

        return _remove

    def subscribe(self, batch_id: str) -> Subscription:
        """Join future broadcasts for ``batch_id``, replaying the latest snapshot once."""

        subscription = Subscription(self, batch_id)
        with self._lock:
            now = self._clock()
            self._prune_locked(now)
            entry = self._entries.setdefault(batch_id, _ProgressEntry(touched_at=now))
            entry.subscribers.append(subscription)
            if entry.snapshot is not None:
                subscription.deliver(entry.snapshot)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            entry = self._entries.get(subscription.batch_id)
            if entry is not None and subscription in entry.subscribers:
                entry.subscribers.remove(subscription)

    def latest(self, batch_id: str) -> ProgressSnapshot | None:
        with self._lock:
            self._prune_locked(self._clock())
            entry = self._entries.get(batch_id)
            return entry.snapshot if entry else None

    def stream(self, batch_id: str, *, timeout: float | None = None) -> Iterator[ProgressSnapshot]:
        """
        Yield snapshots for ``batch_id`` until a terminal stage is seen.

        Stops early when no snapshot arrives within ``timeout`` seconds.
        """

        with self.subscribe(batch_id) as subscription:
            while True:
                snapshot = subscription.get(timeout=timeout)
                if snapshot is None:
                    return
                yield snapshot
                if snapshot.is_terminal:
                    return

    def forget(self, batch_id: str) -> None:
        with self._lock:
            self._entries.pop(batch_id, None)

    def prune(self) -> list[str]:
        with self._lock:
            return self._prune_locked(self._clock())

    def active_batches(self) -> tuple[str, ...]:
        with self._lock:
            return tuple(self._entries)

    def _prune_locked(self, now: float) -> list[str]:
        expired: list[str] = []
        for batch_id, entry in self._entries.items():
            if entry.finished_at is not None and now - entry.finished_at > self.done_grace_seconds:
                expired.append(batch_id)
            elif now - entry.touched_at > self.ttl_seconds:
                expired.append(batch_id)
        for batch_id in expired:
            del self._entries[batch_id]
        return expired


PROGRESS_REGISTRY_KEY = "progress_registry"
_default_registry = ProgressRegistry()


def create_progress_registry(app: Flask) -> ProgressRegistry:
    return ProgressRegistry(
        ttl_seconds=app.config.get("IMPORTER_PROGRESS_TTL_SECONDS", DEFAULT_TTL_SECONDS),
        done_grace_seconds=app.config.get("IMPORTER_PROGRESS_DONE_GRACE_SECONDS", DEFAULT_DONE_GRACE_SECONDS),
    )


def get_progress_registry(app: Flask | None = None) -> ProgressRegistry:
    """
    Return the registry bound to ``app`` (or the current app), falling back
    to a process-wide default outside an application context.
    """

    if app is None and has_app_context():
        app = current_app._get_current_object()
    if app is None:
        return _default_registry
    state = app.extensions.setdefault("importer", {})
    registry = state.get(PROGRESS_REGISTRY_KEY)
    if registry is None:
        registry = state[PROGRESS_REGISTRY_KEY] = create_progress_registry(app)
    return registry


def report_progress(batch_id: str, *, timeout: float | None = None) -> Iterator[dict[str, Any]]:
    """Stream progress payloads for ``batch_id`` from the current registry."""

    for snapshot in get_progress_registry().stream(batch_id, timeout=timeout):
        yield snapshot.as_dict()

"""
In-memory trace registry
"""

import copy
import itertools
import logging
import threading
import uuid
from datetime import datetime
from typing import Optional

from .models import Hop, Trace, TraceOptions, TraceStatus


logger = logging.getLogger(__name__)


class _Entry:
    """A stored trace with its own lock and start order"""

    __slots__ = ('trace', 'lock', 'order')

    def __init__(self, trace: Trace, order: int):
        self.trace = trace
        self.lock = threading.Lock()
        self.order = order

    @property
    def start_key(self) -> tuple[datetime, int]:
        return (self.trace.started_at, self.order)


class TraceStore:
    """
    Registry of traces keyed by trace id.

    Structural changes (insert, evict, clear) and listing are serialized
    by one store lock; hop merges and status changes only take the lock
    of the trace they touch. Readers get deep-copied snapshots, never the
    stored objects.

    Retention: after an insert, the earliest-started traces are evicted
    until the store is back at capacity. Running traces are not exempt.
    """

    DEFAULT_CAPACITY = 100

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        if capacity < 1:
            raise ValueError(f"capacity must be at least 1, got {capacity}")
        self.capacity = capacity
        self._entries: dict[str, _Entry] = {}
        self._lock = threading.RLock()
        self._counter = itertools.count()

    def create(self, destination: str, options: Optional[TraceOptions] = None) -> Trace:
        """Create a running trace with no hops and return a snapshot of it"""
        trace = Trace(
            id=str(uuid.uuid4()),
            destination=destination,
            options=options or TraceOptions(),
        )
        with self._lock:
            self._entries[trace.id] = _Entry(trace, next(self._counter))
            snapshot = trace.snapshot()
            self._enforce_capacity()
        return snapshot

    def _enforce_capacity(self):
        excess = len(self._entries) - self.capacity
        if excess <= 0:
            return
        oldest = sorted(self._entries.values(), key=lambda e: e.start_key)[:excess]
        for entry in oldest:
            del self._entries[entry.trace.id]
            logger.debug("Evicted trace %s (%s) over capacity %d",
                         entry.trace.id, entry.trace.status.value, self.capacity)

    def _entry(self, trace_id: str) -> Optional[_Entry]:
        with self._lock:
            return self._entries.get(trace_id)

    def merge_hop(self, trace_id: str, hop: Hop) -> bool:
        """
        Insert or replace the hop with the same hop number.

        Returns:
            True if applied, False for unknown or terminal traces
        """
        entry = self._entry(trace_id)
        if entry is None:
            logger.debug("Ignoring hop %d for unknown trace %s", hop.hop_number, trace_id)
            return False

        with entry.lock:
            trace = entry.trace
            if trace.is_terminal:
                logger.debug("Ignoring hop %d for %s trace %s",
                             hop.hop_number, trace.status.value, trace_id)
                return False

            hops = [h for h in trace.hops if h.hop_number != hop.hop_number]
            hops.append(copy.deepcopy(hop))
            hops.sort(key=lambda h: h.hop_number)
            trace.hops = hops

            trace.total_packets = len(hops) * trace.options.queries
            trace.successful_packets = sum(h.answered_count for h in hops)
        return True

    def set_status(self, trace_id: str, status: TraceStatus) -> bool:
        """
        Change the status of a running trace.

        Terminal statuses also stamp the completion time. Unknown or
        already terminal traces are left alone.
        """
        entry = self._entry(trace_id)
        if entry is None:
            return False

        with entry.lock:
            trace = entry.trace
            if trace.is_terminal:
                return False
            trace.status = TraceStatus(status)
            if trace.status.is_terminal:
                trace.completed_at = datetime.now()
        return True

    def get(self, trace_id: str) -> Optional[Trace]:
        entry = self._entry(trace_id)
        if entry is None:
            return None
        with entry.lock:
            return entry.trace.snapshot()

    def all(self) -> list[Trace]:
        """All traces, most recently started first"""
        with self._lock:
            entries = sorted(self._entries.values(), key=lambda e: e.start_key, reverse=True)
            snapshots = []
            for entry in entries:
                with entry.lock:
                    snapshots.append(entry.trace.snapshot())
        return snapshots

    def evict(self, trace_id: str) -> bool:
        with self._lock:
            return self._entries.pop(trace_id, None) is not None

    def clear(self):
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, trace_id: str) -> bool:
        with self._lock:
            return trace_id in self._entries

"""
Discovery service: public entry point for starting, stopping and observing traces
"""

import asyncio
import logging
from typing import Any, Callable, Optional, Union

from .enrichment.geo_lookup import GeoLookup
from .enrichment.ptr_resolver import PTRResolver
from .models import Trace, TraceOptions, TraceStatus
from .probe.command import build_command
from .probe.runner import ProbeRunner
from .store import TraceStore


logger = logging.getLogger(__name__)

Subscriber = Callable[[Trace], Any]
CommandBuilder = Callable[[str, TraceOptions], list[str]]


class DiscoveryService:
    """
    Starts traces, owns their runners and publishes snapshots.

    Collaborators are created by the caller and live as long as the
    process; the service never closes them. Every hop merge and status
    change is published to subscribers as a full Trace snapshot.
    """

    def __init__(
        self,
        store: TraceStore,
        geo: Optional[GeoLookup] = None,
        ptr: Optional[PTRResolver] = None,
        command_builder: Optional[CommandBuilder] = None,
    ):
        self.store = store
        self.geo = geo
        self.ptr = ptr
        self.command_builder = command_builder or build_command
        self._runners: dict[str, ProbeRunner] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._subscribers: list[Subscriber] = []

    def start(self, destination: str,
              options: Union[TraceOptions, dict, None] = None) -> Trace:
        """
        Start a trace toward destination.

        Must be called from a running event loop; the probe runs as a
        background task.

        Args:
            destination: Hostname or literal address
            options: TraceOptions, camelCase option dict, or None for defaults

        Returns:
            Snapshot of the new trace (running, no hops)
        """
        if not destination or not destination.strip():
            raise ValueError("Destination must not be empty")
        destination = destination.strip()

        if not isinstance(options, TraceOptions):
            options = TraceOptions.from_dict(options)

        command = self.command_builder(destination, options)
        # fail before anything is created when there is no loop to run on
        loop = asyncio.get_running_loop()

        trace = self.store.create(destination, options)
        runner = ProbeRunner(
            trace,
            self.store,
            geo=self.geo,
            ptr=self.ptr,
            on_change=self._publish,
            command=command,
        )
        self._runners[trace.id] = runner

        task = loop.create_task(runner.run())
        self._tasks[trace.id] = task
        task.add_done_callback(lambda t, trace_id=trace.id: self._runner_done(trace_id, t))

        logger.info("Started trace %s to %s", trace.id, destination)
        self._publish(trace.id)
        return trace

    def stop(self, trace_id: str) -> bool:
        """Stop a running trace; unknown or finished traces are ignored"""
        runner = self._runners.get(trace_id)
        if runner is None:
            return False
        return runner.stop()

    def clear(self, trace_id: str) -> bool:
        """Terminate any runner for the trace and drop it from the store"""
        runner = self._runners.pop(trace_id, None)
        if runner is not None:
            runner.abort()
        return self.store.evict(trace_id)

    def subscribe(self, callback: Subscriber):
        if callback not in self._subscribers:
            self._subscribers.append(callback)

    def unsubscribe(self, callback: Subscriber):
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def get(self, trace_id: str) -> Optional[Trace]:
        return self.store.get(trace_id)

    def traces(self) -> list[Trace]:
        """All stored traces, most recent first"""
        return self.store.all()

    def active_count(self) -> int:
        return sum(1 for t in self.store.all() if t.status == TraceStatus.RUNNING)

    async def wait(self, trace_id: str) -> Optional[Trace]:
        """Wait for the trace's runner to finish and return the final snapshot"""
        task = self._tasks.get(trace_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        return self.store.get(trace_id)

    def shutdown(self):
        """Stop every runner and drop all subscribers"""
        for runner in list(self._runners.values()):
            runner.stop()
        self._subscribers.clear()

    def _publish(self, trace_id: str):
        if not self._subscribers:
            return
        snapshot = self.store.get(trace_id)
        if snapshot is None:
            return
        for callback in list(self._subscribers):
            try:
                callback(snapshot.snapshot())
            except Exception:
                logger.warning("Subscriber %r failed on trace %s", callback, trace_id, exc_info=True)

    def _runner_done(self, trace_id: str, task: asyncio.Task):
        self._runners.pop(trace_id, None)
        self._tasks.pop(trace_id, None)
        if task.cancelled():
            logger.info("Trace %s runner was cancelled", trace_id)
            if self.store.set_status(trace_id, TraceStatus.STOPPED):
                self._publish(trace_id)
            return
        error = task.exception()
        if error is not None:
            logger.error("Trace %s runner crashed: %s", trace_id, error)
            # terminal status so the trace never stays running
            if self.store.set_status(trace_id, TraceStatus.FAILED):
                self._publish(trace_id)

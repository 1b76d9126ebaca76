"""
Probe process runner

One ProbeRunner owns one traceroute process for one trace: it spawns the
process, feeds its output through the hop parser, schedules enrichment and
drives the trace to a terminal status.
"""

import asyncio
import codecs
import dataclasses
import logging
from typing import AsyncIterator, Callable, Optional

from ..enrichment.geo_lookup import GeoLookup
from ..enrichment.ip_classifier import IPClassifier
from ..enrichment.ptr_resolver import PTRResolver
from ..models import Hop, Trace, TraceStatus
from ..store import TraceStore
from .command import build_command
from .parser import banner_address, is_banner, parse_hop_line


logger = logging.getLogger(__name__)


async def read_lines(stream: asyncio.StreamReader, chunk_size: int = 1024,
                     encoding: str = 'utf-8') -> AsyncIterator[str]:
    """
    Yield complete text lines from a byte stream.

    A partial trailing line is held back until the next chunk completes
    it; whatever remains at EOF is yielded last. The sequence is finite
    and not restartable.
    """
    decoder = codecs.getincrementaldecoder(encoding)(errors='replace')
    buffer = ''

    while True:
        chunk = await stream.read(chunk_size)
        if not chunk:
            break
        buffer += decoder.decode(chunk)
        *lines, buffer = buffer.split('\n')
        for line in lines:
            yield line.rstrip('\r')

    buffer += decoder.decode(b'', final=True)
    if buffer:
        yield buffer.rstrip('\r')


class ProbeRunner:
    """
    Runs the probe process bound to a single trace.

    States: running -> completed | failed | timeout | stopped.
    The terminal transition is the last change the runner makes to
    its trace.
    """

    # Slack added to the worst-case probe time before a trace times out
    GRACE_SECONDS = 5.0

    def __init__(
        self,
        trace: Trace,
        store: TraceStore,
        geo: Optional[GeoLookup] = None,
        ptr: Optional[PTRResolver] = None,
        on_change: Optional[Callable[[str], None]] = None,
        command: Optional[list[str]] = None,
        deadline: Optional[float] = None,
    ):
        self.trace_id = trace.id
        self.destination = trace.destination
        self.options = trace.options
        self.store = store
        self.geo = geo
        self.ptr = ptr
        self.on_change = on_change
        self.command = command or build_command(self.destination, self.options)
        self.deadline = deadline
        self.status = TraceStatus.RUNNING
        self.destination_address: Optional[str] = None
        self.hop_number = 1

        self._process: Optional[asyncio.subprocess.Process] = None
        self._terminal = False
        self._enrichment: set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return not self._terminal

    @property
    def deadline_seconds(self) -> float:
        """Overall time budget for the probe process"""
        if self.deadline is not None:
            return self.deadline
        worst_case = self.options.max_hops * self.options.queries * self.options.timeout_seconds
        return worst_case + self.GRACE_SECONDS

    async def run(self) -> TraceStatus:
        """
        Spawn the process and consume its output until it exits.

        Cancelling the task terminates the process and marks the trace
        stopped; any other escaping error terminates it too.

        Returns:
            The terminal status of the trace
        """
        try:
            return await self._run()
        except asyncio.CancelledError:
            self._terminate_process()
            self._cancel_enrichment()
            self._finish(TraceStatus.STOPPED)
            raise
        except Exception:
            self._terminate_process()
            self._cancel_enrichment()
            raise

    async def _run(self) -> TraceStatus:
        logger.info("Trace %s: %s", self.trace_id, ' '.join(self.command))
        try:
            self._process = await asyncio.create_subprocess_exec(
                *self.command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            logger.error("Trace %s: cannot start %s: %s", self.trace_id, self.command[0], e)
            self._finish(TraceStatus.FAILED)
            return self.status

        if self._terminal:
            # stopped while the process was being spawned
            self._terminate_process()
            await self._reap()
            return self.status

        stderr_task = asyncio.create_task(self._drain_stderr())
        try:
            returncode = await asyncio.wait_for(self._consume(), timeout=self.deadline_seconds)
        except asyncio.TimeoutError:
            logger.warning("Trace %s: no exit after %.0fs, terminating",
                           self.trace_id, self.deadline_seconds)
            self._terminate_process()
            self._cancel_enrichment()
            self._finish(TraceStatus.TIMEOUT)
            await self._reap()
            return self.status
        finally:
            if not stderr_task.done():
                stderr_task.cancel()
            await asyncio.gather(stderr_task, return_exceptions=True)

        if self._terminal:
            return self.status

        if returncode < 0:
            # killed by a signal we did not send
            self._cancel_enrichment()
            self._finish(TraceStatus.STOPPED)
            return self.status

        await self._wait_enrichment()
        self._finish(TraceStatus.COMPLETED if returncode == 0 else TraceStatus.FAILED)
        logger.info("Trace %s finished with code %s", self.trace_id, returncode)
        return self.status

    def stop(self) -> bool:
        """
        Terminate the process and mark the trace stopped.

        Does not wait for the process to exit. Returns False if the
        trace was already terminal.
        """
        if self._terminal:
            return False
        self._terminate_process()
        self._cancel_enrichment()
        self._finish(TraceStatus.STOPPED)
        return True

    def abort(self):
        """Terminate the process without touching the trace (used before eviction)"""
        self._terminal = True
        self._terminate_process()
        self._cancel_enrichment()

    def handle_line(self, line: str) -> Optional[Hop]:
        """
        Process one complete output line.

        Banners never consume a hop slot; any other non-empty line
        advances the hop counter whether or not it parses.
        """
        text = line.strip()
        if not text:
            return None

        if is_banner(text):
            if self.destination_address is None:
                self.destination_address = banner_address(text)
            return None

        hop = parse_hop_line(line, self.hop_number, self.options, self.destination_address)
        self.hop_number += 1

        if hop is None:
            logger.warning("Trace %s: unrecognized output line %r", self.trace_id, text)
            return None

        self._merge(hop)
        if self._needs_enrichment(hop):
            task = asyncio.create_task(self._enrich(hop))
            self._enrichment.add(task)
            task.add_done_callback(self._enrichment_done)
        return hop

    async def _consume(self) -> int:
        async for line in read_lines(self._process.stdout):
            self.handle_line(line)
        return await self._process.wait()

    async def _drain_stderr(self):
        async for line in read_lines(self._process.stderr):
            if line.strip():
                logger.debug("Trace %s stderr: %s", self.trace_id, line.strip())

    def _needs_enrichment(self, hop: Hop) -> bool:
        if not hop.responded:
            return False
        if self.geo is not None and IPClassifier.should_enrich(hop.address):
            return True
        return self._wants_ptr(hop)

    def _wants_ptr(self, hop: Hop) -> bool:
        return self.ptr is not None and self.options.numeric and not hop.hostname

    async def _enrich(self, hop: Hop):
        location = await self.geo.resolve(hop.address) if self.geo is not None else None
        hostname = hop.hostname
        if self._wants_ptr(hop):
            hostname = await self.ptr.resolve(hop.address)

        if location is None and hostname == hop.hostname:
            return
        self._merge(dataclasses.replace(hop, location=location, hostname=hostname))

    def _enrichment_done(self, task: asyncio.Task):
        self._enrichment.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.warning("Trace %s: enrichment failed: %s", self.trace_id, error)

    async def _wait_enrichment(self):
        if self._enrichment:
            await asyncio.gather(*list(self._enrichment), return_exceptions=True)

    def _cancel_enrichment(self):
        for task in list(self._enrichment):
            task.cancel()

    def _merge(self, hop: Hop):
        if self._terminal:
            return
        if self.store.merge_hop(self.trace_id, hop):
            self._notify()

    def _finish(self, status: TraceStatus):
        if self._terminal:
            return
        self._terminal = True
        self.status = status
        self.store.set_status(self.trace_id, status)
        self._notify()

    def _notify(self):
        if self.on_change is not None:
            self.on_change(self.trace_id)

    def _terminate_process(self):
        process = self._process
        if process is None or process.returncode is not None:
            return
        try:
            process.terminate()
        except ProcessLookupError:
            pass

    async def _reap(self):
        process = self._process
        if process is None:
            return
        try:
            await asyncio.wait_for(process.wait(), timeout=self.GRACE_SECONDS)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()

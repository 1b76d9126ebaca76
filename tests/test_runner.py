"""
Tests for the probe runner: line reading, hop numbering and the
process lifecycle, driven by fake traceroute processes.
"""
import asyncio
import sys

import pytest

from tests.fakes import LINUX_OUTPUT, script_command
from vistrace.models import EchoProbe, TraceOptions, TraceStatus
from vistrace.probe.runner import ProbeRunner, read_lines


class FakePTR:
    """Reverse resolver answering every address with the same name"""

    def __init__(self, name="resolved.example.net"):
        self.name = name
        self.calls = []

    async def resolve(self, ip):
        self.calls.append(ip)
        return self.name


async def wait_for_hops(store, trace_id, count, timeout=10.0):
    loop = asyncio.get_running_loop()
    end = loop.time() + timeout
    while loop.time() < end:
        trace = store.get(trace_id)
        if trace is not None and len(trace.hops) >= count:
            return trace
        await asyncio.sleep(0.02)
    raise AssertionError(f"trace {trace_id} never reached {count} hops")


class TestReadLines:

    @pytest.mark.asyncio
    async def test_lines_split_across_chunks(self):
        reader = asyncio.StreamReader()
        reader.feed_data(b"1 a\n2 b")
        reader.feed_data(b"c\n3")
        reader.feed_eof()

        lines = [line async for line in read_lines(reader, chunk_size=4)]
        assert lines == ["1 a", "2 bc", "3"]

    @pytest.mark.asyncio
    async def test_crlf_and_split_multibyte(self):
        reader = asyncio.StreamReader()
        reader.feed_data(b"caf\xc3")
        reader.feed_data(b"\xa9\r\nnext\r\n")
        reader.feed_eof()

        lines = [line async for line in read_lines(reader, chunk_size=3)]
        assert lines == ["café", "next"]

    @pytest.mark.asyncio
    async def test_empty_stream(self):
        reader = asyncio.StreamReader()
        reader.feed_eof()
        assert [line async for line in read_lines(reader)] == []


class TestHandleLine:

    def make_runner(self, store, options=None):
        trace = store.create("dns.google", options or TraceOptions())
        return ProbeRunner(trace, store, command=["traceroute"])

    def test_banner_does_not_advance(self, store):
        runner = self.make_runner(store)
        assert runner.handle_line(LINUX_OUTPUT[0]) is None
        assert runner.hop_number == 1
        assert runner.destination_address == "8.8.8.8"

    def test_blank_lines_are_ignored(self, store):
        runner = self.make_runner(store)
        runner.handle_line("")
        runner.handle_line("   ")
        assert runner.hop_number == 1

    def test_unparseable_line_still_advances(self, store):
        runner = self.make_runner(store)
        runner.handle_line(" 1  router.local (192.168.1.1)  1.0 ms")
        runner.handle_line("something unexpected")
        runner.handle_line(" 3  10.0.0.3  3.0 ms")

        trace = store.get(runner.trace_id)
        assert [h.hop_number for h in trace.hops] == [1, 3]
        assert runner.hop_number == 4

    def test_hops_merge_immediately(self, store):
        runner = self.make_runner(store)
        changes = []
        runner.on_change = changes.append
        for line in LINUX_OUTPUT:
            runner.handle_line(line)

        trace = store.get(runner.trace_id)
        assert [h.address for h in trace.hops] == ["192.168.1.1", "*", "8.8.8.8"]
        assert trace.total_packets == 9
        assert trace.successful_packets == 6
        assert changes == [runner.trace_id] * 3
        assert all(isinstance(p, EchoProbe) for p in trace.hops[2].probes)


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_completed(self, store):
        trace = store.create("dns.google")
        runner = ProbeRunner(trace, store, command=script_command(LINUX_OUTPUT))

        assert await runner.run() == TraceStatus.COMPLETED

        final = store.get(trace.id)
        assert final.status == TraceStatus.COMPLETED
        assert final.completed_at is not None
        assert len(final.hops) == 3
        assert final.hops[0].hostname == "router.local"
        assert final.hops[0].avg_ms == pytest.approx(1.345)

    @pytest.mark.asyncio
    async def test_non_zero_exit_fails(self, store):
        trace = store.create("dns.google")
        runner = ProbeRunner(trace, store, command=script_command(LINUX_OUTPUT[:2], exit_code=2))

        assert await runner.run() == TraceStatus.FAILED
        final = store.get(trace.id)
        assert final.status == TraceStatus.FAILED
        assert len(final.hops) == 1

    @pytest.mark.asyncio
    async def test_missing_binary_fails(self, store):
        trace = store.create("dns.google")
        runner = ProbeRunner(trace, store, command=["/nonexistent/vistrace-traceroute"])

        assert await runner.run() == TraceStatus.FAILED
        assert store.get(trace.id).status == TraceStatus.FAILED

    @pytest.mark.asyncio
    async def test_stop(self, store):
        trace = store.create("dns.google")
        runner = ProbeRunner(trace, store, command=script_command(LINUX_OUTPUT[:2], hold=30))
        task = asyncio.create_task(runner.run())

        await wait_for_hops(store, trace.id, 1)
        assert runner.stop() is True
        assert store.get(trace.id).status == TraceStatus.STOPPED

        assert await asyncio.wait_for(task, timeout=10) == TraceStatus.STOPPED
        assert runner.stop() is False

        final = store.get(trace.id)
        assert final.status == TraceStatus.STOPPED
        assert final.completed_at is not None

    @pytest.mark.asyncio
    async def test_cancelled_task_terminates_process(self, store):
        trace = store.create("dns.google")
        changes = []
        runner = ProbeRunner(trace, store, on_change=changes.append,
                             command=script_command(LINUX_OUTPUT[:2], hold=30))
        task = asyncio.create_task(runner.run())

        await wait_for_hops(store, trace.id, 1)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        final = store.get(trace.id)
        assert final.status == TraceStatus.STOPPED
        assert final.completed_at is not None
        assert runner.running is False
        assert await asyncio.wait_for(runner._process.wait(), timeout=10) is not None
        assert runner._process.returncode is not None
        assert changes[-1] == trace.id

    @pytest.mark.skipif(sys.platform == 'win32', reason="POSIX signals")
    @pytest.mark.asyncio
    async def test_killed_externally_is_stopped(self, store):
        trace = store.create("dns.google")
        command = [sys.executable, "-c", "import os, signal; os.kill(os.getpid(), signal.SIGTERM)"]
        runner = ProbeRunner(trace, store, command=command)

        assert await runner.run() == TraceStatus.STOPPED

    @pytest.mark.asyncio
    async def test_deadline_times_out(self, store):
        trace = store.create("dns.google")
        runner = ProbeRunner(trace, store, command=script_command(LINUX_OUTPUT[:2], hold=30),
                             deadline=0.5)

        assert await asyncio.wait_for(runner.run(), timeout=10) == TraceStatus.TIMEOUT
        final = store.get(trace.id)
        assert final.status == TraceStatus.TIMEOUT
        assert len(final.hops) == 1

    def test_default_deadline(self, store):
        trace = store.create("dns.google", TraceOptions(max_hops=10, queries=2, timeout_ms=1000))
        runner = ProbeRunner(trace, store, command=["traceroute"])
        assert runner.deadline_seconds == pytest.approx(10 * 2 * 1.0 + ProbeRunner.GRACE_SECONDS)

    @pytest.mark.asyncio
    async def test_terminal_transition_is_last(self, store):
        trace = store.create("dns.google")
        statuses = []
        runner = ProbeRunner(trace, store, command=script_command(LINUX_OUTPUT),
                             on_change=lambda trace_id: statuses.append(store.get(trace_id).status))

        await runner.run()
        assert statuses[-1] == TraceStatus.COMPLETED
        assert all(status == TraceStatus.RUNNING for status in statuses[:-1])


class TestEnrichment:

    @pytest.mark.asyncio
    async def test_public_hops_get_locations(self, store, geo, providers):
        trace = store.create("dns.google")
        runner = ProbeRunner(trace, store, geo=geo, command=script_command(LINUX_OUTPUT))

        assert await runner.run() == TraceStatus.COMPLETED
        await geo.close()

        final = store.get(trace.id)
        assert final.hops[0].location is None
        assert final.hops[1].location is None
        assert final.hops[2].location.city == "Mountain View"
        assert providers.hosts() == ["ipinfo.io", "ip-api.com"]
        # re-merging the enriched hop leaves the counters alone
        assert final.total_packets == 9
        assert final.successful_packets == 6

    @pytest.mark.asyncio
    async def test_ptr_only_in_numeric_mode(self, store):
        lines = [" 1  10.0.0.1  1.0 ms", " 2  8.8.8.8  2.0 ms"]

        ptr = FakePTR()
        numeric = store.create("dns.google", TraceOptions(numeric=True))
        runner = ProbeRunner(numeric, store, ptr=ptr, command=script_command(lines))
        await runner.run()

        final = store.get(numeric.id)
        assert [h.hostname for h in final.hops] == ["resolved.example.net"] * 2
        assert ptr.calls == ["10.0.0.1", "8.8.8.8"]

        ptr = FakePTR()
        named = store.create("dns.google")
        runner = ProbeRunner(named, store, ptr=ptr, command=script_command(lines))
        await runner.run()

        assert ptr.calls == []
        assert [h.hostname for h in store.get(named.id).hops] == [None, None]

    @pytest.mark.asyncio
    async def test_late_enrichment_after_stop_is_dropped(self, store):
        class SlowGeo:
            async def resolve(self, ip):
                await asyncio.sleep(30)

        trace = store.create("dns.google")
        runner = ProbeRunner(trace, store, geo=SlowGeo(),
                             command=script_command(LINUX_OUTPUT, hold=30))
        task = asyncio.create_task(runner.run())

        await wait_for_hops(store, trace.id, 3)
        runner.stop()
        assert await asyncio.wait_for(task, timeout=10) == TraceStatus.STOPPED
        assert store.get(trace.id).hops[2].location is None

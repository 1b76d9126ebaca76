"""
Tests for data models and their wire form.
"""
from datetime import datetime

import pytest

from vistrace.models import (
    EchoProbe, Hop, IcmpProbe, Location, ProbeKind, Trace, TraceOptions, TraceStatus,
)


class TestTraceOptions:

    def test_defaults(self):
        options = TraceOptions()
        assert options.max_hops == 30
        assert options.packet_size == 64
        assert options.timeout_ms == 5000
        assert options.queries == 3
        assert options.use_ipv6 is False
        assert options.dont_fragment is True
        assert options.packet_type == 'icmp'
        assert options.timeout_seconds == 5.0

    def test_from_dict_camel_case(self):
        options = TraceOptions.from_dict({
            'maxHops': 12, 'packetSize': 100, 'timeout': 1000,
            'useIPv6': True, 'packetType': 'UDP', 'unknown': 1,
        })
        assert options.max_hops == 12
        assert options.packet_size == 100
        assert options.timeout_ms == 1000
        assert options.use_ipv6 is True
        assert options.packet_type == 'udp'

    def test_from_dict_missing_values_use_defaults(self):
        assert TraceOptions.from_dict(None) == TraceOptions()
        assert TraceOptions.from_dict({'maxHops': None}) == TraceOptions()

    def test_to_dict_round_trip(self):
        options = TraceOptions(max_hops=8, queries=1, numeric=True)
        assert TraceOptions.from_dict(options.to_dict()) == options

    def test_from_dict_coerces_numeric_strings(self):
        options = TraceOptions.from_dict({'maxHops': '12', 'queries': '2', 'timeoutMs': '1500'})
        assert options.max_hops == 12
        assert options.queries == 2
        assert options.timeout_ms == 1500

    @pytest.mark.parametrize("data", [
        {'maxHops': 'thirty'},
        {'maxHops': '30.5'},
        {'queries': [3]},
        {'packetSize': {}},
        {'timeoutMs': True},
    ])
    def test_from_dict_rejects_non_integers(self, data):
        with pytest.raises(ValueError):
            TraceOptions.from_dict(data)

    @pytest.mark.parametrize("kwargs", [
        {'packet_type': 'sctp'},
        {'max_hops': 0},
        {'max_hops': 256},
        {'queries': 0},
        {'timeout_ms': 0},
        {'packet_size': 10},
    ])
    def test_invalid(self, kwargs):
        with pytest.raises(ValueError):
            TraceOptions(**kwargs)


class TestProbes:

    def test_variants_are_tagged(self):
        assert IcmpProbe(sequence=1).kind is ProbeKind.ICMP
        assert EchoProbe(sequence=1).kind is ProbeKind.ECHO

    def test_unanswered(self):
        assert IcmpProbe(sequence=1).answered is False
        assert IcmpProbe(sequence=1, rtt_ms=0.0).answered is True

    def test_icmp_to_dict(self):
        data = IcmpProbe(sequence=2, rtt_ms=1.5, ttl=4, packet_size=64,
                         dont_fragment=True).to_dict()
        assert data['kind'] == 'icmp'
        assert data['sequenceNumber'] == 2
        assert data['responseTime'] == 1.5
        assert data['flags'] == ['DF']
        assert (data['type'], data['code']) == (11, 0)

    def test_echo_to_dict(self):
        data = EchoProbe(sequence=1, rtt_ms=3.0, echo_id=7, echo_sequence=1).to_dict()
        assert data['kind'] == 'echo'
        assert data['echoId'] == 7
        assert data['flags'] == []


class TestTrace:

    def test_to_dict(self):
        started = datetime(2024, 1, 2, 3, 4, 5)
        hop = Hop(hop_number=1, address="8.8.8.8", hostname="dns.google",
                  probes=[IcmpProbe(sequence=1, rtt_ms=1.0)],
                  avg_ms=1.0, min_ms=1.0, max_ms=1.0, loss_percent=0.0,
                  location=Location(country="United States", city="Mountain View"))
        trace = Trace(id="abc", destination="dns.google", started_at=started,
                      hops=[hop], total_packets=3, successful_packets=1)

        data = trace.to_dict()
        assert data['id'] == "abc"
        assert data['startTime'] == "2024-01-02T03:04:05"
        assert data['endTime'] is None
        assert data['status'] == "running"
        assert data['maxHops'] == 30
        assert data['timeout'] == 5000
        assert data['hops'][0]['ipAddress'] == "8.8.8.8"
        assert data['hops'][0]['location']['city'] == "Mountain View"
        assert data['hops'][0]['packets'][0]['kind'] == 'icmp'
        assert data['useIPv6'] is False
        assert data['dontFragment'] is True

    def test_to_dict_carries_start_configuration(self):
        options = TraceOptions(use_ipv6=True, dont_fragment=False, packet_type='udp', queries=2)
        data = Trace(id="v6", destination="example.com", options=options).to_dict()

        assert data['useIPv6'] is True
        assert data['dontFragment'] is False
        assert data['packetType'] == 'udp'
        assert data['queries'] == 2

    def test_hop_lookup(self):
        trace = Trace(id="abc", destination="x", hops=[Hop(hop_number=1), Hop(hop_number=3)])
        assert trace.hop(3).hop_number == 3
        assert trace.hop(2) is None

    def test_terminal(self):
        assert not Trace(id="a", destination="x").is_terminal
        assert Trace(id="a", destination="x", status=TraceStatus.STOPPED).is_terminal

    def test_hop_defaults_are_sentinels(self):
        hop = Hop(hop_number=4)
        assert not hop.responded
        assert hop.loss_percent == 100
        assert hop.avg_ms == hop.min_ms == hop.max_ms == -1

    def test_location_empty(self):
        assert Location().is_empty
        assert not Location(timezone="UTC").is_empty

import asyncio
import json

import pytest

from wifisurvey import commands
from wifisurvey.iperf import (CombinedSummary, SplitSummary, build_iperf_command,
                              extract_iperf_data, parse_iperf_end, run_single_test)
from wifisurvey.models import BandwidthTestResult, Direction, Protocol


NEW_TCP = {
    'end': {
        'sum_sent': {'bits_per_second': 510000000, 'retransmits': 12},
        'sum_received': {'bits_per_second': 500000000},
    }
}

NEW_UDP = {
    'end': {
        'sum': {'bits_per_second': 51000000, 'jitter_ms': 0.12, 'lost_packets': 4,
                'packets': 4400, 'lost_percent': 0.09},
        'sum_sent': {'bits_per_second': 948000000},
        'sum_received': {'bits_per_second': 948000000},
    }
}

OLD = {'end': {'sum': {'bits_per_second': 300000000, 'retransmits': 3}}}


class TestExtractIperfData:

    def test_newer_schema_tcp(self):
        result = extract_iperf_data(NEW_TCP, is_udp=False)
        assert result.bits_per_second == 500000000
        assert result.retransmits == 12
        assert result.jitter_ms is None
        assert result.lost_packets is None
        assert result.packets_received is None

    def test_newer_schema_udp_uses_summary(self):
        result = extract_iperf_data(NEW_UDP, is_udp=True)
        assert result.bits_per_second == 51000000
        assert result.jitter_ms == 0.12
        assert result.lost_packets == 4
        assert result.packets_received == 4400

    @pytest.mark.parametrize('is_udp', [False, True])
    def test_older_schema_same_for_both_protocols(self, is_udp):
        result = extract_iperf_data(OLD, is_udp=is_udp)
        assert result.bits_per_second == 300000000
        assert result.retransmits == 3

    def test_udp_fields_forced_to_none_for_tcp(self):
        result = extract_iperf_data(NEW_UDP, is_udp=False)
        assert result.bits_per_second == 948000000
        assert (result.jitter_ms, result.lost_packets, result.packets_received) == (None, None, None)

    def test_missing_end_is_not_run(self):
        result = extract_iperf_data({'error': 'unable to connect to server'}, is_udp=False)
        assert result == BandwidthTestResult.not_run()

    def test_zero_throughput_is_none(self):
        zero = {'end': {'sum': {'bits_per_second': 0}}}
        assert extract_iperf_data(zero, is_udp=True).bits_per_second is None
        missing = {'end': {'sum': {}}}
        assert extract_iperf_data(missing, is_udp=True) == extract_iperf_data(zero, is_udp=True)

    def test_schema_variants(self):
        assert isinstance(parse_iperf_end(NEW_TCP), SplitSummary)
        assert isinstance(parse_iperf_end(OLD), CombinedSummary)
        assert parse_iperf_end({}) is None

    @pytest.mark.parametrize('report', [
        {'end': {'sum_received': 5}},
        {'end': 'finished'},
        {'end': {'sum': [1, 2]}},
        {'end': {'sum': {'bits_per_second': 'fast'}}},
    ])
    def test_malformed_report_is_not_run(self, report):
        assert extract_iperf_data(report, is_udp=False) == BandwidthTestResult.not_run()
        assert extract_iperf_data(report, is_udp=True) == BandwidthTestResult.not_run()


class TestBuildIperfCommand:

    def test_tcp_upload(self):
        assert build_iperf_command('10.0.0.5', 10, Direction.UP, Protocol.TCP) == \
            ['iperf3', '-c', '10.0.0.5', '-t', '10', '-J']

    def test_udp_download_with_port(self):
        assert build_iperf_command('iperf.lan:5202', 5, Direction.DOWN, Protocol.UDP) == \
            ['iperf3', '-c', 'iperf.lan', '-p', '5202', '-t', '5', '-R', '-u', '-b', '0', '-J']


class FakeProcess:

    def __init__(self, stdout: str, returncode: int = 0, delay: float = 0.0):
        self.stdout = stdout
        self.returncode = returncode
        self.delay = delay

    async def communicate(self):
        await asyncio.sleep(self.delay)
        return self.stdout.encode(), b''


def fake_exec(process=None, error=None, launched=None):
    async def create_subprocess_exec(*command, **kwargs):
        if launched is not None:
            launched.append(list(command))
        if error is not None:
            raise error
        return process
    return create_subprocess_exec


class TestRunSingleTest:

    def test_success_reports_progress_and_ends_at_100(self, monkeypatch):
        launched = []
        monkeypatch.setattr(commands.asyncio, 'create_subprocess_exec',
                            fake_exec(FakeProcess(json.dumps(NEW_TCP), delay=0.1), launched=launched))
        progress = []

        result = asyncio.run(run_single_test('server', 1, Direction.DOWN, Protocol.TCP,
                                             progress.append, poll_interval=0.01))

        assert result.bits_per_second == 500000000
        assert launched == [['iperf3', '-c', 'server', '-t', '1', '-R', '-J']]
        assert progress[-1] == 100
        assert progress.count(100) == 1
        assert len(progress) > 1
        assert all(p <= 99 for p in progress[:-1])
        assert progress[:-1] == sorted(progress[:-1])

    def test_missing_binary_returns_not_run(self, monkeypatch):
        monkeypatch.setattr(commands.asyncio, 'create_subprocess_exec',
                            fake_exec(error=FileNotFoundError('iperf3')))
        progress = []

        result = asyncio.run(run_single_test('server', 1, Direction.UP, Protocol.UDP, progress.append))

        assert result == BandwidthTestResult.not_run()
        assert progress == [100]

    def test_unparsable_output_returns_not_run(self, monkeypatch):
        monkeypatch.setattr(commands.asyncio, 'create_subprocess_exec',
                            fake_exec(FakeProcess('iperf3: error - unable to connect')))
        progress = []

        result = asyncio.run(run_single_test('server', 1, Direction.UP, Protocol.TCP, progress.append))

        assert result == BandwidthTestResult.not_run()
        assert progress == [100]

    def test_nonzero_exit_returns_not_run(self, monkeypatch):
        payload = json.dumps({'start': {}, 'error': 'the server is busy running a test'})
        monkeypatch.setattr(commands.asyncio, 'create_subprocess_exec',
                            fake_exec(FakeProcess(payload, returncode=1)))

        result = asyncio.run(run_single_test('server', 1, Direction.UP, Protocol.TCP))

        assert result == BandwidthTestResult.not_run()

    def test_malformed_report_returns_not_run(self, monkeypatch):
        payload = json.dumps({'end': {'sum_received': 5}})
        monkeypatch.setattr(commands.asyncio, 'create_subprocess_exec',
                            fake_exec(FakeProcess(payload)))
        progress = []

        result = asyncio.run(run_single_test('server', 1, Direction.DOWN, Protocol.TCP, progress.append))

        assert result == BandwidthTestResult.not_run()
        assert progress == [100]

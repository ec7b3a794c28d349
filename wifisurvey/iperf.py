"""
iperf3 bandwidth tests.

Runs one iperf3 client invocation per direction/protocol pair and normalizes
its JSON report. iperf3 has shipped two report layouts: 3.17+ splits the
summary into ``sum_sent``/``sum_received``, older releases (3.9 on Ubuntu
22.04 for instance) only emit a combined ``sum``.
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Union

from .commands import run_command
from .config import split_server_address
from .models import BandwidthTestResult, Direction, Protocol

logger = logging.getLogger(__name__)

IPERF_BINARY = 'iperf3'
PROGRESS_POLL_INTERVAL = 0.2

ProgressCallback = Callable[[int], None]


@dataclass(frozen=True)
class SplitSummary:
    """Report layout of iperf3 3.17 and later."""
    sum_received: Dict[str, Any]
    sum_sent: Dict[str, Any] = field(default_factory=dict)
    sum: Dict[str, Any] = field(default_factory=dict)

    def bits_per_second(self, is_udp: bool) -> Optional[float]:
        # For UDP sum_received only covers the measured stream; sum carries
        # the rate the test reports.
        if is_udp:
            return self.sum.get('bits_per_second')
        return self.sum_received.get('bits_per_second')

    @property
    def retransmits(self) -> Optional[int]:
        return self.sum_sent.get('retransmits')


@dataclass(frozen=True)
class CombinedSummary:
    """Report layout of iperf3 releases before the sent/received split."""
    sum: Dict[str, Any] = field(default_factory=dict)

    def bits_per_second(self, is_udp: bool) -> Optional[float]:
        return self.sum.get('bits_per_second')

    @property
    def retransmits(self) -> Optional[int]:
        return self.sum.get('retransmits')


IperfSummary = Union[SplitSummary, CombinedSummary]


def _section(end: Dict[str, Any], name: str) -> Dict[str, Any]:
    value = end.get(name)
    if value and not isinstance(value, dict):
        logger.warning("Ignoring malformed %r section in iperf results: %r", name, value)
        return {}
    return value or {}


def parse_iperf_end(raw: Dict[str, Any]) -> Optional[IperfSummary]:
    """Classify the ``end`` section of an iperf3 JSON report."""
    end = raw.get('end')
    if not end or not isinstance(end, dict):
        return None
    summary = _section(end, 'sum')
    sum_received = _section(end, 'sum_received')
    if sum_received:
        return SplitSummary(
            sum_received=sum_received,
            sum_sent=_section(end, 'sum_sent'),
            sum=summary
        )
    return CombinedSummary(sum=summary)


def extract_iperf_data(raw: Dict[str, Any], is_udp: bool) -> BandwidthTestResult:
    """Reduce an iperf3 JSON report to a BandwidthTestResult."""
    summary = parse_iperf_end(raw)
    if summary is None:
        logger.warning("No end data in iperf results: %s", raw.get('error') or 'unknown error')
        return BandwidthTestResult.not_run()

    logger.debug("iperf report layout: %s", type(summary).__name__)

    bits_per_second = summary.bits_per_second(is_udp)
    if not isinstance(bits_per_second, (int, float)) or not bits_per_second:
        logger.warning("No bits per second found in iperf results, reporting as --")
        bits_per_second = None

    combined = summary.sum
    return BandwidthTestResult(
        bits_per_second=bits_per_second,
        retransmits=summary.retransmits,
        jitter_ms=combined.get('jitter_ms') if is_udp else None,
        lost_packets=combined.get('lost_packets') if is_udp else None,
        packets_received=combined.get('packets') if is_udp else None
    )


def build_iperf_command(server: str, duration: int, direction: Direction,
                        protocol: Protocol) -> List[str]:
    """Command line for one iperf3 client run with JSON output."""
    host, port = split_server_address(server)
    command = [IPERF_BINARY, '-c', host]
    if port is not None:
        command += ['-p', str(port)]
    command += ['-t', str(duration)]
    if direction == Direction.DOWN:
        command.append('-R')
    if protocol == Protocol.UDP:
        command += ['-u', '-b', '0']
    command.append('-J')
    return command


async def _report_progress(on_progress: ProgressCallback, duration: int,
                           interval: float) -> None:
    """Estimate progress from wall-clock time; never reaches 100 on its own."""
    started = time.monotonic()
    duration = max(duration, 1)
    while True:
        await asyncio.sleep(interval)
        elapsed = time.monotonic() - started
        on_progress(min(round(elapsed / duration * 100), 99))


async def run_single_test(server: str, duration: int, direction: Direction,
                          protocol: Protocol,
                          on_progress: Optional[ProgressCallback] = None,
                          poll_interval: float = PROGRESS_POLL_INTERVAL) -> BandwidthTestResult:
    """
    Run one iperf3 sub-test.

    Failures are logged and reported as BandwidthTestResult.not_run() so a
    broken sub-test never stops the remaining ones.
    """
    is_udp = protocol == Protocol.UDP
    command = build_iperf_command(server, duration, direction, protocol)
    logger.debug("Running %s", ' '.join(command))

    progress_task = None
    if on_progress:
        progress_task = asyncio.create_task(_report_progress(on_progress, duration, poll_interval))

    try:
        result = await run_command(command)
        raw = json.loads(result.stdout) if result.stdout.strip() else {}
        if not isinstance(raw, dict):
            raise ValueError(f"unexpected iperf3 output: {result.stdout[:80]!r}")
        if result.returncode != 0:
            logger.error("iperf3 test failed (exit %s): %s", result.returncode,
                         raw.get('error') or result.stderr.strip())
            return BandwidthTestResult.not_run()
        extracted = extract_iperf_data(raw, is_udp)
        logger.debug("iperf %s %s extracted results: %s", protocol.value, direction.value, extracted)
        return extracted
    except (OSError, ValueError, TypeError, AttributeError) as e:
        logger.error("iperf3 test failed: %s", e)
        return BandwidthTestResult.not_run()
    finally:
        if progress_task:
            progress_task.cancel()
            try:
                await progress_task
            except asyncio.CancelledError:
                pass
            on_progress(100)

"""
Survey orchestrator.

Takes the Wi-Fi and iperf3 readings for one survey location:

    preflight -> iperf3 server probe -> scan -> signal sample (before)
    -> TCP down/up -> signal sample (middle) -> UDP down/up
    -> signal sample (after) -> consistency check

Progress is published on a ProgressChannel throughout the run. A stop request
is honored at the checkpoints after each signal sample and after the TCP
phase; a running iperf3 test is always allowed to finish.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Tuple

from .adapters.base import WifiActions
from .config import MeasurementSettings
from .errors import (SettingsError, SurveyBusyError, SurveyCancelled,
                     WifiConfigurationChanged)
from .iperf import ProgressCallback, run_single_test
from .models import (BandwidthSurveyResult, BandwidthTestResult, Direction,
                     Protocol, SurveyResult, WifiNetwork, average_percentage,
                     averaged_network, to_mbps)
from .progress import ProgressChannel, SurveyContext

logger = logging.getLogger(__name__)

NOT_PERFORMED = 'Not performed'
CANCELLED_STATUS = 'test was cancelled'
ERROR_STATUS = 'Error taking measurements'

NOT_STARTED_HEADER = 'Measurement not started'
IN_PROGRESS_HEADER = 'Measurement in progress...'
COMPLETE_HEADER = 'Measurement complete'
CANCELLED_HEADER = 'Measurement cancelled'
ERROR_HEADER = 'Error'

SKIP_DELAY = 0.5

IperfRunner = Callable[[str, int, Direction, Protocol, Optional[ProgressCallback]],
                       Awaitable[BandwidthTestResult]]


@dataclass(frozen=True)
class BandwidthPlan:
    """Which bandwidth tests will run, and why the others will not."""
    tcp: bool
    udp: bool
    skip_reason: str = ''

    @property
    def units(self) -> int:
        """Each direction of each enabled protocol is one unit of progress."""
        return (2 if self.tcp else 0) + (2 if self.udp else 0)


class SurveyRunner:
    """Runs one survey at a time against an injected platform adapter."""

    def __init__(self, wifi_actions: WifiActions,
                 channel: Optional[ProgressChannel] = None,
                 iperf_runner: IperfRunner = run_single_test,
                 skip_delay: float = SKIP_DELAY):
        self.wifi_actions = wifi_actions
        self.channel = channel or ProgressChannel()
        self.iperf_runner = iperf_runner
        self.skip_delay = skip_delay
        self._context: Optional[SurveyContext] = None

    @property
    def is_running(self) -> bool:
        return self._context is not None

    def stop(self) -> bool:
        """Ask the running survey to stop; False when nothing is running."""
        if self._context is None:
            return False
        logger.info("Cancellation requested")
        self._context.cancel()
        return True

    async def run_survey(self, settings: MeasurementSettings) -> SurveyResult:
        """Take the measurements for one location."""
        if self._context is not None:
            raise SurveyBusyError()
        context = SurveyContext(self.channel)
        self._context = context
        try:
            return await self._run(context, settings)
        finally:
            self._context = None

    async def _run(self, context: SurveyContext, settings: MeasurementSettings) -> SurveyResult:
        context.state.reset(tcp_enabled=settings.iperf_tcp_enabled,
                            udp_enabled=settings.iperf_udp_enabled)
        context.publish()

        try:
            reason = await self._preflight(settings)
            if reason:
                context.finish(NOT_STARTED_HEADER, reason)
                return SurveyResult(status=reason)

            plan = await self._plan_bandwidth(settings)
            context.state.header = IN_PROGRESS_HEADER

            snapshot = await self.wifi_actions.scan_wifi(settings)
            logger.debug("scan_wifi returned: %s", snapshot)
            ssid_name = snapshot.current().ssid

            return await self._measure_with_retries(context, settings, plan, ssid_name)
        except Exception:
            logger.exception("Error running measurement tests")
            context.finish(ERROR_HEADER, ERROR_STATUS)
            raise

    async def _preflight(self, settings: MeasurementSettings) -> str:
        try:
            settings.validate()
        except SettingsError as e:
            logger.debug("Settings rejected: %s", e)
            return str(e)
        result = await self.wifi_actions.preflight_settings(settings)
        if not result.ok:
            logger.debug("preflight_settings returned: %s", result.reason)
        return result.reason

    async def _plan_bandwidth(self, settings: MeasurementSettings) -> BandwidthPlan:
        # An unreachable iperf3 server only skips the bandwidth tests; the
        # signal readings are still worth taking.
        if settings.skip_bandwidth:
            reason = NOT_PERFORMED
        else:
            probe = await self.wifi_actions.check_iperf_server(settings)
            logger.debug("check_iperf_server returned: %r", probe.reason)
            reason = probe.reason
        perform = not reason
        return BandwidthPlan(tcp=perform and settings.iperf_tcp_enabled,
                             udp=perform and settings.iperf_udp_enabled,
                             skip_reason=reason)

    async def _measure_with_retries(self, context: SurveyContext,
                                    settings: MeasurementSettings, plan: BandwidthPlan,
                                    ssid_name: str) -> SurveyResult:
        attempt = 0
        while True:
            attempt += 1
            try:
                bandwidth, wifi = await self._measure(context, settings, plan, ssid_name)
            except SurveyCancelled:
                logger.info("Measurement cancelled during attempt %d", attempt)
                context.finish(CANCELLED_HEADER, CANCELLED_STATUS)
                return SurveyResult(status=CANCELLED_STATUS)
            except WifiConfigurationChanged as e:
                logger.warning("Attempt %d of %d failed: %s", attempt, settings.max_retries, e)
                if attempt >= settings.max_retries:
                    context.finish(ERROR_HEADER, str(e))
                    return SurveyResult(status=str(e))
            except Exception as e:
                logger.error("Attempt %d of %d failed: %s", attempt, settings.max_retries, e)
                if attempt >= settings.max_retries:
                    raise
            else:
                context.finish(COMPLETE_HEADER)
                return SurveyResult(bandwidth_result=bandwidth, wifi_result=wifi)

    async def _sample(self, context: SurveyContext, settings: MeasurementSettings,
                      strengths: list) -> WifiNetwork:
        snapshot = await self.wifi_actions.get_wifi(settings)
        logger.debug("get_wifi returned: %s", snapshot)
        network = snapshot.current()
        strengths.append(network.signal_strength)
        context.state.strength = str(average_percentage(strengths))
        return network

    async def _measure(self, context: SurveyContext, settings: MeasurementSettings,
                       plan: BandwidthPlan, ssid_name: str) -> Tuple[BandwidthSurveyResult, WifiNetwork]:
        state = context.state
        strengths = []
        bandwidth = BandwidthSurveyResult()
        completed = 0

        header = 'Measuring Wi-Fi'
        if 'redacted' not in ssid_name:
            header += f" ({ssid_name})"
        state.header = header

        before = await self._sample(context, settings, strengths)
        context.check_cancelled()
        context.publish()

        if plan.tcp:
            state.tcp = 'Testing...'
            bandwidth.tcp_download = await self._run_unit(context, settings, plan, completed,
                                                          Direction.DOWN, Protocol.TCP)
            completed += 1
            state.tcp = f"{to_mbps(bandwidth.tcp_download.bits_per_second)} / ... Mbps"
            context.publish()

            bandwidth.tcp_upload = await self._run_unit(context, settings, plan, completed,
                                                        Direction.UP, Protocol.TCP)
            completed += 1
            state.tcp = (f"{to_mbps(bandwidth.tcp_download.bits_per_second)} / "
                         f"{to_mbps(bandwidth.tcp_upload.bits_per_second)} Mbps")
        elif state.tcp_enabled:
            await asyncio.sleep(self.skip_delay)
            state.tcp = plan.skip_reason
        context.check_cancelled()
        context.publish()

        await self._sample(context, settings, strengths)
        context.check_cancelled()
        context.publish()

        if plan.udp:
            state.udp = 'Testing...'
            bandwidth.udp_download = await self._run_unit(context, settings, plan, completed,
                                                          Direction.DOWN, Protocol.UDP)
            completed += 1
            state.udp = f"{to_mbps(bandwidth.udp_download.bits_per_second)} / ... Mbps"
            context.publish()

            bandwidth.udp_upload = await self._run_unit(context, settings, plan, completed,
                                                        Direction.UP, Protocol.UDP)
            completed += 1
            state.udp = (f"{to_mbps(bandwidth.udp_download.bits_per_second)} / "
                         f"{to_mbps(bandwidth.udp_upload.bits_per_second)} Mbps")
        elif state.udp_enabled:
            await asyncio.sleep(self.skip_delay)
            state.udp = plan.skip_reason
        state.advance(100)
        context.publish()

        after = await self._sample(context, settings, strengths)
        context.check_cancelled()

        if not before.same_network(after):
            logger.debug("Network changed: %s/%s -> %s/%s", before.ssid, before.bssid,
                         after.ssid, after.bssid)
            raise WifiConfigurationChanged()

        return bandwidth, averaged_network(before, strengths)

    async def _run_unit(self, context: SurveyContext, settings: MeasurementSettings,
                        plan: BandwidthPlan, completed: int,
                        direction: Direction, protocol: Protocol) -> BandwidthTestResult:
        """Run one sub-test, mapping its percentage into its share of the bar."""
        share = 100 / plan.units

        def on_progress(percent: int) -> None:
            context.state.advance(completed * share + percent / 100 * share)
            context.publish()

        logger.info("Running %s %s test against %s", protocol.value, direction.value,
                    settings.iperf_server_address)
        return await self.iperf_runner(settings.iperf_server_address, settings.test_duration,
                                       direction, protocol, on_progress)

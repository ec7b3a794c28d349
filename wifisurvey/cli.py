#!/usr/bin/env python3
"""
wifisurvey - Wi-Fi signal and iperf3 bandwidth survey

Takes the measurements for one survey location and prints them, or serves the
survey API for a floor-plan front end with --serve.
"""

import argparse
import asyncio
import json
import logging
import signal
import sys
from typing import List, Optional, Union

from tabulate import tabulate

from .adapters import create_wifi_actions
from .config import LOCALHOST_SENTINEL, MeasurementSettings, log_level_from_env
from .errors import SurveyError
from .models import SurveyResult, to_mbps
from .progress import ProgressMessage
from .server import serve
from .survey import SurveyRunner

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class OutputFormatter:
    """Handles output formatting for different formats."""

    @staticmethod
    def format_progress(message: ProgressMessage) -> str:
        status = ' | '.join(message.status.split('\n'))
        return f"[{message.progress:3d}%] {message.header}: {status}"

    @staticmethod
    def format_human_output(result: SurveyResult) -> str:
        """Format a survey result for human-readable output."""
        output: List[str] = []
        if not result.ok:
            output.append(f"Measurement failed: {result.status}")
            return '\n'.join(output)

        if result.wifi_result:
            OutputFormatter._format_wifi(output, result)
        if result.bandwidth_result:
            OutputFormatter._format_bandwidth(output, result)
        return '\n'.join(output)

    @staticmethod
    def _format_wifi(output: List[str], result: SurveyResult):
        wifi = result.wifi_result
        output.append("Wi-Fi:")
        output.append(tabulate(
            [[wifi.ssid, wifi.bssid, wifi.band, wifi.channel,
              f"{wifi.signal_strength}%", f"{wifi.rssi} dBm"]],
            headers=['SSID', 'BSSID', 'Freq (MHz)', 'Channel', 'Signal', 'RSSI'],
            tablefmt='simple'
        ))

    @staticmethod
    def _format_bandwidth(output: List[str], result: SurveyResult):
        output.append("")
        output.append("Bandwidth:")
        table_data = []
        for name, test in result.bandwidth_result.rows():
            table_data.append([
                name,
                to_mbps(test.bits_per_second),
                '' if test.retransmits is None else test.retransmits,
                '' if test.jitter_ms is None else f"{test.jitter_ms:.3f}",
                '' if test.lost_packets is None else test.lost_packets,
                '' if test.packets_received is None else test.packets_received,
            ])
        output.append(tabulate(
            table_data,
            headers=['Test', 'Mbps', 'Retransmits', 'Jitter (ms)', 'Lost', 'Packets'],
            tablefmt='simple'
        ))


async def _print_progress(queue: asyncio.Queue) -> None:
    while True:
        message = await queue.get()
        if message is None:
            return
        print(OutputFormatter.format_progress(message))
        if message.done:
            return


async def run_with_progress(runner: SurveyRunner, settings: MeasurementSettings,
                            show_progress: bool = True) -> SurveyResult:
    """Run one survey, echoing progress messages and stopping on Ctrl-C."""
    loop = asyncio.get_running_loop()
    loop.add_signal_handler(signal.SIGINT, runner.stop)

    queue = runner.channel.subscribe(replay_last=False)
    printer = asyncio.create_task(_print_progress(queue)) if show_progress else None
    try:
        return await runner.run_survey(settings)
    finally:
        runner.channel.unsubscribe(queue)
        if printer:
            queue.put_nowait(None)
            await printer
        loop.remove_signal_handler(signal.SIGINT)


def output_result(result: SurveyResult, json_output: Union[bool, str]):
    """Output results in appropriate format."""
    if json_output:
        json_str = json.dumps(result.to_dict(), indent=2)
        if isinstance(json_output, str):
            try:
                with open(json_output, 'w', encoding='utf-8') as f:
                    f.write(json_str)
                print(f"Results saved to {json_output}")
            except OSError as e:
                print(f"Error saving to file {json_output}: {e}")
                print(json_str)
        else:
            print(json_str)
    else:
        print(OutputFormatter.format_human_output(result))


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='wifisurvey - Wi-Fi signal and iperf3 bandwidth survey')
    parser.add_argument('--server', '-s', default=LOCALHOST_SENTINEL,
                        help='iperf3 server as host[:port] (default: localhost, no bandwidth tests)')
    parser.add_argument('--duration', '-t', type=int, default=10,
                        help='Duration of each iperf3 test (seconds, default: 10)')
    parser.add_argument('--no-tcp', action='store_true', help='Skip the TCP bandwidth tests')
    parser.add_argument('--no-udp', action='store_true', help='Skip the UDP bandwidth tests')
    parser.add_argument('--interface', '-i', default='',
                        help='Wi-Fi interface to query (default: auto-detect)')
    parser.add_argument('--retries', type=int, default=1,
                        help='Measurement attempts before giving up (default: 1)')
    parser.add_argument('--json', nargs='?', const=True, default=False,
                        help='Output results as JSON. Optionally specify a filename to save to.')
    parser.add_argument('--quiet', '-q', action='store_true', help='Do not print progress updates')
    parser.add_argument('--serve', action='store_true', help='Serve the survey HTTP API instead')
    parser.add_argument('--host', default='127.0.0.1', help='Address for --serve (default: 127.0.0.1)')
    parser.add_argument('--port', type=int, default=8080, help='Port for --serve (default: 8080)')
    parser.add_argument('--log-level', default=None,
                        help='Logging level (default: $WIFISURVEY_LOG_LEVEL or INFO)')
    return parser


def main(argv: Optional[List[str]] = None):
    """Main entry point."""
    args = create_parser().parse_args(argv)

    logging.basicConfig(level=(args.log_level or log_level_from_env()).upper(), format=LOG_FORMAT)

    settings = MeasurementSettings(
        iperf_server_address=args.server,
        test_duration=args.duration,
        iperf_tcp_enabled=not args.no_tcp,
        iperf_udp_enabled=not args.no_udp,
        wlan_interface=args.interface,
        max_retries=args.retries
    )

    try:
        runner = SurveyRunner(create_wifi_actions())
    except SurveyError as e:
        print(f"Error: {e}")
        sys.exit(1)

    if args.serve:
        serve(runner, args.host, args.port)
        return

    try:
        result = asyncio.run(run_with_progress(runner, settings, show_progress=not args.quiet))
    except Exception as e:
        if args.json:
            print(json.dumps({'error': str(e)}))
        else:
            print(f"Error: {e}")
        sys.exit(1)

    output_result(result, args.json)
    if not result.ok:
        sys.exit(2)


if __name__ == '__main__':
    main()

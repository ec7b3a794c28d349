"""Linux Wi-Fi adapter built on NetworkManager's nmcli."""

import asyncio
import logging
import re
import shutil
import subprocess
from typing import Dict, List, Optional

from ..commands import run_command
from ..config import DEFAULT_IPERF_PORT, MeasurementSettings
from ..errors import SurveyError
from ..models import WifiNetwork, WifiSnapshot, percentage_to_rssi
from .base import PreflightResult, WifiActions

logger = logging.getLogger(__name__)

WIFI_FIELDS = ['IN-USE', 'SSID', 'BSSID', 'FREQ', 'CHAN', 'RATE', 'SIGNAL', 'SECURITY']
IPERF_PROBE_TIMEOUT = 3.0

_UNESCAPED_COLON = re.compile(r'(?<!\\):')


def split_terse_line(line: str) -> List[str]:
    """Split one line of `nmcli -t` output, honoring escaped colons."""
    return [part.replace('\\:', ':').replace('\\\\', '\\')
            for part in _UNESCAPED_COLON.split(line)]


def _leading_number(value: str) -> Optional[float]:
    match = re.match(r'\s*(\d+(?:\.\d+)?)', value)
    return float(match.group(1)) if match else None


def parse_wifi_list(output: str) -> List[WifiNetwork]:
    """Parse `nmcli -t -f IN-USE,SSID,BSSID,FREQ,CHAN,RATE,SIGNAL,SECURITY dev wifi list`."""
    networks = []
    for line in output.strip().split('\n'):
        if not line:
            continue
        parts = split_terse_line(line)
        if len(parts) < len(WIFI_FIELDS):
            logger.debug("Skipping short nmcli line: %r", line)
            continue
        fields = dict(zip(WIFI_FIELDS, parts))

        signal = _leading_number(fields['SIGNAL'])
        strength = int(signal) if signal is not None else 0
        freq = _leading_number(fields['FREQ'])
        chan = _leading_number(fields['CHAN'])
        rate = _leading_number(fields['RATE'])

        networks.append(WifiNetwork(
            ssid=fields['SSID'] or '<hidden>',
            bssid=fields['BSSID'].lower(),
            band=int(freq) if freq else 0,
            channel=int(chan) if chan else 0,
            security=fields['SECURITY'],
            tx_rate=rate or 0.0,
            signal_strength=strength,
            rssi=percentage_to_rssi(strength),
            current_ssid=fields['IN-USE'].strip() == '*'
        ))
    return networks


def parse_device_list(output: str) -> Dict[str, Dict[str, str]]:
    """Parse `nmcli -t -f DEVICE,TYPE,STATE dev` into {device: {type, state}}."""
    devices = {}
    for line in output.strip().split('\n'):
        parts = split_terse_line(line)
        if len(parts) >= 3 and parts[0]:
            devices[parts[0]] = {'type': parts[1], 'state': parts[2]}
    return devices


class NmcliWifiActions(WifiActions):
    """WifiActions for Linux hosts managed by NetworkManager."""

    async def _run_nmcli_command(self, command: List[str]) -> subprocess.CompletedProcess:
        """Run nmcli command asynchronously."""
        return await run_command(command)

    async def preflight_settings(self, settings: MeasurementSettings) -> PreflightResult:
        if shutil.which('nmcli') is None:
            return PreflightResult("nmcli was not found. Install NetworkManager to take measurements.")
        interface = await self.find_wifi_interface(settings)
        if not interface:
            return PreflightResult("Could not find a Wi-Fi interface")
        return PreflightResult()

    async def check_iperf_server(self, settings: MeasurementSettings) -> PreflightResult:
        host, port = settings.iperf_endpoint()
        port = port or DEFAULT_IPERF_PORT
        try:
            _, writer = await asyncio.wait_for(asyncio.open_connection(host, port),
                                               timeout=IPERF_PROBE_TIMEOUT)
        except (OSError, asyncio.TimeoutError) as e:
            logger.info("iperf3 server %s:%s unreachable: %s", host, port, e)
            return PreflightResult(f"Cannot connect to iperf3 server at {host}:{port}")
        writer.close()
        await writer.wait_closed()
        return PreflightResult()

    async def find_wifi_interface(self, settings: MeasurementSettings) -> str:
        if settings.wlan_interface:
            return settings.wlan_interface
        result = await self._run_nmcli_command(['nmcli', '-t', '-f', 'DEVICE,TYPE,STATE', 'dev'])
        devices = parse_device_list(result.stdout)
        wifi = [name for name, info in devices.items() if info['type'] == 'wifi']
        for name in wifi:
            if devices[name]['state'].startswith('connected'):
                return name
        return wifi[0] if wifi else ''

    async def _list_networks(self, settings: MeasurementSettings, rescan: str) -> List[WifiNetwork]:
        interface = await self.find_wifi_interface(settings)
        command = ['nmcli', '-t', '-f', ','.join(WIFI_FIELDS), 'dev', 'wifi', 'list']
        if interface:
            command += ['ifname', interface]
        command += ['--rescan', rescan]
        result = await self._run_nmcli_command(command)
        if result.returncode != 0:
            raise SurveyError(f"nmcli failed: {result.stderr.strip()}")
        return parse_wifi_list(result.stdout)

    async def scan_wifi(self, settings: MeasurementSettings) -> WifiSnapshot:
        networks = await self._list_networks(settings, rescan='auto')
        return WifiSnapshot(tuple(networks))

    async def get_wifi(self, settings: MeasurementSettings) -> WifiSnapshot:
        networks = await self._list_networks(settings, rescan='no')
        return WifiSnapshot(tuple(n for n in networks if n.current_ssid))

import asyncio
import subprocess

import pytest

from wifisurvey import commands
from wifisurvey.adapters import NmcliWifiActions, create_wifi_actions
from wifisurvey.adapters.linux import parse_device_list, parse_wifi_list, split_terse_line
from wifisurvey.config import MeasurementSettings
from wifisurvey.errors import UnsupportedPlatformError

WIFI_LIST = (
    "*:HomeNet:AA\\:BB\\:CC\\:DD\\:EE\\:01:5180 MHz:36:540 Mbit/s:78:WPA2\n"
    " :Neighbour\\:5G:11\\:22\\:33\\:44\\:55\\:66:2437 MHz:6:130 Mbit/s:31:WPA1 WPA2\n"
    " ::22\\:22\\:33\\:44\\:55\\:66:2412 MHz:1:54 Mbit/s:12:\n"
)

DEVICES = "docker0:bridge:connected (externally)\nwlp2s0:wifi:connected\nlo:loopback:unmanaged\n"


def test_split_terse_line_unescapes_colons():
    assert split_terse_line('a\\:b:c') == ['a:b', 'c']


def test_parse_wifi_list():
    networks = parse_wifi_list(WIFI_LIST)

    assert len(networks) == 3
    current = networks[0]
    assert current.current_ssid
    assert current.ssid == 'HomeNet'
    assert current.bssid == 'aa:bb:cc:dd:ee:01'
    assert current.band == 5180
    assert current.channel == 36
    assert current.tx_rate == 540.0
    assert current.signal_strength == 78
    assert current.rssi == -61
    assert networks[1].ssid == 'Neighbour:5G'
    assert not networks[1].current_ssid
    assert networks[2].ssid == '<hidden>'


def test_parse_device_list():
    devices = parse_device_list(DEVICES)
    assert devices['wlp2s0'] == {'type': 'wifi', 'state': 'connected'}
    assert devices['docker0']['state'] == 'connected (externally)'


def test_factory():
    assert isinstance(create_wifi_actions('Linux'), NmcliWifiActions)
    with pytest.raises(UnsupportedPlatformError):
        create_wifi_actions('Plan9')


class ScriptedNmcli(NmcliWifiActions):

    def __init__(self, outputs):
        self.outputs = outputs
        self.commands = []

    async def _run_nmcli_command(self, command):
        self.commands.append(command)
        key = 'dev' if command[-1] == 'dev' else 'wifi'
        return subprocess.CompletedProcess(command, 0, self.outputs[key], '')


def test_get_wifi_keeps_associated_network():
    actions = ScriptedNmcli({'dev': DEVICES, 'wifi': WIFI_LIST})

    snapshot = asyncio.run(actions.get_wifi(MeasurementSettings()))

    assert [n.ssid for n in snapshot.networks] == ['HomeNet']
    assert snapshot.current().bssid == 'aa:bb:cc:dd:ee:01'
    assert actions.commands[-1][-4:] == ['ifname', 'wlp2s0', '--rescan', 'no']


def test_configured_interface_skips_lookup():
    actions = ScriptedNmcli({'wifi': WIFI_LIST})

    snapshot = asyncio.run(actions.scan_wifi(MeasurementSettings(wlan_interface='wlan1')))

    assert len(snapshot.networks) == 3
    assert len(actions.commands) == 1
    assert 'wlan1' in actions.commands[0]


def test_check_iperf_server_unreachable():
    async def scenario():
        server = await asyncio.start_server(lambda r, w: w.close(), '127.0.0.1', 0)
        port = server.sockets[0].getsockname()[1]
        server.close()
        await server.wait_closed()
        actions = NmcliWifiActions()
        return await actions.check_iperf_server(
            MeasurementSettings(iperf_server_address=f"127.0.0.1:{port}"))

    result = asyncio.run(scenario())
    assert not result.ok
    assert '127.0.0.1' in result.reason


def test_check_iperf_server_reachable():
    async def scenario():
        server = await asyncio.start_server(lambda r, w: w.close(), '127.0.0.1', 0)
        port = server.sockets[0].getsockname()[1]
        try:
            return await NmcliWifiActions().check_iperf_server(
                MeasurementSettings(iperf_server_address=f"127.0.0.1:{port}"))
        finally:
            server.close()
            await server.wait_closed()

    assert asyncio.run(scenario()).ok


def test_nmcli_commands_go_through_shared_runner(monkeypatch):
    launched = []

    class Finished:
        returncode = 0

        async def communicate(self):
            return b'wlp2s0:wifi:connected\n', b''

    async def create_subprocess_exec(*command, **kwargs):
        launched.append(list(command))
        return Finished()

    monkeypatch.setattr(commands.asyncio, 'create_subprocess_exec', create_subprocess_exec)

    interface = asyncio.run(NmcliWifiActions().find_wifi_interface(MeasurementSettings()))

    assert interface == 'wlp2s0'
    assert launched[0][0] == 'nmcli'

"""Measurement settings supplied by the operator."""

import os
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from .errors import SettingsError

LOCALHOST_SENTINEL = 'localhost'
DEFAULT_IPERF_PORT = 5201
LOG_LEVEL_ENV = 'WIFISURVEY_LOG_LEVEL'


@dataclass
class MeasurementSettings:
    """Configuration for one survey run."""
    iperf_server_address: str = LOCALHOST_SENTINEL
    test_duration: int = 10
    iperf_tcp_enabled: bool = True
    iperf_udp_enabled: bool = True
    wlan_interface: str = ''
    max_retries: int = 1

    # camelCase names used by the web front end
    _FIELD_NAMES = {
        'iperfServerAdrs': 'iperf_server_address',
        'iperfServerAddress': 'iperf_server_address',
        'testDuration': 'test_duration',
        'iperfTcpEnabled': 'iperf_tcp_enabled',
        'iperfUdpEnabled': 'iperf_udp_enabled',
        'wlanInterface': 'wlan_interface',
        'maxRetries': 'max_retries',
    }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MeasurementSettings':
        """Build settings from a request body, ignoring unknown keys."""
        kwargs = {}
        for key, value in data.items():
            name = cls._FIELD_NAMES.get(key)
            if name is not None:
                kwargs[name] = value
        settings = cls(**kwargs)
        try:
            settings.test_duration = int(settings.test_duration)
            settings.max_retries = int(settings.max_retries)
        except (TypeError, ValueError) as e:
            raise SettingsError(f"Invalid settings: {e}") from e
        for name in ('iperf_tcp_enabled', 'iperf_udp_enabled'):
            if not isinstance(getattr(settings, name), bool):
                raise SettingsError(f"Invalid settings: {name} must be true or false")
        for name in ('iperf_server_address', 'wlan_interface'):
            if not isinstance(getattr(settings, name), str):
                raise SettingsError(f"Invalid settings: {name} must be a string")
        settings.iperf_server_address = settings.iperf_server_address.strip()
        return settings

    def validate(self) -> None:
        """Raise SettingsError when the settings cannot drive a survey."""
        if not self.iperf_server_address:
            raise SettingsError('Please set the iperf3 server address')
        if self.test_duration <= 0:
            raise SettingsError('Test duration must be a positive number of seconds')
        if self.max_retries < 1:
            raise SettingsError('At least one measurement attempt is required')

    @property
    def skip_bandwidth(self) -> bool:
        """The localhost sentinel means no iperf3 server is configured."""
        return self.iperf_server_address == LOCALHOST_SENTINEL

    def iperf_endpoint(self) -> Tuple[str, Optional[int]]:
        return split_server_address(self.iperf_server_address)


def split_server_address(address: str) -> Tuple[str, Optional[int]]:
    """Split 'host[:port]' into host and optional port."""
    if address.count(':') == 1:
        host, port = address.split(':')
        if port.isdigit():
            return host, int(port)
    return address, None


def log_level_from_env(default: str = 'INFO') -> str:
    return os.environ.get(LOG_LEVEL_ENV, default).upper()

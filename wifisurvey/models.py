"""Data model for Wi-Fi survey measurements."""

import math
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .errors import NoAssociatedNetworkError


class Direction(Enum):
    """Bandwidth test direction, seen from the surveying machine."""
    UP = 'Up'
    DOWN = 'Down'


class Protocol(Enum):
    """Bandwidth test transport."""
    TCP = 'TCP'
    UDP = 'UDP'


def percentage_to_rssi(percentage: float) -> int:
    """Approximate dBm for a 0-100 signal quality (100% ~ -50 dBm, 0% ~ -100 dBm)."""
    return int(-100 + (percentage / 2))


def average_percentage(values: Iterable[float]) -> int:
    """Arithmetic mean rounded half up; 0 for no values."""
    values = list(values)
    if not values:
        return 0
    return int(math.floor(sum(values) / len(values) + 0.5))


def to_mbps(bits_per_second: Optional[float]) -> str:
    """Format a throughput for display, '--' when not measured."""
    if bits_per_second is None:
        return '--'
    return f"{bits_per_second / 1_000_000:.2f}"


@dataclass(frozen=True)
class WifiNetwork:
    """One network entry as reported by a platform adapter."""
    ssid: str
    bssid: str
    band: int = 0
    channel: int = 0
    channel_width: int = 0
    security: str = ''
    tx_rate: float = 0.0
    phy_mode: str = ''
    signal_strength: int = 0
    rssi: int = -100
    current_ssid: bool = False

    def same_network(self, other: 'WifiNetwork') -> bool:
        """True when both entries describe the same radio association."""
        return (self.bssid == other.bssid and
                self.ssid == other.ssid and
                self.band == other.band and
                self.channel == other.channel)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'ssid': self.ssid,
            'bssid': self.bssid,
            'band': self.band,
            'channel': self.channel,
            'channelWidth': self.channel_width,
            'security': self.security,
            'txRate': self.tx_rate,
            'phyMode': self.phy_mode,
            'signalStrength': self.signal_strength,
            'rssi': self.rssi,
            'currentSSID': self.current_ssid,
        }


@dataclass(frozen=True)
class WifiSnapshot:
    """A point-in-time read of the visible networks."""
    networks: Tuple[WifiNetwork, ...] = ()

    def current(self) -> WifiNetwork:
        """Return the entry for the associated network."""
        for network in self.networks:
            if network.current_ssid:
                return network
        raise NoAssociatedNetworkError()

    def to_dict(self) -> Dict[str, Any]:
        return {'SSIDs': [network.to_dict() for network in self.networks]}


@dataclass(frozen=True)
class BandwidthTestResult:
    """Normalized outcome of one iperf3 run; None means not measured."""
    bits_per_second: Optional[float] = None
    retransmits: Optional[int] = None
    jitter_ms: Optional[float] = None
    lost_packets: Optional[int] = None
    packets_received: Optional[int] = None

    @classmethod
    def not_run(cls) -> 'BandwidthTestResult':
        return cls()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'bitsPerSecond': self.bits_per_second,
            'retransmits': self.retransmits,
            'jitterMs': self.jitter_ms,
            'lostPackets': self.lost_packets,
            'packetsReceived': self.packets_received,
        }


@dataclass
class BandwidthSurveyResult:
    """The four bandwidth sub-tests of one survey point."""
    tcp_download: BandwidthTestResult = field(default_factory=BandwidthTestResult.not_run)
    tcp_upload: BandwidthTestResult = field(default_factory=BandwidthTestResult.not_run)
    udp_download: BandwidthTestResult = field(default_factory=BandwidthTestResult.not_run)
    udp_upload: BandwidthTestResult = field(default_factory=BandwidthTestResult.not_run)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'tcpDownload': self.tcp_download.to_dict(),
            'tcpUpload': self.tcp_upload.to_dict(),
            'udpDownload': self.udp_download.to_dict(),
            'udpUpload': self.udp_upload.to_dict(),
        }

    def rows(self) -> List[Tuple[str, BandwidthTestResult]]:
        return [
            ('TCP Down', self.tcp_download),
            ('TCP Up', self.tcp_upload),
            ('UDP Down', self.udp_download),
            ('UDP Up', self.udp_upload),
        ]


@dataclass
class SurveyResult:
    """What one survey run hands back to its caller."""
    bandwidth_result: Optional[BandwidthSurveyResult] = None
    wifi_result: Optional[WifiNetwork] = None
    status: str = ''

    @property
    def ok(self) -> bool:
        return not self.status

    def to_dict(self) -> Dict[str, Any]:
        return {
            'iperfData': self.bandwidth_result.to_dict() if self.bandwidth_result else None,
            'wifiData': self.wifi_result.to_dict() if self.wifi_result else None,
            'status': self.status,
        }


def averaged_network(network: WifiNetwork, strengths: Iterable[float]) -> WifiNetwork:
    """Copy of `network` carrying the mean strength and the RSSI derived from it."""
    strength = average_percentage(strengths)
    return replace(network, signal_strength=strength, rssi=percentage_to_rssi(strength))

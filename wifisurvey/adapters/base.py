"""Capability contract every platform Wi-Fi adapter implements."""

from abc import ABC, abstractmethod
from dataclasses import dataclass

from ..config import MeasurementSettings
from ..models import WifiSnapshot


@dataclass(frozen=True)
class PreflightResult:
    """Empty reason means go ahead; otherwise a message for the operator."""
    reason: str = ''

    @property
    def ok(self) -> bool:
        return not self.reason


class WifiActions(ABC):
    """Platform-specific Wi-Fi queries used by the survey orchestrator."""

    @abstractmethod
    async def preflight_settings(self, settings: MeasurementSettings) -> PreflightResult:
        """Check that a measurement can be attempted with these settings."""

    @abstractmethod
    async def check_iperf_server(self, settings: MeasurementSettings) -> PreflightResult:
        """Best-effort probe of the configured iperf3 server."""

    @abstractmethod
    async def find_wifi_interface(self, settings: MeasurementSettings) -> str:
        """Name of the wireless interface to query."""

    @abstractmethod
    async def scan_wifi(self, settings: MeasurementSettings) -> WifiSnapshot:
        """All visible networks, with the associated one marked."""

    @abstractmethod
    async def get_wifi(self, settings: MeasurementSettings) -> WifiSnapshot:
        """Current signal and metadata of the associated network."""

"""Platform Wi-Fi adapters."""

import platform
from typing import Optional

from ..errors import UnsupportedPlatformError
from .base import PreflightResult, WifiActions
from .linux import NmcliWifiActions

__all__ = ['PreflightResult', 'WifiActions', 'NmcliWifiActions', 'create_wifi_actions']


def create_wifi_actions(system: Optional[str] = None) -> WifiActions:
    """Pick the adapter for this operating system."""
    system = (system or platform.system()).lower()
    if system == 'linux':
        return NmcliWifiActions()
    raise UnsupportedPlatformError(f"No Wi-Fi adapter available for platform '{system}'")

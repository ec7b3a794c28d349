"""
wifisurvey - Wi-Fi signal and bandwidth survey engine

Measures signal strength and iperf3 TCP/UDP throughput at one location while
streaming progress to an observer.
"""

from .config import MeasurementSettings
from .errors import (SurveyBusyError, SurveyCancelled, SurveyError,
                     WifiConfigurationChanged)
from .iperf import extract_iperf_data, run_single_test
from .models import (BandwidthSurveyResult, BandwidthTestResult, SurveyResult,
                     WifiNetwork, WifiSnapshot)
from .progress import ProgressChannel, ProgressMessage
from .survey import SurveyRunner

__version__ = "0.1.0"

__all__ = [
    'BandwidthSurveyResult', 'BandwidthTestResult', 'MeasurementSettings',
    'ProgressChannel', 'ProgressMessage', 'SurveyBusyError', 'SurveyCancelled',
    'SurveyError', 'SurveyResult', 'SurveyRunner', 'WifiConfigurationChanged',
    'WifiNetwork', 'WifiSnapshot', 'extract_iperf_data', 'run_single_test',
]

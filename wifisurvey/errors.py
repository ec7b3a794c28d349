"""Exceptions raised by the survey engine."""


class SurveyError(Exception):
    """Base class for survey failures."""


class SettingsError(SurveyError):
    """Measurement settings are incomplete or out of range."""


class SurveyCancelled(SurveyError):
    """The operator asked to stop the running survey."""

    def __init__(self, message: str = 'cancelled'):
        super().__init__(message)


class WifiConfigurationChanged(SurveyError):
    """The associated network changed between the before and after samples."""

    def __init__(self, message: str = 'Wifi configuration changed between scans! '
                                      'Cancelling instead of giving wrong results.'):
        super().__init__(message)


class SurveyBusyError(SurveyError):
    """A survey is already running in this process."""

    def __init__(self, message: str = 'A measurement is already in progress'):
        super().__init__(message)


class NoAssociatedNetworkError(SurveyError):
    """A Wi-Fi snapshot has no entry for the currently associated network."""

    def __init__(self, message: str = 'No active Wi-Fi connection found'):
        super().__init__(message)


class UnsupportedPlatformError(SurveyError):
    """No Wi-Fi adapter exists for this operating system."""

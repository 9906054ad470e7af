class SightreaderError(Exception):
    pass


class DeviceError(SightreaderError):
    """Microphone missing, busy or permission denied."""


class ScoreParseError(SightreaderError):
    """Score text is empty or could not be turned into a playable tune."""


class NetworkError(SightreaderError):
    """Score statistics service unreachable or returned garbage."""


class StateError(SightreaderError):
    """A transition was requested that the current state does not allow."""

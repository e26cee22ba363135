class LivenessError(Exception):
    """Base class for liveness task errors."""


class CaptureUnavailableError(LivenessError):
    """The feature producer (camera, microphone, landmark model) cannot be used."""


class InvalidFrameError(LivenessError):
    """A frame payload could not be turned into a feature snapshot."""

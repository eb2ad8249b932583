class SpeechStreamError(Exception):
    pass


class ConfigurationError(SpeechStreamError):
    """Bad language, sample rate, model or audio input, or initializing twice."""


class StateError(SpeechStreamError):
    """Operation is not valid in the session's current lifecycle state."""


class TransportError(SpeechStreamError):
    """Opening, sending to or receiving from the remote channel failed."""


class ProtocolError(SpeechStreamError):
    """The remote channel produced a response that could not be understood."""

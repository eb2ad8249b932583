import re
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from speech_stream.errors import ConfigurationError

BCP47_PATTERN = re.compile(r"^[A-Za-z]{2,8}(-[A-Za-z0-9]{1,8})*$")
MAX_ALTERNATIVES_LIMIT = 30


class RecognitionModel(Enum):
    VIDEO = "video"
    PHONE_CALL = "phone_call"
    COMMAND_AND_SEARCH = "command_and_search"
    DEFAULT = "default"

    @classmethod
    def parse(cls, name: str | None) -> "RecognitionModel":
        if not name:
            return cls.DEFAULT
        try:
            return cls(name.strip().lower())
        except ValueError:
            choices = ", ".join(m.value for m in cls)
            raise ConfigurationError(f"Unknown transcription model '{name}' (expected one of: {choices})") from None


@dataclass(frozen=True)
class StreamOptions:
    language: str
    sample_rate: int
    model: RecognitionModel = RecognitionModel.DEFAULT
    max_alternatives: int = 1

    def __post_init__(self) -> None:
        if not self.language or not BCP47_PATTERN.match(self.language):
            raise ConfigurationError(f"Invalid BCP-47 language tag: '{self.language}'")
        if isinstance(self.sample_rate, bool) or not isinstance(self.sample_rate, int):
            raise ConfigurationError(f"Sample rate must be an integer, got {self.sample_rate!r}")
        if self.sample_rate <= 0:
            raise ConfigurationError(f"Sample rate must be positive, got {self.sample_rate}")
        if isinstance(self.max_alternatives, bool) or not isinstance(self.max_alternatives, int):
            raise ConfigurationError(f"max_alternatives must be an integer, got {self.max_alternatives!r}")
        if not 0 <= self.max_alternatives <= MAX_ALTERNATIVES_LIMIT:
            raise ConfigurationError(
                f"max_alternatives must be between 0 and {MAX_ALTERNATIVES_LIMIT}, got {self.max_alternatives}"
            )

    @classmethod
    def create(
        cls,
        language: str,
        sample_rate: int,
        model: str | None = "",
        max_alternatives: int = 1,
    ) -> "StreamOptions":
        return cls(
            language=language,
            sample_rate=sample_rate,
            model=RecognitionModel.parse(model),
            max_alternatives=max_alternatives,
        )


@dataclass(frozen=True)
class TranscriptEvent:
    text: str
    is_final: bool


class TranscriptionChannel(Protocol):
    """Blocking, thread-safe view of one remote streaming recognition connection.

    ``receive`` returns ``None`` once the stream has ended and raises
    ``TransportError`` or ``ProtocolError`` on failure. ``send_audio`` must only
    enqueue; it may not wait on the network. ``close`` is local and bounded.
    """

    def open(self, options: StreamOptions) -> None: ...
    def send_audio(self, pcm: bytes) -> None: ...
    def receive(self) -> TranscriptEvent | None: ...
    def close(self) -> None: ...

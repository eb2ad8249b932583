"""Primitive-only entry points for hosts that cannot see threads or exceptions.

Every function returns ``Bool.TRUE``/``Bool.FALSE`` or a plain ``str``. On
failure the cause is written to the event log first, so ``get_log()`` can
always explain a ``Bool.FALSE``. Returned strings are transient: copy them
before the next call if they must be kept.
"""

import logging
import threading
import warnings
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import IntEnum
from functools import wraps

import numpy as np

from speech_stream.config import SpeechStreamConfig
from speech_stream.domain.audio import AudioFrame
from speech_stream.domain.session import StreamingSession
from speech_stream.errors import SpeechStreamError
from speech_stream.event_log import EVENT_LOG
from speech_stream.factory import create_session
from speech_stream.ports.transcription_channel import StreamOptions

logger = logging.getLogger(__name__)


class Bool(IntEnum):
    FALSE = 0
    TRUE = 1


@dataclass
class TextOutput:
    value: str = ""


_session: StreamingSession | None = None
_config: SpeechStreamConfig | None = None
_session_guard = threading.Lock()


def _current() -> tuple[StreamingSession, SpeechStreamConfig]:
    global _session, _config
    with _session_guard:
        if _session is None or _config is None:
            _config = SpeechStreamConfig()
            _session = create_session(_config)
        return _session, _config


def _current_session() -> StreamingSession:
    return _current()[0]


def use_session(session: StreamingSession | None, config: SpeechStreamConfig | None = None) -> None:
    """Replace the process-wide session together with the config it was built from.

    ``use_session(None)`` makes the next call build a fresh pair from the environment.
    """
    global _session, _config
    if session is not None and config is None:
        raise ValueError("use_session() needs the config the session was built from")
    with _session_guard:
        _session = session
        _config = config if session is not None else None


def _sentinel(operation: str) -> Callable[[Callable[..., None]], Callable[..., Bool]]:
    def decorator(func: Callable[..., None]) -> Callable[..., Bool]:
        @wraps(func)
        def wrapper(*args, **kwargs) -> Bool:
            try:
                func(*args, **kwargs)
            except SpeechStreamError as exc:
                EVENT_LOG.record(f"{operation} failed: {exc}")
                return Bool.FALSE
            except Exception as exc:
                logger.exception("%s crashed", operation)
                EVENT_LOG.record(f"{operation} failed: {exc}", logging.ERROR)
                return Bool.FALSE
            return Bool.TRUE

        return wrapper

    return decorator


@_sentinel("InitializeStream")
def initialize_stream(
    language: str,
    sample_rate: int,
    model: str = "",
    max_alternatives: int | None = None,
) -> None:
    """``max_alternatives=None`` falls back to ``SPEECH_STREAM_MAX_ALTERNATIVES``."""
    session, config = _current()
    options = StreamOptions.create(
        language=language,
        sample_rate=sample_rate,
        model=model,
        max_alternatives=config.max_alternatives if max_alternatives is None else max_alternatives,
    )
    session.initialize(options)


def initialize_stream_legacy(language: str, sample_rate: int) -> Bool:
    warnings.warn(
        "initialize_stream_legacy() is deprecated, use initialize_stream(language, sample_rate, model)",
        DeprecationWarning,
        stacklevel=2,
    )
    return initialize_stream(language, sample_rate, "")


@_sentinel("SendAudio")
def send_audio(samples: Sequence[int] | np.ndarray | None, sample_count: int) -> None:
    frame = AudioFrame.from_samples(samples, sample_count)
    _current_session().send_audio(frame)


def receive_transcript() -> str:
    try:
        return _current_session().receive_transcript()
    except Exception as exc:
        logger.exception("ReceiveTranscript crashed")
        EVENT_LOG.record(f"ReceiveTranscript failed: {exc}", logging.ERROR)
        return ""


@_sentinel("ReceiveTranscript")
def receive_transcript_into(output: TextOutput) -> None:
    output.value = _current_session().receive_transcript()


def get_log() -> str:
    return EVENT_LOG.get()


def is_initialized() -> Bool:
    try:
        return Bool(_current_session().is_initialized())
    except Exception:
        logger.exception("IsInitialized crashed")
        return Bool.FALSE


@_sentinel("CloseStream")
def close_stream() -> None:
    _current_session().close()

import logging
import threading
from collections.abc import Callable

from speech_stream.domain.audio import AudioFrame
from speech_stream.domain.state import SessionState, validate_transition
from speech_stream.errors import ConfigurationError, SpeechStreamError, StateError, TransportError
from speech_stream.event_log import EVENT_LOG, EventLog
from speech_stream.ports.transcription_channel import StreamOptions, TranscriptionChannel

logger = logging.getLogger(__name__)

DEFAULT_MAX_FRAME_SAMPLES = 480_000
DEFAULT_RECEIVER_JOIN_TIMEOUT_SECONDS = 2.0


class StreamingSession:
    """One streaming transcription context.

    Every public method takes ``_lock``, but never across network I/O:
    ``initialize`` marks the session OPENING and runs the handshake unlocked,
    and the receiver thread's blocking ``receive()`` runs unlocked too, taking
    the lock only to append a final segment. ``close`` during OPENING is a
    no-op, like any close of a session that is not ACTIVE.
    """

    def __init__(
        self,
        channel_factory: Callable[[], TranscriptionChannel],
        event_log: EventLog = EVENT_LOG,
        max_frame_samples: int = DEFAULT_MAX_FRAME_SAMPLES,
        receiver_join_timeout: float = DEFAULT_RECEIVER_JOIN_TIMEOUT_SECONDS,
    ) -> None:
        self._channel_factory = channel_factory
        self._event_log = event_log
        self._max_frame_samples = max_frame_samples
        self._receiver_join_timeout = receiver_join_timeout

        self._lock = threading.Lock()
        self._state = SessionState.UNINITIALIZED
        self._channel: TranscriptionChannel | None = None
        self._segments: list[str] = []
        self._stop_event = threading.Event()
        self._receiver: threading.Thread | None = None

    @property
    def state(self) -> SessionState:
        with self._lock:
            return self._state

    def _transition_to(self, target: SessionState) -> None:
        validate_transition(self._state, target)
        logger.info("Session: %s -> %s", self._state.name, target.name)
        self._state = target

    def initialize(self, options: StreamOptions) -> None:
        with self._lock:
            if self._state == SessionState.ACTIVE:
                raise ConfigurationError("Stream is already initialized")
            if self._state == SessionState.OPENING:
                raise ConfigurationError("Stream is already being initialized")
            previous = self._state
            self._transition_to(SessionState.OPENING)

        # the handshake runs unlocked; OPENING keeps a second initialize out
        try:
            channel = self._open_channel(options)
        except Exception:
            with self._lock:
                self._transition_to(previous)
            raise

        with self._lock:
            self._transition_to(SessionState.ACTIVE)
            self._channel = channel
            self._segments = []
            self._stop_event = threading.Event()
            self._receiver = threading.Thread(
                target=self._receive_loop,
                args=(channel, self._stop_event),
                name="transcript-receiver",
                daemon=True,
            )
            self._receiver.start()
        logger.info(
            "Stream initialized (language=%s, rate=%d, model=%s, alternatives=%d)",
            options.language, options.sample_rate, options.model.value, options.max_alternatives,
        )

    def _open_channel(self, options: StreamOptions) -> TranscriptionChannel:
        channel = None
        try:
            channel = self._channel_factory()
            channel.open(options)
        except Exception as exc:
            if channel is not None:
                self._close_channel(channel)
            if isinstance(exc, SpeechStreamError):
                raise
            raise TransportError(f"Could not open transcription channel: {exc}") from exc
        return channel

    @staticmethod
    def _close_channel(channel: TranscriptionChannel) -> None:
        try:
            channel.close()
        except Exception:
            logger.warning("Transcription channel did not close cleanly", exc_info=True)

    def send_audio(self, frame: AudioFrame) -> None:
        with self._lock:
            if self._state != SessionState.ACTIVE or self._channel is None:
                raise StateError("Stream is not initialized")
            if len(frame) > self._max_frame_samples:
                logger.warning(
                    "Dropping %d-sample frame, limit is %d", len(frame), self._max_frame_samples
                )
                raise ConfigurationError(
                    f"Audio frame of {len(frame)} samples exceeds the {self._max_frame_samples} sample limit"
                )
            try:
                self._channel.send_audio(frame.to_pcm_bytes())
            except TransportError:
                raise
            except Exception as exc:
                raise TransportError(f"Could not send audio: {exc}") from exc
            logger.debug("Queued %d samples", len(frame))

    def receive_transcript(self) -> str:
        with self._lock:
            text = "".join(self._segments)
            self._segments.clear()
            return text

    def is_initialized(self) -> bool:
        with self._lock:
            return self._state == SessionState.ACTIVE

    def close(self) -> None:
        with self._lock:
            if self._state != SessionState.ACTIVE:
                return
            self._stop_event.set()
            channel, self._channel = self._channel, None
            receiver, self._receiver = self._receiver, None
            if channel is not None:
                self._close_channel(channel)
            self._transition_to(SessionState.CLOSED)

        # joined unlocked: the receiver may be waiting on the lock to append
        if receiver is not None and receiver is not threading.current_thread():
            receiver.join(timeout=self._receiver_join_timeout)
            if receiver.is_alive():
                logger.warning("Receiver thread did not stop within %.1fs", self._receiver_join_timeout)
        logger.info("Stream closed")

    def _receive_loop(self, channel: TranscriptionChannel, stop_event: threading.Event) -> None:
        while not stop_event.is_set():
            try:
                event = channel.receive()
            except SpeechStreamError as exc:
                if not stop_event.is_set():
                    self._event_log.record(f"Cannot stream results: {exc}", logging.ERROR)
                return
            except Exception as exc:
                if not stop_event.is_set():
                    logger.exception("Receiver loop crashed")
                    self._event_log.record(f"Cannot stream results: {exc}", logging.ERROR)
                return

            if event is None:
                if not stop_event.is_set():
                    self._event_log.record(
                        "Cannot stream results: remote channel closed the stream", logging.ERROR
                    )
                return

            if not event.is_final:
                logger.debug("Partial transcript: %s", event.text)
                continue

            with self._lock:
                if stop_event.is_set():
                    return
                self._segments.append(event.text)
            logger.debug("Final transcript: %s", event.text)

import io
import queue
import threading
import time
import wave

import numpy as np
import pytest

from speech_stream import boundary
from speech_stream.config import SpeechStreamConfig
from speech_stream.domain.session import StreamingSession
from speech_stream.errors import TransportError
from speech_stream.event_log import EventLog
from speech_stream.ports.transcription_channel import StreamOptions, TranscriptEvent


SAMPLE_RATE = 16000
FRAME_DURATION_MS = 20
FRAME_SIZE = int(SAMPLE_RATE * FRAME_DURATION_MS / 1000)


def generate_silence(duration_ms: int = FRAME_DURATION_MS, sample_rate: int = SAMPLE_RATE) -> np.ndarray:
    num_samples = int(sample_rate * duration_ms / 1000)
    return np.zeros(num_samples, dtype=np.int16)


def generate_sine_wave(
    frequency: float = 440.0,
    duration_ms: int = FRAME_DURATION_MS,
    amplitude: float = 0.8,
    sample_rate: int = SAMPLE_RATE,
) -> np.ndarray:
    num_samples = int(sample_rate * duration_ms / 1000)
    t = np.arange(num_samples) / sample_rate
    signal = np.sin(2 * np.pi * frequency * t) * amplitude
    return (signal * 32767).astype(np.int16)


def pcm_to_wav_bytes(samples: np.ndarray, sample_rate: int = SAMPLE_RATE) -> bytes:
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wf:
        wf.setnchannels(1)
        wf.setsampwidth(2)
        wf.setframerate(sample_rate)
        wf.writeframes(samples.astype("<i2").tobytes())
    return buffer.getvalue()


def wait_until(predicate, timeout: float = 2.0, interval: float = 0.01) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


def drain_until(receive, expected: str, timeout: float = 2.0) -> str:
    collected = []

    def done() -> bool:
        collected.append(receive())
        return "".join(collected) == expected

    wait_until(done, timeout=timeout)
    return "".join(collected)


class FakeChannel:
    def __init__(
        self,
        open_error: Exception | None = None,
        send_error: Exception | None = None,
        open_delay: float = 0.0,
    ) -> None:
        self._events: queue.Queue[TranscriptEvent | Exception | None] = queue.Queue()
        self._open_error = open_error
        self._send_error = send_error
        self._open_delay = open_delay
        self._lock = threading.Lock()
        self.options: StreamOptions | None = None
        self.opened = False
        self.closed = False
        self.audio_received: list[bytes] = []

    def open(self, options: StreamOptions) -> None:
        if self._open_delay:
            time.sleep(self._open_delay)
        if self._open_error:
            raise self._open_error
        self.options = options
        self.opened = True

    def send_audio(self, pcm: bytes) -> None:
        if self.closed:
            raise TransportError("channel is closed")
        if self._send_error:
            raise self._send_error
        with self._lock:
            self.audio_received.append(pcm)

    def receive(self) -> TranscriptEvent | None:
        item = self._events.get()
        if isinstance(item, Exception):
            raise item
        return item

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._events.put(None)

    def emit_final(self, text: str) -> None:
        self._events.put(TranscriptEvent(text=text, is_final=True))

    def emit_partial(self, text: str) -> None:
        self._events.put(TranscriptEvent(text=text, is_final=False))

    def emit_error(self, error: Exception) -> None:
        self._events.put(error)

    def emit_end(self) -> None:
        self._events.put(None)


class FakeChannelFactory:
    def __init__(self, **channel_kwargs) -> None:
        self._channel_kwargs = channel_kwargs
        self.channels: list[FakeChannel] = []

    def __call__(self) -> FakeChannel:
        channel = FakeChannel(**self._channel_kwargs)
        self.channels.append(channel)
        return channel

    @property
    def last(self) -> FakeChannel:
        return self.channels[-1]


@pytest.fixture
def event_log():
    return EventLog()


@pytest.fixture
def channel_factory():
    return FakeChannelFactory()


@pytest.fixture
def session(channel_factory, event_log):
    stream = StreamingSession(
        channel_factory=channel_factory,
        event_log=event_log,
        receiver_join_timeout=1.0,
    )
    yield stream
    stream.close()


@pytest.fixture
def options():
    return StreamOptions.create("en-US", SAMPLE_RATE, "default")


@pytest.fixture
def speech_frame():
    return generate_sine_wave()


@pytest.fixture
def boundary_session(channel_factory, event_log, monkeypatch):
    monkeypatch.setattr(boundary, "EVENT_LOG", event_log)
    stream = StreamingSession(channel_factory=channel_factory, event_log=event_log, receiver_join_timeout=1.0)
    boundary.use_session(stream, SpeechStreamConfig())
    yield stream
    stream.close()
    boundary.use_session(None)

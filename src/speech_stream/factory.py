import logging

from speech_stream.config import SpeechStreamConfig
from speech_stream.domain.session import StreamingSession
from speech_stream.event_log import EVENT_LOG, EventLog
from speech_stream.ports.transcription_channel import TranscriptionChannel

logger = logging.getLogger(__name__)


def create_channel(config: SpeechStreamConfig) -> TranscriptionChannel:
    from speech_stream.adapters.deepgram_channel import DeepgramStreamingChannel

    api_key = config.read_secret(config.deepgram_api_key_file)
    if not api_key:
        logger.warning("No Deepgram API key found (SPEECH_STREAM_DEEPGRAM_API_KEY_FILE)")
    return DeepgramStreamingChannel(
        api_key=api_key,
        chunk_bytes=config.chunk_bytes,
        outbound_queue_size=config.outbound_queue_size,
        connect_timeout=config.connect_timeout_seconds,
        close_timeout=config.close_timeout_seconds,
    )


def create_session(
    config: SpeechStreamConfig,
    event_log: EventLog = EVENT_LOG,
) -> StreamingSession:
    return StreamingSession(
        channel_factory=lambda: create_channel(config),
        event_log=event_log,
        max_frame_samples=config.max_frame_samples,
        receiver_join_timeout=config.receiver_join_timeout_seconds,
    )

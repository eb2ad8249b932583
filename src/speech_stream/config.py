from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class SpeechStreamConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="SPEECH_STREAM_")

    language: str = "en-US"
    model: Literal["video", "phone_call", "command_and_search", "default"] = "default"
    max_alternatives: int = 1

    deepgram_api_key_file: str = ""

    chunk_bytes: int = 1024
    outbound_queue_size: int = 256
    max_frame_samples: int = 480_000

    connect_timeout_seconds: float = 10.0
    close_timeout_seconds: float = 2.0
    receiver_join_timeout_seconds: float = 2.0

    def read_secret(self, path: str) -> str:
        if not path:
            return ""
        try:
            with open(path) as f:
                return f.read().strip()
        except FileNotFoundError:
            return ""

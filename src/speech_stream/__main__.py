import argparse
import sys
import time
import wave
from pathlib import Path

import numpy as np

from speech_stream import boundary
from speech_stream.config import SpeechStreamConfig
from speech_stream.log_format import configure_logging

TRAILING_WAIT_SECONDS = 2.0
POLL_INTERVAL_SECONDS = 0.1


class StreamFailed(Exception):
    pass


def read_wav_frames(path: Path, frame_ms: int) -> tuple[int, list[np.ndarray]]:
    with wave.open(str(path), "rb") as wf:
        if wf.getsampwidth() != 2:
            raise ValueError(f"Expected 16-bit PCM, got {wf.getsampwidth() * 8}-bit")
        if wf.getnchannels() != 1:
            raise ValueError(f"Expected mono, got {wf.getnchannels()} channels")
        sample_rate = wf.getframerate()
        samples = np.frombuffer(wf.readframes(wf.getnframes()), dtype="<i2")

    frame_size = max(int(sample_rate * frame_ms / 1000), 1)
    frames = [samples[i : i + frame_size] for i in range(0, len(samples), frame_size)]
    return sample_rate, frames


def stream_file(
    path: Path,
    language: str,
    model: str,
    frame_ms: int,
    realtime: bool = True,
    trailing_wait: float = TRAILING_WAIT_SECONDS,
    max_alternatives: int | None = None,
) -> str:
    sample_rate, frames = read_wav_frames(path, frame_ms)

    if not boundary.initialize_stream(language, sample_rate, model, max_alternatives):
        raise StreamFailed(boundary.get_log())

    pieces: list[str] = []
    try:
        for frame in frames:
            if not boundary.send_audio(frame, len(frame)):
                raise StreamFailed(boundary.get_log())
            _collect(pieces)
            if realtime:
                time.sleep(frame_ms / 1000)

        deadline = time.monotonic() + trailing_wait
        while time.monotonic() < deadline:
            _collect(pieces)
            time.sleep(POLL_INTERVAL_SECONDS)
    finally:
        if not boundary.close_stream():
            print(f"Close failed: {boundary.get_log()}", file=sys.stderr)

    _collect(pieces)
    return "".join(pieces)


def _collect(pieces: list[str]) -> None:
    text = boundary.receive_transcript()
    if text:
        print(text, flush=True)
        pieces.append(text)


def main(argv: list[str] | None = None) -> None:
    config = SpeechStreamConfig()

    parser = argparse.ArgumentParser(description="Streaming speech transcription")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    transcribe_parser = subparsers.add_parser("transcribe", help="Stream a 16-bit mono WAV file")
    transcribe_parser.add_argument("file", type=Path, help="WAV file to transcribe")
    transcribe_parser.add_argument("--language", default=config.language, help="BCP-47 language tag")
    transcribe_parser.add_argument(
        "--model",
        default=config.model,
        choices=["video", "phone_call", "command_and_search", "default"],
        help="Transcription model",
    )
    transcribe_parser.add_argument(
        "--alternatives", type=int, default=None, help="Alternatives per result, joined with ';'"
    )
    transcribe_parser.add_argument("--frame-ms", type=int, default=100, help="Audio frame size in ms")
    transcribe_parser.add_argument(
        "--no-realtime", action="store_true", help="Send frames as fast as possible"
    )

    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    try:
        stream_file(
            args.file,
            language=args.language,
            model=args.model,
            frame_ms=args.frame_ms,
            realtime=not args.no_realtime,
            max_alternatives=args.alternatives,
        )
    except (OSError, ValueError, wave.Error) as exc:
        print(f"Cannot read {args.file}: {exc}", file=sys.stderr)
        sys.exit(1)
    except StreamFailed as exc:
        print(f"Transcription failed: {exc}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()

from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np

from speech_stream.errors import ConfigurationError

INT16_INFO = np.iinfo(np.int16)


@dataclass(frozen=True)
class AudioFrame:
    samples: np.ndarray

    @classmethod
    def from_samples(cls, samples: Sequence[int] | np.ndarray | None, sample_count: int) -> "AudioFrame":
        if samples is None:
            raise ConfigurationError("Audio frame is missing")
        if sample_count <= 0:
            raise ConfigurationError(f"Audio frame length must be positive, got {sample_count}")
        try:
            array = np.asarray(samples).reshape(-1)
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"Audio frame is not 16-bit PCM: {exc}") from exc
        if array.dtype.kind not in "iu":
            raise ConfigurationError(f"Audio frame is not 16-bit PCM: got {array.dtype} samples")
        if sample_count > array.size:
            raise ConfigurationError(
                f"Audio frame length {sample_count} exceeds the {array.size} samples supplied"
            )
        window = array[:sample_count]
        if window.min() < INT16_INFO.min or window.max() > INT16_INFO.max:
            raise ConfigurationError(
                f"Audio frame has samples outside the 16-bit range [{INT16_INFO.min}, {INT16_INFO.max}]"
            )
        # astype copies, so the caller can reuse its buffer as soon as we return
        return cls(samples=window.astype(np.int16))

    def __len__(self) -> int:
        return int(self.samples.size)

    def to_pcm_bytes(self) -> bytes:
        return self.samples.astype("<i2").tobytes()

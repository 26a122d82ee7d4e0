"""
Audio source helpers.

Responsibilities:
- Recognize WAV content and read its format metadata
- Read an audio file into WAV bytes, transcoding non-WAV input to
  16 kHz mono PCM16

Non-responsibilities:
- No segmentation (audio.segmenter)
- No network I/O
"""

from __future__ import annotations

import io
import wave
from dataclasses import dataclass
from pathlib import Path

import numpy as np
import soundfile as sf

from errors import AudioSourceError
from spec import TARGET_CHANNELS, TARGET_SAMPLE_RATE_HZ


@dataclass(frozen=True)
class WavInfo:
    channels: int
    sample_width_bytes: int
    frame_rate: int
    n_frames: int

    @property
    def duration_s(self) -> float:
        if self.frame_rate <= 0:
            return 0.0
        return self.n_frames / self.frame_rate


def is_wav(content: bytes) -> bool:
    """True if `content` starts with a RIFF/WAVE header."""
    return len(content) >= 12 and content[:4] == b"RIFF" and content[8:12] == b"WAVE"


def read_wav_info(content: bytes) -> WavInfo:
    """
    Read channel count, sample width and frame rate from WAV bytes.

    Raises:
        AudioSourceError if the bytes are not a readable PCM WAV.
    """
    try:
        with wave.open(io.BytesIO(content), "rb") as wf:
            return WavInfo(
                channels=wf.getnchannels(),
                sample_width_bytes=wf.getsampwidth(),
                frame_rate=wf.getframerate(),
                n_frames=wf.getnframes(),
            )
    except (wave.Error, EOFError) as e:
        raise AudioSourceError(f"failed to read wav info: {e}") from e


# =============================================================================
# Transcoding
# =============================================================================

def _to_mono(audio: np.ndarray) -> np.ndarray:
    if audio.ndim == 1:
        return audio
    return audio.mean(axis=1)


def _resample_linear(audio: np.ndarray, src_rate: int, dst_rate: int) -> np.ndarray:
    """
    Linear-interpolation resample. Adequate for speech at 16 kHz.
    """
    if src_rate == dst_rate or audio.size == 0:
        return audio
    n_out = int(round(audio.size * dst_rate / src_rate))
    src_t = np.arange(audio.size, dtype=np.float64) / src_rate
    dst_t = np.arange(n_out, dtype=np.float64) / dst_rate
    return np.interp(dst_t, src_t, audio).astype(np.float32)


def transcode_to_wav(
    path: str | Path,
    *,
    sample_rate_hz: int = TARGET_SAMPLE_RATE_HZ,
) -> bytes:
    """
    Decode any libsndfile-readable file (FLAC, OGG, ...) into PCM16 mono WAV bytes.
    """
    try:
        audio, rate = sf.read(str(path), dtype="float32", always_2d=False)
    except (RuntimeError, OSError) as e:
        raise AudioSourceError(f"convert wav err: {e}") from e

    audio = _resample_linear(_to_mono(np.asarray(audio)), int(rate), sample_rate_hz)
    audio = np.clip(audio, -1.0, 1.0)

    buf = io.BytesIO()
    sf.write(buf, audio, sample_rate_hz, format="WAV", subtype="PCM_16")
    return buf.getvalue()


def read_audio_data(path: str | Path) -> bytes:
    """
    Return WAV bytes for `path`.

    WAV files are returned unchanged; anything else is transcoded to
    TARGET_SAMPLE_RATE_HZ mono PCM16.

    Raises:
        AudioSourceError on read or transcode failure.
    """
    try:
        content = Path(path).read_bytes()
    except OSError as e:
        raise AudioSourceError(f"failed to read file {path}: {e}") from e

    if is_wav(content):
        return content

    wav_bytes = transcode_to_wav(path)
    info = read_wav_info(wav_bytes)
    if info.channels != TARGET_CHANNELS:
        raise AudioSourceError(f"transcoded audio has {info.channels} channels")
    return wav_bytes

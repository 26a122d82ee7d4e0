# tools/wav_info.py
"""Print WAV metadata and the segment plan for a file."""
import sys

from audio.segmenter import compute_segment_size, segment_count
from audio.wav import read_audio_data, read_wav_info
from spec import DEFAULT_SEGMENT_DURATION_MS

path = sys.argv[1] if len(sys.argv) > 1 else "hello.wav"
content = read_audio_data(path)
info = read_wav_info(content)
segment_size = compute_segment_size(
    info.channels, info.sample_width_bytes, info.frame_rate, DEFAULT_SEGMENT_DURATION_MS
)

print("sample_rate:", info.frame_rate)
print("channels:", info.channels)
print("sample_width_bytes:", info.sample_width_bytes)
print("duration_s:", round(info.duration_s, 3))
print("segment_size:", segment_size)
print("segments:", segment_count(len(content), segment_size))

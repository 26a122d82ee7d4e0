"""
Batch transcription of audio files.

Responsibilities:
- Find source files that do not have an output yet
- Run one streaming session per file with bounded concurrency
- Write the transcript (and, in realtime mode, the stream log) next to
  the source file

Non-responsibilities:
- No argument parsing (tools/transcribe.py)
- No scoring or evaluation of transcripts
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from config import AsrConfig
from errors import AsrSessionError
from observability.logger import log_event
from session.asr_session import StreamingAsrSession
from session.response_channel import ResponseChannel
from session.transcript import TranscriptAccumulator
from spec import (
    BATCH_DEFAULT_CONCURRENCY,
    BATCH_MAX_CONCURRENCY,
    BATCH_SOURCE_SUFFIX,
    STREAM_FILE_SUFFIX,
)


SessionFactory = Callable[[AsrConfig], StreamingAsrSession]


@dataclass(frozen=True)
class FileResult:
    path: Path
    output_path: Optional[Path]
    transcript: str
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None and bool(self.transcript)


def output_path_for(source: Path, ext: str) -> Path:
    """a/b/c.flac + ".volc2" -> a/b/c.volc2"""
    return source.with_suffix(ext)


def find_unprocessed_files(
    root: str | Path,
    ext: str,
    *,
    limit: int = 0,
    suffix: str = BATCH_SOURCE_SUFFIX,
) -> list[Path]:
    """
    Sorted source files under `root` whose `ext` output does not exist yet.

    limit <= 0 means no limit.
    """
    files = sorted(
        path for path in Path(root).rglob(f"*{suffix}")
        if path.is_file() and not output_path_for(path, ext).exists()
    )
    if limit > 0:
        files = files[:limit]
    return files


def clamp_concurrency(concurrency: int) -> int:
    return max(1, min(concurrency, BATCH_MAX_CONCURRENCY))


async def transcribe_file(
    session: StreamingAsrSession,
    path: Path,
    *,
    ext: str,
    realtime: bool,
) -> FileResult:
    """
    Stream one file and write its transcript.

    Session errors are reported in the result rather than raised, so one
    bad file does not stop a batch.
    """
    channel = ResponseChannel()
    accumulator = TranscriptAccumulator(realtime=realtime)
    stream_lines: list[str] = []

    async def consume() -> None:
        async for response in channel:
            for entry in accumulator.feed(response):
                stream_lines.append(entry.to_json())

    consumer = asyncio.create_task(consume())
    error: Optional[str] = None
    try:
        await session.execute(path, channel)
    except AsrSessionError as e:
        error = str(e)
    finally:
        await consumer

    if realtime and stream_lines:
        stream_path = Path(str(output_path_for(path, ext)) + STREAM_FILE_SUFFIX)
        stream_path.write_text("\n".join(stream_lines) + "\n", encoding="utf-8")

    if error is None and accumulator.error is not None:
        error = accumulator.error

    transcript = accumulator.text
    output_path: Optional[Path] = None
    if transcript:
        output_path = output_path_for(path, ext)
        output_path.write_text(transcript, encoding="utf-8")

    log_event({
        "event_type": "ASR_FILE_DONE",
        "session_id": session.session_id,
        "path": str(path),
        "output": str(output_path) if output_path else None,
        "chars": len(transcript),
        "error": error,
    })
    return FileResult(path=path, output_path=output_path, transcript=transcript, error=error)


async def run_batch(
    files: list[Path],
    config: AsrConfig,
    *,
    ext: str,
    concurrency: int = BATCH_DEFAULT_CONCURRENCY,
    session_factory: SessionFactory = StreamingAsrSession,
) -> list[FileResult]:
    """
    Transcribe `files` with at most `concurrency` sessions in flight.

    Each worker owns one session and reuses it for its files sequentially.
    Results come back in input order.
    """
    workers = min(clamp_concurrency(concurrency), max(len(files), 1))
    queue: asyncio.Queue[tuple[int, Path]] = asyncio.Queue()
    for item in enumerate(files):
        queue.put_nowait(item)

    results: list[Optional[FileResult]] = [None] * len(files)

    async def worker() -> None:
        session = session_factory(config)
        while True:
            try:
                index, path = queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            results[index] = await transcribe_file(
                session, path, ext=ext, realtime=config.realtime,
            )

    log_event({
        "event_type": "ASR_BATCH_START",
        "files": len(files),
        "workers": workers,
    })
    await asyncio.gather(*(worker() for _ in range(workers)))
    return [r for r in results if r is not None]

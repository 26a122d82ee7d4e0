# tools/transcribe.py
"""
Transcribe audio files with the streaming ASR service.

    python tools/transcribe.py a.flac b.wav
    python tools/transcribe.py --batch data/ --limit 20 --realtime
"""
from __future__ import annotations

import argparse
import asyncio
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

from config import AsrConfig, Credentials
from errors import ConfigurationError
from session.batch import clamp_concurrency, find_unprocessed_files, run_batch
from spec import (
    BATCH_DEFAULT_CONCURRENCY,
    BATCH_DEFAULT_OUTPUT_EXT,
    DEFAULT_MODEL_VERSION,
    DEFAULT_SEGMENT_DURATION_MS,
    MODEL_RESOURCE_IDS,
)


def _read_context(value: str) -> str:
    """--context accepts a file path or a raw string."""
    if not value:
        return ""
    path = Path(value)
    if path.is_file():
        return path.read_text(encoding="utf-8")
    return value


async def main() -> int:
    ap = argparse.ArgumentParser()
    ap.add_argument("files", nargs="*", help="Audio files to transcribe")
    ap.add_argument("--context", default="", help="Path to context JSON file or raw JSON string")
    ap.add_argument("--ext", default=BATCH_DEFAULT_OUTPUT_EXT, help="Output file extension")
    ap.add_argument("--concurrency", type=int, default=BATCH_DEFAULT_CONCURRENCY,
                    help="Number of concurrent sessions (max 50)")
    ap.add_argument("--model", default=DEFAULT_MODEL_VERSION, choices=sorted(MODEL_RESOURCE_IDS),
                    help="Model version")
    ap.add_argument("--limit", type=int, default=0, help="Limit number of files (0 = no limit)")
    ap.add_argument("--batch", default="", help="Directory to scan for unprocessed .flac files")
    ap.add_argument("--realtime", action="store_true",
                    help="Use the realtime streaming endpoint instead of nostream")
    ap.add_argument("--segment-ms", type=int, default=DEFAULT_SEGMENT_DURATION_MS,
                    help="Audio segment duration in milliseconds")
    args = ap.parse_args()

    load_dotenv()

    app_key = os.environ.get("VOLC_APPID", "")
    access_key = os.environ.get("VOLC_TOKEN", "")
    if not app_key or not access_key:
        print("Please set VOLC_APPID and VOLC_TOKEN (environment or .env)", file=sys.stderr)
        return 2

    config = AsrConfig.for_mode(
        realtime=args.realtime,
        credentials=Credentials(app_key=app_key, access_key=access_key),
        model_version=args.model,
        url=os.environ.get("VOLC_URL") or None,
        segment_duration_ms=args.segment_ms,
        context=_read_context(args.context),
    )
    try:
        config.validate()
    except ConfigurationError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2

    if args.batch:
        files = find_unprocessed_files(args.batch, args.ext, limit=args.limit)
        if not files:
            print("No unprocessed files found")
            return 0
    elif args.files:
        files = [Path(f) for f in args.files]
    else:
        ap.print_usage(sys.stderr)
        print("Please specify files as arguments or use --batch <directory>", file=sys.stderr)
        return 2

    concurrency = clamp_concurrency(args.concurrency)
    print(f"Processing {len(files)} files with {concurrency} concurrent sessions", file=sys.stderr)

    results = await run_batch(files, config, ext=args.ext, concurrency=concurrency)

    failed = 0
    for result in results:
        if result.error is not None:
            failed += 1
            print(f"Failed to process {result.path}: {result.error}", file=sys.stderr)
        elif result.output_path is not None:
            print(f"Saved result to {result.output_path}", file=sys.stderr)
        else:
            print(f"No transcript received for {result.path}", file=sys.stderr)

    return 1 if failed else 0


if __name__ == "__main__":
    raise SystemExit(asyncio.run(main()))

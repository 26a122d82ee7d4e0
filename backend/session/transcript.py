"""
Transcript assembly from a stream of AsrResponse.

Two server modes:
- full   (whole-file): every response carries the cumulative text; the
  latest non-empty text is the transcript.
- single (realtime):  responses carry the current utterances; definite
  utterances are appended once, the rest is partial text.

Realtime mode also produces StreamEntry records (one JSONL line each) that
capture when finalized and partial text appeared.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from typing import Optional

from protocol.messages import AsrResponse


@dataclass(frozen=True)
class StreamEntry:
    """
    t: milliseconds since the accumulator was created
    f: True for finalized text, False for partial
    s: the text
    """
    t: int
    f: bool
    s: str

    def to_json(self) -> str:
        record: dict[str, object] = {"t": self.t}
        if self.f:
            record["f"] = True
        record["s"] = self.s
        return json.dumps(record, ensure_ascii=False)


class TranscriptAccumulator:
    """Fold responses into a final transcript."""

    def __init__(self, *, realtime: bool, start_monotonic: Optional[float] = None) -> None:
        self._realtime = realtime
        self._start = time.monotonic() if start_monotonic is None else start_monotonic
        self._full_text = ""
        self._final_parts: list[str] = []
        self.error: Optional[str] = None

    @property
    def text(self) -> str:
        if self._realtime:
            return "".join(self._final_parts)
        return self._full_text

    def _elapsed_ms(self) -> int:
        return int((time.monotonic() - self._start) * 1000)

    def feed(self, response: AsrResponse) -> list[StreamEntry]:
        """
        Apply one response. Returns the stream entries it produced (realtime only).

        Error responses are recorded in .error and otherwise ignored.
        """
        if response.code != 0:
            self.error = response.error or f"code {response.code}"
            return []
        if not response.text:
            return []

        if not self._realtime:
            self._full_text = response.text
            return []

        entries: list[StreamEntry] = []
        partial: list[str] = []
        for utterance in response.result.utterances:
            if utterance.definite:
                if utterance.text:
                    self._final_parts.append(utterance.text)
                    entries.append(StreamEntry(t=self._elapsed_ms(), f=True, s=utterance.text))
            else:
                partial.append(utterance.text)

        partial_text = "".join(partial)
        if partial_text:
            entries.append(StreamEntry(t=self._elapsed_ms(), f=False, s=partial_text))
        return entries

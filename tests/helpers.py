from __future__ import annotations

import asyncio
import threading
from pathlib import Path
from typing import Any, List, Optional, Tuple

from pdf_parser.parsing import ParsingEngine


class ScriptedEngine(ParsingEngine):
    """Replays a fixed list of engine events: ("data", payload), ("error", detail) or ("raise", exc)."""

    engine_version = "scripted"

    def __init__(self, events: List[Tuple[str, Any]], need_raw_text: bool = False):
        super().__init__(need_raw_text=need_raw_text)
        self.events = events
        self.calls: List[Tuple[bytes, Optional[str]]] = []
        self.destroyed = False

    async def parse_data(self, buffer, password, sink):
        self.calls.append((buffer, password))
        for kind, value in self.events:
            await asyncio.sleep(0)
            if kind == "data":
                sink.on_parse_data(value)
            elif kind == "error":
                sink.on_parse_error(value)
            elif kind == "raise":
                raise value

    def destroy(self):
        super().destroy()
        self.destroyed = True


def done_engine(*payloads) -> ScriptedEngine:
    return ScriptedEngine([("data", p) for p in payloads] + [("data", None)])


class CountingReader:
    def __init__(self, error: Optional[OSError] = None):
        self.error = error
        self.calls: List[str] = []
        self._lock = threading.Lock()

    def __call__(self, path: str) -> bytes:
        with self._lock:
            self.calls.append(path)
        if self.error is not None:
            raise self.error
        return Path(path).read_bytes()


class RecordingContext:
    def __init__(self):
        self.destroy_calls = 0

    def destroy(self):
        self.destroy_calls += 1

"""Append-only console buffer with a polling cursor."""

from __future__ import annotations

import threading
from collections.abc import Callable

from contao_manager.task.models import ConsoleChunk, ConsoleRead


class ConsoleOutput:
    """Collect output chunks in write order.

    Readers poll with the cursor returned by the previous ``read`` and receive
    only chunks appended since then. Writers never wait for readers beyond the
    short critical section that appends one chunk.
    """

    def __init__(self, sink: Callable[[str], object] | None = None) -> None:
        self._chunks: list[ConsoleChunk] = []
        self._lock = threading.Lock()
        self._sink = sink

    def write(self, text: str) -> None:
        if not text:
            return
        with self._lock:
            self._chunks.append(ConsoleChunk(seq=len(self._chunks) + 1, text=text))
            if self._sink is not None:
                self._sink(text)

    def writeln(self, text: str = "") -> None:
        self.write(f"{text}\n")

    def read(self, offset: int = 0) -> ConsoleRead:
        if offset < 0:
            raise ValueError("Console offset must be >= 0.")
        with self._lock:
            chunks = tuple(self._chunks[offset:])
        cursor = chunks[-1].seq if chunks else offset
        return ConsoleRead(chunks=chunks, cursor=cursor)

    def __len__(self) -> int:
        with self._lock:
            return len(self._chunks)

    def __str__(self) -> str:
        return self.read().text

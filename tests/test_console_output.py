from __future__ import annotations

import threading

import allure
import pytest

from contao_manager.task.console import ConsoleOutput

pytestmark = [
    allure.epic("Task Runtime"),
    allure.feature("Console Feed"),
]


def test_read_returns_chunks_after_cursor() -> None:
    console = ConsoleOutput()
    console.writeln("first")
    console.write("second")

    initial = console.read()
    assert initial.text == "first\nsecond"
    assert initial.cursor == 2

    console.writeln(" line")
    follow_up = console.read(initial.cursor)
    assert follow_up.text == " line\n"
    assert follow_up.cursor == 3

    idle = console.read(follow_up.cursor)
    assert idle.chunks == ()
    assert idle.cursor == 3


def test_empty_writes_are_ignored_and_sink_sees_every_chunk() -> None:
    received: list[str] = []
    console = ConsoleOutput(sink=received.append)

    console.write("")
    console.writeln("x")

    assert len(console) == 1
    assert received == ["x\n"]
    assert str(console) == "x\n"


def test_negative_offset_is_rejected() -> None:
    with pytest.raises(ValueError, match="offset"):
        ConsoleOutput().read(-1)


def test_concurrent_writers_keep_sequence_dense() -> None:
    console = ConsoleOutput()

    def _writer(prefix: str) -> None:
        for index in range(50):
            console.writeln(f"{prefix}{index}")

    threads = [threading.Thread(target=_writer, args=(name,)) for name in ("a", "b", "c")]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    feed = console.read()
    assert [chunk.seq for chunk in feed.chunks] == list(range(1, 151))
    assert feed.cursor == 150

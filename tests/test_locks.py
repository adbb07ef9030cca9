from __future__ import annotations

import threading
import time

import pytest

from revstore.utils.locks import RWLock


def test_readers_share_the_lock() -> None:
    lock = RWLock()
    inside = threading.Barrier(3, timeout=2)

    def reader() -> None:
        with lock.read():
            inside.wait()

    threads = [threading.Thread(target=reader) for _ in range(3)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=5)

    assert not any(thread.is_alive() for thread in threads)


def test_writer_excludes_readers() -> None:
    lock = RWLock()
    events: list[str] = []

    lock.acquire_write()

    def reader() -> None:
        with lock.read():
            events.append("read")

    thread = threading.Thread(target=reader)
    thread.start()
    time.sleep(0.05)
    events.append("write-done")
    lock.release_write()
    thread.join(timeout=5)

    assert events == ["write-done", "read"]


def test_waiting_writer_blocks_new_readers() -> None:
    lock = RWLock()
    events: list[str] = []
    lock.acquire_read()

    def writer() -> None:
        with lock.write():
            events.append("write")

    def late_reader() -> None:
        with lock.read():
            events.append("read")

    writer_thread = threading.Thread(target=writer)
    writer_thread.start()
    time.sleep(0.05)
    reader_thread = threading.Thread(target=late_reader)
    reader_thread.start()
    time.sleep(0.05)

    assert events == []
    lock.release_read()
    writer_thread.join(timeout=5)
    reader_thread.join(timeout=5)

    assert events == ["write", "read"]


def test_unbalanced_release_raises() -> None:
    lock = RWLock()
    with pytest.raises(RuntimeError):
        lock.release_read()
    with pytest.raises(RuntimeError):
        lock.release_write()

"""Shared pytest fixtures for process supervision checks."""

from __future__ import annotations

import os
import select
import signal
import sys
import time
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

import pytest

from tether.lib.exec.process import Process
from tether.lib.exec.status import ProcessStatus

if TYPE_CHECKING:
    from collections.abc import Callable

PACKAGE_ROOT = Path(__file__).resolve().parents[1]


def _empty_chunks() -> list[bytes]:
    return []


@dataclass(slots=True)
class RecordingTarget:
    """Notification target that records everything it receives."""

    stdout_chunks: list[bytes] = field(default_factory=_empty_chunks)
    stderr_chunks: list[bytes] = field(default_factory=_empty_chunks)
    exit_status: ProcessStatus | None = None

    def on_read_stdout(self, data: bytes) -> None:
        self.stdout_chunks.append(data)

    def on_read_stderr(self, data: bytes) -> None:
        self.stderr_chunks.append(data)

    def on_exit(self, status: ProcessStatus) -> None:
        self.exit_status = status

    @property
    def stdout(self) -> bytes:
        return b"".join(self.stdout_chunks)

    @property
    def stderr(self) -> bytes:
        return b"".join(self.stderr_chunks)


def drain_ready_streams(
    process: Process,
    target: RecordingTarget,
    *,
    timeout: float = 10.0,
) -> None:
    """Read stdout/stderr only when select() reports them readable, until both EOF."""

    assert process.stdout is not None
    assert process.stderr is not None
    open_streams = {
        process.stdout.fileno(): target.on_read_stdout,
        process.stderr.fileno(): target.on_read_stderr,
    }
    deadline = time.monotonic() + timeout
    while open_streams:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise TimeoutError("child streams did not reach EOF in time")
        ready, _, _ = select.select(list(open_streams), [], [], remaining)
        for fd in ready:
            chunk = os.read(fd, 4096)
            if not chunk:
                del open_streams[fd]
                continue
            open_streams[fd](chunk)


@pytest.fixture
def package_root() -> Path:
    return PACKAGE_ROOT


@pytest.fixture
def mock_child(package_root: Path) -> Callable[..., list[str]]:
    def _command(*args: str) -> list[str]:
        return [sys.executable, str(package_root / "tests" / "mock_child.py"), *args]

    return _command


@pytest.fixture
def target() -> RecordingTarget:
    return RecordingTarget()


@pytest.fixture
def make_target() -> Callable[[], RecordingTarget]:
    return RecordingTarget


@pytest.fixture
def drain_streams() -> Callable[..., None]:
    return drain_ready_streams


@pytest.fixture
def run_to_exit() -> Callable[[Process, RecordingTarget], ProcessStatus]:
    """Drain both streams by readiness, then reap the child."""

    def _run(process: Process, target: RecordingTarget) -> ProcessStatus:
        drain_ready_streams(process, target)
        status = process.wait_for_exit_status()
        assert status is not None
        return status

    return _run


@pytest.fixture
def processes() -> Iterator[list[Process]]:
    """Track spawned processes and make sure none outlive the test."""

    spawned: list[Process] = []
    yield spawned
    for process in spawned:
        if process.pid is not None and process.alive():
            try:
                os.kill(process.pid, signal.SIGKILL)
            except ProcessLookupError:
                pass
            process.wait_for_exit_status()
        process.close()

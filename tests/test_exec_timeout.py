"""Signal escalation and timeout tests."""

from __future__ import annotations

import asyncio
import signal
import time
from pathlib import Path
from typing import TYPE_CHECKING

import pytest

from tether.lib.exec.options import SpawnOptions
from tether.lib.exec.process import Process
from tether.lib.exec.target import ProcessTarget
from tether.lib.exec.timeout import (
    ProcessTimeoutError,
    interrupt_process,
    send_signal,
    terminate_process,
    wait_for_process_exit,
)

if TYPE_CHECKING:
    from collections.abc import Callable


def _wait_for_file(path: Path, timeout: float = 10.0) -> None:
    deadline = time.monotonic() + timeout
    while not path.exists():
        if time.monotonic() > deadline:
            raise TimeoutError(f"{path} was never created")
        time.sleep(0.02)


def _spawn_ready(
    processes: list[Process],
    command: list[str],
    marker: Path,
    target: ProcessTarget,
    options: SpawnOptions | None = None,
) -> Process:
    process = Process(options).spawn(command, target)
    processes.append(process)
    _wait_for_file(marker)
    return process


def test_interrupt_stops_at_first_effective_signal(
    processes: list[Process],
    tmp_path: Path,
    target,
    mock_child: Callable[..., list[str]],
) -> None:
    marker = tmp_path / "ready"
    process = _spawn_ready(
        processes,
        mock_child("--hang", "--ready-file", str(marker)),
        marker,
        target,
    )

    status = interrupt_process(process, grace_seconds=5.0, poll_interval=0.02)

    assert status is not None
    assert status.exit_code == 130
    assert status.signaled is False


def test_interrupt_escalates_to_kill_when_signals_are_ignored(
    processes: list[Process],
    tmp_path: Path,
    target,
    mock_child: Callable[..., list[str]],
) -> None:
    marker = tmp_path / "ready"
    process = _spawn_ready(
        processes,
        mock_child("--hang", "--ignore", "INT", "--ignore", "TERM", "--ready-file", str(marker)),
        marker,
        target,
    )

    started = time.monotonic()
    status = interrupt_process(process, grace_seconds=0.2, poll_interval=0.02)

    assert status is not None
    assert status.term_signal == signal.SIGKILL
    assert time.monotonic() - started >= 0.4


def test_send_signal_after_exit_is_a_no_op(
    processes: list[Process],
    target,
) -> None:
    process = Process().spawn(["true"], target)
    processes.append(process)
    process.wait_for_exit_status()

    assert send_signal(process, signal.SIGTERM) is False


@pytest.mark.asyncio
async def test_terminate_process_escalates_without_blocking(
    processes: list[Process],
    tmp_path: Path,
    target,
    mock_child: Callable[..., list[str]],
) -> None:
    marker = tmp_path / "ready"
    process = _spawn_ready(
        processes,
        mock_child("--hang", "--ignore", "INT", "--ready-file", str(marker)),
        marker,
        target,
    )

    status = await terminate_process(process, grace_seconds=0.2, poll_interval=0.02)

    assert status is not None
    assert status.term_signal == signal.SIGTERM


@pytest.mark.asyncio
async def test_wait_for_process_exit_returns_status(
    processes: list[Process],
    target,
) -> None:
    process = Process().spawn(["sh", "-c", "exit 2"], target)
    processes.append(process)

    status = await wait_for_process_exit(process, timeout_seconds=10.0, poll_interval=0.02)

    assert status is not None
    assert status.exit_code == 2


@pytest.mark.asyncio
async def test_wait_for_process_exit_times_out_and_terminates(
    processes: list[Process],
    target,
    mock_child: Callable[..., list[str]],
) -> None:
    process = Process().spawn(mock_child("--hang"), target)
    processes.append(process)

    with pytest.raises(ProcessTimeoutError) as excinfo:
        await wait_for_process_exit(
            process,
            timeout_seconds=0.3,
            kill_grace_seconds=0.2,
            poll_interval=0.02,
        )

    assert excinfo.value.timeout_seconds == 0.3
    assert excinfo.value.status is not None
    assert process.alive() is False


@pytest.mark.asyncio
async def test_wait_for_process_exit_rejects_non_positive_timeout(
    processes: list[Process],
    target,
) -> None:
    process = Process().spawn(["true"], target)
    processes.append(process)

    with pytest.raises(ValueError, match="timeout_seconds"):
        await wait_for_process_exit(process, timeout_seconds=0)


def test_interrupt_uses_grace_period_from_spawn_options(
    processes: list[Process],
    tmp_path: Path,
    target,
    mock_child: Callable[..., list[str]],
) -> None:
    marker = tmp_path / "ready"
    process = _spawn_ready(
        processes,
        mock_child("--hang", "--ignore", "INT", "--ignore", "TERM", "--ready-file", str(marker)),
        marker,
        target,
        SpawnOptions(command=[], kill_grace_seconds=0.1),
    )

    started = time.monotonic()
    status = interrupt_process(process)

    assert status is not None
    assert status.term_signal == signal.SIGKILL
    assert time.monotonic() - started < 3.0


@pytest.mark.asyncio
async def test_alive_polling_continues_while_another_thread_waits(
    processes: list[Process],
    tmp_path: Path,
    target,
    mock_child: Callable[..., list[str]],
) -> None:
    marker = tmp_path / "ready"
    process = _spawn_ready(
        processes,
        mock_child("--hang", "--ready-file", str(marker)),
        marker,
        target,
    )
    waiter = asyncio.create_task(asyncio.to_thread(process.wait_for_exit_status))
    await asyncio.sleep(0.1)

    with pytest.raises(ProcessTimeoutError) as excinfo:
        await wait_for_process_exit(
            process,
            timeout_seconds=0.3,
            kill_grace_seconds=0.5,
            poll_interval=0.02,
        )
    await asyncio.wait_for(waiter, timeout=10.0)

    assert excinfo.value.timeout_seconds == 0.3
    assert process.status is not None
    assert process.status.exit_code == 130

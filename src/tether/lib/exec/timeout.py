"""Timeout and signal-escalation helpers for supervised processes."""

from __future__ import annotations

import asyncio
import os
import signal
import time
from types import EllipsisType

import structlog

from tether.lib.exec.process import Process
from tether.lib.exec.status import ProcessStatus

logger = structlog.get_logger(__name__)


class ProcessTimeoutError(TimeoutError):
    """Raised when a child exceeds its allotted run time."""

    def __init__(self, timeout_seconds: float, status: ProcessStatus | None = None) -> None:
        self.timeout_seconds = timeout_seconds
        self.status = status
        super().__init__(f"Process exceeded timeout after {timeout_seconds:.3f}s")


def send_signal(process: Process, signum: signal.Signals) -> bool:
    """Deliver one signal; False when the child is already gone."""

    if process.pid is None or not process.alive():
        return False
    try:
        os.kill(process.pid, signum)
    except ProcessLookupError:
        return False
    logger.info("Sent signal to child process.", pid=process.pid, signal=signum.name)
    return True


def _grace_for(process: Process, grace_seconds: float | None) -> float:
    if grace_seconds is not None:
        return grace_seconds
    options = process.options
    if options is not None and options.kill_grace_seconds is not None:
        return options.kill_grace_seconds
    return process.config.kill_grace_seconds


def _poll_for(process: Process, poll_interval: float | None) -> float:
    return poll_interval if poll_interval is not None else process.config.poll_interval_seconds


def _wait_until_exit(process: Process, *, deadline: float, poll_interval: float) -> bool:
    while process.alive():
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            return False
        time.sleep(min(poll_interval, remaining))
    return True


def interrupt_process(
    process: Process,
    *,
    grace_seconds: float | None = None,
    poll_interval: float | None = None,
) -> ProcessStatus | None:
    """Walk the escalation signals until the child exits.

    Each signal gets ``grace_seconds`` to take effect before the next one is
    sent. The last signal cannot be caught, so after it the call blocks in
    ``wait_for_exit_status``.
    """

    grace = _grace_for(process, grace_seconds)
    poll = _poll_for(process, poll_interval)
    signals = process.signals_for_interrupt()
    for index, signum in enumerate(signals):
        if not send_signal(process, signum):
            break
        if index == len(signals) - 1:
            break
        deadline = time.monotonic() + grace
        if _wait_until_exit(process, deadline=deadline, poll_interval=poll):
            break
    return process.wait_for_exit_status()


async def _async_wait_until_exit(
    process: Process,
    *,
    deadline: float,
    poll_interval: float,
) -> bool:
    loop = asyncio.get_running_loop()
    while process.alive():
        remaining = deadline - loop.time()
        if remaining <= 0:
            return False
        await asyncio.sleep(min(poll_interval, remaining))
    return True


async def terminate_process(
    process: Process,
    *,
    grace_seconds: float | None = None,
    poll_interval: float | None = None,
) -> ProcessStatus | None:
    """Async variant of ``interrupt_process`` that never blocks the event loop."""

    grace = _grace_for(process, grace_seconds)
    poll = _poll_for(process, poll_interval)
    loop = asyncio.get_running_loop()
    signals = process.signals_for_interrupt()
    for signum in signals:
        if not send_signal(process, signum):
            break
        deadline = loop.time() + grace
        if await _async_wait_until_exit(process, deadline=deadline, poll_interval=poll):
            break
    if process.pid is not None and process.alive():
        return await asyncio.to_thread(process.wait_for_exit_status)
    return process.status


async def wait_for_process_exit(
    process: Process,
    *,
    timeout_seconds: float | None | EllipsisType = ...,
    kill_grace_seconds: float | None = None,
    poll_interval: float | None = None,
) -> ProcessStatus | None:
    """Wait for the child, escalating termination once the timeout expires.

    Without an explicit ``timeout_seconds`` the spawn options decide, then the
    loaded config. ``None`` waits without a deadline.
    """

    if timeout_seconds is ...:
        options = process.options
        timeout_seconds = (
            options.timeout_seconds
            if options is not None and options.timeout_seconds is not None
            else process.config.timeout_seconds
        )
    poll = _poll_for(process, poll_interval)
    if timeout_seconds is None:
        while process.alive():
            await asyncio.sleep(poll)
        return process.status

    if timeout_seconds <= 0:
        raise ValueError("timeout_seconds must be > 0 when provided.")

    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout_seconds
    if await _async_wait_until_exit(process, deadline=deadline, poll_interval=poll):
        return process.status

    logger.warning(
        "Child process timed out; escalating termination.",
        pid=process.pid,
        timeout_seconds=timeout_seconds,
    )
    status = await terminate_process(
        process,
        grace_seconds=kill_grace_seconds,
        poll_interval=poll,
    )
    raise ProcessTimeoutError(timeout_seconds, status)

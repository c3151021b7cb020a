"""Fork/exec child process spawning and supervision."""

from __future__ import annotations

import os
import signal
from collections.abc import Callable
from contextlib import suppress
from dataclasses import replace
from threading import RLock
from types import TracebackType
from typing import BinaryIO, Final, cast

import structlog

from tether.lib.config.settings import TetherConfig, load_config
from tether.lib.exec.bootstrap import run_child_bootstrap
from tether.lib.exec.errors import (
    ChildBootstrapError,
    ProcessError,
    ProcessNotStartedError,
    ReapErrorCategory,
    classify_reap_error,
)
from tether.lib.exec.options import Command, SpawnOptions
from tether.lib.exec.pipes import PipeSet
from tether.lib.exec.status import ProcessStatus
from tether.lib.exec.status_channel import ErrorRecord, read_error_record
from tether.lib.exec.target import ProcessTarget

logger = structlog.get_logger(__name__)

INTERRUPT_SIGNALS: Final[tuple[signal.Signals, ...]] = (
    signal.SIGINT,
    signal.SIGTERM,
    signal.SIGKILL,
)


class Process:
    """One forked child and the parent-side ends of its pipes.

    ``pid`` and ``status`` are each assigned once. Every reap goes through
    ``_reap_lock`` so concurrent ``alive``/``wait_for_exit_status`` callers
    never call ``waitpid`` on a pid that was already collected.
    """

    def __init__(
        self,
        options: SpawnOptions | None = None,
        *,
        config: TetherConfig | None = None,
        on_started: Callable[[Process], None] | None = None,
    ) -> None:
        self._options = options
        self._config = config if config is not None else load_config()
        self._on_started = on_started
        self._reap_lock = RLock()
        self._target: ProcessTarget | None = None
        self._pid: int | None = None
        self._status: ProcessStatus | None = None
        self._spawn_error: ErrorRecord | None = None
        self._spawn_error_read = False
        self.stdin: BinaryIO | None = None
        self.stdout: BinaryIO | None = None
        self.stderr: BinaryIO | None = None
        self.status_fd: BinaryIO | None = None

    @property
    def pid(self) -> int | None:
        return self._pid

    @property
    def status(self) -> ProcessStatus | None:
        return self._status

    @property
    def config(self) -> TetherConfig:
        return self._config

    @property
    def options(self) -> SpawnOptions | None:
        return self._options

    @property
    def target(self) -> ProcessTarget | None:
        return self._target

    def __enter__(self) -> Process:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        _ = (exc_type, exc, tb)
        self.close()

    def drain_all_upon_death(self) -> bool:
        """Whether stdout/stderr may be drained unconditionally once the child dies.

        Always False here: a child can close one stream and keep writing the
        other, so a reader that drains both after death would block on the
        idle descriptor. Read a stream only when it is reported ready.
        """

        return False

    def signals_for_interrupt(self) -> tuple[signal.Signals, ...]:
        """Escalating termination signals, the last one unconditionally fatal."""

        return INTERRUPT_SIGNALS

    def alive(self) -> bool:
        """Return True while the child has not been reaped."""

        if self._pid is None:
            raise ProcessNotStartedError()
        if self._status is not None:
            return False
        # A blocking waiter holds the lock until the child exits, so the
        # child was still running when that reap started.
        if not self._reap_lock.acquire(blocking=False):
            return True
        try:
            if self._status is None:
                try:
                    reaped_pid, raw_status = os.waitpid(self._pid, os.WNOHANG)
                except OSError as error:
                    logger.debug(
                        "Non-blocking reap failed; falling back to blocking wait.",
                        pid=self._pid,
                        category=str(classify_reap_error(error)),
                    )
                    self.wait_for_exit_status()
                else:
                    if reaped_pid != 0:
                        self._status = ProcessStatus.from_wait_status(reaped_pid, raw_status)
            return self._status is None
        finally:
            self._reap_lock.release()

    def wait_for_exit_status(self) -> ProcessStatus | None:
        """Block until the child exits and return its cached status."""

        if self._pid is None:
            raise ProcessNotStartedError()
        with self._reap_lock:
            if self._status is None:
                try:
                    reaped_pid, raw_status = os.waitpid(self._pid, 0)
                except OSError as error:
                    category = classify_reap_error(error)
                    if category != ReapErrorCategory.ALREADY_REAPED:
                        raise
                    # Another reaper got there first; leave status unresolved.
                    logger.warning(
                        "Child already reaped elsewhere; exit status unknown.",
                        pid=self._pid,
                    )
                else:
                    self._status = ProcessStatus.from_wait_status(reaped_pid, raw_status)
            return self._status

    def spawn(self, command: Command, target: ProcessTarget) -> Process:
        """Fork a child running ``command`` with piped standard streams."""

        if self._pid is not None or self._status is not None:
            raise ProcessError("Process already started")
        if target is None:
            raise ValueError("Cannot spawn process: target is required.")
        options = self._resolve_options(command)
        options.validate()
        self._options = options
        self._target = target

        pipes: PipeSet | None = None
        try:
            pipes = PipeSet.create()
            logger.debug("Spawning child process.", command=_loggable_command(command))
            pid = os.fork()
            if pid == 0:
                run_child_bootstrap(options, pipes, self._config)
            self._pid = pid
            self._run_parent_side(pipes)
        except BaseException:
            # The exit-notification path still needs a definite status.
            if pipes is not None:
                pipes.close_all()
            self.close()
            if self._pid is not None:
                self._discard_child(self._pid)
            self._status = ProcessStatus.failed(self._pid)
            logger.exception(
                "Failed to spawn child process.",
                command=_loggable_command(command),
                pid=self._pid,
            )
            raise

        logger.debug("Spawned child process.", pid=self._pid)
        self.start_timer()
        return self

    def _discard_child(self, pid: int) -> None:
        """Kill and reap a child whose parent-side setup failed."""

        with suppress(ProcessLookupError):
            os.kill(pid, signal.SIGKILL)
        with self._reap_lock, suppress(ChildProcessError):
            os.waitpid(pid, 0)

    def _resolve_options(self, command: Command) -> SpawnOptions:
        options = self._options or SpawnOptions(command=command)
        return replace(
            options,
            command=command,
            timeout_seconds=(
                options.timeout_seconds
                if options.timeout_seconds is not None
                else self._config.timeout_seconds
            ),
            kill_grace_seconds=(
                options.kill_grace_seconds
                if options.kill_grace_seconds is not None
                else self._config.kill_grace_seconds
            ),
        )

    def _run_parent_side(self, pipes: PipeSet) -> None:
        pipes.close_many(pipes.child_fds())
        stdin_fd, stdout_fd, stderr_fd, status_fd = pipes.parent_fds()
        self.stdin = cast("BinaryIO", open(stdin_fd, "wb", buffering=0))
        pipes.release((stdin_fd,))
        self.stdout = cast("BinaryIO", open(stdout_fd, "rb", buffering=0))
        pipes.release((stdout_fd,))
        self.stderr = cast("BinaryIO", open(stderr_fd, "rb", buffering=0))
        pipes.release((stderr_fd,))
        self.status_fd = cast("BinaryIO", open(status_fd, "rb", buffering=0))
        pipes.release((status_fd,))

    def start_timer(self) -> None:
        """Hand the live process to the stream-draining collaborator, if any."""

        if self._on_started is not None:
            self._on_started(self)

    def spawn_error(self) -> ErrorRecord | None:
        """Return the child's pre-exec failure, or None when the exec succeeded.

        Reads the status channel to EOF on first call; EOF arrives as soon as
        the exec succeeds or the failed child exits.
        """

        if self._pid is None:
            raise ProcessNotStartedError()
        if not self._spawn_error_read:
            if self.status_fd is not None:
                try:
                    self._spawn_error = read_error_record(self.status_fd.fileno())
                finally:
                    self.status_fd.close()
                    self.status_fd = None
            self._spawn_error_read = True
            if self._spawn_error is not None:
                logger.warning(
                    "Child failed before exec.",
                    pid=self._pid,
                    error_class=self._spawn_error.error_class,
                    error_message=self._spawn_error.message,
                )
        return self._spawn_error

    def check_spawn(self) -> None:
        """Raise ChildBootstrapError if the child never reached its program."""

        record = self.spawn_error()
        if record is not None:
            raise ChildBootstrapError(record)

    def close(self) -> None:
        """Close the parent-side stream handles."""

        for name in ("stdin", "stdout", "stderr", "status_fd"):
            handle = cast("BinaryIO | None", getattr(self, name))
            if handle is None:
                continue
            with suppress(OSError):
                handle.close()
            setattr(self, name, None)


def spawn(
    command: Command,
    target: ProcessTarget,
    *,
    options: SpawnOptions | None = None,
    config: TetherConfig | None = None,
    on_started: Callable[[Process], None] | None = None,
) -> Process:
    """Create a Process and spawn ``command`` for ``target``."""

    process = Process(options, config=config, on_started=on_started)
    return process.spawn(command, target)


def _loggable_command(command: Command) -> str | list[str]:
    if isinstance(command, str):
        return command
    return [os.fspath(item) if isinstance(item, os.PathLike) else str(item) for item in command]

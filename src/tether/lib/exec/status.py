"""Exit status values for reaped child processes."""

from __future__ import annotations

import os
import signal
from dataclasses import dataclass

SPAWN_FAILURE_EXIT_CODE = 1


@dataclass(frozen=True, slots=True)
class ProcessStatus:
    """Resolved exit status of one child process."""

    pid: int | None
    exit_code: int | None
    term_signal: int | None = None
    core_dumped: bool = False

    @classmethod
    def from_wait_status(cls, pid: int, raw_status: int) -> ProcessStatus:
        """Decode a raw ``waitpid`` status word."""

        if os.WIFSIGNALED(raw_status):
            return cls(
                pid=pid,
                exit_code=None,
                term_signal=os.WTERMSIG(raw_status),
                core_dumped=os.WCOREDUMP(raw_status),
            )
        if os.WIFEXITED(raw_status):
            return cls(pid=pid, exit_code=os.WEXITSTATUS(raw_status))
        raise ValueError(f"Wait status {raw_status:#x} does not describe a terminated process.")

    @classmethod
    def failed(cls, pid: int | None) -> ProcessStatus:
        """Synthesize a terminal failure status for a spawn that never ran."""

        return cls(pid=pid, exit_code=SPAWN_FAILURE_EXIT_CODE)

    @property
    def exited(self) -> bool:
        return self.exit_code is not None

    @property
    def signaled(self) -> bool:
        return self.term_signal is not None

    @property
    def success(self) -> bool:
        return self.exit_code == 0

    @property
    def returncode(self) -> int:
        """Subprocess-style return code: negative signal number when signaled."""

        if self.term_signal is not None:
            return -self.term_signal
        return self.exit_code if self.exit_code is not None else SPAWN_FAILURE_EXIT_CODE

    def describe(self) -> str:
        if self.term_signal is not None:
            try:
                name = signal.Signals(self.term_signal).name
            except ValueError:
                name = str(self.term_signal)
            suffix = " (core dumped)" if self.core_dumped else ""
            return f"pid {self.pid} killed by {name}{suffix}"
        return f"pid {self.pid} exited with code {self.exit_code}"

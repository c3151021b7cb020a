"""Pipe bookkeeping for one spawn."""

from __future__ import annotations

import os
from contextlib import suppress
from dataclasses import dataclass, field


@dataclass(frozen=True, slots=True)
class Pipe:
    read_fd: int
    write_fd: int


def _empty_fd_set() -> set[int]:
    return set()


@dataclass(slots=True)
class PipeSet:
    """The stdin, stdout, stderr and status pipes created before fork.

    Every descriptor opened here is tracked in ``owned`` until it is closed or
    handed off, so failure paths can release exactly what was opened.
    """

    stdin: Pipe | None = None
    stdout: Pipe | None = None
    stderr: Pipe | None = None
    status: Pipe | None = None
    owned: set[int] = field(default_factory=_empty_fd_set)

    @classmethod
    def create(cls) -> PipeSet:
        pipes = cls()
        try:
            pipes.stdin = pipes._open_pipe()
            pipes.stdout = pipes._open_pipe()
            pipes.stderr = pipes._open_pipe()
            pipes.status = pipes._open_pipe()
        except OSError:
            pipes.close_all()
            raise
        return pipes

    def _open_pipe(self) -> Pipe:
        # os.pipe() descriptors are raw, unbuffered and close-on-exec.
        read_fd, write_fd = os.pipe()
        self.owned.update((read_fd, write_fd))
        return Pipe(read_fd=read_fd, write_fd=write_fd)

    def _require(self) -> tuple[Pipe, Pipe, Pipe, Pipe]:
        if self.stdin is None or self.stdout is None or self.stderr is None or self.status is None:
            raise RuntimeError("Pipe set is incomplete.")
        return self.stdin, self.stdout, self.stderr, self.status

    def parent_fds(self) -> tuple[int, int, int, int]:
        """Descriptors the parent keeps: stdin-write, stdout-read, stderr-read, status-read."""

        stdin, stdout, stderr, status = self._require()
        return stdin.write_fd, stdout.read_fd, stderr.read_fd, status.read_fd

    def child_fds(self) -> tuple[int, int, int, int]:
        """Descriptors the child keeps: stdin-read, stdout-write, stderr-write, status-write."""

        stdin, stdout, stderr, status = self._require()
        return stdin.read_fd, stdout.write_fd, stderr.write_fd, status.write_fd

    def close(self, fd: int) -> None:
        if fd not in self.owned:
            return
        self.owned.discard(fd)
        with suppress(OSError):
            os.close(fd)

    def close_many(self, fds: tuple[int, ...]) -> None:
        for fd in fds:
            self.close(fd)

    def release(self, fds: tuple[int, ...]) -> None:
        """Stop tracking descriptors whose ownership moved elsewhere."""

        self.owned.difference_update(fds)

    def close_all(self) -> None:
        for fd in sorted(self.owned):
            self.close(fd)

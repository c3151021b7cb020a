"""Notification contract between a supervised process and its consumer."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from tether.lib.exec.status import ProcessStatus


@runtime_checkable
class ProcessTarget(Protocol):
    """Receives stream chunks and the exit notification for one child.

    The supervisor only stores the target; the stream reader that drains
    stdout/stderr is responsible for calling these hooks.
    """

    def on_read_stdout(self, data: bytes) -> None: ...

    def on_read_stderr(self, data: bytes) -> None: ...

    def on_exit(self, status: ProcessStatus) -> None: ...

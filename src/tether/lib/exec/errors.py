"""Process supervision error taxonomy."""

from __future__ import annotations

import errno
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from tether.lib.exec.status_channel import ErrorRecord


class ProcessError(RuntimeError):
    """Base error for process supervision failures."""


class ProcessNotStartedError(ProcessError):
    """Raised when a handle is queried before a pid exists."""

    def __init__(self) -> None:
        super().__init__("Process not started")


class ChildBootstrapError(ProcessError):
    """Raised in the parent when the child reported a pre-exec failure."""

    def __init__(self, record: ErrorRecord) -> None:
        self.record = record
        super().__init__(f"{record.error_class}: {record.message}")


class StatusChannelError(ValueError):
    """Raised when the status channel carries a malformed payload."""


class ReapErrorCategory(StrEnum):
    ALREADY_REAPED = "already_reaped"
    UNEXPECTED = "unexpected"


def classify_reap_error(error: OSError) -> ReapErrorCategory:
    """Classify one waitpid failure for logging and propagation decisions."""

    # ECHILD means someone else collected the child (or it was never ours).
    if isinstance(error, ChildProcessError) or error.errno == errno.ECHILD:
        return ReapErrorCategory.ALREADY_REAPED
    return ReapErrorCategory.UNEXPECTED

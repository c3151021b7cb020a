"""Fork/exec process supervision primitives."""

from tether.lib.exec.errors import (
    ChildBootstrapError,
    ProcessError,
    ProcessNotStartedError,
    ReapErrorCategory,
    StatusChannelError,
    classify_reap_error,
)
from tether.lib.exec.options import SpawnOptions
from tether.lib.exec.process import INTERRUPT_SIGNALS, Process, spawn
from tether.lib.exec.status import ProcessStatus
from tether.lib.exec.status_channel import ErrorRecord, decode_error_record, encode_error_record
from tether.lib.exec.target import ProcessTarget
from tether.lib.exec.timeout import (
    ProcessTimeoutError,
    interrupt_process,
    terminate_process,
    wait_for_process_exit,
)

__all__ = [
    "INTERRUPT_SIGNALS",
    "ChildBootstrapError",
    "ErrorRecord",
    "Process",
    "ProcessError",
    "ProcessNotStartedError",
    "ProcessStatus",
    "ProcessTarget",
    "ProcessTimeoutError",
    "ReapErrorCategory",
    "SpawnOptions",
    "StatusChannelError",
    "classify_reap_error",
    "decode_error_record",
    "encode_error_record",
    "interrupt_process",
    "spawn",
    "terminate_process",
    "wait_for_process_exit",
]

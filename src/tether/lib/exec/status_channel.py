"""Out-of-band failure reporting from a forked child to its parent.

The child holds the write end of the status pipe with close-on-exec set. A
successful exec closes it without writing anything, so the parent reads EOF
immediately. Any failure before the new program image loads is serialized as
one JSON object and written before the child exits, so the parent sees either
zero bytes or one complete record.
"""

from __future__ import annotations

import json
import os
import traceback
from dataclasses import dataclass
from typing import cast

from tether.lib.exec.errors import StatusChannelError
from tether.lib.serialization import to_jsonable

_READ_CHUNK_SIZE = 4096


@dataclass(frozen=True, slots=True)
class ErrorRecord:
    """Failure raised in the child between fork and exec."""

    error_class: str
    message: str
    backtrace: tuple[str, ...] = ()

    @classmethod
    def from_exception(cls, error: BaseException) -> ErrorRecord:
        error_type = type(error)
        if error_type.__module__ == "builtins":
            error_class = error_type.__qualname__
        else:
            error_class = f"{error_type.__module__}.{error_type.__qualname__}"
        message = str(error) or error_type.__qualname__
        backtrace = tuple(
            line.rstrip("\n")
            for line in traceback.format_exception(error_type, error, error.__traceback__)
        )
        return cls(error_class=error_class, message=message, backtrace=backtrace)


def encode_error_record(record: ErrorRecord) -> bytes:
    payload = {
        "class": record.error_class,
        "message": record.message,
        "backtrace": to_jsonable(record.backtrace),
    }
    return (json.dumps(payload, sort_keys=True) + "\n").encode("utf-8")


def decode_error_record(raw: bytes) -> ErrorRecord | None:
    """Decode status-channel bytes; empty input means the exec succeeded."""

    text = raw.decode("utf-8", errors="replace").strip()
    if not text:
        return None

    try:
        payload_obj = json.loads(text)
    except json.JSONDecodeError as error:
        raise StatusChannelError(f"Malformed status channel payload: {text[:200]!r}") from error
    if not isinstance(payload_obj, dict):
        raise StatusChannelError(
            f"Status channel payload must be an object, got {type(payload_obj).__name__}."
        )

    payload = cast("dict[str, object]", payload_obj)
    error_class = payload.get("class")
    message = payload.get("message")
    backtrace = payload.get("backtrace") or []
    if not isinstance(error_class, str) or not isinstance(message, str):
        raise StatusChannelError("Status channel payload is missing 'class' or 'message'.")
    if not isinstance(backtrace, list):
        raise StatusChannelError("Status channel 'backtrace' must be an array.")
    return ErrorRecord(
        error_class=error_class,
        message=message,
        backtrace=tuple(str(line) for line in cast("list[object]", backtrace)),
    )


def write_error_record(fd: int, record: ErrorRecord) -> None:
    """Write the complete encoded record to a raw descriptor."""

    view = memoryview(encode_error_record(record))
    while view:
        written = os.write(fd, view)
        view = view[written:]


def read_error_record(fd: int) -> ErrorRecord | None:
    """Read the status channel until EOF and decode whatever arrived."""

    chunks: list[bytes] = []
    while True:
        chunk = os.read(fd, _READ_CHUNK_SIZE)
        if not chunk:
            break
        chunks.append(chunk)
    return decode_error_record(b"".join(chunks))

"""Spawn options and identity/umask resolution helpers."""

from __future__ import annotations

import grp
import os
import pwd
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from tether.lib.config.settings import TetherConfig

_DEFAULT_CONFIG = TetherConfig()
UMASK_BITS = 0o7777

Command = str | Sequence[str | os.PathLike[str]]


@dataclass(frozen=True, slots=True)
class SpawnOptions:
    """Resolved inputs for one child process."""

    command: Command
    user: str | int | None = None
    group: str | int | None = None
    umask: str | int | None = None
    directory: str | os.PathLike[str] | None = None
    environment: Mapping[str, str | None] | None = None
    locale: bool = False
    inherit_io: bool = False
    # None defers to the loaded TetherConfig at spawn time.
    timeout_seconds: float | None = None
    kill_grace_seconds: float | None = None

    def validate(self) -> None:
        normalize_command(self.command)
        if self.timeout_seconds is not None and self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0 when provided.")
        if self.kill_grace_seconds is not None and self.kill_grace_seconds < 0:
            raise ValueError("kill_grace_seconds must be >= 0.")


def normalize_command(command: Command) -> str | list[str]:
    """Validate a command and coerce argv items to strings."""

    if isinstance(command, str):
        if not command.strip():
            raise ValueError("Cannot spawn process: command is empty.")
        return command

    argv = [os.fspath(item) if isinstance(item, os.PathLike) else str(item) for item in command]
    if not argv or not argv[0]:
        raise ValueError("Cannot spawn process: command is empty.")
    return argv


def resolve_user(user: str | int | None) -> int | None:
    if user is None:
        return None
    if isinstance(user, int):
        return user
    return pwd.getpwnam(user).pw_uid


def resolve_group(group: str | int | None) -> int | None:
    if group is None:
        return None
    if isinstance(group, int):
        return group
    return grp.getgrnam(group).gr_gid


def resolve_umask(umask: str | int | None) -> int | None:
    """Parse an octal string or integer umask and clamp it to permission bits."""

    if umask is None:
        return None
    if isinstance(umask, str):
        try:
            value = int(umask.strip(), 8)
        except ValueError as error:
            raise ValueError(f"Invalid umask {umask!r}: expected an octal string.") from error
    else:
        value = int(umask)
    return value & UMASK_BITS


def build_environment(
    base_env: Mapping[str, str],
    overrides: Mapping[str, str | None] | None,
    *,
    locale: bool,
    locale_value: str = _DEFAULT_CONFIG.locale_value,
) -> dict[str, str]:
    """Layer the locale reset and caller overrides over the inherited environment.

    An override value of ``None`` removes the variable.
    """

    layered: dict[str, str | None] = {}
    if locale:
        layered["LC_ALL"] = locale_value
    if overrides is not None:
        layered.update(overrides)

    env = dict(base_env)
    for key, value in layered.items():
        if value is None:
            env.pop(str(key), None)
        else:
            env[str(key)] = str(value)
    return env

"""Child-side setup executed between fork and exec.

Nothing here may return to the caller: the child either replaces its image
with the target program or reports the failure on the status channel and
exits immediately through ``os._exit`` so no inherited cleanup handlers run.
"""

from __future__ import annotations

import fcntl
import os
from collections.abc import Collection
from contextlib import suppress
from typing import NoReturn

from tether.lib.config.settings import TetherConfig
from tether.lib.exec.options import (
    SpawnOptions,
    build_environment,
    normalize_command,
    resolve_group,
    resolve_umask,
    resolve_user,
)
from tether.lib.exec.pipes import PipeSet
from tether.lib.exec.status_channel import ErrorRecord, write_error_record

CHILD_FAILURE_EXIT_CODE = 1
_STD_FDS = (0, 1, 2)
_FD_LISTING_DIRS = ("/proc/self/fd", "/dev/fd")


def _lift_above_std_fds(fd: int) -> int:
    if fd > 2:
        return fd
    return fcntl.fcntl(fd, fcntl.F_DUPFD_CLOEXEC, 3)


def _remap_std_fds(stdin_fd: int, stdout_fd: int, stderr_fd: int) -> None:
    for source, target in zip((stdin_fd, stdout_fd, stderr_fd), _STD_FDS, strict=True):
        os.dup2(source, target, inheritable=True)
        os.set_inheritable(target, True)


def _open_fds() -> list[int]:
    for listing_dir in _FD_LISTING_DIRS:
        try:
            return sorted(int(name) for name in os.listdir(listing_dir) if name.isdigit())
        except OSError:
            continue
    try:
        max_fd = os.sysconf("SC_OPEN_MAX")
    except (OSError, ValueError):
        max_fd = 256
    return list(range(max_fd))


def close_unexpected_fds(keep: Collection[int]) -> None:
    """Close every open descriptor outside ``keep``."""

    for fd in _open_fds():
        if fd in keep:
            continue
        # The listing itself used a descriptor that is already gone.
        with suppress(OSError):
            os.close(fd)


def drop_privileges(*, user: str | int | None, group: str | int | None) -> None:
    # Group first: giving up the uid can remove the right to change gid.
    gid = resolve_group(group)
    if gid is not None:
        os.setegid(gid)
        os.setgid(gid)

    uid = resolve_user(user)
    if uid is not None:
        os.seteuid(uid)
        os.setuid(uid)


def change_directory(directory: str | os.PathLike[str] | None) -> None:
    if directory is None:
        return
    target = os.path.abspath(os.fspath(directory))
    if target != os.path.abspath(os.getcwd()):
        os.chdir(target)


def exec_command(options: SpawnOptions, env: dict[str, str], *, shell: str) -> NoReturn:
    command = normalize_command(options.command)
    if isinstance(command, str):
        os.execvpe(shell, [shell, "-c", command], env)
    os.execvpe(command[0], command, env)


def _bootstrap(
    options: SpawnOptions,
    pipes: PipeSet,
    config: TetherConfig,
    *,
    child_fds: tuple[int, int, int, int],
) -> NoReturn:
    stdin_fd, stdout_fd, stderr_fd, status_fd = child_fds
    for fd in pipes.parent_fds():
        with suppress(OSError):
            os.close(fd)

    _remap_std_fds(stdin_fd, stdout_fd, stderr_fd)
    for fd in (stdin_fd, stdout_fd, stderr_fd):
        with suppress(OSError):
            os.close(fd)

    # A successful exec closes the status channel without writing to it.
    os.set_inheritable(status_fd, False)
    flags = fcntl.fcntl(status_fd, fcntl.F_GETFD)
    fcntl.fcntl(status_fd, fcntl.F_SETFD, flags | fcntl.FD_CLOEXEC)

    if not options.inherit_io:
        close_unexpected_fds({*_STD_FDS, status_fd})

    drop_privileges(user=options.user, group=options.group)

    umask = resolve_umask(options.umask)
    if umask is not None:
        os.umask(umask)

    change_directory(options.directory)

    env = build_environment(
        os.environ,
        options.environment,
        locale=options.locale,
        locale_value=config.locale_value,
    )
    exec_command(options, env, shell=config.shell)


def run_child_bootstrap(options: SpawnOptions, pipes: PipeSet, config: TetherConfig) -> NoReturn:
    """Prepare the forked child and exec the command, or report why not."""

    stdin_fd, stdout_fd, stderr_fd, status_fd = pipes.child_fds()
    try:
        # dup2 onto 0-2 must not clobber a pipe end that already sits there.
        status_fd = _lift_above_std_fds(status_fd)
        child_fds = (
            _lift_above_std_fds(stdin_fd),
            _lift_above_std_fds(stdout_fd),
            _lift_above_std_fds(stderr_fd),
            status_fd,
        )
        _bootstrap(options, pipes, config, child_fds=child_fds)
    except BaseException as error:
        with suppress(BaseException):
            write_error_record(status_fd, ErrorRecord.from_exception(error))
    finally:
        os._exit(CHILD_FAILURE_EXIT_CODE)

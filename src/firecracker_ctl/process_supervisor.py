"""Launch, wait for and tear down the Firecracker process of one guest.

Console wiring:
    With a serial console, a pty pair is allocated. Firecracker's stdin and
    stdout are connected to the primary end; the secondary device path is
    recorded on the workspace so a console client can open it later.
    Without one, stdout is appended to the workspace's stdout log.
    stderr is always appended to the stderr log.
"""

from __future__ import annotations

import asyncio
import contextlib
import os
import stat
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from firecracker_ctl import constants
from firecracker_ctl._logging import get_logger
from firecracker_ctl.exceptions import ChannelTimeoutError, SpawnFailedError
from firecracker_ctl.platform_utils import ProcessWrapper
from firecracker_ctl.resource_cleanup import kill_process
from firecracker_ctl.subprocess_utils import wait_for_path

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from firecracker_ctl.workspace import GuestWorkspace

logger = get_logger(__name__)


@dataclass
class VmmProcess:
    """A running Firecracker child and the descriptors held on its behalf."""

    guest: str
    handle: ProcessWrapper
    console_fd: int | None = None
    console_path: str | None = None
    _closed: bool = field(default=False, repr=False)

    @property
    def pid(self) -> int | None:
        return self.handle.pid

    def close_fds(self) -> None:
        """Release the pty secondary kept open for the guest's lifetime. Idempotent."""
        if self._closed:
            return
        self._closed = True
        if self.console_fd is not None:
            with contextlib.suppress(OSError):
                os.close(self.console_fd)
            self.console_fd = None


def _open_log(path: Path) -> int:
    return os.open(path, os.O_WRONLY | os.O_CREAT | os.O_APPEND | os.O_CLOEXEC, constants.LOG_FILE_MODE)


def _close_all(fds: list[int]) -> None:
    for fd in fds:
        with contextlib.suppress(OSError):
            os.close(fd)


class ProcessSupervisor:
    """Owns the Firecracker process for each guest it launches.

    Args:
        abort_reap_timeout: Seconds to wait for the zombie after SIGKILL
        sleep: Sleep used while polling for the API socket
        clock: Monotonic clock used for the readiness budget
    """

    def __init__(
        self,
        *,
        abort_reap_timeout: float = constants.ABORT_REAP_TIMEOUT_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._abort_reap_timeout = abort_reap_timeout
        self._sleep = sleep
        self._clock = clock

    async def launch(
        self,
        binary_path: Path,
        socket_path: Path,
        workspace: GuestWorkspace,
        *,
        console: bool,
    ) -> VmmProcess:
        """Spawn `firecracker --api-sock <socket_path>`.

        Raises:
            SpawnFailedError: Log files or pty could not be opened, or the
                binary could not be executed
        """
        guest = workspace.guest
        ctx = {"guest": guest, "binary": str(binary_path), "socket_path": str(socket_path)}
        parent_fds: list[int] = []
        console_fd: int | None = None
        console_path: str | None = None

        try:
            stderr_fd = _open_log(workspace.stderr_log)
            parent_fds.append(stderr_fd)
            if console:
                primary_fd, console_fd = os.openpty()
                parent_fds.append(primary_fd)
                console_path = os.ttyname(console_fd)
                stdin_target: int = primary_fd
                stdout_target = primary_fd
            else:
                stdout_fd = _open_log(workspace.stdout_log)
                parent_fds.append(stdout_fd)
                stdin_target = asyncio.subprocess.DEVNULL
                stdout_target = stdout_fd

            proc = await asyncio.create_subprocess_exec(
                str(binary_path),
                "--api-sock",
                str(socket_path),
                stdin=stdin_target,
                stdout=stdout_target,
                stderr=stderr_fd,
                start_new_session=True,
                umask=constants.VMM_UMASK,
            )
        except OSError as e:
            _close_all(parent_fds)
            if console_fd is not None:
                _close_all([console_fd])
            raise SpawnFailedError(f"Failed to launch firecracker: {e}", {**ctx, "error": str(e)}) from e

        # Child holds its own copies
        _close_all(parent_fds)

        workspace.console_pty_path = console_path
        process = VmmProcess(guest=guest, handle=ProcessWrapper(proc), console_fd=console_fd, console_path=console_path)
        logger.info(
            "firecracker launched",
            extra={**ctx, "pid": process.pid, "console_pty": console_path},
        )
        return process

    async def await_channel_ready(
        self,
        process: VmmProcess,
        socket_path: Path,
        *,
        timeout_ms: int = constants.CHANNEL_READY_TIMEOUT_MS,
        first_delay_ms: int = constants.CHANNEL_READY_FIRST_DELAY_MS,
        max_delay_ms: int = constants.CHANNEL_READY_MAX_DELAY_MS,
    ) -> None:
        """Wait for the API socket to appear.

        Raises:
            ChannelTimeoutError: Socket absent after timeout_ms
            SpawnFailedError: firecracker exited before creating the socket
        """
        ctx = {"guest": process.guest, "socket_path": str(socket_path), "pid": process.pid}

        def _check_alive() -> None:
            if process.handle.returncode is not None:
                raise SpawnFailedError(
                    f"firecracker exited with code {process.handle.returncode} before creating its API socket",
                    {**ctx, "returncode": process.handle.returncode},
                )

        ready = await wait_for_path(
            socket_path,
            timeout_ms=timeout_ms,
            first_delay_ms=first_delay_ms,
            max_delay_ms=max_delay_ms,
            abort_check=_check_alive,
            sleep=self._sleep,
            clock=self._clock,
        )
        if not ready:
            raise ChannelTimeoutError(
                f"API socket did not appear within {timeout_ms} ms",
                {**ctx, "timeout_ms": timeout_ms},
            )
        logger.debug("API socket ready", extra=ctx)

    async def fix_channel_permissions(self, guest: str, socket_path: Path) -> bool:
        """Make the API socket usable by other users (best-effort).

        Returns:
            False if the mode could not be changed; the failure is logged
        """
        try:
            mode = stat.S_IMODE((await asyncio.to_thread(os.stat, socket_path)).st_mode)
            await asyncio.to_thread(os.chmod, socket_path, mode | constants.SOCKET_SHARED_MODE)
        except OSError as e:
            logger.warning(
                "Could not relax API socket permissions",
                extra={"guest": guest, "socket_path": str(socket_path), "error": str(e)},
            )
            return False
        return True

    async def abort(self, process: VmmProcess | None) -> bool:
        """SIGKILL the process without a grace period. Never raises."""
        if process is None:
            return True
        try:
            return await kill_process(process.handle, process.guest, reap_timeout=self._abort_reap_timeout)
        finally:
            process.close_fds()

    async def reap(self, process: VmmProcess) -> int:
        """Wait for the process to exit and return its exit status."""
        try:
            returncode = await process.handle.wait()
        finally:
            process.close_fds()
        logger.debug("firecracker reaped", extra={"guest": process.guest, "returncode": returncode})
        return returncode

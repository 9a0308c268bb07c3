"""Host helpers: runtime directories and a PID-reuse safe process wrapper."""

import asyncio
import contextlib
import os
from pathlib import Path

import psutil

from firecracker_ctl import constants


def is_privileged() -> bool:
    """True when running with an effective uid of 0."""
    return os.geteuid() == 0


def get_runtime_dir() -> Path:
    """Per-user runtime directory ($XDG_RUNTIME_DIR, else ~/.cache/firecracker-ctl/run)."""
    xdg = os.environ.get("XDG_RUNTIME_DIR")
    if xdg:
        return Path(xdg)
    return Path.home() / ".cache" / "firecracker-ctl" / "run"


def default_state_dir(privileged: bool) -> Path:
    """State root for guest workspaces.

    Args:
        privileged: Whether the driver runs as root

    Returns:
        /run/libvirt/firecracker for root, otherwise a directory below the
        user's runtime directory
    """
    if privileged:
        return Path(constants.PRIVILEGED_STATE_DIR)
    return get_runtime_dir() / constants.UNPRIVILEGED_STATE_SUBDIR


class ProcessWrapper:
    """PID-reuse safe process wrapper using psutil.

    Wraps asyncio.subprocess.Process with psutil.Process so that signals are
    never delivered to an unrelated process that recycled the VMM's PID.
    """

    def __init__(self, async_proc: asyncio.subprocess.Process) -> None:
        self.async_proc = async_proc
        self.psutil_proc: psutil.Process | None = None

        if async_proc.pid:
            with contextlib.suppress(psutil.NoSuchProcess, psutil.AccessDenied):
                self.psutil_proc = psutil.Process(async_proc.pid)

    async def is_running(self) -> bool:
        """Check if the process is still running (PID-reuse safe).

        psutil calls run in a worker thread so a stuck /proc read cannot
        block the event loop.
        """
        if self.async_proc.returncode is not None:
            return False
        if not self.psutil_proc:
            return True

        try:
            running = await asyncio.to_thread(self.psutil_proc.is_running)
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            return False
        if not running:
            return False
        # Exited but not yet reaped
        with contextlib.suppress(psutil.NoSuchProcess, psutil.AccessDenied):
            return await asyncio.to_thread(self.psutil_proc.status) != psutil.STATUS_ZOMBIE
        return False

    @property
    def pid(self) -> int | None:
        """Process ID."""
        return self.async_proc.pid

    @property
    def returncode(self) -> int | None:
        """Process return code (None if still running)."""
        return self.async_proc.returncode

    async def wait(self) -> int:
        """Wait for the process to exit and return its exit code."""
        return await self.async_proc.wait()

    async def kill(self) -> None:
        """Kill process (SIGKILL) without blocking the event loop."""
        if self.psutil_proc and await self.is_running():
            with contextlib.suppress(psutil.NoSuchProcess, psutil.AccessDenied):
                await asyncio.to_thread(self.psutil_proc.kill)
        elif self.async_proc.returncode is None:
            self.async_proc.kill()

    async def wait_with_timeout(self, timeout: float) -> int:
        """Wait for exit with a timeout.

        Raises:
            TimeoutError: If the process doesn't exit within timeout
        """
        await asyncio.wait_for(self.wait(), timeout=timeout)
        return self.returncode  # type: ignore[return-value]

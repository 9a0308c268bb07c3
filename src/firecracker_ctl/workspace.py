"""Per-guest on-disk workspace.

Layout under the driver's state root:

    <state_root>/<guest-name>/
        firecracker.socket       API socket created by the VMM
        firecracker.stdout.log   VMM stdout (no serial console only)
        firecracker.stderr.log   VMM stderr
"""

from __future__ import annotations

import asyncio
import shutil
from dataclasses import dataclass, field
from pathlib import Path

from firecracker_ctl import constants
from firecracker_ctl._logging import get_logger
from firecracker_ctl.exceptions import GuestDefinitionError
from firecracker_ctl.resource_cleanup import cleanup_directory, cleanup_file
from firecracker_ctl.validation import check_guest_name

logger = get_logger(__name__)


@dataclass
class GuestWorkspace:
    """Well-known paths for one guest, plus the console pty once allocated."""

    guest: str
    directory: Path
    socket_path: Path
    stdout_log: Path
    stderr_log: Path
    console_pty_path: str | None = field(default=None)

    @classmethod
    def for_guest(cls, state_root: Path, name: str) -> GuestWorkspace:
        """Paths for guest `name` under `state_root`.

        Raises:
            GuestDefinitionError: Name does not map to a direct child of state_root
        """
        check_guest_name(name)
        directory = state_root / name
        if directory.parent != state_root:
            raise GuestDefinitionError(
                f"Guest name {name!r} escapes the state directory", {"guest": name, "state_dir": str(state_root)}
            )
        return cls(
            guest=name,
            directory=directory,
            socket_path=directory / constants.API_SOCKET_NAME,
            stdout_log=directory / constants.STDOUT_LOG_NAME,
            stderr_log=directory / constants.STDERR_LOG_NAME,
        )

    async def recreate(self) -> None:
        """Delete any leftover tree and create an empty directory.

        Raises:
            OSError: The directory could not be removed or created
        """
        self.console_pty_path = None
        try:
            await asyncio.to_thread(shutil.rmtree, self.directory)
        except FileNotFoundError:
            pass
        await asyncio.to_thread(self.directory.mkdir, constants.WORKSPACE_DIR_MODE, True, False)
        logger.debug("Workspace recreated", extra={"guest": self.guest, "path": str(self.directory)})

    async def remove_socket(self) -> bool:
        """Remove the API socket (best-effort)."""
        return await cleanup_file(self.socket_path, self.guest, "API socket")

    async def cleanup(self) -> bool:
        """Delete the whole workspace tree (best-effort).

        Returns:
            False if anything was left behind; the failure is already logged
        """
        self.console_pty_path = None
        return await cleanup_directory(self.directory, self.guest, "workspace")

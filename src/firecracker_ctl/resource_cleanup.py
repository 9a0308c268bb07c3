"""Best-effort cleanup helpers for guest teardown.

Every function here logs failures and reports them through its return
value; none of them raise. Callers decide whether a False result matters.
"""

import asyncio
import shutil
from pathlib import Path

import aiofiles.os

from firecracker_ctl._logging import get_logger
from firecracker_ctl.platform_utils import ProcessWrapper

logger = get_logger(__name__)


async def kill_process(
    proc: ProcessWrapper | None,
    guest: str,
    reap_timeout: float = 2.0,
) -> bool:
    """SIGKILL the VMM immediately and reap it.

    There is no SIGTERM phase: a VMM is only aborted when it is being
    destroyed or its start failed. If the zombie is not reaped within
    reap_timeout, reaping continues in the background.

    Args:
        proc: Process to kill (None safe, returns immediately)
        guest: Guest name for logging
        reap_timeout: Seconds to wait for exit after SIGKILL

    Returns:
        True if the process is gone, False if it could not be confirmed dead
    """
    if proc is None:
        return True

    try:
        if proc.returncode is not None:
            logger.debug(
                "firecracker already exited",
                extra={"guest": guest, "returncode": proc.returncode},
            )
            return True

        logger.debug("Sending SIGKILL to firecracker", extra={"guest": guest, "pid": proc.pid})
        await proc.kill()

        try:
            await proc.wait_with_timeout(timeout=reap_timeout)
        except TimeoutError:
            logger.error(
                "firecracker didn't exit after SIGKILL within timeout",
                extra={"guest": guest, "pid": proc.pid, "reap_timeout": reap_timeout},
            )
            _ = asyncio.create_task(proc.wait())  # noqa: RUF006
            return False

        logger.debug("firecracker killed", extra={"guest": guest, "returncode": proc.returncode})
        return True

    except ProcessLookupError:
        logger.debug("firecracker already dead (ProcessLookupError)", extra={"guest": guest})
        return True

    except Exception as e:
        logger.error(
            "firecracker kill error",
            extra={"guest": guest, "error": str(e), "error_type": type(e).__name__},
            exc_info=True,
        )
        return False


async def cleanup_file(
    file_path: Path | None,
    guest: str,
    description: str = "file",
) -> bool:
    """Delete a file. A missing file counts as success.

    Returns:
        True if the file is gone, False if it could not be removed
    """
    if file_path is None:
        return True

    try:
        await aiofiles.os.remove(file_path)
        logger.debug(f"{description} deleted", extra={"guest": guest, "path": str(file_path)})
        return True

    except FileNotFoundError:
        return True

    except OSError as e:
        logger.warning(
            f"{description} could not be deleted",
            extra={"guest": guest, "path": str(file_path), "error": str(e), "error_type": type(e).__name__},
        )
        return False


async def cleanup_directory(
    dir_path: Path | None,
    guest: str,
    description: str = "directory",
) -> bool:
    """Recursively delete a directory tree. A missing tree counts as success.

    Returns:
        True if the tree is gone, False if anything was left behind
    """
    if dir_path is None:
        return True

    try:
        await asyncio.to_thread(shutil.rmtree, dir_path)
        logger.debug(f"{description} deleted", extra={"guest": guest, "path": str(dir_path)})
        return True

    except FileNotFoundError:
        return True

    except OSError as e:
        logger.warning(
            f"{description} could not be deleted",
            extra={"guest": guest, "path": str(dir_path), "error": str(e), "error_type": type(e).__name__},
        )
        return False

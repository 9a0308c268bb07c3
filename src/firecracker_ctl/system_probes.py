"""Host probes for the Firecracker binary.

Results are cached per binary path for the life of the process. A lock per
binary prevents concurrent callers from spawning the probe twice.
"""

from __future__ import annotations

import asyncio
import re
from pathlib import Path

from firecracker_ctl import constants
from firecracker_ctl._logging import get_logger
from firecracker_ctl.exceptions import VmmVersionError

logger = get_logger(__name__)

# "Firecracker v1.7.0" / "Firecracker v1.10.1-dev"
_VERSION_RE = re.compile(r"v(\d+)\.(\d+)\.(\d+)")


class _ProbeCache:
    """Cache for `firecracker --version` results, keyed by binary path."""

    __slots__ = ("_locks", "versions")

    def __init__(self) -> None:
        self.versions: dict[str, tuple[int, int, int]] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def get_lock(self, key: str) -> asyncio.Lock:
        # Created lazily: asyncio.Lock needs a running loop on older Pythons
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    def clear(self) -> None:
        self.versions.clear()
        self._locks.clear()


_probe_cache = _ProbeCache()


def parse_vmm_version(output: str) -> tuple[int, int, int]:
    """Extract (major, minor, patch) from `firecracker --version` output.

    Raises:
        VmmVersionError: No vX.Y.Z token found
    """
    match = _VERSION_RE.search(output)
    if match is None:
        raise VmmVersionError("Unable to parse firecracker version", {"output": output.strip()[:200]})
    major, minor, patch = (int(part) for part in match.groups())
    return major, minor, patch


async def probe_vmm_version(binary: Path | str) -> tuple[int, int, int]:
    """Run `<binary> --version` and enforce the minimum supported release.

    Raises:
        VmmVersionError: Binary missing, probe failed, output unparseable,
            or version older than MIN_FIRECRACKER_VERSION
    """
    key = str(binary)
    cached = _probe_cache.versions.get(key)
    if cached is not None:
        return cached

    async with _probe_cache.get_lock(key):
        cached = _probe_cache.versions.get(key)
        if cached is not None:
            return cached

        try:
            proc = await asyncio.create_subprocess_exec(
                key,
                "--version",
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=constants.VERSION_PROBE_TIMEOUT_SECONDS)
        except FileNotFoundError as e:
            raise VmmVersionError(f"firecracker binary not found: {key}", {"binary": key}) from e
        except (OSError, TimeoutError) as e:
            raise VmmVersionError(f"firecracker version probe failed: {e}", {"binary": key}) from e

        if proc.returncode != 0:
            raise VmmVersionError(
                f"firecracker --version exited with code {proc.returncode}",
                {"binary": key, "returncode": proc.returncode},
            )

        version = parse_vmm_version(stdout.decode(errors="replace"))
        if version < constants.MIN_FIRECRACKER_VERSION:
            minimum = ".".join(map(str, constants.MIN_FIRECRACKER_VERSION))
            raise VmmVersionError(
                f"firecracker {'.'.join(map(str, version))} is too old, {minimum} or newer is required",
                {"binary": key, "version": version},
            )

        logger.debug("firecracker version probed", extra={"binary": key, "version": ".".join(map(str, version))})
        _probe_cache.versions[key] = version
        return version

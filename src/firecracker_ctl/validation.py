"""Guest definition checks applied before a guest is registered.

Firecracker exposes a narrow device model: one root block device, tap
interfaces and an optional serial console wired to the process's stdio.
Anything beyond that is rejected here rather than at boot time.
"""

from __future__ import annotations

import shutil
from pathlib import Path
from typing import TYPE_CHECKING

from firecracker_ctl.exceptions import GuestDefinitionError, RootDiskMissingError
from firecracker_ctl.models import DiskDevice, GuestDefinition

if TYPE_CHECKING:
    from firecracker_ctl.settings import Settings

_UNSUPPORTED_CHAR_KINDS = ("parallel", "console", "channel")

# Names that would not resolve to a single child of the state root
_RESERVED_NAMES = (".", "..")
_FORBIDDEN_NAME_CHARS = ("/", "\0", "\n")


def check_guest_name(name: str) -> None:
    """Reject names that cannot be used as a workspace directory name.

    Raises:
        GuestDefinitionError: Name is "." or "..", or contains "/", NUL or a newline
    """
    if name in _RESERVED_NAMES or any(ch in name for ch in _FORBIDDEN_NAME_CHARS):
        raise GuestDefinitionError(f"Invalid guest name {name!r}", {"guest": name})


def find_root_disk(definition: GuestDefinition) -> DiskDevice:
    """Resolve the root disk or raise.

    Raises:
        RootDiskMissingError: No disk's target equals definition.root
    """
    disk = definition.find_root_disk()
    if disk is None:
        raise RootDiskMissingError(
            f"No disk targets the declared root {definition.root!r}",
            {"guest": definition.name, "root": definition.root},
        )
    return disk


def validate_guest_definition(definition: GuestDefinition) -> None:
    """Reject definitions this driver cannot run.

    Raises:
        GuestDefinitionError: Name, kernel, root or character devices invalid
        RootDiskMissingError: Declared root disk is absent
    """
    ctx = {"guest": definition.name}

    check_guest_name(definition.name)
    if not definition.kernel_path.strip():
        raise GuestDefinitionError("Kernel image path is required", ctx)
    if not definition.root.strip():
        raise GuestDefinitionError("Root device name is required", ctx)

    for kind in _UNSUPPORTED_CHAR_KINDS:
        if any(dev.kind == kind for dev in definition.char_devices):
            raise GuestDefinitionError(f"{kind} devices are not supported", {**ctx, "kind": kind})

    serials = [dev for dev in definition.char_devices if dev.kind == "serial"]
    if len(serials) > 1:
        raise GuestDefinitionError("Only one serial device is supported", {**ctx, "count": len(serials)})
    if serials and serials[0].source_type != "pty":
        raise GuestDefinitionError(
            "Serial device must be pty-backed",
            {**ctx, "source_type": serials[0].source_type},
        )

    find_root_disk(definition)


def resolve_emulator(definition: GuestDefinition, settings: Settings) -> Path:
    """Locate the VMM binary for a guest.

    The definition's emulator wins over the driver setting. Bare names are
    searched on PATH.

    Raises:
        GuestDefinitionError: No executable could be found
    """
    candidate = definition.emulator or settings.firecracker_bin
    found = shutil.which(str(candidate))
    if found is None:
        raise GuestDefinitionError(
            f"Firecracker binary not found: {candidate}",
            {"guest": definition.name, "emulator": str(candidate)},
        )
    return Path(found)

"""Data models for firecracker-ctl."""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Literal
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

MIB: int = 1024 * 1024


class GuestState(str, Enum):
    """Visible lifecycle state of a guest."""

    NOSTATE = "nostate"
    RUNNING = "running"
    PAUSED = "paused"
    SHUTOFF = "shutoff"


class StateReason(str, Enum):
    """Why the guest entered its current state."""

    UNKNOWN = "unknown"
    BOOTED = "booted"
    USER = "user"
    UNPAUSED = "unpaused"
    SHUTDOWN = "shutdown"
    DESTROYED = "destroyed"
    FAILED = "failed"


class DiskDevice(BaseModel):
    """Block device backed by a host file."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    source: str = Field(description="Host path of the backing file")
    target: str = Field(description="Logical device name inside the guest (e.g. vda)")
    bus: str = "virtio"
    read_only: bool = False


class CharDevice(BaseModel):
    """Character device (serial console, parallel port, channel)."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["serial", "console", "parallel", "channel"]
    source_type: Literal["pty", "file", "null", "unix"] = "pty"
    target_port: int = Field(default=0, ge=0)


class NetworkInterface(BaseModel):
    """Tap-backed network interface."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    host_dev_name: str = Field(min_length=1, description="Host tap device name")
    guest_name: str = Field(min_length=1, description="Interface id as seen by the VMM")
    mac: str | None = Field(default=None, description="Guest MAC; derived from the tap name when unset")
    allow_mmds_requests: bool = False


class GuestDefinition(BaseModel):
    """Immutable description of one microVM.

    Structural checks (device kinds, root disk, emulator) live in
    firecracker_ctl.validation so that partially valid definitions can still
    be represented and rejected with a GuestDefinitionError.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(min_length=1)
    uuid: UUID = Field(default_factory=uuid4)
    memory_bytes: int = Field(gt=0)
    vcpu_count: int = Field(ge=1)
    kernel_path: str
    cmdline: str = ""
    root: str
    disks: tuple[DiskDevice, ...] = ()
    char_devices: tuple[CharDevice, ...] = ()
    interfaces: tuple[NetworkInterface, ...] = ()
    emulator: Path | None = None

    @property
    def memory_mib(self) -> int:
        """Memory size in whole MiB (floor)."""
        return self.memory_bytes // MIB

    @property
    def memory_kib(self) -> int:
        return self.memory_bytes // 1024

    @property
    def serial(self) -> CharDevice | None:
        """The serial console, if one is configured."""
        for dev in self.char_devices:
            if dev.kind == "serial":
                return dev
        return None

    def find_root_disk(self) -> DiskDevice | None:
        """Return the disk whose target equals the declared root, if any."""
        for disk in self.disks:
            if disk.target == self.root:
                return disk
        return None


class GuestInfo(BaseModel):
    """Snapshot of a guest's cached runtime information."""

    model_config = ConfigDict(frozen=True)

    state: GuestState
    max_memory_kib: int
    memory_kib: int
    vcpu_count: int
    cpu_time_ns: int = 0

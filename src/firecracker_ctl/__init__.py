"""firecracker-ctl: lifecycle control plane for Firecracker microVMs.

Drives one Firecracker process per guest through its HTTP API on a unix
socket: launches the VMM in a per-guest workspace, configures machine,
boot source, root drive and network interfaces, boots it, and keeps the
guest's lifecycle state in step with what the VMM reports.

Quick Start:
    ```python
    from firecracker_ctl import DiskDevice, CharDevice, FirecrackerDriver, GuestDefinition

    definition = GuestDefinition(
        name="d1",
        memory_bytes=128 * 1024 * 1024,
        vcpu_count=1,
        kernel_path="/images/vmlinux",
        cmdline="panic=1",
        root="vda",
        disks=[DiskDevice(source="/images/rootfs.ext4", target="vda")],
        char_devices=[CharDevice(kind="serial")],
    )

    async with FirecrackerDriver() as driver:
        await driver.define(definition)
        await driver.create("d1")
        print(await driver.open_console("d1"))  # /dev/pts/N
        await driver.suspend("d1")
        await driver.resume("d1")
        await driver.shutdown("d1")
    ```

Requirements:
    - firecracker 0.25.0+ on PATH (or FIRECRACKER_CTL_FIRECRACKER_BIN)
    - Linux with /dev/kvm
    - Python 3.12+
"""

from firecracker_ctl.driver import FirecrackerDriver
from firecracker_ctl.exceptions import (
    AlreadyRunningError,
    ChannelTimeoutError,
    ConfigRejectedError,
    ConsoleUnavailableError,
    ControlPlaneError,
    GuestDefinitionError,
    GuestExistsError,
    GuestNotFoundError,
    InvalidStateRequestError,
    LifecycleError,
    MicrovmError,
    NotPausedError,
    NotRunningError,
    ProcessError,
    ProtocolError,
    RegistryError,
    RemoteRejectedError,
    RootDiskMissingError,
    ShutdownRejectedError,
    SpawnFailedError,
    StartRejectedError,
    StateChangeRejectedError,
    TransportError,
    VmmVersionError,
)
from firecracker_ctl.lifecycle import LifecycleController
from firecracker_ctl.models import (
    CharDevice,
    DiskDevice,
    GuestDefinition,
    GuestInfo,
    GuestState,
    NetworkInterface,
    StateReason,
)
from firecracker_ctl.process_supervisor import ProcessSupervisor, VmmProcess
from firecracker_ctl.runtime import Active, GuestRuntime, Inactive
from firecracker_ctl.settings import Settings
from firecracker_ctl.vmm_client import VmmApiClient
from firecracker_ctl.workspace import GuestWorkspace

__all__ = [
    "Active",
    "AlreadyRunningError",
    "ChannelTimeoutError",
    "CharDevice",
    "ConfigRejectedError",
    "ConsoleUnavailableError",
    "ControlPlaneError",
    "DiskDevice",
    "FirecrackerDriver",
    "GuestDefinition",
    "GuestDefinitionError",
    "GuestExistsError",
    "GuestInfo",
    "GuestNotFoundError",
    "GuestRuntime",
    "GuestState",
    "GuestWorkspace",
    "Inactive",
    "InvalidStateRequestError",
    "LifecycleController",
    "LifecycleError",
    "MicrovmError",
    "NetworkInterface",
    "NotPausedError",
    "NotRunningError",
    "ProcessError",
    "ProcessSupervisor",
    "ProtocolError",
    "RegistryError",
    "RemoteRejectedError",
    "RootDiskMissingError",
    "Settings",
    "ShutdownRejectedError",
    "SpawnFailedError",
    "StartRejectedError",
    "StateChangeRejectedError",
    "StateReason",
    "TransportError",
    "VmmApiClient",
    "VmmProcess",
    "VmmVersionError",
]

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("firecracker-ctl")
except PackageNotFoundError:
    __version__ = "0.0.0.dev0"

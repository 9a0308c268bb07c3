"""Guest lifecycle state machine.

LifecycleController sequences the workspace, the process supervisor and
the API client for one guest at a time:

    start     recreate workspace → launch → wait for socket → relax socket
              permissions → machine-config → boot-source → root drive →
              network interfaces → InstanceStart
    shutdown  refresh → require RUNNING → SendCtrlAltDel → reap → clean up
    destroy   SIGKILL → clean up (no API call, works with a dead socket)
    suspend   refresh → require RUNNING → PATCH /vm Paused
    resume    refresh → require PAUSED → PATCH /vm Resumed
    refresh   GET / → RUNNING | PAUSED | SHUTOFF, NOSTATE on failure

Every operation holds the guest's lock from its first check to its last
side effect. Guards look at the activity marker before any API call.
"""

from __future__ import annotations

import asyncio
import contextlib
import hashlib
from collections.abc import AsyncIterator, Coroutine
from pathlib import Path
from typing import Any

from firecracker_ctl import constants
from firecracker_ctl._logging import get_logger
from firecracker_ctl.exceptions import (
    AlreadyRunningError,
    ControlPlaneError,
    MicrovmError,
    NotPausedError,
    NotRunningError,
    SpawnFailedError,
)
from firecracker_ctl.models import DiskDevice, GuestDefinition, GuestState, NetworkInterface, StateReason
from firecracker_ctl.process_supervisor import ProcessSupervisor, VmmProcess
from firecracker_ctl.runtime import GuestRuntime
from firecracker_ctl.settings import Settings
from firecracker_ctl.validation import find_root_disk, resolve_emulator
from firecracker_ctl.vmm_client import VmmApiClient
from firecracker_ctl.workspace import GuestWorkspace

logger = get_logger(__name__)


def guest_mac_for_tap(tap_name: str) -> str:
    """Stable, locally administered unicast MAC derived from a tap name."""
    digest = hashlib.sha256(tap_name.encode()).digest()
    return ":".join(f"{b:02x}" for b in (0x06, *digest[:5]))


def boot_args_for(definition: GuestDefinition) -> str:
    """Kernel command line, with the serial console appended when one exists."""
    serial = definition.serial
    if serial is None:
        return definition.cmdline
    console_arg = constants.SERIAL_CONSOLE_ARG.format(port=serial.target_port)
    return f"{definition.cmdline} {console_arg}" if definition.cmdline else console_arg


async def finish_despite_cancellation(cleanup: Coroutine[Any, Any, None]) -> None:
    """Run `cleanup` to the end even if the awaiting task is cancelled meanwhile.

    A cancellation that arrives while it runs is re-raised once it is done.
    """
    task = asyncio.ensure_future(cleanup)
    cancelled = False
    while not task.done():
        try:
            await asyncio.shield(task)
        except asyncio.CancelledError:
            cancelled = True
    task.result()
    if cancelled:
        raise asyncio.CancelledError


class LifecycleController:
    """Drives guests through start, shutdown, destroy, suspend and resume.

    The controller keeps no per-guest state of its own; everything lives on
    the GuestRuntime passed to each call.

    Args:
        settings: Driver configuration (state root, binary, timeouts)
        client: API client; built from settings when omitted
        supervisor: Process supervisor; built from settings when omitted
    """

    def __init__(
        self,
        settings: Settings,
        client: VmmApiClient | None = None,
        supervisor: ProcessSupervisor | None = None,
    ) -> None:
        self.settings = settings
        self.client = client or VmmApiClient(timeout=settings.rpc_timeout_seconds)
        self.supervisor = supervisor or ProcessSupervisor(abort_reap_timeout=settings.abort_reap_timeout_seconds)

    def workspace_for(self, runtime: GuestRuntime) -> GuestWorkspace:
        if runtime.workspace is None:
            runtime.workspace = GuestWorkspace.for_guest(self.settings.get_state_dir(), runtime.name)
        return runtime.workspace

    @contextlib.asynccontextmanager
    async def _operation(self, runtime: GuestRuntime, operation: str) -> AsyncIterator[None]:
        async with runtime.lock:
            logger.debug("Guest operation started", extra={"guest": runtime.name, "operation": operation})
            try:
                yield
            except MicrovmError as e:
                e.context.setdefault("guest", runtime.name)
                e.context.setdefault("operation", operation)
                logger.warning(
                    "Guest operation failed",
                    extra={
                        "guest": runtime.name,
                        "operation": operation,
                        "error": e.message,
                        "error_type": type(e).__name__,
                    },
                )
                raise
            logger.info(
                "Guest operation completed",
                extra={"guest": runtime.name, "operation": operation, "state": runtime.state.value},
            )

    # ------------------------------------------------------------------
    # Start
    # ------------------------------------------------------------------

    async def start(self, runtime: GuestRuntime) -> None:
        """Boot the guest in a fresh workspace.

        On any failure after the workspace is touched, the process is killed
        and the workspace deleted; state and activity are left as they were.

        Raises:
            AlreadyRunningError: Guest is already active
            RootDiskMissingError: No disk targets the declared root
            GuestDefinitionError: firecracker binary not found
            SpawnFailedError, ChannelTimeoutError: Process did not come up
            ControlPlaneError: Configuration or InstanceStart failed
        """
        async with self._operation(runtime, "start"):
            if runtime.is_active:
                raise AlreadyRunningError(f"Guest {runtime.name!r} is already running")

            definition = runtime.definition
            root_disk = find_root_disk(definition)
            binary = resolve_emulator(definition, self.settings)
            workspace = self.workspace_for(runtime)

            process: VmmProcess | None = None
            try:
                try:
                    await workspace.recreate()
                except OSError as e:
                    raise SpawnFailedError(
                        f"Could not prepare workspace {workspace.directory}: {e}",
                        {"path": str(workspace.directory)},
                    ) from e

                process = await self.supervisor.launch(
                    binary,
                    workspace.socket_path,
                    workspace,
                    console=definition.serial is not None,
                )
                await self.supervisor.await_channel_ready(
                    process,
                    workspace.socket_path,
                    timeout_ms=self.settings.channel_ready_timeout_ms,
                    first_delay_ms=self.settings.channel_ready_first_delay_ms,
                    max_delay_ms=self.settings.channel_ready_max_delay_ms,
                )
                await self.supervisor.fix_channel_permissions(runtime.name, workspace.socket_path)
                await self._configure(workspace.socket_path, definition, root_disk)
                await self.client.start(workspace.socket_path)
            except BaseException:
                logger.error(
                    "Guest start failed, cleaning up",
                    extra={"guest": runtime.name, "pid": process.pid if process else None},
                )
                await finish_despite_cancellation(self._discard(process, workspace))
                raise

            runtime.mark_active(process)
            runtime.set_state(GuestState.RUNNING, StateReason.BOOTED)

    async def _discard(self, process: VmmProcess | None, workspace: GuestWorkspace) -> None:
        await self.supervisor.abort(process)
        await workspace.cleanup()

    async def _configure(self, socket_path: Path, definition: GuestDefinition, root_disk: DiskDevice) -> None:
        # Order is fixed: the VMM rejects out-of-order pre-boot configuration
        await self.client.configure_machine(
            socket_path,
            memory_mib=definition.memory_mib,
            vcpu_count=definition.vcpu_count,
            ht_enabled=self.settings.ht_enabled,
        )
        await self.client.configure_boot(
            socket_path,
            kernel_path=definition.kernel_path,
            cmdline=boot_args_for(definition),
        )
        await self.client.configure_disk(
            socket_path,
            drive_id=constants.ROOT_DRIVE_ID,
            host_path=root_disk.source,
            is_root=True,
            is_read_only=False,
        )
        for iface in definition.interfaces:
            await self._configure_interface(socket_path, iface)

    async def _configure_interface(self, socket_path: Path, iface: NetworkInterface) -> None:
        await self.client.configure_network(
            socket_path,
            iface_id=iface.guest_name,
            guest_mac=iface.mac or guest_mac_for_tap(iface.host_dev_name),
            host_dev_name=iface.host_dev_name,
            allow_mmds_requests=iface.allow_mmds_requests,
        )

    # ------------------------------------------------------------------
    # Stop
    # ------------------------------------------------------------------

    async def shutdown(self, runtime: GuestRuntime) -> int:
        """Ask the guest to power off, then reap the VMM.

        A failed refresh is tolerated only when the cached state was already
        SHUTOFF.

        Returns:
            The VMM's exit status

        Raises:
            NotRunningError: Guest inactive or not RUNNING after refresh
            ControlPlaneError: Refresh or SendCtrlAltDel failed
        """
        async with self._operation(runtime, "shutdown"):
            process = runtime.process
            if process is None:
                raise NotRunningError(f"Guest {runtime.name!r} is not running")

            cached = runtime.state
            try:
                await self._refresh(runtime)
            except ControlPlaneError:
                if cached is not GuestState.SHUTOFF:
                    raise
                logger.debug("Ignoring refresh failure for guest already shut off", extra={"guest": runtime.name})

            if runtime.state is not GuestState.RUNNING:
                raise NotRunningError(
                    f"Guest {runtime.name!r} is not running",
                    {"state": runtime.state.value},
                )

            workspace = self.workspace_for(runtime)
            await self.client.request_shutdown(workspace.socket_path)
            runtime.set_state(GuestState.SHUTOFF, StateReason.SHUTDOWN)

            returncode = await self.supervisor.reap(process)
            await workspace.remove_socket()
            await workspace.cleanup()
            runtime.mark_inactive()
            return returncode

    async def destroy(self, runtime: GuestRuntime) -> None:
        """Kill the VMM immediately, without talking to it.

        Raises:
            NotRunningError: Guest is not backed by a process
        """
        async with self._operation(runtime, "destroy"):
            process = runtime.process
            if process is None:
                raise NotRunningError(f"Guest {runtime.name!r} is not running")

            workspace = self.workspace_for(runtime)

            async def teardown() -> None:
                await self.supervisor.abort(process)
                await workspace.remove_socket()
                await workspace.cleanup()
                runtime.mark_inactive()
                runtime.set_state(GuestState.SHUTOFF, StateReason.DESTROYED)

            await finish_despite_cancellation(teardown())

    # ------------------------------------------------------------------
    # Pause / resume
    # ------------------------------------------------------------------

    async def suspend(self, runtime: GuestRuntime) -> None:
        """Pause a running guest.

        Raises:
            NotRunningError: Guest inactive or not RUNNING after refresh
            ControlPlaneError: Refresh or the state change failed
        """
        async with self._operation(runtime, "suspend"):
            if not runtime.is_active:
                raise NotRunningError(f"Guest {runtime.name!r} is not running")

            await self._refresh(runtime)
            if runtime.state is not GuestState.RUNNING:
                raise NotRunningError(f"Guest {runtime.name!r} is not running", {"state": runtime.state.value})

            await self.client.set_run_state(self.workspace_for(runtime).socket_path, constants.RUN_STATE_PAUSED)
            runtime.set_state(GuestState.PAUSED, StateReason.USER)

    async def resume(self, runtime: GuestRuntime) -> None:
        """Resume a paused guest.

        Raises:
            NotPausedError: Guest inactive or not PAUSED after refresh
            ControlPlaneError: Refresh or the state change failed
        """
        async with self._operation(runtime, "resume"):
            if not runtime.is_active:
                raise NotPausedError(f"Guest {runtime.name!r} is not paused")

            await self._refresh(runtime)
            if runtime.state is not GuestState.PAUSED:
                raise NotPausedError(f"Guest {runtime.name!r} is not paused", {"state": runtime.state.value})

            await self.client.set_run_state(self.workspace_for(runtime).socket_path, constants.RUN_STATE_RESUMED)
            runtime.set_state(GuestState.RUNNING, StateReason.UNPAUSED)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    async def refresh(self, runtime: GuestRuntime) -> GuestState:
        """Query the VMM and record its state.

        Raises:
            ControlPlaneError: State could not be read; NOSTATE is recorded
        """
        async with self._operation(runtime, "refresh"):
            return await self._refresh(runtime)

    async def query_state(self, runtime: GuestRuntime) -> tuple[GuestState, StateReason]:
        """Current state for reporting; never raises for an unreachable VMM.

        Inactive guests report their cached state. An active guest whose VMM
        cannot be queried is recorded as SHUTOFF with reason UNKNOWN.
        """
        async with runtime.lock:
            if runtime.is_active:
                try:
                    await self._refresh(runtime)
                except ControlPlaneError as e:
                    logger.debug(
                        "Guest state unavailable, reporting shutoff",
                        extra={"guest": runtime.name, "error": e.message},
                    )
                    runtime.set_state(GuestState.SHUTOFF, StateReason.UNKNOWN)
            return runtime.state, runtime.reason

    async def _refresh(self, runtime: GuestRuntime) -> GuestState:
        socket_path = self.workspace_for(runtime).socket_path
        try:
            state = await self.client.get_status(socket_path)
        except ControlPlaneError:
            runtime.set_state(GuestState.NOSTATE, runtime.reason)
            raise
        runtime.set_state(state, runtime.reason if state is runtime.state else StateReason.UNKNOWN)
        return state

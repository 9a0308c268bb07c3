"""Guest registry and driver facade.

FirecrackerDriver owns the set of known guests and routes lifecycle calls
to a LifecycleController. The registry lock only guards structural changes
(define, undefine, transient removal) and lookups; lifecycle operations run
under each guest's own lock.

Usage:
    async with FirecrackerDriver(Settings()) as driver:
        await driver.define(definition)
        await driver.create("d1")
        state, reason = await driver.get_state("d1")
        await driver.shutdown("d1")
"""

from __future__ import annotations

import asyncio
import shutil
from types import TracebackType
from typing import Self
from uuid import UUID

import aiofiles.os

from firecracker_ctl._logging import get_logger
from firecracker_ctl.exceptions import (
    ConsoleUnavailableError,
    GuestExistsError,
    GuestNotFoundError,
    LifecycleError,
    MicrovmError,
    NotRunningError,
    VmmVersionError,
)
from firecracker_ctl.lifecycle import LifecycleController
from firecracker_ctl.models import GuestDefinition, GuestInfo, GuestState, StateReason
from firecracker_ctl.runtime import GuestRuntime
from firecracker_ctl.settings import Settings
from firecracker_ctl.system_probes import probe_vmm_version
from firecracker_ctl.validation import resolve_emulator, validate_guest_definition

logger = get_logger(__name__)


class FirecrackerDriver:
    """Registry of guests plus the lifecycle entry points callers use.

    Args:
        settings: Driver configuration; read from the environment when omitted
        controller: Lifecycle controller; built from settings when omitted
    """

    def __init__(self, settings: Settings | None = None, controller: LifecycleController | None = None) -> None:
        self.settings = settings or Settings()
        self.controller = controller or LifecycleController(self.settings)
        self._guests: dict[str, GuestRuntime] = {}
        # Taken before any guest lock, never while holding one
        self._registry_lock = asyncio.Lock()
        self.vmm_version: tuple[int, int, int] | None = None

    async def __aenter__(self) -> Self:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def start(self) -> None:
        """Check the firecracker binary and create the state root.

        Raises:
            VmmVersionError: Binary missing or older than supported
        """
        binary = shutil.which(str(self.settings.firecracker_bin))
        if binary is None:
            raise VmmVersionError(
                f"firecracker binary not found: {self.settings.firecracker_bin}",
                {"binary": str(self.settings.firecracker_bin)},
            )
        self.vmm_version = await probe_vmm_version(binary)

        state_dir = self.settings.get_state_dir()
        await aiofiles.os.makedirs(state_dir, exist_ok=True)
        logger.info(
            "Firecracker driver started",
            extra={"state_dir": str(state_dir), "vmm_version": ".".join(map(str, self.vmm_version))},
        )

    async def aclose(self) -> None:
        """Destroy every guest still backed by a process (best-effort)."""
        for runtime in list(self._guests.values()):
            if not runtime.is_active:
                continue
            try:
                await self.destroy(runtime.name)
            except MicrovmError as e:
                logger.warning(
                    "Failed to destroy guest on driver close",
                    extra={"guest": runtime.name, "error": e.message},
                )

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    async def define(self, definition: GuestDefinition) -> GuestRuntime:
        """Register (or update) a persistent guest.

        Raises:
            GuestDefinitionError: Definition not runnable by this driver
            GuestExistsError: Name or UUID taken by a different guest
        """
        validate_guest_definition(definition)
        resolve_emulator(definition, self.settings)

        async with self._registry_lock:
            runtime = self._check_unique(definition)
            if runtime is None:
                runtime = GuestRuntime(definition=definition, persistent=True)
                self._guests[definition.name] = runtime
                logger.info("Guest defined", extra={"guest": definition.name, "uuid": str(definition.uuid)})
                return runtime

        async with runtime.lock:
            # Takes effect on the next start
            runtime.definition = definition
            runtime.persistent = True
        logger.info("Guest redefined", extra={"guest": definition.name, "uuid": str(definition.uuid)})
        return runtime

    async def undefine(self, name: str) -> None:
        """Forget a persistent guest.

        An active guest becomes transient and is removed once it stops.

        Raises:
            GuestNotFoundError: Unknown guest
            LifecycleError: Guest is transient
        """
        async with self._registry_lock:
            runtime = self._get(name)
            # Waits out an in-flight operation so activity is settled
            async with runtime.lock:
                if not runtime.persistent:
                    raise LifecycleError(f"Cannot undefine transient guest {name!r}", {"guest": name})
                if runtime.is_active:
                    runtime.persistent = False
                else:
                    del self._guests[name]
        logger.info("Guest undefined", extra={"guest": name})

    def _check_unique(self, definition: GuestDefinition) -> GuestRuntime | None:
        existing = self._guests.get(definition.name)
        if existing is not None and existing.definition.uuid != definition.uuid:
            raise GuestExistsError(
                f"Guest {definition.name!r} already exists with uuid {existing.definition.uuid}",
                {"guest": definition.name, "uuid": str(existing.definition.uuid)},
            )
        for other in self._guests.values():
            if other.definition.uuid == definition.uuid and other.name != definition.name:
                raise GuestExistsError(
                    f"Guest {other.name!r} already uses uuid {definition.uuid}",
                    {"guest": other.name, "uuid": str(definition.uuid)},
                )
        return existing

    def _get(self, name: str) -> GuestRuntime:
        runtime = self._guests.get(name)
        if runtime is None:
            raise GuestNotFoundError(f"No guest named {name!r}", {"guest": name})
        return runtime

    async def lookup_by_name(self, name: str) -> GuestRuntime:
        async with self._registry_lock:
            return self._get(name)

    async def lookup_by_uuid(self, uuid: UUID | str) -> GuestRuntime:
        wanted = UUID(str(uuid))
        async with self._registry_lock:
            for runtime in self._guests.values():
                if runtime.definition.uuid == wanted:
                    return runtime
        raise GuestNotFoundError(f"No guest with uuid {wanted}", {"uuid": str(wanted)})

    async def list_guests(self) -> list[GuestRuntime]:
        async with self._registry_lock:
            return sorted(self._guests.values(), key=lambda runtime: runtime.name)

    async def num_of_active(self) -> int:
        async with self._registry_lock:
            return sum(1 for runtime in self._guests.values() if runtime.is_active)

    async def list_active_ids(self) -> list[int]:
        """PIDs of the VMMs backing active guests."""
        async with self._registry_lock:
            return [
                runtime.process.pid
                for runtime in self._guests.values()
                if runtime.process is not None and runtime.process.pid is not None
            ]

    async def is_active(self, name: str) -> bool:
        return (await self.lookup_by_name(name)).is_active

    async def _forget_if_transient(self, runtime: GuestRuntime) -> None:
        async with self._registry_lock, runtime.lock:
            if not runtime.persistent and not runtime.is_active and self._guests.get(runtime.name) is runtime:
                del self._guests[runtime.name]
                logger.debug("Transient guest removed", extra={"guest": runtime.name})

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def create(self, name: str) -> GuestRuntime:
        """Start a defined guest."""
        runtime = await self.lookup_by_name(name)
        await self.controller.start(runtime)
        return runtime

    async def create_transient(self, definition: GuestDefinition) -> GuestRuntime:
        """Register and start a guest that is forgotten once it stops.

        Raises:
            GuestExistsError: Name or UUID already registered
        """
        validate_guest_definition(definition)
        resolve_emulator(definition, self.settings)

        async with self._registry_lock:
            if self._check_unique(definition) is not None:
                raise GuestExistsError(f"Guest {definition.name!r} already exists", {"guest": definition.name})
            runtime = GuestRuntime(definition=definition, persistent=False)
            self._guests[definition.name] = runtime

        try:
            await self.controller.start(runtime)
        except BaseException:
            await self._forget_if_transient(runtime)
            raise
        return runtime

    async def shutdown(self, name: str) -> int:
        """Gracefully stop a guest and return the VMM's exit status."""
        runtime = await self.lookup_by_name(name)
        returncode = await self.controller.shutdown(runtime)
        await self._forget_if_transient(runtime)
        return returncode

    async def destroy(self, name: str, *, graceful: bool = False) -> None:
        """Stop a guest. graceful=True performs a shutdown instead of a kill."""
        if graceful:
            await self.shutdown(name)
            return
        runtime = await self.lookup_by_name(name)
        await self.controller.destroy(runtime)
        await self._forget_if_transient(runtime)

    async def suspend(self, name: str) -> None:
        await self.controller.suspend(await self.lookup_by_name(name))

    async def resume(self, name: str) -> None:
        await self.controller.resume(await self.lookup_by_name(name))

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    async def get_state(self, name: str) -> tuple[GuestState, StateReason]:
        """Refreshed state; an unreachable VMM reads as SHUTOFF/UNKNOWN."""
        return await self.controller.query_state(await self.lookup_by_name(name))

    async def get_info(self, name: str) -> GuestInfo:
        runtime = await self.lookup_by_name(name)
        definition = runtime.definition
        return GuestInfo(
            state=runtime.state,
            max_memory_kib=definition.memory_kib,
            memory_kib=definition.memory_kib,
            vcpu_count=definition.vcpu_count,
        )

    async def open_console(self, name: str) -> str:
        """Path of the guest's serial console pty.

        Raises:
            NotRunningError: Guest is not active
            ConsoleUnavailableError: Guest has no serial console
        """
        runtime = await self.lookup_by_name(name)
        if not runtime.is_active:
            raise NotRunningError(f"Guest {name!r} is not running", {"guest": name})
        if runtime.definition.serial is None:
            raise ConsoleUnavailableError(f"Guest {name!r} has no serial console", {"guest": name})
        pty_path = runtime.workspace.console_pty_path if runtime.workspace else None
        if pty_path is None:
            raise ConsoleUnavailableError(f"Console of guest {name!r} is not allocated", {"guest": name})
        return pty_path

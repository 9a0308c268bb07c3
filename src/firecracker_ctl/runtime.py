"""Mutable per-guest runtime record."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

from firecracker_ctl._logging import get_logger
from firecracker_ctl.models import GuestDefinition, GuestState, StateReason
from firecracker_ctl.process_supervisor import VmmProcess
from firecracker_ctl.workspace import GuestWorkspace

logger = get_logger(__name__)


@dataclass(frozen=True)
class Inactive:
    """No VMM process backs the guest."""


@dataclass(frozen=True)
class Active:
    """A live VMM process backs the guest."""

    process: VmmProcess


Activity = Inactive | Active

INACTIVE = Inactive()


@dataclass(eq=False)
class GuestRuntime:
    """Everything the controller knows about one guest.

    Activity, not state, decides whether the guest is backed by a process:
    state can be stale or NOSTATE after a failed refresh while the process
    is still alive.

    Attributes:
        definition: Immutable guest description
        state: Last known lifecycle state
        reason: Why the guest entered that state
        activity: Inactive, or Active with the supervised process
        persistent: Keep the guest registered after it stops
        workspace: On-disk workspace; always set while active
        lock: Serializes lifecycle operations on this guest
    """

    definition: GuestDefinition
    state: GuestState = GuestState.NOSTATE
    reason: StateReason = StateReason.UNKNOWN
    activity: Activity = INACTIVE
    persistent: bool = False
    workspace: GuestWorkspace | None = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    @property
    def name(self) -> str:
        return self.definition.name

    @property
    def is_active(self) -> bool:
        return isinstance(self.activity, Active)

    @property
    def process(self) -> VmmProcess | None:
        match self.activity:
            case Active(process=process):
                return process
            case _:
                return None

    def set_state(self, state: GuestState, reason: StateReason) -> None:
        if state != self.state or reason != self.reason:
            logger.debug(
                "Guest state transition",
                extra={
                    "guest": self.name,
                    "from_state": self.state.value,
                    "to_state": state.value,
                    "reason": reason.value,
                },
            )
        self.state = state
        self.reason = reason

    def mark_active(self, process: VmmProcess) -> None:
        self.activity = Active(process)

    def mark_inactive(self) -> None:
        self.activity = INACTIVE

"""Exception hierarchy for firecracker-ctl.

All exceptions inherit from MicrovmError.

Hierarchy:
    MicrovmError (base)
    ├── GuestDefinitionError            ← definition violates device rules
    │   └── RootDiskMissingError        ← no disk targets the declared root
    ├── ProcessError
    │   ├── SpawnFailedError            ← VMM could not be launched
    │   └── ChannelTimeoutError         ← API socket never appeared
    ├── ControlPlaneError
    │   ├── TransportError              ← socket unreachable / request timed out
    │   ├── ProtocolError               ← unparseable or unexpected response
    │   ├── InvalidStateRequestError    ← run state other than Paused/Resumed
    │   └── RemoteRejectedError         ← VMM answered with a non-success status
    │       ├── ConfigRejectedError
    │       ├── StartRejectedError
    │       ├── ShutdownRejectedError
    │       └── StateChangeRejectedError
    ├── LifecycleError
    │   ├── NotRunningError
    │   ├── NotPausedError
    │   ├── AlreadyRunningError
    │   └── ConsoleUnavailableError
    ├── RegistryError
    │   ├── GuestNotFoundError
    │   └── GuestExistsError
    └── VmmVersionError                 ← firecracker missing or too old
"""

from __future__ import annotations

from typing import Any


class MicrovmError(Exception):
    """Base exception for all firecracker-ctl errors with structured context.

    Attributes:
        message: Human-readable error message
        context: Structured context for logging/debugging (guest, operation,
            socket_path, status_code, ...)
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}


# =============================================================================
# Definition
# =============================================================================


class GuestDefinitionError(MicrovmError):
    """Guest definition is not supported by this driver."""


class RootDiskMissingError(GuestDefinitionError):
    """No disk's target matches the definition's declared root."""


# =============================================================================
# Process supervision
# =============================================================================


class ProcessError(MicrovmError):
    """Base for VMM process failures."""


class SpawnFailedError(ProcessError):
    """VMM binary missing, not executable, or its plumbing could not be set up."""


class ChannelTimeoutError(ProcessError):
    """API socket did not appear within the readiness budget."""


# =============================================================================
# Control plane
# =============================================================================


class ControlPlaneError(MicrovmError):
    """Base for errors talking to the VMM API."""


class TransportError(ControlPlaneError):
    """Socket missing, connection refused or request timed out."""


class ProtocolError(ControlPlaneError):
    """Response could not be interpreted."""


class InvalidStateRequestError(ControlPlaneError):
    """Requested run state is not exactly "Paused" or "Resumed".

    Raised before any request is sent.
    """


class RemoteRejectedError(ControlPlaneError):
    """VMM answered with a status other than 200/204.

    Attributes:
        status_code: HTTP status returned by the VMM
        body: Raw response body (usually {"fault_message": ...})
    """

    def __init__(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        *,
        status_code: int,
        body: str = "",
    ):
        super().__init__(message, context)
        self.status_code = status_code
        self.body = body
        self.context.setdefault("status_code", status_code)
        self.context.setdefault("body", body)


class ConfigRejectedError(RemoteRejectedError):
    """machine-config, boot-source, drive or network-interface was rejected."""


class StartRejectedError(RemoteRejectedError):
    """InstanceStart was rejected."""


class ShutdownRejectedError(RemoteRejectedError):
    """SendCtrlAltDel was rejected."""


class StateChangeRejectedError(RemoteRejectedError):
    """Pause or resume was rejected."""


# =============================================================================
# Lifecycle
# =============================================================================


class LifecycleError(MicrovmError):
    """Operation not allowed in the guest's current state."""


class NotRunningError(LifecycleError):
    """Guest is not running."""


class NotPausedError(LifecycleError):
    """Guest is not paused."""


class AlreadyRunningError(LifecycleError):
    """Guest is already backed by a live VMM."""


class ConsoleUnavailableError(LifecycleError):
    """Guest has no serial console to attach to."""


# =============================================================================
# Registry
# =============================================================================


class RegistryError(MicrovmError):
    """Base for guest registry errors."""


class GuestNotFoundError(RegistryError):
    """No guest matches the given name or UUID."""


class GuestExistsError(RegistryError):
    """A different guest already uses this name or UUID."""


# =============================================================================
# Host
# =============================================================================


class VmmVersionError(MicrovmError):
    """Firecracker binary missing, unparseable version, or older than supported."""

"""Constants for firecracker-ctl paths, timeouts and API vocabulary."""

from typing import Final

# ============================================================================
# Workspace Layout
# ============================================================================

API_SOCKET_NAME: Final[str] = "firecracker.socket"
"""File name of the VMM control socket inside a guest workspace."""

STDOUT_LOG_NAME: Final[str] = "firecracker.stdout.log"
"""VMM stdout log (used only when no serial console is attached)."""

STDERR_LOG_NAME: Final[str] = "firecracker.stderr.log"
"""VMM stderr log (always attached)."""

WORKSPACE_DIR_MODE: Final[int] = 0o777
"""Mode for a freshly created guest workspace directory (subject to umask)."""

LOG_FILE_MODE: Final[int] = 0o666
"""Mode for VMM log files (subject to umask)."""

SOCKET_SHARED_MODE: Final[int] = 0o666
"""Permission bits OR-ed onto the API socket so other users can issue RPCs."""

VMM_UMASK: Final[int] = 0o002
"""umask applied in the child before exec of the VMM."""

PRIVILEGED_STATE_DIR: Final[str] = "/run/libvirt/firecracker"
"""Default state root when running as root."""

UNPRIVILEGED_STATE_SUBDIR: Final[str] = "libvirt/firecracker"
"""State root below $XDG_RUNTIME_DIR for unprivileged users."""

# ============================================================================
# Channel Readiness
# ============================================================================

CHANNEL_READY_TIMEOUT_MS: Final[int] = 10_000
"""Total wall-clock budget for the API socket to appear."""

CHANNEL_READY_FIRST_DELAY_MS: Final[int] = 1
"""First backoff delay while polling for the API socket."""

CHANNEL_READY_MAX_DELAY_MS: Final[int] = 1_000
"""Cap on a single backoff delay while polling for the API socket."""

# ============================================================================
# Control Plane
# ============================================================================

RPC_TIMEOUT_SECONDS: Final[float] = 5.0
"""Per-request timeout for the VMM API."""

API_BASE_URL: Final[str] = "http://localhost"
"""Base URL used for requests over the unix socket (host part is ignored)."""

SUCCESS_STATUS_CODES: Final[frozenset[int]] = frozenset({200, 204})
"""HTTP status codes the VMM uses to signal success."""

ROOT_DRIVE_ID: Final[str] = "rootfs"
"""Drive identifier used for the root block device."""

ACTION_INSTANCE_START: Final[str] = "InstanceStart"
ACTION_SEND_CTRL_ALT_DEL: Final[str] = "SendCtrlAltDel"

RUN_STATE_PAUSED: Final[str] = "Paused"
RUN_STATE_RESUMED: Final[str] = "Resumed"
VALID_RUN_STATES: Final[frozenset[str]] = frozenset({RUN_STATE_PAUSED, RUN_STATE_RESUMED})
"""Exact, case-sensitive values accepted by PATCH /vm."""

REMOTE_STATE_RUNNING: Final[str] = "Running"
REMOTE_STATE_PAUSED: Final[str] = "Paused"
REMOTE_STATE_NOT_STARTED: Final[str] = "Not started"

SERIAL_CONSOLE_ARG: Final[str] = "console=ttyS{port}"
"""Kernel argument appended when a serial console is configured."""

# ============================================================================
# Process Supervision
# ============================================================================

ABORT_REAP_TIMEOUT_SECONDS: Final[float] = 2.0
"""Bounded wait for the VMM to be reaped after SIGKILL."""

MIN_FIRECRACKER_VERSION: Final[tuple[int, int, int]] = (0, 25, 0)
"""Oldest Firecracker release whose API matches this control plane."""

VERSION_PROBE_TIMEOUT_SECONDS: Final[float] = 5.0
"""Timeout for `firecracker --version`."""

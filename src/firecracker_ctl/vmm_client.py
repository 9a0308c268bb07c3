"""Client for the Firecracker API served on the VMM's unix socket.

The client is stateless: every call names the socket it targets, opens a
short-lived httpx client bound to that socket and closes it again. A VMM
answers 204 (or 200 for GET) on success and a JSON fault otherwise.

Example:
    client = VmmApiClient(timeout=5.0)
    await client.configure_machine(sock, memory_mib=128, vcpu_count=1, ht_enabled=False)
    await client.start(sock)
    state = await client.get_status(sock)
"""

from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path
from typing import Any

import httpx

from firecracker_ctl import constants
from firecracker_ctl._logging import get_logger
from firecracker_ctl.exceptions import (
    ConfigRejectedError,
    InvalidStateRequestError,
    ProtocolError,
    RemoteRejectedError,
    ShutdownRejectedError,
    StartRejectedError,
    StateChangeRejectedError,
    TransportError,
)
from firecracker_ctl.models import GuestState

logger = get_logger(__name__)

TransportFactory = Callable[[str], httpx.AsyncBaseTransport]

_REMOTE_STATES: dict[str, GuestState] = {
    constants.REMOTE_STATE_RUNNING: GuestState.RUNNING,
    constants.REMOTE_STATE_PAUSED: GuestState.PAUSED,
    constants.REMOTE_STATE_NOT_STARTED: GuestState.SHUTOFF,
}

_HEADERS = {"Accept": "application/json", "Content-Type": "application/json"}


def _uds_transport(socket_path: str) -> httpx.AsyncBaseTransport:
    return httpx.AsyncHTTPTransport(uds=socket_path)


class VmmApiClient:
    """Issues configuration, action and status requests to one VMM at a time.

    Args:
        timeout: Per-request timeout in seconds (connect, read and write)
        transport_factory: Builds the httpx transport for a socket path.
            Defaults to a unix-domain-socket transport; tests pass an
            httpx.MockTransport instead.
    """

    __slots__ = ("_timeout", "_transport_factory")

    def __init__(
        self,
        timeout: float = constants.RPC_TIMEOUT_SECONDS,
        transport_factory: TransportFactory | None = None,
    ) -> None:
        self._timeout = timeout
        self._transport_factory = transport_factory or _uds_transport

    # ------------------------------------------------------------------
    # Pre-boot configuration
    # ------------------------------------------------------------------

    async def configure_machine(
        self,
        socket_path: Path,
        *,
        memory_mib: int,
        vcpu_count: int,
        ht_enabled: bool = False,
    ) -> None:
        """PUT /machine-config."""
        await self._put(
            socket_path,
            "/machine-config",
            {"ht_enabled": ht_enabled, "mem_size_mib": memory_mib, "vcpu_count": vcpu_count},
            ConfigRejectedError,
        )

    async def configure_boot(self, socket_path: Path, *, kernel_path: str, cmdline: str) -> None:
        """PUT /boot-source. cmdline is sent as-is."""
        await self._put(
            socket_path,
            "/boot-source",
            {"kernel_image_path": kernel_path, "boot_args": cmdline},
            ConfigRejectedError,
        )

    async def configure_disk(
        self,
        socket_path: Path,
        *,
        drive_id: str,
        host_path: str,
        is_root: bool,
        is_read_only: bool,
    ) -> None:
        """PUT /drives/{drive_id}."""
        await self._put(
            socket_path,
            f"/drives/{drive_id}",
            {
                "drive_id": drive_id,
                "path_on_host": host_path,
                "is_root_device": is_root,
                "is_read_only": is_read_only,
            },
            ConfigRejectedError,
        )

    async def configure_network(
        self,
        socket_path: Path,
        *,
        iface_id: str,
        guest_mac: str,
        host_dev_name: str,
        allow_mmds_requests: bool = False,
    ) -> None:
        """PUT /network-interfaces/{iface_id}."""
        await self._put(
            socket_path,
            f"/network-interfaces/{iface_id}",
            {
                "allow_mmds_requests": allow_mmds_requests,
                "guest_mac": guest_mac,
                "host_dev_name": host_dev_name,
                "iface_id": iface_id,
            },
            ConfigRejectedError,
        )

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    async def start(self, socket_path: Path) -> None:
        """Boot the configured instance.

        The VMM accepts the action and boots asynchronously; poll
        get_status() to observe the result.
        """
        await self._put(
            socket_path,
            "/actions",
            {"action_type": constants.ACTION_INSTANCE_START},
            StartRejectedError,
        )

    async def request_shutdown(self, socket_path: Path) -> None:
        """Send Ctrl+Alt+Del to the guest. Does not wait for power-off."""
        await self._put(
            socket_path,
            "/actions",
            {"action_type": constants.ACTION_SEND_CTRL_ALT_DEL},
            ShutdownRejectedError,
        )

    async def set_run_state(self, socket_path: Path, target: str) -> None:
        """PATCH /vm with target "Paused" or "Resumed".

        Raises:
            InvalidStateRequestError: target is not exactly one of the two
                accepted values; nothing is sent
            StateChangeRejectedError: VMM refused the change
        """
        if target not in constants.VALID_RUN_STATES:
            raise InvalidStateRequestError(
                f"Invalid run state {target!r}; expected one of {sorted(constants.VALID_RUN_STATES)}",
                {"socket_path": str(socket_path), "target": target},
            )
        await self._send(socket_path, "PATCH", "/vm", {"state": target}, StateChangeRejectedError)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    async def get_status(self, socket_path: Path) -> GuestState:
        """GET / and map the instance state.

        Returns:
            RUNNING, PAUSED or SHUTOFF ("Not started")

        Raises:
            TransportError: Socket unreachable or request timed out
            ProtocolError: Non-success status, non-JSON body, or unknown state
        """
        ctx: dict[str, Any] = {"socket_path": str(socket_path), "method": "GET", "path": "/"}
        response = await self._request(socket_path, "GET", "/", None)

        if response.status_code not in constants.SUCCESS_STATUS_CODES:
            raise ProtocolError(
                f"Instance info request failed with status {response.status_code}",
                {**ctx, "status_code": response.status_code, "body": response.text},
            )

        try:
            payload = response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ProtocolError("Instance info response is not valid JSON", {**ctx, "body": response.text}) from e

        remote_state = payload.get("state") if isinstance(payload, dict) else None
        if not isinstance(remote_state, str):
            raise ProtocolError("Instance info response has no state", {**ctx, "body": response.text})

        state = _REMOTE_STATES.get(remote_state)
        if state is None:
            raise ProtocolError(f"Unknown instance state {remote_state!r}", {**ctx, "remote_state": remote_state})
        return state

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _put(
        self,
        socket_path: Path,
        path: str,
        payload: dict[str, Any],
        rejected: type[RemoteRejectedError],
    ) -> None:
        await self._send(socket_path, "PUT", path, payload, rejected)

    async def _send(
        self,
        socket_path: Path,
        method: str,
        path: str,
        payload: dict[str, Any],
        rejected: type[RemoteRejectedError],
    ) -> None:
        response = await self._request(socket_path, method, path, payload)
        if response.status_code not in constants.SUCCESS_STATUS_CODES:
            body = response.text
            raise rejected(
                f"Firecracker API {method} {path} failed: {response.status_code} {body.strip()}",
                {"socket_path": str(socket_path), "method": method, "path": path},
                status_code=response.status_code,
                body=body,
            )

    async def _request(
        self,
        socket_path: Path,
        method: str,
        path: str,
        payload: dict[str, Any] | None,
    ) -> httpx.Response:
        content = None if payload is None else json.dumps(payload, separators=(",", ":"))
        ctx = {"socket_path": str(socket_path), "method": method, "path": path}
        logger.debug("Firecracker API request", extra={**ctx, "body": content})

        transport = self._transport_factory(str(socket_path))
        try:
            async with httpx.AsyncClient(
                transport=transport,
                base_url=constants.API_BASE_URL,
                timeout=self._timeout,
            ) as client:
                response = await client.request(method, path, content=content, headers=_HEADERS)
        except httpx.ProtocolError as e:
            raise ProtocolError(f"Malformed response from Firecracker API: {e}", ctx) from e
        except httpx.TransportError as e:
            raise TransportError(f"Firecracker API unreachable: {e}", ctx) from e

        logger.debug(
            "Firecracker API response",
            extra={**ctx, "status_code": response.status_code},
        )
        return response

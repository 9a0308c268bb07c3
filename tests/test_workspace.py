"""Tests for GuestWorkspace and the best-effort cleanup helpers."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest

from firecracker_ctl import constants
from firecracker_ctl.exceptions import GuestDefinitionError
from firecracker_ctl.resource_cleanup import cleanup_directory, cleanup_file
from firecracker_ctl.workspace import GuestWorkspace


class TestLayout:
    """Paths derived from the state root and guest name."""

    def test_paths(self, tmp_path: Path) -> None:
        """Socket and logs live directly inside <root>/<name>."""
        ws = GuestWorkspace.for_guest(tmp_path, "d1")

        assert ws.directory == tmp_path / "d1"
        assert ws.socket_path == tmp_path / "d1" / constants.API_SOCKET_NAME
        assert ws.stdout_log == tmp_path / "d1" / constants.STDOUT_LOG_NAME
        assert ws.stderr_log == tmp_path / "d1" / constants.STDERR_LOG_NAME
        assert ws.console_pty_path is None

    def test_distinct_guests_never_share(self, tmp_path: Path) -> None:
        """Different names give disjoint directories and sockets."""
        a = GuestWorkspace.for_guest(tmp_path, "a")
        b = GuestWorkspace.for_guest(tmp_path, "b")

        assert a.directory != b.directory
        assert a.socket_path != b.socket_path

    @pytest.mark.parametrize("name", [".", "..", "a/b", "../victim", "/abs", "a\0b"])
    def test_rejects_names_escaping_root(self, tmp_path: Path, name: str) -> None:
        """No name may resolve to the root itself or to anything outside it."""
        with pytest.raises(GuestDefinitionError):
            GuestWorkspace.for_guest(tmp_path, name)


class TestRecreate:
    """Clean-slate directory on every start."""

    async def test_creates_missing_directory(self, tmp_path: Path) -> None:
        """Parents are created as needed."""
        ws = GuestWorkspace.for_guest(tmp_path / "state", "d1")
        await ws.recreate()

        assert ws.directory.is_dir()
        assert list(ws.directory.iterdir()) == []

    async def test_wipes_previous_contents(self, tmp_path: Path) -> None:
        """Leftovers from an earlier run are removed."""
        ws = GuestWorkspace.for_guest(tmp_path, "d1")
        ws.directory.mkdir()
        (ws.directory / "stale.log").write_text("old")
        (ws.directory / "nested").mkdir()
        ws.console_pty_path = "/dev/pts/9"

        await ws.recreate()

        assert ws.directory.is_dir()
        assert list(ws.directory.iterdir()) == []
        assert ws.console_pty_path is None


class TestCleanup:
    """Best-effort deletion."""

    async def test_cleanup_removes_tree(self, tmp_path: Path) -> None:
        """cleanup() deletes the whole directory."""
        ws = GuestWorkspace.for_guest(tmp_path, "d1")
        await ws.recreate()
        ws.stderr_log.write_text("x")

        assert await ws.cleanup() is True
        assert not ws.directory.exists()

    async def test_cleanup_missing_is_success(self, tmp_path: Path) -> None:
        """Nothing to delete is not a failure."""
        ws = GuestWorkspace.for_guest(tmp_path, "d1")
        assert await ws.cleanup() is True

    async def test_cleanup_failure_is_reported_not_raised(self, tmp_path: Path) -> None:
        """OS errors are logged and returned as False."""
        ws = GuestWorkspace.for_guest(tmp_path, "d1")
        await ws.recreate()

        with patch("firecracker_ctl.resource_cleanup.shutil.rmtree", side_effect=PermissionError("denied")):
            assert await ws.cleanup() is False
        assert ws.directory.exists()

    async def test_remove_socket(self, tmp_path: Path) -> None:
        """remove_socket() deletes only the socket file."""
        ws = GuestWorkspace.for_guest(tmp_path, "d1")
        await ws.recreate()
        ws.socket_path.touch()
        ws.stderr_log.touch()

        assert await ws.remove_socket() is True
        assert not ws.socket_path.exists()
        assert ws.stderr_log.exists()

    async def test_cleanup_helpers_accept_none(self) -> None:
        """None paths are a no-op success."""
        assert await cleanup_file(None, "d1") is True
        assert await cleanup_directory(None, "d1") is True

    async def test_cleanup_file_missing(self, tmp_path: Path) -> None:
        """Removing an absent file succeeds."""
        assert await cleanup_file(tmp_path / "gone", "d1") is True

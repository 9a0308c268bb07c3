"""Tests for the fcctl command line."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest
from click.testing import CliRunner

from firecracker_ctl.cli import EXIT_DRIVER_ERROR, EXIT_SUCCESS, load_definition, main, run_guest
from firecracker_ctl.settings import Settings

REFERENCE_GUEST = {
    "name": "d1",
    "memory_bytes": 134217728,
    "vcpu_count": 1,
    "kernel_path": "/k",
    "cmdline": "panic=1",
    "root": "vda",
    "disks": [{"source": "/img.ext4", "target": "vda"}],
    "char_devices": [{"kind": "serial"}],
}


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def definition_file(short_tmp: Path) -> Path:
    path = short_tmp / "guest.json"
    path.write_text(json.dumps(REFERENCE_GUEST))
    return path


# ============================================================================
# version-check
# ============================================================================


class TestVersionCheck:
    def test_supported(self, runner: CliRunner, fake_firecracker: Path) -> None:
        result = runner.invoke(main, ["version-check", "--firecracker", str(fake_firecracker)])
        assert result.exit_code == EXIT_SUCCESS
        assert "firecracker 1.7.0" in result.output

    def test_too_old(self, runner: CliRunner, fake_firecracker: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("FAKE_FC_VERSION", "Firecracker v0.20.0")
        result = runner.invoke(main, ["version-check", "--firecracker", str(fake_firecracker)])
        assert result.exit_code == EXIT_DRIVER_ERROR
        assert "too old" in result.output


# ============================================================================
# run
# ============================================================================


class TestRunCommand:
    """Argument handling and failure exit codes."""

    def test_missing_definition(self, runner: CliRunner, short_tmp: Path) -> None:
        """An unreadable definition is a usage error."""
        result = runner.invoke(main, ["run", str(short_tmp / "absent.json")])
        assert result.exit_code == 2
        assert "Cannot read" in result.output

    @pytest.mark.parametrize(
        "content",
        ["not json", json.dumps({**REFERENCE_GUEST, "vcpu_count": 0}), json.dumps({"name": "d1"})],
    )
    def test_invalid_definition(self, runner: CliRunner, short_tmp: Path, content: str) -> None:
        path = short_tmp / "guest.json"
        path.write_text(content)

        result = runner.invoke(main, ["run", str(path)])
        assert result.exit_code == 2
        assert "Invalid guest definition" in result.output

    def test_vmm_exits_during_boot(self, runner: CliRunner, short_tmp: Path, definition_file: Path) -> None:
        """A VMM that dies before opening its socket is a driver error."""
        binary = short_tmp / "firecracker-dies"
        binary.write_text('#!/bin/sh\nif [ "$1" = "--version" ]; then echo "Firecracker v1.7.0"; exit 0; fi\nexit 3\n')
        binary.chmod(0o755)

        result = runner.invoke(
            main,
            ["run", "--state-dir", str(short_tmp / "state"), "--firecracker", str(binary), str(definition_file)],
        )
        assert result.exit_code == EXIT_DRIVER_ERROR
        assert "Driver error" in result.output
        assert list((short_tmp / "state").iterdir()) == []


class TestRunGuest:
    """The async body of `fcctl run`."""

    async def test_boot_and_graceful_stop(
        self, settings: Settings, api_log, definition_file: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        """On a stop request the guest is shut down, not killed."""
        with patch("firecracker_ctl.cli._wait_for_exit_or_signal", AsyncMock(return_value=True)):
            code = await run_guest(load_definition(definition_file), settings, shutdown_timeout=5.0)

        assert code == EXIT_SUCCESS
        assert "Console: /dev/pts/" in capsys.readouterr().out
        assert {"action_type": "SendCtrlAltDel"} in [r["body"] for r in api_log.requests()]
        assert list(settings.get_state_dir().iterdir()) == []

    async def test_vmm_exit_skips_shutdown(self, settings: Settings, api_log, definition_file: Path) -> None:
        """If the VMM went away on its own there is nothing to shut down; it is destroyed on close."""
        with patch("firecracker_ctl.cli._wait_for_exit_or_signal", AsyncMock(return_value=False)):
            code = await run_guest(load_definition(definition_file), settings, shutdown_timeout=5.0)

        assert code == EXIT_SUCCESS
        assert {"action_type": "SendCtrlAltDel"} not in [r["body"] for r in api_log.requests()]
        assert list(settings.get_state_dir().iterdir()) == []

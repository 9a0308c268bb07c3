"""Unit tests for Settings and state directory resolution.

No mocks beyond environment variables and euid.
"""

from pathlib import Path
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from firecracker_ctl import constants
from firecracker_ctl.platform_utils import default_state_dir, get_runtime_dir, is_privileged
from firecracker_ctl.settings import Settings

# ============================================================================
# Field validation
# ============================================================================


class TestSettingsValidation:
    """Defaults and field constraints."""

    def test_defaults(self) -> None:
        """Settings mirror the documented constants."""
        settings = Settings()
        assert settings.firecracker_bin == Path("firecracker")
        assert settings.state_dir is None
        assert settings.channel_ready_timeout_ms == 10_000
        assert settings.channel_ready_first_delay_ms == 1
        assert settings.channel_ready_max_delay_ms == 1_000
        assert settings.rpc_timeout_seconds == constants.RPC_TIMEOUT_SECONDS
        assert settings.ht_enabled is False
        assert settings.abort_reap_timeout_seconds == constants.ABORT_REAP_TIMEOUT_SECONDS

    @pytest.mark.parametrize(
        "field",
        [
            "channel_ready_timeout_ms",
            "channel_ready_first_delay_ms",
            "channel_ready_max_delay_ms",
            "rpc_timeout_seconds",
            "abort_reap_timeout_seconds",
        ],
    )
    def test_timeouts_must_be_positive(self, field: str) -> None:
        with pytest.raises(ValidationError):
            Settings(**{field: 0})


# ============================================================================
# Environment overrides
# ============================================================================


class TestSettingsEnvironment:
    """FIRECRACKER_CTL_* environment variables."""

    def test_env_overrides(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        monkeypatch.setenv("FIRECRACKER_CTL_STATE_DIR", str(tmp_path))
        monkeypatch.setenv("FIRECRACKER_CTL_FIRECRACKER_BIN", "/opt/fc/firecracker")
        monkeypatch.setenv("FIRECRACKER_CTL_CHANNEL_READY_TIMEOUT_MS", "2500")
        monkeypatch.setenv("FIRECRACKER_CTL_HT_ENABLED", "true")

        settings = Settings()
        assert settings.get_state_dir() == tmp_path
        assert settings.firecracker_bin == Path("/opt/fc/firecracker")
        assert settings.channel_ready_timeout_ms == 2500
        assert settings.ht_enabled is True

    def test_explicit_argument_beats_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("FIRECRACKER_CTL_RPC_TIMEOUT_SECONDS", "9")
        assert Settings(rpc_timeout_seconds=1.5).rpc_timeout_seconds == 1.5

    def test_invalid_env_value(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("FIRECRACKER_CTL_CHANNEL_READY_TIMEOUT_MS", "-1")
        with pytest.raises(ValidationError):
            Settings()


# ============================================================================
# State directory
# ============================================================================


class TestStateDir:
    """Privileged vs unprivileged workspace roots."""

    def test_privileged_root(self) -> None:
        assert Settings(privileged=True).get_state_dir() == Path("/run/libvirt/firecracker")

    def test_unprivileged_uses_xdg_runtime_dir(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        monkeypatch.setenv("XDG_RUNTIME_DIR", str(tmp_path))
        assert Settings(privileged=False).get_state_dir() == tmp_path / "libvirt" / "firecracker"

    def test_unprivileged_without_xdg(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        """Falls back to a directory under the home cache."""
        monkeypatch.delenv("XDG_RUNTIME_DIR", raising=False)
        monkeypatch.setenv("HOME", str(tmp_path))
        assert get_runtime_dir() == tmp_path / ".cache" / "firecracker-ctl" / "run"
        assert default_state_dir(False) == get_runtime_dir() / "libvirt" / "firecracker"

    def test_explicit_state_dir_wins(self, tmp_path: Path) -> None:
        assert Settings(privileged=True, state_dir=tmp_path).get_state_dir() == tmp_path

    def test_privilege_follows_euid(self) -> None:
        with patch("firecracker_ctl.platform_utils.os.geteuid", return_value=0):
            assert is_privileged() is True
            assert Settings().privileged is True
        with patch("firecracker_ctl.platform_utils.os.geteuid", return_value=1000):
            assert is_privileged() is False

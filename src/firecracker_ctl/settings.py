"""Runtime configuration from environment variables."""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from firecracker_ctl import constants
from firecracker_ctl.platform_utils import default_state_dir, is_privileged


class Settings(BaseSettings):
    """Driver-wide configuration.

    All settings can be overridden via environment variables with the
    FIRECRACKER_CTL_ prefix.
    Example: FIRECRACKER_CTL_STATE_DIR=/srv/fc
    """

    model_config = SettingsConfigDict(
        env_prefix="FIRECRACKER_CTL_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    privileged: bool = Field(default_factory=is_privileged)
    state_dir: Path | None = None
    """Guest workspace root. None selects the privileged/unprivileged default."""

    firecracker_bin: Path = Path("firecracker")
    """VMM binary. A bare name is searched on PATH."""

    # Channel readiness
    channel_ready_timeout_ms: int = Field(default=constants.CHANNEL_READY_TIMEOUT_MS, gt=0)
    channel_ready_first_delay_ms: int = Field(default=constants.CHANNEL_READY_FIRST_DELAY_MS, gt=0)
    channel_ready_max_delay_ms: int = Field(default=constants.CHANNEL_READY_MAX_DELAY_MS, gt=0)

    # Control plane
    rpc_timeout_seconds: float = Field(default=constants.RPC_TIMEOUT_SECONDS, gt=0)
    ht_enabled: bool = False

    # Process supervision
    abort_reap_timeout_seconds: float = Field(default=constants.ABORT_REAP_TIMEOUT_SECONDS, gt=0)

    def get_state_dir(self) -> Path:
        """Resolved state root for guest workspaces."""
        if self.state_dir is not None:
            return self.state_dir
        return default_state_dir(self.privileged)

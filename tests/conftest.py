"""Shared pytest fixtures for firecracker-ctl tests."""

import json
import shutil
import sys
import tempfile
from collections.abc import AsyncGenerator, Callable, Generator
from pathlib import Path
from typing import Any

import pytest

from firecracker_ctl.lifecycle import LifecycleController
from firecracker_ctl.models import CharDevice, DiskDevice, GuestDefinition
from firecracker_ctl.runtime import GuestRuntime
from firecracker_ctl.settings import Settings
from firecracker_ctl.system_probes import _probe_cache

FAKE_FIRECRACKER = Path(__file__).parent / "fake_firecracker.py"

# ============================================================================
# Paths
# ============================================================================


@pytest.fixture
def short_tmp() -> Generator[Path, None, None]:
    """Short temporary directory.

    Unix socket paths are limited to 108 bytes, which pytest's tmp_path
    can exceed once the guest name and socket file name are appended.
    """
    path = Path(tempfile.mkdtemp(prefix="fc-", dir="/tmp"))
    yield path
    shutil.rmtree(path, ignore_errors=True)


@pytest.fixture
def fake_firecracker(short_tmp: Path) -> Path:
    """Executable wrapper that runs tests/fake_firecracker.py with this interpreter."""
    bin_dir = short_tmp / "bin"
    bin_dir.mkdir()
    wrapper = bin_dir / "firecracker"
    wrapper.write_text(f'#!/bin/sh\nexec "{sys.executable}" "{FAKE_FIRECRACKER}" "$@"\n')
    wrapper.chmod(0o755)
    return wrapper


@pytest.fixture(autouse=True)
def _clear_probe_cache() -> Generator[None, None, None]:
    _probe_cache.clear()
    yield
    _probe_cache.clear()


# ============================================================================
# Fake API request log
# ============================================================================


class ApiLog:
    """Requests seen by the fake firecracker, in order."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def requests(self) -> list[dict[str, Any]]:
        if not self.path.exists():
            return []
        return [json.loads(line) for line in self.path.read_text().splitlines() if line]

    def calls(self) -> list[tuple[str, str]]:
        return [(r["method"], r["path"]) for r in self.requests()]


@pytest.fixture
def api_log(short_tmp: Path, monkeypatch: pytest.MonkeyPatch) -> ApiLog:
    """Route the fake firecracker's request log to a file."""
    log_path = short_tmp / "api.jsonl"
    monkeypatch.setenv("FAKE_FC_LOG", str(log_path))
    return ApiLog(log_path)


# ============================================================================
# Settings / controller
# ============================================================================


@pytest.fixture
def settings(short_tmp: Path, fake_firecracker: Path) -> Settings:
    """Settings pointing at the fake firecracker and a private state root."""
    return Settings(
        state_dir=short_tmp / "state",
        firecracker_bin=fake_firecracker,
        rpc_timeout_seconds=5.0,
        abort_reap_timeout_seconds=5.0,
    )


@pytest.fixture
def controller(settings: Settings) -> LifecycleController:
    return LifecycleController(settings)


@pytest.fixture
def make_definition() -> Callable[..., GuestDefinition]:
    """Factory for the reference guest: 128 MiB, 1 vCPU, rootfs on vda, serial console."""

    def _make(name: str = "d1", **overrides: Any) -> GuestDefinition:
        fields: dict[str, Any] = {
            "name": name,
            "memory_bytes": 128 * 1024 * 1024,
            "vcpu_count": 1,
            "kernel_path": "/k",
            "cmdline": "panic=1",
            "root": "vda",
            "disks": [DiskDevice(source="/img.ext4", target="vda")],
            "char_devices": [CharDevice(kind="serial", source_type="pty")],
        }
        fields.update(overrides)
        return GuestDefinition(**fields)

    return _make


@pytest.fixture
async def make_runtime(
    controller: LifecycleController,
    make_definition: Callable[..., GuestDefinition],
) -> AsyncGenerator[Callable[..., GuestRuntime], None]:
    """Factory for GuestRuntime objects; active ones are destroyed at teardown."""
    created: list[GuestRuntime] = []

    def _make(name: str = "d1", **overrides: Any) -> GuestRuntime:
        runtime = GuestRuntime(definition=make_definition(name, **overrides), persistent=True)
        created.append(runtime)
        return runtime

    yield _make

    for runtime in created:
        if runtime.is_active:
            await controller.destroy(runtime)

from __future__ import annotations

import json
import subprocess
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import pytest

from ztadmin.world.lifecycle import WorldLifecycleManager

ORIGINAL_PLANET = b"original-default-planet"
LOCAL_IDENTITY = "a1b2c3d4e5:0:abcdef0123456789abcdef0123456789"


@dataclass(slots=True)
class FakeGenerator:
    """Stands in for ztmkworld: writes the configured output file into its cwd."""

    returncode: int = 0
    write_output: bool = True
    stderr: str = ""
    raise_exc: BaseException | None = None
    calls: list[tuple[tuple[str, ...], Path, float]] = field(default_factory=list)
    documents: list[dict[str, Any]] = field(default_factory=list)

    def __call__(
        self,
        command: Sequence[str],
        cwd: Path,
        timeout_seconds: float,
    ) -> subprocess.CompletedProcess[str]:
        self.calls.append((tuple(command), cwd, timeout_seconds))
        if self.raise_exc is not None:
            raise self.raise_exc

        document = json.loads(Path(command[2]).read_text(encoding="utf-8"))
        self.documents.append(document)
        if self.returncode == 0 and self.write_output:
            output = f"planet:{document['plID']}:{document['plBirth']}:{len(self.calls)}"
            (cwd / document["output"]).write_bytes(output.encode("utf-8"))
        return subprocess.CompletedProcess(
            args=list(command),
            returncode=self.returncode,
            stdout="",
            stderr=self.stderr,
        )


def stepping_clock(start: datetime | None = None) -> Callable[[], datetime]:
    current = start or datetime(2026, 1, 2, 3, 4, 5, 678000, tzinfo=UTC)
    ticks = 0

    def clock() -> datetime:
        nonlocal ticks
        ticks += 1
        return current + timedelta(seconds=ticks)

    return clock


def write_state_dir(
    state_dir: Path,
    *,
    planet: bytes | None = ORIGINAL_PLANET,
    identity: str | None = LOCAL_IDENTITY,
) -> None:
    state_dir.mkdir(parents=True, exist_ok=True)
    if planet is not None:
        (state_dir / "planet").write_bytes(planet)
    if identity is not None:
        (state_dir / "identity.public").write_text(f"{identity}\n", encoding="utf-8")


def write_generator_binary(path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("#!/bin/sh\nexit 0\n", encoding="utf-8")
    path.chmod(0o755)
    return path


def build_manager(
    tmp_path: Path,
    *,
    generator: FakeGenerator,
    lock_timeout_seconds: float = 1.0,
) -> WorldLifecycleManager:
    return WorldLifecycleManager(
        state_dir=str(tmp_path / "zerotier-one"),
        mkworld_bin_path=str(tmp_path / "bin" / "ztmkworld"),
        command_runner=generator,
        generator_timeout_seconds=30.0,
        lock_timeout_seconds=lock_timeout_seconds,
        clock=stepping_clock(),
    )


@pytest.fixture()
def state_dir(tmp_path: Path) -> Path:
    path = tmp_path / "zerotier-one"
    write_state_dir(path)
    write_generator_binary(tmp_path / "bin" / "ztmkworld")
    return path


@pytest.fixture()
def generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture()
def manager(tmp_path: Path, state_dir: Path, generator: FakeGenerator) -> WorldLifecycleManager:
    return build_manager(tmp_path, generator=generator)

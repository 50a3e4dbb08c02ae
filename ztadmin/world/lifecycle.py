"""Custom planet (world) lifecycle: generate, back up, install and restore."""

from __future__ import annotations

import logging
import os
import re
import shutil
import subprocess
import threading
import uuid
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ztadmin.config import AppSettings
from ztadmin.db.enums import WorldState
from ztadmin.repositories.audit_events import AuditEventRepository
from ztadmin.repositories.global_options import GlobalOptionsRepository
from ztadmin.world.config_builder import (
    GENERATOR_CONFIG_NAME,
    WorldConfig,
    WorldConfigValidationError,
    WorldGenerateRequest,
    build_world_config,
    validate_world_request,
)

logger = logging.getLogger(__name__)

CommandRunner = Callable[[Sequence[str], Path, float], subprocess.CompletedProcess[str]]
Clock = Callable[[], datetime]

PLANET_FILE_NAME = "planet"
IDENTITY_FILE_NAME = "identity.public"
STAGING_DIR_NAME = "zt-mkworld"
BACKUP_DIR_NAME = "planet_backup"
BACKUP_FILE_PREFIX = "planet.bak."
PREVIOUS_PLANET_NAME = "planet.previous"
WORLD_TARGET_TYPE = "world_lifecycle"
WORLD_TARGET_ID = "planet"

_NON_ALNUM = re.compile(r"[^A-Za-z0-9]")
_PATH_LOCKS: dict[str, threading.RLock] = {}
_PATH_LOCKS_GUARD = threading.Lock()


class WorldLifecycleError(Exception):
    """Base exception type for deterministic world lifecycle failure handling."""

    error_code = "world_lifecycle_error"

    def __init__(
        self,
        message: str,
        *,
        remediation: str,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.remediation = remediation
        self.status_code = status_code


class WorldPermissionDeniedError(WorldLifecycleError):
    error_code = "world_permission_denied"


class MissingIdentityError(WorldLifecycleError):
    error_code = "world_missing_identity"


class MissingGeneratorError(WorldLifecycleError):
    error_code = "world_missing_generator"


class GeneratorFailedError(WorldLifecycleError):
    error_code = "world_generator_failed"


class NoBackupAvailableError(WorldLifecycleError):
    error_code = "world_no_backup_available"


class PlanetInstallError(WorldLifecycleError):
    error_code = "world_planet_install_failed"


class RestoreFailedError(WorldLifecycleError):
    error_code = "world_restore_failed"


class WorldStoreUpdateError(WorldLifecycleError):
    """Raised when the planet was installed but its parameters could not be persisted."""

    error_code = "world_store_update_failed"


class WorldLifecycleBusyError(WorldLifecycleError):
    error_code = "world_lifecycle_busy"


@dataclass(frozen=True, slots=True)
class WorldGenerateResult:
    config: WorldConfig
    planet_path: str
    backup_path: str | None
    world_state: WorldState = WorldState.CUSTOM_WORLD_ACTIVE
    previous_planet_path: str | None = None


@dataclass(frozen=True, slots=True)
class WorldResetResult:
    restored_from: str
    planet_path: str
    world_state: WorldState = WorldState.NO_CUSTOM_WORLD


@dataclass(frozen=True, slots=True)
class WorldStatusResult:
    state_dir: str
    planet_present: bool
    identity_present: bool
    generator_present: bool
    staging_present: bool
    backup_dir_present: bool
    backup_entries: tuple[str, ...]


def _run_local_command(
    command: Sequence[str],
    cwd: Path,
    timeout_seconds: float,
) -> subprocess.CompletedProcess[str]:
    return subprocess.run(
        list(command),
        cwd=cwd,
        text=True,
        capture_output=True,
        check=False,
        timeout=timeout_seconds,
    )


def _utc_now() -> datetime:
    return datetime.now(UTC)


def backup_timestamp(moment: datetime) -> str:
    """Return a sortable, filename-safe UTC timestamp with millisecond precision."""
    utc_moment = moment.astimezone(UTC)
    iso_value = (
        f"{utc_moment.strftime('%Y-%m-%dT%H:%M:%S')}.{utc_moment.microsecond // 1000:03d}Z"
    )
    return _NON_ALNUM.sub("_", iso_value)


def _lock_for_path(path: Path) -> threading.RLock:
    key = os.path.abspath(path)
    with _PATH_LOCKS_GUARD:
        lock = _PATH_LOCKS.get(key)
        if lock is None:
            lock = threading.RLock()
            _PATH_LOCKS[key] = lock
        return lock


class WorldLifecycleManager:
    """Planet file operations under the ZeroTier state directory.

    Generate and reset are serialized per canonical planet path. The lock is
    re-entrant so the orchestration functions below can hold it across the
    filesystem change and the matching store update.
    """

    def __init__(
        self,
        *,
        state_dir: str,
        mkworld_bin_path: str,
        command_runner: CommandRunner = _run_local_command,
        generator_timeout_seconds: float = 120.0,
        lock_timeout_seconds: float = 30.0,
        clock: Clock = _utc_now,
    ) -> None:
        normalized_state_dir = state_dir.strip()
        if not normalized_state_dir:
            raise ValueError("zerotier.world.state_dir is required")
        normalized_bin_path = mkworld_bin_path.strip()
        if not normalized_bin_path:
            raise ValueError("zerotier.world.mkworld_bin_path is required")

        self._state_dir = Path(normalized_state_dir).expanduser()
        self._mkworld_bin_path = Path(normalized_bin_path).expanduser()
        self._command_runner = command_runner
        self._generator_timeout_seconds = generator_timeout_seconds
        self._lock_timeout_seconds = lock_timeout_seconds
        self._clock = clock

    @property
    def state_dir(self) -> Path:
        return self._state_dir

    @property
    def planet_path(self) -> Path:
        return self._state_dir / PLANET_FILE_NAME

    @property
    def identity_path(self) -> Path:
        return self._state_dir / IDENTITY_FILE_NAME

    @property
    def staging_dir(self) -> Path:
        return self._state_dir / STAGING_DIR_NAME

    @property
    def backup_dir(self) -> Path:
        return self._state_dir / BACKUP_DIR_NAME

    @property
    def mkworld_bin_path(self) -> Path:
        return self._mkworld_bin_path

    @contextmanager
    def exclusive_access(self) -> Iterator[None]:
        lock = _lock_for_path(self.planet_path)
        if not lock.acquire(timeout=self._lock_timeout_seconds):
            raise WorldLifecycleBusyError(
                f"another world operation is in progress for {self.planet_path}",
                remediation="wait for the running generate/reset operation to finish and retry",
            )
        try:
            yield
        finally:
            lock.release()

    def generate(self, request: WorldGenerateRequest) -> WorldGenerateResult:
        validate_world_request(request)
        with self.exclusive_access():
            supplied_identity = (request.identity or "").strip()
            self._check_generate_preconditions(identity_supplied=bool(supplied_identity))
            identity = supplied_identity or self.read_local_identity()
            config = build_world_config(request, identity=identity)

            staging_dir = self.staging_dir
            try:
                staging_dir.mkdir(exist_ok=True)
            except OSError as exc:
                raise WorldPermissionDeniedError(
                    f"failed to create staging directory {staging_dir}: {exc}",
                    remediation=f"ensure {self._state_dir} is writable by this service",
                ) from exc

            backup_path = self._backup_original_planet()

            config_path = staging_dir / GENERATOR_CONFIG_NAME
            output_path = staging_dir / config.output
            try:
                config_path.write_text(config.to_json(), encoding="utf-8")
                output_path.unlink(missing_ok=True)
            except OSError as exc:
                raise WorldPermissionDeniedError(
                    f"failed to stage generator config at {config_path}: {exc}",
                    remediation=f"ensure {staging_dir} is writable by this service",
                ) from exc

            self._run_generator(config_path=config_path, output_path=output_path)

            previous_path = self._keep_previous_planet()
            try:
                _atomic_copy(output_path, self.planet_path)
            except OSError as exc:
                raise PlanetInstallError(
                    f"failed to install generated planet into {self.planet_path}: {exc}",
                    remediation=(
                        f"ensure {self.planet_path} is a writable file and the volume "
                        "has free space"
                    ),
                ) from exc

        logger.info(
            "installed custom planet plID=%s plBirth=%s endpoints=%s",
            config.pl_id,
            config.pl_birth,
            ",".join(config.root_nodes[0].endpoints),
        )
        return WorldGenerateResult(
            config=config,
            planet_path=str(self.planet_path),
            backup_path=str(backup_path) if backup_path is not None else None,
            previous_planet_path=str(previous_path) if previous_path is not None else None,
        )

    def reset(self) -> WorldResetResult:
        with self.exclusive_access():
            backup_dir = self.backup_dir
            if not backup_dir.is_dir():
                raise NoBackupAvailableError(
                    f"backup directory does not exist: {backup_dir}",
                    remediation="no custom planet was installed by this service; nothing to restore",
                )

            try:
                backups = self.list_backups()
            except OSError as exc:
                raise RestoreFailedError(
                    f"failed to list planet backups in {backup_dir}: {exc}",
                    remediation=f"ensure {backup_dir} is readable by this service",
                ) from exc
            if not backups:
                raise NoBackupAvailableError(
                    f"no planet backups found in {backup_dir}",
                    remediation=(
                        f"copy the original planet into {backup_dir} as "
                        f"{BACKUP_FILE_PREFIX}<timestamp> before resetting"
                    ),
                )

            latest_backup = backup_dir / backups[-1]
            try:
                _atomic_copy(latest_backup, self.planet_path)
                shutil.rmtree(backup_dir)
                shutil.rmtree(self.staging_dir, ignore_errors=True)
            except OSError as exc:
                raise RestoreFailedError(
                    f"failed to restore planet from {latest_backup}: {exc}",
                    remediation=f"ensure {self._state_dir} is writable and retry the reset",
                ) from exc

        logger.info("restored planet from %s", latest_backup)
        return WorldResetResult(
            restored_from=str(latest_backup),
            planet_path=str(self.planet_path),
        )

    def revert_install(self, result: WorldGenerateResult) -> None:
        """Put back the planet that was active before ``result`` was installed."""
        with self.exclusive_access():
            try:
                if result.previous_planet_path is None:
                    self.planet_path.unlink(missing_ok=True)
                else:
                    _atomic_copy(Path(result.previous_planet_path), self.planet_path)
            except OSError as exc:
                raise RestoreFailedError(
                    f"failed to revert {self.planet_path} after an incomplete generate: {exc}",
                    remediation=(
                        f"ensure {self._state_dir} is writable, then run a reset or "
                        "generate again"
                    ),
                ) from exc
        logger.warning("reverted %s to the planet active before generate", self.planet_path)

    def list_backups(self) -> tuple[str, ...]:
        try:
            names = [
                entry.name
                for entry in self.backup_dir.iterdir()
                if entry.is_file() and entry.name.startswith(BACKUP_FILE_PREFIX)
            ]
        except FileNotFoundError:
            return ()
        return tuple(sorted(names))

    def read_local_identity(self) -> str:
        try:
            return self.identity_path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return ""

    def describe_world_state(self) -> WorldStatusResult:
        return WorldStatusResult(
            state_dir=str(self._state_dir),
            planet_present=self.planet_path.is_file(),
            identity_present=self.identity_path.is_file(),
            generator_present=self._mkworld_bin_path.is_file(),
            staging_present=self.staging_dir.is_dir(),
            backup_dir_present=self.backup_dir.is_dir(),
            backup_entries=self.list_backups(),
        )

    def _check_generate_preconditions(self, *, identity_supplied: bool) -> None:
        state_dir = self._state_dir
        if not state_dir.is_dir() or not os.access(state_dir, os.W_OK):
            raise WorldPermissionDeniedError(
                f"ZeroTier state directory is not writable: {state_dir}",
                remediation=f"remove the read-only flag from the volume mount for {state_dir}",
            )
        if not identity_supplied and not self.identity_path.is_file():
            raise MissingIdentityError(
                f"{self.identity_path} does not exist, cannot generate planet file",
                remediation="start the ZeroTier node once to create its identity or pass identity",
            )
        if not self._mkworld_bin_path.is_file():
            raise MissingGeneratorError(
                f"ztmkworld executable does not exist at {self._mkworld_bin_path}",
                remediation="install ztmkworld or set zerotier.world.mkworld_bin_path",
            )

    def _backup_original_planet(self) -> Path | None:
        planet_path = self.planet_path
        backup_dir = self.backup_dir
        # Only the first replaced planet is kept; an existing backup dir means it is already saved.
        if not planet_path.is_file() or backup_dir.exists():
            return None

        backup_path = backup_dir / f"{BACKUP_FILE_PREFIX}{backup_timestamp(self._clock())}"
        try:
            backup_dir.mkdir()
            shutil.copy2(planet_path, backup_path)
        except OSError as exc:
            shutil.rmtree(backup_dir, ignore_errors=True)
            raise WorldPermissionDeniedError(
                f"failed to back up {planet_path} into {backup_dir}: {exc}",
                remediation=f"ensure {self._state_dir} is writable and has free space",
            ) from exc
        logger.info("backed up original planet to %s", backup_path)
        return backup_path

    def _keep_previous_planet(self) -> Path | None:
        planet_path = self.planet_path
        if not planet_path.is_file():
            return None

        previous_path = self.staging_dir / PREVIOUS_PLANET_NAME
        try:
            shutil.copy2(planet_path, previous_path)
        except OSError as exc:
            raise WorldPermissionDeniedError(
                f"failed to keep a copy of {planet_path} in {self.staging_dir}: {exc}",
                remediation=f"ensure {self.staging_dir} is writable and has free space",
            ) from exc
        return previous_path

    def _run_generator(self, *, config_path: Path, output_path: Path) -> None:
        command = (str(self._mkworld_bin_path), "-c", str(config_path))
        remediation = "verify the world parameters and that ztmkworld runs on this host"
        try:
            result = self._command_runner(
                command,
                config_path.parent,
                self._generator_timeout_seconds,
            )
        except subprocess.TimeoutExpired as exc:
            raise GeneratorFailedError(
                f"ztmkworld did not finish within {self._generator_timeout_seconds:g}s",
                remediation=remediation,
            ) from exc
        except OSError as exc:
            raise GeneratorFailedError(
                f"failed to execute ztmkworld: {exc}",
                remediation=remediation,
            ) from exc

        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            detail = f"ztmkworld exited with status={result.returncode}"
            if stderr:
                detail = f"{detail}; stderr={stderr[:240]}"
            raise GeneratorFailedError(detail, remediation=remediation)

        if not output_path.is_file():
            raise GeneratorFailedError(
                f"ztmkworld did not produce {output_path.name} in {output_path.parent}",
                remediation=remediation,
            )


def _atomic_copy(source: Path, destination: Path) -> None:
    temp_path = destination.with_name(f".{destination.name}.{uuid.uuid4().hex[:8]}.tmp")
    try:
        shutil.copyfile(source, temp_path)
        os.replace(temp_path, destination)
    except OSError:
        temp_path.unlink(missing_ok=True)
        raise


def create_world_lifecycle_manager(
    settings: AppSettings,
    *,
    command_runner: CommandRunner = _run_local_command,
) -> WorldLifecycleManager:
    return WorldLifecycleManager(
        state_dir=settings.zt_state_dir,
        mkworld_bin_path=settings.zt_mkworld_bin_path,
        command_runner=command_runner,
        generator_timeout_seconds=settings.zt_mkworld_timeout_seconds,
        lock_timeout_seconds=settings.zt_world_lock_timeout_seconds,
    )


def run_world_generate(
    *,
    manager: WorldLifecycleManager,
    db_session: Session,
    request: WorldGenerateRequest,
    trigger: str,
    actor_user_id: uuid.UUID | None = None,
) -> WorldGenerateResult:
    audit_repo = AuditEventRepository(db_session)
    base_metadata: dict[str, Any] = {
        "trigger": trigger,
        "recommend": request.recommend,
        "endpoints": list(request.endpoints),
    }
    try:
        with manager.exclusive_access():
            result = manager.generate(request)
            try:
                GlobalOptionsRepository(db_session).save_root_server_config(
                    result.config.to_root_server_config(in_use=True)
                )
                _audit_world_event(
                    audit_repo=audit_repo,
                    action="world_lifecycle.generate.succeeded",
                    actor_user_id=actor_user_id,
                    metadata={
                        **base_metadata,
                        "pl_id": result.config.pl_id,
                        "pl_birth": result.config.pl_birth,
                        "backup_path": result.backup_path,
                        "world_state": result.world_state.value,
                    },
                )
                db_session.commit()
            except SQLAlchemyError as exc:
                db_session.rollback()
                _revert_generated_world(manager=manager, db_session=db_session, result=result)
                raise WorldStoreUpdateError(
                    "failed to persist custom planet parameters; "
                    f"{result.planet_path} was reverted: {exc}",
                    remediation="check database connectivity and run the generate again",
                ) from exc
    except (WorldLifecycleError, WorldConfigValidationError) as exc:
        db_session.rollback()
        _record_world_failure(
            db_session=db_session,
            audit_repo=audit_repo,
            action="world_lifecycle.generate.failed",
            actor_user_id=actor_user_id,
            metadata={**base_metadata, **_error_metadata(exc)},
        )
        logger.warning("world generation failed: %s", exc)
        raise
    return result


def run_world_reset(
    *,
    manager: WorldLifecycleManager,
    db_session: Session,
    trigger: str,
    actor_user_id: uuid.UUID | None = None,
) -> WorldResetResult:
    """Restore the original planet and clear the persisted root-server parameters.

    The persisted parameters are cleared when no backup exists or the restore
    fails as well, so the store never claims a custom planet that cannot be
    shown to be on disk.
    """
    audit_repo = AuditEventRepository(db_session)
    options_repo = GlobalOptionsRepository(db_session)
    try:
        with manager.exclusive_access():
            try:
                result = manager.reset()
            except (NoBackupAvailableError, RestoreFailedError):
                options_repo.reset_root_server_config()
                raise
            try:
                options_repo.reset_root_server_config()
                _audit_world_event(
                    audit_repo=audit_repo,
                    action="world_lifecycle.reset.succeeded",
                    actor_user_id=actor_user_id,
                    metadata={
                        "trigger": trigger,
                        "restored_from": result.restored_from,
                        "world_state": result.world_state.value,
                    },
                )
                db_session.commit()
            except SQLAlchemyError as exc:
                db_session.rollback()
                raise WorldStoreUpdateError(
                    f"restored {result.planet_path} but failed to clear the persisted "
                    f"root-server parameters: {exc}",
                    remediation=(
                        "check database connectivity and run the reset again; "
                        "a repeated reset clears the parameters"
                    ),
                ) from exc
    except WorldLifecycleError as exc:
        _record_world_failure(
            db_session=db_session,
            audit_repo=audit_repo,
            action="world_lifecycle.reset.failed",
            actor_user_id=actor_user_id,
            metadata={
                "trigger": trigger,
                "store_reset": isinstance(exc, NoBackupAvailableError | RestoreFailedError),
                **_error_metadata(exc),
            },
        )
        logger.warning("world reset failed: %s", exc)
        raise
    return result


def _revert_generated_world(
    *,
    manager: WorldLifecycleManager,
    db_session: Session,
    result: WorldGenerateResult,
) -> None:
    """Undo an install whose parameters never reached the store.

    When the planet cannot be put back, the store is written again in a fresh
    transaction so that it describes the planet left on disk.
    """
    try:
        manager.revert_install(result)
    except RestoreFailedError:
        logger.exception("could not revert %s; recording it as installed", result.planet_path)
        try:
            GlobalOptionsRepository(db_session).save_root_server_config(
                result.config.to_root_server_config(in_use=True)
            )
            db_session.commit()
        except SQLAlchemyError:
            db_session.rollback()
            logger.exception("store does not match the planet at %s", result.planet_path)
        raise


def _record_world_failure(
    *,
    db_session: Session,
    audit_repo: AuditEventRepository,
    action: str,
    metadata: dict[str, Any],
    actor_user_id: uuid.UUID | None,
) -> None:
    try:
        _audit_world_event(
            audit_repo=audit_repo,
            action=action,
            actor_user_id=actor_user_id,
            metadata=metadata,
        )
        db_session.commit()
    except SQLAlchemyError:
        db_session.rollback()
        logger.exception("failed to record %s audit event", action)


def _audit_world_event(
    *,
    audit_repo: AuditEventRepository,
    action: str,
    metadata: dict[str, Any],
    actor_user_id: uuid.UUID | None,
) -> None:
    audit_repo.create_event(
        action=action,
        target_type=WORLD_TARGET_TYPE,
        target_id=WORLD_TARGET_ID,
        actor_user_id=actor_user_id,
        metadata=metadata,
    )


def _error_metadata(exc: WorldLifecycleError | WorldConfigValidationError) -> dict[str, Any]:
    metadata: dict[str, Any] = {
        "error_code": exc.error_code,
        "error": str(exc),
    }
    if isinstance(exc, WorldConfigValidationError):
        metadata["field"] = exc.field
        return metadata
    metadata["remediation"] = exc.remediation
    if exc.status_code is not None:
        metadata["status_code"] = exc.status_code
    return metadata

"""Application configuration loading."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, cast

import yaml

DEFAULT_STATE_DIR = "/var/lib/zerotier-one"
DEFAULT_MKWORLD_BIN_PATH = "/usr/local/bin/ztmkworld"
LOG_LEVELS = frozenset({"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"})


@dataclass(frozen=True, slots=True)
class AppSettings:
    app_env: str
    app_secret_key: str
    session_cookie_name: str = "ztadmin_session"
    session_cookie_max_age_seconds: int = 8 * 60 * 60
    session_cookie_secure: bool = False
    log_level: str = "INFO"
    runtime_config_path: str = "runtime-config.yaml"
    zt_controller_base_url: str = "http://127.0.0.1:9993/controller"
    zt_controller_auth_token: str = ""
    zt_controller_auth_token_file: str = ""
    zt_controller_http_timeout_seconds: float = 10.0
    zt_state_dir: str = DEFAULT_STATE_DIR
    zt_mkworld_bin_path: str = DEFAULT_MKWORLD_BIN_PATH
    zt_mkworld_timeout_seconds: float = 120.0
    zt_world_lock_timeout_seconds: float = 30.0
    public_ip_lookup_url: str = "https://api.ip.sb/ip"

    @classmethod
    def from_yaml(cls, runtime_config_path: str = "runtime-config.yaml") -> AppSettings:
        normalized_path = runtime_config_path.strip() or "runtime-config.yaml"
        config = _load_runtime_config(normalized_path)

        app_cfg = cast(dict[str, Any], config.get("app", {}))
        session_cfg = cast(dict[str, Any], config.get("session", {}))
        zerotier_cfg = cast(dict[str, Any], config.get("zerotier", {}))
        controller_cfg = cast(dict[str, Any], zerotier_cfg.get("controller", {}))
        world_cfg = cast(dict[str, Any], zerotier_cfg.get("world", {}))

        app_env = str(app_cfg.get("env", "development")).lower()
        return cls(
            app_env=app_env,
            app_secret_key=str(app_cfg.get("secret_key", "change-me")),
            session_cookie_name=str(session_cfg.get("cookie_name", "ztadmin_session")),
            session_cookie_max_age_seconds=int(
                session_cfg.get("cookie_max_age_seconds", 8 * 60 * 60)
            ),
            session_cookie_secure=bool(
                session_cfg.get("cookie_secure", app_env == "production")
            ),
            log_level=_resolve_log_level(app_cfg.get("log_level", "INFO")),
            runtime_config_path=normalized_path,
            zt_controller_base_url=str(
                controller_cfg.get("base_url", "http://127.0.0.1:9993/controller")
            ),
            zt_controller_auth_token=os.environ.get("ZT_CONTROLLER_AUTH_TOKEN", ""),
            zt_controller_auth_token_file=str(controller_cfg.get("auth_token_file", "")),
            zt_controller_http_timeout_seconds=max(
                1.0,
                float(controller_cfg.get("http_timeout_seconds", 10.0)),
            ),
            zt_state_dir=str(world_cfg.get("state_dir", DEFAULT_STATE_DIR)),
            zt_mkworld_bin_path=str(
                world_cfg.get("mkworld_bin_path", DEFAULT_MKWORLD_BIN_PATH)
            ),
            zt_mkworld_timeout_seconds=max(
                1.0,
                float(world_cfg.get("generator_timeout_seconds", 120.0)),
            ),
            zt_world_lock_timeout_seconds=max(
                0.0,
                float(world_cfg.get("lock_timeout_seconds", 30.0)),
            ),
            public_ip_lookup_url=str(
                world_cfg.get("public_ip_lookup_url", "https://api.ip.sb/ip")
            ),
        )

    @classmethod
    def from_env(cls, runtime_config_path: str = "runtime-config.yaml") -> AppSettings:
        return cls.from_yaml(
            runtime_config_path=os.environ.get("ZTADMIN_RUNTIME_CONFIG", runtime_config_path)
        )


def _load_runtime_config(runtime_config_path: str) -> dict[str, Any]:
    path = Path(runtime_config_path)
    if not path.exists() or not path.is_file():
        return {}

    parsed = yaml.safe_load(path.read_text(encoding="utf-8"))
    if isinstance(parsed, dict):
        return parsed
    return {}


def _resolve_log_level(raw_level: Any) -> str:
    normalized_level = str(raw_level).strip().upper()
    if normalized_level in LOG_LEVELS:
        return normalized_level

    raise ValueError(
        f"unsupported app.log_level in runtime config: {normalized_level!r}; "
        f"expected one of {', '.join(sorted(LOG_LEVELS))}"
    )


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    return AppSettings.from_env()

from __future__ import annotations

from pathlib import Path

import pytest

from ztadmin.config import DEFAULT_STATE_DIR, AppSettings, get_settings


def _write_runtime_config(tmp_path: Path, content: str) -> Path:
    runtime_config = tmp_path / "runtime-config.yaml"
    runtime_config.write_text(content, encoding="utf-8")
    return runtime_config


def test_from_yaml_defaults_when_runtime_config_missing(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.delenv("ZT_CONTROLLER_AUTH_TOKEN", raising=False)

    settings = AppSettings.from_yaml(str(tmp_path / "missing.yaml"))

    assert settings.app_env == "development"
    assert settings.log_level == "INFO"
    assert settings.zt_controller_base_url == "http://127.0.0.1:9993/controller"
    assert settings.zt_controller_auth_token == ""
    assert settings.zt_state_dir == DEFAULT_STATE_DIR
    assert settings.session_cookie_secure is False


def test_from_yaml_reads_controller_and_world_sections(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("ZT_CONTROLLER_AUTH_TOKEN", "env-token")
    runtime_config = _write_runtime_config(
        tmp_path,
        """
app:
  env: Production
  secret_key: prod-secret
  log_level: debug
zerotier:
  controller:
    base_url: http://10.0.0.2:9993/controller
    auth_token_file: /run/secrets/zt-token
    http_timeout_seconds: 4
  world:
    state_dir: /srv/zerotier-one
    mkworld_bin_path: /opt/ztmkworld
    generator_timeout_seconds: 45
    lock_timeout_seconds: 5
    public_ip_lookup_url: https://ip.example.net/
""",
    )

    settings = AppSettings.from_yaml(str(runtime_config))

    assert settings.app_env == "production"
    assert settings.app_secret_key == "prod-secret"
    assert settings.log_level == "DEBUG"
    assert settings.session_cookie_secure is True
    assert settings.zt_controller_base_url == "http://10.0.0.2:9993/controller"
    assert settings.zt_controller_auth_token == "env-token"
    assert settings.zt_controller_auth_token_file == "/run/secrets/zt-token"
    assert settings.zt_controller_http_timeout_seconds == 4.0
    assert settings.zt_state_dir == "/srv/zerotier-one"
    assert settings.zt_mkworld_bin_path == "/opt/ztmkworld"
    assert settings.zt_mkworld_timeout_seconds == 45.0
    assert settings.zt_world_lock_timeout_seconds == 5.0
    assert settings.public_ip_lookup_url == "https://ip.example.net/"


def test_from_yaml_clamps_timeouts(tmp_path: Path) -> None:
    runtime_config = _write_runtime_config(
        tmp_path,
        """
zerotier:
  controller:
    http_timeout_seconds: 0
  world:
    generator_timeout_seconds: -3
    lock_timeout_seconds: -1
""",
    )

    settings = AppSettings.from_yaml(str(runtime_config))

    assert settings.zt_controller_http_timeout_seconds == 1.0
    assert settings.zt_mkworld_timeout_seconds == 1.0
    assert settings.zt_world_lock_timeout_seconds == 0.0


def test_from_yaml_rejects_unknown_log_level(tmp_path: Path) -> None:
    runtime_config = _write_runtime_config(tmp_path, "app:\n  log_level: chatty\n")

    with pytest.raises(ValueError, match="app.log_level"):
        AppSettings.from_yaml(str(runtime_config))


def test_get_settings_reads_runtime_config_env_path(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    runtime_config = _write_runtime_config(
        tmp_path,
        "zerotier:\n  world:\n    state_dir: /data/zerotier-one\n",
    )
    monkeypatch.setenv("ZTADMIN_RUNTIME_CONFIG", str(runtime_config))

    get_settings.cache_clear()
    try:
        settings = get_settings()
        assert settings.runtime_config_path == str(runtime_config)
        assert settings.zt_state_dir == "/data/zerotier-one"
    finally:
        get_settings.cache_clear()

"""Helpers for resolving self-hosted controller authentication tokens."""

from __future__ import annotations

from pathlib import Path

from ztadmin.config import AppSettings

TOKEN_FILE_NAME = "authtoken.secret"


def read_controller_auth_token_file(token_file: str) -> str:
    source = token_file.strip()
    if not source:
        raise ValueError("controller auth token file path cannot be empty")

    try:
        token = Path(source).read_text(encoding="utf-8").strip()
    except OSError as exc:
        raise ValueError(
            f"failed to read controller auth token file: {source}: {exc}"
        ) from exc

    if not token:
        raise ValueError(f"controller auth token file is empty: {source}")
    return token


def resolve_controller_auth_token(settings: AppSettings) -> str:
    """Return the controller API token.

    Precedence: explicit token file, ``ZT_CONTROLLER_AUTH_TOKEN``, then the
    ``authtoken.secret`` the ZeroTier service writes into its state directory.
    """
    token_file = settings.zt_controller_auth_token_file.strip()
    if token_file:
        return read_controller_auth_token_file(token_file)

    token = settings.zt_controller_auth_token.strip()
    if token:
        return token

    state_token_file = Path(settings.zt_state_dir) / TOKEN_FILE_NAME
    if state_token_file.is_file():
        return read_controller_auth_token_file(str(state_token_file))

    raise ValueError(
        "ZT_CONTROLLER_AUTH_TOKEN is required when no controller auth token file "
        f"is configured and {state_token_file} is absent"
    )

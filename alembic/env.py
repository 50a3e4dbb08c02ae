from __future__ import annotations

from logging.config import fileConfig

from sqlalchemy import engine_from_config, pool
from sqlalchemy.engine import Connection

from alembic import context
from ztadmin.db import models as _models  # noqa: F401
from ztadmin.db.base import Base
from ztadmin.db.session import get_database_url

config = context.config

if config.config_file_name:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def _resolve_database_url() -> str:
    """``alembic -x database_url=...`` wins over ``DATABASE_URL`` and the default."""
    x_args = context.get_x_argument(as_dictionary=True)
    return x_args.get("database_url") or get_database_url()


config.set_main_option("sqlalchemy.url", _resolve_database_url())


def run_migrations_offline() -> None:
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        target_metadata=target_metadata,
        literal_binds=True,
        compare_type=True,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}) or {},
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        _configure_context(connection)

        with context.begin_transaction():
            context.run_migrations()


def _configure_context(connection: Connection) -> None:
    # SQLite cannot ALTER constraints in place; batch mode rebuilds the table.
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        compare_type=True,
        render_as_batch=connection.dialect.name == "sqlite",
    )


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()

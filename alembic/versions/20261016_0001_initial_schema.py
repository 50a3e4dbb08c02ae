"""initial schema for networks, global options and audit trail

Revision ID: 20261016_0001
Revises:
Create Date: 2026-10-16 00:00:01

"""

from __future__ import annotations

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "20261016_0001"
down_revision: str | None = None
branch_labels: str | None = None
depends_on: str | None = None

WORLD_STATES = ("no_custom_world", "custom_world_active")


def _uuid_column(name: str, dialect_name: str) -> sa.Column[sa.Uuid]:
    kwargs: dict[str, object] = {"nullable": False, "primary_key": True}
    if dialect_name == "postgresql":
        kwargs["server_default"] = sa.text("gen_random_uuid()")
    return sa.Column(name, sa.Uuid(), **kwargs)


def _timestamp_column(name: str) -> sa.Column[sa.DateTime]:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("CURRENT_TIMESTAMP"),
    )


def upgrade() -> None:
    bind = op.get_bind()
    dialect_name = bind.dialect.name

    if dialect_name == "postgresql":
        op.execute('CREATE EXTENSION IF NOT EXISTS "pgcrypto"')

    json_type: sa.TypeEngine[object]
    endpoints_default: sa.TextClause
    audit_metadata_default: sa.TextClause
    if dialect_name == "postgresql":
        json_type = postgresql.JSONB()
        endpoints_default = sa.text("'[]'::jsonb")
        audit_metadata_default = sa.text("'{}'::jsonb")
    else:
        json_type = sa.JSON()
        endpoints_default = sa.text("'[]'")
        audit_metadata_default = sa.text("'{}'")

    op.create_table(
        "app_user",
        _uuid_column("id", dialect_name),
        sa.Column("username", sa.Text(), nullable=False),
        sa.Column("email", sa.Text(), nullable=True),
        sa.Column("is_admin", sa.Boolean(), nullable=False, server_default=sa.false()),
        _timestamp_column("created_at"),
        sa.PrimaryKeyConstraint("id", name="pk_app_user"),
        sa.UniqueConstraint("username", name="uq_app_user_username"),
    )

    op.create_table(
        "zt_network",
        sa.Column("id", sa.String(length=16), nullable=False),
        sa.Column("name", sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column("owner_user_id", sa.Uuid(), nullable=True),
        _timestamp_column("created_at"),
        _timestamp_column("updated_at"),
        sa.CheckConstraint("length(id) = 16", name="ck_zt_network_zt_network_id_len"),
        sa.ForeignKeyConstraint(
            ["owner_user_id"],
            ["app_user.id"],
            name="fk_zt_network_owner_user_id_app_user",
            ondelete="SET NULL",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_zt_network"),
    )
    op.create_index(
        "idx_zt_network_owner_user_id",
        "zt_network",
        ["owner_user_id"],
        unique=False,
    )

    op.create_table(
        "global_options",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "enable_registration",
            sa.Boolean(),
            nullable=False,
            server_default=sa.true(),
        ),
        sa.Column(
            "first_user_registration",
            sa.Boolean(),
            nullable=False,
            server_default=sa.true(),
        ),
        sa.Column(
            "user_registration_notification",
            sa.Boolean(),
            nullable=False,
            server_default=sa.false(),
        ),
        sa.Column(
            "world_state",
            sa.Enum(*WORLD_STATES, name="world_state"),
            nullable=False,
            server_default=sa.text("'no_custom_world'"),
        ),
        sa.Column("pl_id", sa.BigInteger(), nullable=False, server_default=sa.text("0")),
        sa.Column("pl_birth", sa.BigInteger(), nullable=False, server_default=sa.text("0")),
        sa.Column("pl_recommend", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("pl_identity", sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column(
            "pl_endpoints",
            json_type,
            nullable=False,
            server_default=endpoints_default,
        ),
        sa.Column("pl_comment", sa.Text(), nullable=False, server_default=sa.text("''")),
        _timestamp_column("updated_at"),
        sa.CheckConstraint("id = 1", name="ck_global_options_global_options_singleton"),
        sa.PrimaryKeyConstraint("id", name="pk_global_options"),
    )
    op.execute("INSERT INTO global_options (id) VALUES (1)")

    op.create_table(
        "audit_event",
        _uuid_column("id", dialect_name),
        sa.Column("actor_user_id", sa.Uuid(), nullable=True),
        sa.Column("action", sa.Text(), nullable=False),
        sa.Column("target_type", sa.Text(), nullable=False),
        sa.Column("target_id", sa.Text(), nullable=False),
        sa.Column(
            "metadata",
            json_type,
            nullable=False,
            server_default=audit_metadata_default,
        ),
        _timestamp_column("created_at"),
        sa.ForeignKeyConstraint(
            ["actor_user_id"],
            ["app_user.id"],
            name="fk_audit_event_actor_user_id_app_user",
            ondelete="SET NULL",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_audit_event"),
    )
    op.create_index("idx_audit_event_created_at", "audit_event", ["created_at"], unique=False)


def downgrade() -> None:
    bind = op.get_bind()
    dialect_name = bind.dialect.name

    op.drop_index("idx_audit_event_created_at", table_name="audit_event")
    op.drop_table("audit_event")
    op.drop_table("global_options")
    op.drop_index("idx_zt_network_owner_user_id", table_name="zt_network")
    op.drop_table("zt_network")
    op.drop_table("app_user")

    if dialect_name == "postgresql":
        sa.Enum(*WORLD_STATES, name="world_state").drop(bind, checkfirst=True)

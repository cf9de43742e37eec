"""v1: order_versions + form_schemas + purge_runs + job_locks

- order_versions: one row per save; unique (order_id, version_number);
  at most one latest row per order (partial unique index)
- form_schemas: at most one active schema (partial unique index)
- purge_runs: audit row per WIP purge run
- job_locks: run-level lease for single-flight purge
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

revision = "0001_form_ledger"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # --- form_schemas ---
    op.create_table(
        "form_schemas",
        sa.Column("form_version_id", sa.Text(), primary_key=True),  # vMAJOR.MINOR.PATCH
        sa.Column("form_name", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("field_definitions_json", sa.Text(), nullable=False),
        sa.Column("is_active", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_date", sa.Text(), nullable=False),
        sa.Column("created_by", sa.Text(), nullable=True),
        sa.Column("deprecated_date", sa.Text(), nullable=True),
    )
    op.create_index("ix_form_schemas_created_date", "form_schemas", ["created_date"])
    op.execute(
        """
        CREATE UNIQUE INDEX IF NOT EXISTS uq_form_schemas_active
        ON form_schemas(is_active)
        WHERE is_active = 1;
        """
    )

    # --- order_versions ---
    op.create_table(
        "order_versions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("order_id", sa.Text(), nullable=False),
        sa.Column("version_number", sa.Integer(), nullable=False),
        sa.Column("status", sa.Text(), nullable=False),  # WIP|COMMITTED
        sa.Column("form_version_id", sa.Text(), nullable=False),
        sa.Column("payload_json", sa.Text(), nullable=False),
        sa.Column("user_name", sa.Text(), nullable=False),
        sa.Column("timestamp", sa.Text(), nullable=False),
        sa.Column("is_latest_version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("previous_version_number", sa.Integer(), nullable=True),
        sa.Column("change_description", sa.Text(), nullable=True),
        sa.UniqueConstraint("order_id", "version_number", name="uq_order_versions_order_id_version"),
    )
    op.create_index("ix_order_versions_order_id", "order_versions", ["order_id"])
    op.create_index("ix_order_versions_form_version_id", "order_versions", ["form_version_id"])
    op.create_index("ix_order_versions_order_id_status", "order_versions", ["order_id", "status"])
    op.create_index("ix_order_versions_status", "order_versions", ["status"])
    op.execute(
        """
        CREATE UNIQUE INDEX IF NOT EXISTS uq_order_versions_latest
        ON order_versions(order_id)
        WHERE is_latest_version = 1;
        """
    )

    # --- purge_runs ---
    op.create_table(
        "purge_runs",
        sa.Column("purge_id", sa.Text(), primary_key=True),
        sa.Column("run_trigger", sa.Text(), nullable=False),  # scheduled|manual
        sa.Column("status", sa.Text(), nullable=False),  # SUCCESS|PARTIAL|FAILED|INTERRUPTED
        sa.Column("started_at", sa.Text(), nullable=False),
        sa.Column("finished_at", sa.Text(), nullable=True),
        sa.Column("duration_ms", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("orders_examined", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("versions_deleted", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("versions_retained", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("failures", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("details_json", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("error_message", sa.Text(), nullable=True),
    )
    op.create_index("ix_purge_runs_started_at", "purge_runs", ["started_at"])

    # --- job_locks ---
    op.create_table(
        "job_locks",
        sa.Column("name", sa.Text(), primary_key=True),
        sa.Column("holder", sa.Text(), nullable=False),
        sa.Column("acquired_at", sa.Text(), nullable=False),
        sa.Column("expires_at", sa.Float(), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("job_locks")

    op.drop_index("ix_purge_runs_started_at", table_name="purge_runs")
    op.drop_table("purge_runs")

    op.execute("DROP INDEX IF EXISTS uq_order_versions_latest;")
    op.drop_index("ix_order_versions_status", table_name="order_versions")
    op.drop_index("ix_order_versions_order_id_status", table_name="order_versions")
    op.drop_index("ix_order_versions_form_version_id", table_name="order_versions")
    op.drop_index("ix_order_versions_order_id", table_name="order_versions")
    op.drop_table("order_versions")

    op.execute("DROP INDEX IF EXISTS uq_form_schemas_active;")
    op.drop_index("ix_form_schemas_created_date", table_name="form_schemas")
    op.drop_table("form_schemas")

"""Initial schema

Revision ID: 001
Revises: 
Create Date: 2026-10-19

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "documents",
        sa.Column("collection", sa.String(64), nullable=False),
        sa.Column("id", sa.String(255), nullable=False),
        sa.Column("tenant_id", sa.String(128), nullable=True),
        sa.Column("data", postgresql.JSONB(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("NOW()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("NOW()"), nullable=False),
        sa.PrimaryKeyConstraint("collection", "id"),
    )
    op.create_index("ix_documents_tenant_collection", "documents", ["tenant_id", "collection"])
    # Equality queries use JSONB containment (data @> filters)
    op.execute("CREATE INDEX ix_documents_data ON documents USING GIN (data jsonb_path_ops)")

    op.create_table(
        "counters",
        sa.Column("collection", sa.String(64), nullable=False),
        sa.Column("id", sa.String(255), nullable=False),
        sa.Column("field", sa.String(64), nullable=False),
        sa.Column("tenant_id", sa.String(128), nullable=True),
        sa.Column("value", sa.Numeric(20, 6), nullable=False, server_default="0"),
        sa.PrimaryKeyConstraint("collection", "id", "field"),
    )
    op.create_index("ix_counters_tenant", "counters", ["tenant_id"])

    # Row-level security: a session only sees rows of app.current_tenant_id
    for table in ("documents", "counters"):
        op.execute(f"ALTER TABLE {table} ENABLE ROW LEVEL SECURITY")
        op.execute(f"""
            CREATE POLICY {table}_tenant_isolation ON {table}
            USING (tenant_id IS NULL OR tenant_id = current_setting('app.current_tenant_id', true))
            WITH CHECK (tenant_id IS NULL OR tenant_id = current_setting('app.current_tenant_id', true))
        """)


def downgrade() -> None:
    op.execute("DROP POLICY IF EXISTS counters_tenant_isolation ON counters")
    op.execute("DROP POLICY IF EXISTS documents_tenant_isolation ON documents")
    op.drop_table("counters")
    op.execute("DROP INDEX IF EXISTS ix_documents_data")
    op.drop_table("documents")

"""Initial schema

Revision ID: 001
Revises:
Create Date: 2026-10-16

"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # Create enums
    op.execute("""
        CREATE TYPE jurisdictionlevel AS ENUM ('federal', 'provincial', 'territorial', 'municipal');
        CREATE TYPE legalsystem AS ENUM ('common_law', 'civil_law', 'bijural');
        CREATE TYPE filekind AS ENUM ('pdf', 'txt');
        CREATE TYPE auditaction AS ENUM (
            'document.upload', 'document.update', 'document.delete', 'document.download',
            'document.purge', 'user.register', 'user.login', 'user.login_failed',
            'user.token_refresh', 'user.token_reuse', 'user.logout'
        );
        CREATE TYPE auditoutcome AS ENUM ('success', 'failure');
        CREATE TYPE jobtype AS ENUM ('PURGE_DOCUMENT');
        CREATE TYPE jobstatus AS ENUM ('PENDING', 'IN_PROGRESS', 'SUCCEEDED', 'FAILED');
    """)

    # user_account
    op.create_table(
        "user_account",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("password_hash", sa.Text(), nullable=False),
        sa.Column("display_name", sa.String(100), nullable=False),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )

    # jurisdiction
    op.create_table(
        "jurisdiction",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("code", sa.String(64), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column(
            "level",
            sa.Enum(
                "federal",
                "provincial",
                "territorial",
                "municipal",
                name="jurisdictionlevel",
                create_type=False,
            ),
            nullable=False,
        ),
        sa.Column("parent_id", sa.UUID(), nullable=True),
        sa.Column(
            "legal_system",
            sa.Enum("common_law", "civil_law", "bijural", name="legalsystem", create_type=False),
            nullable=False,
        ),
        sa.Column("geo_code", sa.String(16), nullable=True),
        sa.Column("population", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["parent_id"], ["jurisdiction.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("code"),
    )
    op.create_index("ix_jurisdiction_parent", "jurisdiction", ["parent_id"])

    # document
    op.create_table(
        "document",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("owner_id", sa.UUID(), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column(
            "tags",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.Column(
            "file_kind",
            sa.Enum("pdf", "txt", name="filekind", create_type=False),
            nullable=False,
        ),
        sa.Column("file_size_bytes", sa.BigInteger(), nullable=False),
        sa.Column("original_filename", sa.Text(), nullable=False),
        sa.Column("content_text", sa.Text(), nullable=True),
        sa.Column("blob_key", sa.Text(), nullable=False),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["owner_id"], ["user_account.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("blob_key"),
    )
    op.create_index("ix_document_owner_deleted", "document", ["owner_id", "deleted_at"])
    op.create_index("ix_document_deleted_at", "document", ["deleted_at"])

    # document_jurisdiction
    op.create_table(
        "document_jurisdiction",
        sa.Column("document_id", sa.UUID(), nullable=False),
        sa.Column("jurisdiction_id", sa.UUID(), nullable=False),
        sa.ForeignKeyConstraint(["document_id"], ["document.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["jurisdiction_id"], ["jurisdiction.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("document_id", "jurisdiction_id"),
    )
    op.create_index(
        "ix_document_jurisdiction_jurisdiction", "document_jurisdiction", ["jurisdiction_id"]
    )

    # audit_log (append-only)
    op.create_table(
        "audit_log",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column(
            "timestamp", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column("actor_user_id", sa.UUID(), nullable=True),
        sa.Column("actor_ip_hash", sa.String(64), nullable=False),
        sa.Column(
            "action",
            sa.Enum(
                "document.upload",
                "document.update",
                "document.delete",
                "document.download",
                "document.purge",
                "user.register",
                "user.login",
                "user.login_failed",
                "user.token_refresh",
                "user.token_reuse",
                "user.logout",
                name="auditaction",
                create_type=False,
            ),
            nullable=False,
        ),
        sa.Column("resource_type", sa.String(32), nullable=False),
        sa.Column("resource_id", sa.Text(), nullable=False),
        sa.Column("changes", postgresql.JSONB(), nullable=True),
        sa.Column("request_id", sa.Text(), nullable=False),
        sa.Column(
            "outcome",
            sa.Enum("success", "failure", name="auditoutcome", create_type=False),
            nullable=False,
        ),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audit_log_resource", "audit_log", ["resource_type", "resource_id"])
    op.create_index("ix_audit_log_actor", "audit_log", ["actor_user_id"])

    # job
    op.create_table(
        "job",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column(
            "job_type",
            sa.Enum("PURGE_DOCUMENT", name="jobtype", create_type=False),
            nullable=False,
        ),
        sa.Column("document_id", sa.UUID(), nullable=False),
        sa.Column(
            "status",
            sa.Enum(
                "PENDING", "IN_PROGRESS", "SUCCEEDED", "FAILED", name="jobstatus", create_type=False
            ),
            nullable=False,
            server_default="PENDING",
        ),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column(
            "run_after", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_job_status_type_run_after", "job", ["status", "job_type", "run_after"])


def downgrade() -> None:
    op.drop_table("job")
    op.drop_table("audit_log")
    op.drop_table("document_jurisdiction")
    op.drop_table("document")
    op.drop_table("jurisdiction")
    op.drop_table("user_account")

    op.execute("DROP TYPE jobstatus")
    op.execute("DROP TYPE jobtype")
    op.execute("DROP TYPE auditoutcome")
    op.execute("DROP TYPE auditaction")
    op.execute("DROP TYPE filekind")
    op.execute("DROP TYPE legalsystem")
    op.execute("DROP TYPE jurisdictionlevel")

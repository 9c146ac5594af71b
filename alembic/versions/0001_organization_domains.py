"""Organizations, profiles and organization_domains tables

Revision ID: 0001_organization_domains
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID

revision = "0001_organization_domains"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "organizations",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("slug", sa.String(63), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_organizations_id", "organizations", ["id"])
    op.create_index("ix_organizations_slug", "organizations", ["slug"], unique=True)

    op.create_table(
        "profiles",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("organization_id", UUID(as_uuid=True), sa.ForeignKey("organizations.id"), nullable=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("role", sa.String(20), nullable=False, server_default="member"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_profiles_id", "profiles", ["id"])
    op.create_index("ix_profiles_organization_id", "profiles", ["organization_id"])

    op.create_table(
        "organization_domains",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("organization_id", UUID(as_uuid=True), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("domain", sa.String(255), nullable=False),
        sa.Column("verification_token", sa.String(64), nullable=False),
        sa.Column("verification_status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_checked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_primary", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("ssl_status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("ssl_issued_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ssl_last_error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint(
            "verification_status IN ('pending', 'verified', 'failed')",
            name="ck_organization_domains_verification_status",
        ),
        sa.CheckConstraint(
            "ssl_status IN ('pending', 'issued', 'failed', 'expired')",
            name="ck_organization_domains_ssl_status",
        ),
    )
    op.create_index("ix_organization_domains_id", "organization_domains", ["id"])
    op.create_index("ix_organization_domains_organization_id", "organization_domains", ["organization_id"])
    op.create_index("ix_organization_domains_domain", "organization_domains", ["domain"], unique=True)
    op.create_index(
        "ix_organization_domains_one_primary",
        "organization_domains",
        ["organization_id"],
        unique=True,
        postgresql_where=sa.text("is_primary"),
    )


def downgrade() -> None:
    op.drop_index("ix_organization_domains_one_primary", table_name="organization_domains")
    op.drop_table("organization_domains")
    op.drop_table("profiles")
    op.drop_table("organizations")

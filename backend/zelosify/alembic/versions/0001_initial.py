"""Create tenants, users, openings and hiring profiles."""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None

auth_provider = sa.Enum("KEYCLOAK", "GOOGLE", "MICROSOFT", name="auth_provider")
user_role = sa.Enum(
    "ADMIN", "BUSINESS_USER", "HIRING_MANAGER", "IT_VENDOR", "VENDOR_MANAGER", name="user_role"
)
opening_status = sa.Enum("OPEN", "ON_HOLD", "CLOSED", "FILLED", name="opening_status")


def upgrade() -> None:
    op.create_table(
        "tenants",
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("company_name", sa.String(length=255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("tenant_id", name="pk_tenants"),
    )

    op.create_table(
        "users",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("external_id", sa.String(length=255), nullable=True),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("provider", auth_provider, nullable=False, server_default="KEYCLOAK"),
        sa.Column("username", sa.String(length=255), nullable=True),
        sa.Column("first_name", sa.String(length=255), nullable=True),
        sa.Column("last_name", sa.String(length=255), nullable=True),
        sa.Column("role", user_role, nullable=True),
        sa.Column("department", sa.String(length=255), nullable=True),
        sa.Column("tenant_id", sa.String(length=64), nullable=True),
        sa.Column("totp_secret", sa.String(length=255), nullable=True),
        sa.Column("access_token", sa.Text(), nullable=True),
        sa.Column("refresh_token", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(
            ["tenant_id"],
            ["tenants.tenant_id"],
            name="fk_users_tenant_id_tenants",
            ondelete="SET NULL",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_users"),
        sa.UniqueConstraint("external_id", name="uq_users_external_id"),
        sa.UniqueConstraint("email", "provider", name="uq_users_email"),
    )

    op.create_table(
        "openings",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("location", sa.String(length=255), nullable=True),
        sa.Column("contract_type", sa.String(length=64), nullable=True),
        sa.Column("experience_min", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("experience_max", sa.Integer(), nullable=True),
        sa.Column("posted_date", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("expected_completion_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", opening_status, nullable=False, server_default="OPEN"),
        sa.Column("hiring_manager_id", sa.String(length=36), nullable=False),
        sa.ForeignKeyConstraint(
            ["tenant_id"],
            ["tenants.tenant_id"],
            name="fk_openings_tenant_id_tenants",
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["hiring_manager_id"],
            ["users.id"],
            name="fk_openings_hiring_manager_id_users",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_openings"),
    )
    op.create_index("ix_openings_tenant_id", "openings", ["tenant_id"])

    op.create_table(
        "hiring_profiles",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("opening_id", sa.String(length=36), nullable=False),
        sa.Column("s3_key", sa.String(length=1024), nullable=False),
        sa.Column("uploaded_by", sa.String(length=36), nullable=False),
        sa.Column("is_draft", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(
            ["opening_id"],
            ["openings.id"],
            name="fk_hiring_profiles_opening_id_openings",
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["uploaded_by"],
            ["users.id"],
            name="fk_hiring_profiles_uploaded_by_users",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_hiring_profiles"),
        sa.UniqueConstraint("s3_key", name="uq_hiring_profiles_s3_key"),
    )
    op.create_index("ix_hiring_profiles_opening_id", "hiring_profiles", ["opening_id"])


def downgrade() -> None:
    op.drop_index("ix_hiring_profiles_opening_id", table_name="hiring_profiles")
    op.drop_table("hiring_profiles")
    op.drop_index("ix_openings_tenant_id", table_name="openings")
    op.drop_table("openings")
    op.drop_table("users")
    op.drop_table("tenants")
    opening_status.drop(op.get_bind(), checkfirst=True)
    user_role.drop(op.get_bind(), checkfirst=True)
    auth_provider.drop(op.get_bind(), checkfirst=True)

"""initial schema: workspaces, projects, mappings, GitHub integration

Revision ID: 001
Revises:
Create Date: 2026-10-18

Tenancy (workspaces, users, members), project resolution (projects,
project_mappings, monorepo policies, settings), GitHub sync (installation,
repo links, user links, team mappings, caches), webhook queue and audit log.
"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _timestamps(updated: bool = True) -> list[sa.Column]:
    columns = [sa.Column("created_at", sa.DateTime(timezone=True), nullable=False)]
    if updated:
        columns.append(sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False))
    return columns


def _workspace_fk() -> sa.ForeignKeyConstraint:
    return sa.ForeignKeyConstraint(["workspace_id"], ["workspaces.id"], ondelete="CASCADE")


def upgrade() -> None:
    op.create_table(
        "workspaces",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("key", sa.String(length=128), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("key"),
    )
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=True),
        *_timestamps(updated=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )
    op.create_table(
        "workspace_members",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("workspace_id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("role", sa.String(length=32), nullable=False),
        *_timestamps(updated=False),
        _workspace_fk(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("workspace_id", "user_id", name="uq_workspace_members_workspace_user"),
    )
    op.create_index("ix_workspace_members_workspace_id", "workspace_members", ["workspace_id"])

    op.create_table(
        "projects",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("workspace_id", sa.Uuid(), nullable=False),
        sa.Column("key", sa.String(length=512), nullable=False),
        sa.Column("name", sa.String(length=512), nullable=False),
        *_timestamps(),
        _workspace_fk(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("workspace_id", "key", name="uq_projects_workspace_key"),
    )
    op.create_index("ix_projects_workspace_id", "projects", ["workspace_id"])

    op.create_table(
        "project_members",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("project_id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("role", sa.String(length=32), nullable=False),
        *_timestamps(updated=False),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("project_id", "user_id", name="uq_project_members_project_user"),
    )
    op.create_index("ix_project_members_project_id", "project_members", ["project_id"])

    op.create_table(
        "project_mappings",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("workspace_id", sa.Uuid(), nullable=False),
        sa.Column("project_id", sa.Uuid(), nullable=False),
        sa.Column("kind", sa.String(length=32), nullable=False),
        sa.Column("external_id", sa.String(length=512), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False),
        sa.Column("is_enabled", sa.Boolean(), nullable=False),
        *_timestamps(updated=False),
        _workspace_fk(),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "workspace_id",
            "kind",
            "external_id",
            name="uq_project_mappings_workspace_kind_external_id",
        ),
    )
    op.create_index("ix_project_mappings_workspace_id", "project_mappings", ["workspace_id"])

    op.create_table(
        "monorepo_subproject_policies",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("workspace_id", sa.Uuid(), nullable=False),
        sa.Column("repo_key", sa.String(length=512), nullable=False),
        sa.Column("subpath", sa.String(length=512), nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False),
        *_timestamps(updated=False),
        _workspace_fk(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "workspace_id",
            "repo_key",
            "subpath",
            name="uq_monorepo_subproject_policies_workspace_repo_subpath",
        ),
    )

    op.create_table(
        "workspace_settings",
        sa.Column("workspace_id", sa.Uuid(), nullable=False),
        sa.Column("resolution_order", sa.JSON(), nullable=True),
        sa.Column("auto_create_project", sa.Boolean(), nullable=True),
        sa.Column("auto_create_project_subprojects", sa.Boolean(), nullable=True),
        sa.Column("github_auto_create_projects", sa.Boolean(), nullable=True),
        sa.Column("github_auto_create_subprojects", sa.Boolean(), nullable=True),
        sa.Column("github_permission_sync_enabled", sa.Boolean(), nullable=True),
        sa.Column("github_permission_sync_mode", sa.String(length=32), nullable=True),
        sa.Column("github_cache_ttl_seconds", sa.Integer(), nullable=True),
        sa.Column("github_role_mapping", sa.JSON(), nullable=True),
        sa.Column("github_webhook_enabled", sa.Boolean(), nullable=True),
        sa.Column("github_webhook_sync_mode", sa.String(length=32), nullable=True),
        sa.Column("github_team_mapping_enabled", sa.Boolean(), nullable=True),
        sa.Column("github_project_key_prefix", sa.String(length=64), nullable=True),
        sa.Column("local_key_prefix", sa.String(length=64), nullable=True),
        sa.Column("enable_monorepo_resolution", sa.Boolean(), nullable=True),
        sa.Column("monorepo_mode", sa.String(length=32), nullable=True),
        sa.Column("monorepo_context_mode", sa.String(length=32), nullable=True),
        sa.Column("monorepo_workspace_globs", sa.JSON(), nullable=True),
        sa.Column("monorepo_exclude_globs", sa.JSON(), nullable=True),
        sa.Column("monorepo_max_depth", sa.Integer(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        _workspace_fk(),
        sa.PrimaryKeyConstraint("workspace_id"),
    )

    op.create_table(
        "github_installations",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("workspace_id", sa.Uuid(), nullable=False),
        sa.Column("installation_id", sa.BigInteger(), nullable=False),
        sa.Column("account_type", sa.String(length=32), nullable=True),
        sa.Column("account_login", sa.String(length=255), nullable=True),
        sa.Column("repository_selection", sa.String(length=32), nullable=True),
        sa.Column("permissions", sa.JSON(), nullable=True),
        sa.Column("webhook_secret", sa.String(length=255), nullable=True),
        *_timestamps(),
        _workspace_fk(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("workspace_id"),
        sa.UniqueConstraint("installation_id"),
    )

    op.create_table(
        "github_repo_links",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("workspace_id", sa.Uuid(), nullable=False),
        sa.Column("github_repo_id", sa.BigInteger(), nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column("owner_login", sa.String(length=255), nullable=False),
        sa.Column("repo_name", sa.String(length=255), nullable=False),
        sa.Column("default_branch", sa.String(length=255), nullable=True),
        sa.Column("is_private", sa.Boolean(), nullable=False),
        sa.Column("linked_project_id", sa.Uuid(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        _workspace_fk(),
        sa.ForeignKeyConstraint(["linked_project_id"], ["projects.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "workspace_id", "github_repo_id", name="uq_github_repo_links_workspace_repo"
        ),
    )
    op.create_index("ix_github_repo_links_workspace_id", "github_repo_links", ["workspace_id"])

    op.create_table(
        "github_user_links",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("workspace_id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("github_login", sa.String(length=255), nullable=False),
        sa.Column("github_user_id", sa.BigInteger(), nullable=True),
        *_timestamps(),
        _workspace_fk(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("workspace_id", "user_id", name="uq_github_user_links_workspace_user"),
        sa.UniqueConstraint(
            "workspace_id", "github_login", name="uq_github_user_links_workspace_login"
        ),
    )

    op.create_table(
        "github_team_mappings",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("workspace_id", sa.Uuid(), nullable=False),
        sa.Column("provider_installation_id", sa.BigInteger(), nullable=True),
        sa.Column("github_team_id", sa.BigInteger(), nullable=False),
        sa.Column("github_team_slug", sa.String(length=255), nullable=False),
        sa.Column("github_org_login", sa.String(length=255), nullable=False),
        sa.Column("target_type", sa.String(length=32), nullable=False),
        sa.Column("target_key", sa.String(length=512), nullable=False),
        sa.Column("role", sa.String(length=32), nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False),
        *_timestamps(),
        _workspace_fk(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "workspace_id",
            "github_team_id",
            "target_type",
            "target_key",
            name="uq_github_team_mappings_team_target",
        ),
    )
    op.create_index(
        "ix_github_team_mappings_workspace_id", "github_team_mappings", ["workspace_id"]
    )

    op.create_table(
        "github_repo_teams_cache",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("workspace_id", sa.Uuid(), nullable=False),
        sa.Column("github_repo_id", sa.BigInteger(), nullable=False),
        sa.Column("teams", sa.JSON(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        _workspace_fk(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "workspace_id", "github_repo_id", name="uq_github_repo_teams_cache_workspace_repo"
        ),
    )
    op.create_table(
        "github_team_members_cache",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("workspace_id", sa.Uuid(), nullable=False),
        sa.Column("github_team_id", sa.BigInteger(), nullable=False),
        sa.Column("members", sa.JSON(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        _workspace_fk(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "workspace_id", "github_team_id", name="uq_github_team_members_cache_workspace_team"
        ),
    )
    op.create_table(
        "github_permission_cache",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("workspace_id", sa.Uuid(), nullable=False),
        sa.Column("github_repo_id", sa.BigInteger(), nullable=False),
        sa.Column("github_user_id", sa.BigInteger(), nullable=False),
        sa.Column("permission", sa.String(length=32), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        _workspace_fk(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "workspace_id",
            "github_repo_id",
            "github_user_id",
            name="uq_github_permission_cache_workspace_repo_user",
        ),
    )

    op.create_table(
        "github_webhook_events",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("workspace_id", sa.Uuid(), nullable=True),
        sa.Column("installation_id", sa.BigInteger(), nullable=False),
        sa.Column("event_type", sa.String(length=64), nullable=False),
        sa.Column("delivery_id", sa.String(length=128), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("attempt_count", sa.Integer(), nullable=False),
        sa.Column("affected_repos_count", sa.Integer(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["workspace_id"], ["workspaces.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("delivery_id"),
    )
    op.create_index(
        "ix_github_webhook_events_workspace_id", "github_webhook_events", ["workspace_id"]
    )
    op.create_index("ix_github_webhook_events_status", "github_webhook_events", ["status"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("workspace_id", sa.Uuid(), nullable=True),
        sa.Column("project_id", sa.Uuid(), nullable=True),
        sa.Column("actor_user_id", sa.String(length=64), nullable=True),
        sa.Column("action", sa.String(length=128), nullable=False),
        sa.Column("target", sa.JSON(), nullable=True),
        *_timestamps(updated=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audit_logs_workspace_id", "audit_logs", ["workspace_id"])


def downgrade() -> None:
    op.drop_index("ix_audit_logs_workspace_id", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("ix_github_webhook_events_status", table_name="github_webhook_events")
    op.drop_index("ix_github_webhook_events_workspace_id", table_name="github_webhook_events")
    op.drop_table("github_webhook_events")
    op.drop_table("github_permission_cache")
    op.drop_table("github_team_members_cache")
    op.drop_table("github_repo_teams_cache")
    op.drop_index("ix_github_team_mappings_workspace_id", table_name="github_team_mappings")
    op.drop_table("github_team_mappings")
    op.drop_table("github_user_links")
    op.drop_index("ix_github_repo_links_workspace_id", table_name="github_repo_links")
    op.drop_table("github_repo_links")
    op.drop_table("github_installations")
    op.drop_table("workspace_settings")
    op.drop_table("monorepo_subproject_policies")
    op.drop_index("ix_project_mappings_workspace_id", table_name="project_mappings")
    op.drop_table("project_mappings")
    op.drop_index("ix_project_members_project_id", table_name="project_members")
    op.drop_table("project_members")
    op.drop_index("ix_projects_workspace_id", table_name="projects")
    op.drop_table("projects")
    op.drop_index("ix_workspace_members_workspace_id", table_name="workspace_members")
    op.drop_table("workspace_members")
    op.drop_table("users")
    op.drop_table("workspaces")

"""WorkspaceSettings model: per-workspace resolution and GitHub sync knobs.

Every column is nullable: NULL means "use the default" and is resolved by
``memory_core.services.workspace_settings``.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from memory_core.db.session import Base


class WorkspaceSettings(Base):
    __tablename__ = "workspace_settings"

    workspace_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("workspaces.id", ondelete="CASCADE"),
        primary_key=True,
    )
    resolution_order: Mapped[list | None] = mapped_column(JSON, nullable=True)
    auto_create_project: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    auto_create_project_subprojects: Mapped[bool | None] = mapped_column(Boolean, nullable=True)

    # GitHub
    github_auto_create_projects: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    github_auto_create_subprojects: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    github_permission_sync_enabled: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    github_permission_sync_mode: Mapped[str | None] = mapped_column(String(32), nullable=True)
    github_cache_ttl_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)
    github_role_mapping: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    github_webhook_enabled: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    github_webhook_sync_mode: Mapped[str | None] = mapped_column(String(32), nullable=True)
    github_team_mapping_enabled: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    github_project_key_prefix: Mapped[str | None] = mapped_column(String(64), nullable=True)
    local_key_prefix: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # Monorepo
    enable_monorepo_resolution: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    monorepo_mode: Mapped[str | None] = mapped_column(String(32), nullable=True)
    monorepo_context_mode: Mapped[str | None] = mapped_column(String(32), nullable=True)
    monorepo_workspace_globs: Mapped[list | None] = mapped_column(JSON, nullable=True)
    monorepo_exclude_globs: Mapped[list | None] = mapped_column(JSON, nullable=True)
    monorepo_max_depth: Mapped[int | None] = mapped_column(Integer, nullable=True)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
        nullable=False,
    )

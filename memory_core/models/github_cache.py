"""GitHub permission caches.

Three independently keyed tables. Staleness is judged lazily at read time
against the workspace ``github_cache_ttl_seconds``; nothing sweeps expired
rows. Rows go away through id-set invalidation, or, for computed permissions,
when a repo's set is rewritten without them.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import JSON, BigInteger, DateTime, ForeignKey, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from memory_core.db.session import Base


class GithubRepoTeamsCache(Base):
    """repo → [{team_id, team_slug, org_login, permission}]."""

    __tablename__ = "github_repo_teams_cache"

    __table_args__ = (
        UniqueConstraint(
            "workspace_id", "github_repo_id", name="uq_github_repo_teams_cache_workspace_repo"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    workspace_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False
    )
    github_repo_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    teams: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
        nullable=False,
    )


class GithubTeamMembersCache(Base):
    """team → [github_user_id, ...]."""

    __tablename__ = "github_team_members_cache"

    __table_args__ = (
        UniqueConstraint(
            "workspace_id", "github_team_id", name="uq_github_team_members_cache_workspace_team"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    workspace_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False
    )
    github_team_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    members: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
        nullable=False,
    )


class GithubPermissionCache(Base):
    """Computed (repo, GitHub user) → effective permission."""

    __tablename__ = "github_permission_cache"

    __table_args__ = (
        UniqueConstraint(
            "workspace_id",
            "github_repo_id",
            "github_user_id",
            name="uq_github_permission_cache_workspace_repo_user",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    workspace_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False
    )
    github_repo_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    github_user_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    permission: Mapped[str] = mapped_column(String(32), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
        nullable=False,
    )

"""GithubTeamMapping model: GitHub team → workspace or project role."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from memory_core.db.session import Base


class GithubTeamMapping(Base):
    """``target_key`` is the workspace key for workspace targets, else a project key."""

    __tablename__ = "github_team_mappings"

    __table_args__ = (
        UniqueConstraint(
            "workspace_id",
            "github_team_id",
            "target_type",
            "target_key",
            name="uq_github_team_mappings_team_target",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    workspace_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("workspaces.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    provider_installation_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    github_team_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    github_team_slug: Mapped[str] = mapped_column(String(255), nullable=False)
    github_org_login: Mapped[str] = mapped_column(String(255), nullable=False)
    target_type: Mapped[str] = mapped_column(String(32), nullable=False)
    target_key: Mapped[str] = mapped_column(String(512), nullable=False)
    role: Mapped[str] = mapped_column(String(32), nullable=False)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    priority: Mapped[int] = mapped_column(Integer, default=100, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
        nullable=False,
    )

"""MonorepoSubprojectPolicy model: allow-list for split_on_demand subprojects."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from memory_core.db.session import Base


class MonorepoSubprojectPolicy(Base):
    """Enables ``repo#subpath`` creation for one exact (repo_key, subpath)."""

    __tablename__ = "monorepo_subproject_policies"

    __table_args__ = (
        UniqueConstraint(
            "workspace_id",
            "repo_key",
            "subpath",
            name="uq_monorepo_subproject_policies_workspace_repo_subpath",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    workspace_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("workspaces.id", ondelete="CASCADE"),
        nullable=False,
    )
    repo_key: Mapped[str] = mapped_column(String(512), nullable=False)
    subpath: Mapped[str] = mapped_column(String(512), nullable=False)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False
    )

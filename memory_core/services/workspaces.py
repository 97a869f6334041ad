"""Workspace lookups shared by the API-facing services."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from memory_core.errors import NotFoundError, ValidationError
from memory_core.models.github_installation import GithubInstallation
from memory_core.models.workspace import Workspace


def get_workspace_by_key(db: Session, workspace_key: str) -> Workspace:
    key = (workspace_key or "").strip()
    if not key:
        raise ValidationError("workspace_key is required")
    workspace = db.execute(select(Workspace).where(Workspace.key == key)).scalar_one_or_none()
    if workspace is None:
        raise NotFoundError(f"Workspace not found: {key}")
    return workspace


def get_installation_for_workspace(db: Session, workspace: Workspace) -> GithubInstallation:
    installation = db.execute(
        select(GithubInstallation).where(GithubInstallation.workspace_id == workspace.id)
    ).scalar_one_or_none()
    if installation is None:
        raise NotFoundError(f"GitHub installation not connected for workspace: {workspace.key}")
    return installation

"""Project mapping store: (workspace, kind, external_id) → project.

Writes are upserts keyed on the unique constraints, so two workers racing on
the same key end up with one row: the loser's insert collides inside a
savepoint and falls back to updating the winner's row.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from memory_core.db.session import unit_of_work
from memory_core.models.enums import ResolutionKind
from memory_core.models.project import Project
from memory_core.models.project_mapping import ProjectMapping
from memory_core.services.audit import record_audit

logger = logging.getLogger(__name__)


@dataclass
class ProjectMappingResult:
    project: Project
    mapping: ProjectMapping
    created: bool


def _kind_value(kind: ResolutionKind | str) -> str:
    return ResolutionKind(kind).value


def get_project_by_key(db: Session, workspace_id: uuid.UUID, key: str) -> Project | None:
    return db.execute(
        select(Project).where(Project.workspace_id == workspace_id, Project.key == key)
    ).scalar_one_or_none()


def _get_mapping(
    db: Session, workspace_id: uuid.UUID, kind: str, external_id: str
) -> ProjectMapping | None:
    return db.execute(
        select(ProjectMapping).where(
            ProjectMapping.workspace_id == workspace_id,
            ProjectMapping.kind == kind,
            ProjectMapping.external_id == external_id,
        )
    ).scalar_one_or_none()


def find_enabled_mapping(
    db: Session,
    workspace_id: uuid.UUID,
    kind: ResolutionKind | str,
    external_ids: list[str],
) -> ProjectMapping | None:
    """First enabled mapping among ``external_ids``, by (priority, created_at)."""
    if not external_ids:
        return None
    return (
        db.execute(
            select(ProjectMapping)
            .where(
                ProjectMapping.workspace_id == workspace_id,
                ProjectMapping.kind == _kind_value(kind),
                ProjectMapping.external_id.in_(external_ids),
                ProjectMapping.is_enabled.is_(True),
            )
            .order_by(ProjectMapping.priority.asc(), ProjectMapping.created_at.asc())
        )
        .scalars()
        .first()
    )


def _repoint(db: Session, mapping: ProjectMapping, project_id: uuid.UUID) -> ProjectMapping:
    mapping.project_id = project_id
    mapping.is_enabled = True
    db.flush()
    db.expire(mapping, ["project"])
    return mapping


def ensure_project_mapping(
    db: Session,
    workspace_id: uuid.UUID,
    project_id: uuid.UUID,
    kind: ResolutionKind | str,
    external_id: str,
) -> ProjectMapping:
    """Upsert a mapping; new rows go after every existing row of the same kind.

    Flushes but does not commit.
    """
    kind_value = _kind_value(kind)
    existing = _get_mapping(db, workspace_id, kind_value, external_id)
    if existing is not None:
        return _repoint(db, existing, project_id)

    max_priority = db.execute(
        select(func.max(ProjectMapping.priority)).where(
            ProjectMapping.workspace_id == workspace_id,
            ProjectMapping.kind == kind_value,
        )
    ).scalar()
    mapping = ProjectMapping(
        workspace_id=workspace_id,
        project_id=project_id,
        kind=kind_value,
        external_id=external_id,
        priority=0 if max_priority is None else max_priority + 1,
        is_enabled=True,
    )
    try:
        with db.begin_nested():
            db.add(mapping)
    except IntegrityError:
        existing = _get_mapping(db, workspace_id, kind_value, external_id)
        if existing is None:
            raise
        logger.info(
            "Concurrent mapping insert for %s:%s; re-pointing existing row", kind_value, external_id
        )
        return _repoint(db, existing, project_id)
    return mapping


def upsert_project(
    db: Session, workspace_id: uuid.UUID, key: str, name: str
) -> tuple[Project, bool]:
    """Return (project, created). An existing project only gets its name updated."""
    project = get_project_by_key(db, workspace_id, key)
    if project is None:
        project = Project(workspace_id=workspace_id, key=key, name=name)
        try:
            with db.begin_nested():
                db.add(project)
        except IntegrityError:
            project = get_project_by_key(db, workspace_id, key)
            if project is None:
                raise
        else:
            return project, True
    if project.name != name:
        project.name = name
        db.flush()
    return project, False


def create_project_and_mapping(
    db: Session,
    workspace_id: uuid.UUID,
    kind: ResolutionKind | str,
    external_id: str,
    project_key: str,
    project_name: str,
    actor_user_id: str | None = None,
) -> ProjectMappingResult:
    """Upsert the project and its mapping as one unit of work.

    ``created`` is True only when the project row did not exist before, so
    calling this twice with the same input reports ``created=False`` the
    second time and changes nothing beyond the project name.
    """
    with unit_of_work(db):
        project, created = upsert_project(db, workspace_id, project_key, project_name)
        mapping = ensure_project_mapping(db, workspace_id, project.id, kind, external_id)
        if created:
            record_audit(
                db,
                workspace_id,
                "project.create",
                {"project_key": project.key, "kind": _kind_value(kind), "external_id": external_id},
                actor_user_id=actor_user_id,
                project_id=project.id,
            )
    if created:
        logger.info("Created project %s for %s:%s", project.key, _kind_value(kind), external_id)
    return ProjectMappingResult(project=project, mapping=mapping, created=created)

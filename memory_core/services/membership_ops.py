"""Planning and applying automated membership changes.

Both GitHub permission sync and team-mapping reconciliation compute a
desired ``{user_id: role}`` map per target (a project or the workspace) and
hand it to ``plan_member_changes``. Rules shared by both:

- ``add_only`` adds missing users and promotes lower ones, nothing else
- ``add_and_remove`` also demotes and removes, but only unprotected rows,
  and only rows belonging to GitHub-linked users
- a protected user can still be promoted
- a change that would leave the target with zero OWNER rows is dropped
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from memory_core.models.enums import SyncMode
from memory_core.models.project_member import ProjectMember
from memory_core.models.workspace_member import WorkspaceMember
from memory_core.services.access_control import normalize_project_role
from memory_core.services.audit import record_audit

logger = logging.getLogger(__name__)

OWNER = "OWNER"


@dataclass
class RoleChange:
    user_id: uuid.UUID
    old_role: str | None
    new_role: str | None

    @property
    def kind(self) -> str:
        if self.old_role is None:
            return "added"
        if self.new_role is None:
            return "removed"
        return "role_changed"


def plan_member_changes(
    existing: dict[uuid.UUID, str],
    desired: dict[uuid.UUID, str],
    mode: SyncMode,
    rank: Callable[[str], int],
    is_protected: Callable[[uuid.UUID, str], bool],
    removable_user_ids: Iterable[uuid.UUID] | None = None,
) -> list[RoleChange]:
    """Diff ``existing`` against ``desired`` for one target.

    ``removable_user_ids`` limits removals to those users (the GitHub-linked
    ones); None means any unprotected row may be removed.
    """
    changes: list[RoleChange] = []
    owners = sum(1 for role in existing.values() if role == OWNER)

    def keeps_an_owner(old_role: str) -> bool:
        nonlocal owners
        if old_role != OWNER:
            return True
        if owners <= 1:
            return False
        owners -= 1
        return True

    for user_id, role in desired.items():
        current = existing.get(user_id)
        if current is None:
            changes.append(RoleChange(user_id, None, role))
            continue
        if current == role:
            continue
        promotion = rank(role) > rank(current)
        if promotion:
            changes.append(RoleChange(user_id, current, role))
            continue
        if mode != SyncMode.add_and_remove or is_protected(user_id, current):
            continue
        if keeps_an_owner(current):
            changes.append(RoleChange(user_id, current, role))

    if mode == SyncMode.add_and_remove:
        removable = None if removable_user_ids is None else set(removable_user_ids)
        for user_id, current in existing.items():
            if user_id in desired:
                continue
            if removable is not None and user_id not in removable:
                continue
            if is_protected(user_id, current):
                continue
            if keeps_an_owner(current):
                changes.append(RoleChange(user_id, current, None))
    return changes


# ── Loading current roles ────────────────────────────────────────────


def load_project_roles(
    db: Session, project_ids: Iterable[uuid.UUID]
) -> dict[uuid.UUID, dict[uuid.UUID, str]]:
    ids = list(project_ids)
    roles: dict[uuid.UUID, dict[uuid.UUID, str]] = {project_id: {} for project_id in ids}
    if not ids:
        return roles
    rows = db.execute(select(ProjectMember).where(ProjectMember.project_id.in_(ids))).scalars()
    for row in rows:
        roles[row.project_id][row.user_id] = normalize_project_role(row.role)
    return roles


def load_workspace_roles(db: Session, workspace_id: uuid.UUID) -> dict[uuid.UUID, str]:
    rows = db.execute(
        select(WorkspaceMember).where(WorkspaceMember.workspace_id == workspace_id)
    ).scalars()
    return {row.user_id: str(row.role).upper() for row in rows}


def protected_workspace_user_ids(db: Session, workspace_id: uuid.UUID) -> set[str]:
    """Workspace OWNER/ADMIN user ids; automation never demotes or removes them."""
    return {
        str(user_id)
        for user_id, role in load_workspace_roles(db, workspace_id).items()
        if role in ("OWNER", "ADMIN")
    }


# ── Applying ─────────────────────────────────────────────────────────


def _existing_rows(db: Session, model, **scope) -> dict:
    return {row.user_id: row for row in db.execute(select(model).filter_by(**scope)).scalars()}


def _insert_or_update(db: Session, model, role: str, **key) -> None:
    """Insert a membership row; if one appeared since the read, set its role instead."""
    try:
        with db.begin_nested():
            db.add(model(role=role, **key))
    except IntegrityError:
        row = db.execute(select(model).filter_by(**key)).scalar_one_or_none()
        if row is None:
            raise
        logger.info("Concurrent %s insert for %s; updating existing row", model.__tablename__, key)
        row.role = role


def apply_project_changes(
    db: Session,
    workspace_id: uuid.UUID,
    project_id: uuid.UUID,
    changes: list[RoleChange],
    actor_user_id: str | None,
    evidence: dict | None = None,
) -> None:
    """Write ``changes`` to ``project_members`` and audit each one. No commit."""
    if not changes:
        return
    rows = _existing_rows(db, ProjectMember, project_id=project_id)
    for change in changes:
        row = rows.get(change.user_id)
        if change.new_role is None:
            if row is not None:
                db.delete(row)
        elif row is None:
            _insert_or_update(
                db, ProjectMember, change.new_role, project_id=project_id, user_id=change.user_id
            )
        else:
            row.role = change.new_role
        record_audit(
            db,
            workspace_id,
            f"access.project_member.{change.kind}",
            {
                "source": "github",
                "target_user_id": str(change.user_id),
                "old_role": change.old_role,
                "new_role": change.new_role,
                **(evidence or {}),
            },
            actor_user_id=actor_user_id,
            project_id=project_id,
        )
    db.flush()


def apply_workspace_changes(
    db: Session,
    workspace_id: uuid.UUID,
    changes: list[RoleChange],
    actor_user_id: str | None,
    evidence: dict | None = None,
) -> None:
    if not changes:
        return
    rows = _existing_rows(db, WorkspaceMember, workspace_id=workspace_id)
    for change in changes:
        row = rows.get(change.user_id)
        if change.new_role is None:
            if row is not None:
                db.delete(row)
        elif row is None:
            _insert_or_update(
                db, WorkspaceMember, change.new_role, workspace_id=workspace_id, user_id=change.user_id
            )
        else:
            row.role = change.new_role
        record_audit(
            db,
            workspace_id,
            f"access.workspace_member.{change.kind}",
            {
                "source": "github",
                "target_user_id": str(change.user_id),
                "old_role": change.old_role,
                "new_role": change.new_role,
                **(evidence or {}),
            },
            actor_user_id=actor_user_id,
        )
    db.flush()

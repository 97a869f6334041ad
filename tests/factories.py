"""Row builders for service and API tests. Each helper commits."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from memory_core.models import (
    AuditLog,
    GithubInstallation,
    GithubRepoLink,
    GithubUserLink,
    Project,
    ProjectMember,
    User,
    Workspace,
    WorkspaceMember,
    WorkspaceSettings,
)
from tests.test_constants import TEST_INSTALLATION_ID


def make_workspace(db: Session, key: str = "acme", **settings) -> Workspace:
    workspace = Workspace(key=key, name=key.title())
    db.add(workspace)
    db.flush()
    if settings:
        db.add(WorkspaceSettings(workspace_id=workspace.id, **settings))
    db.commit()
    return workspace


def update_settings(db: Session, workspace: Workspace, **settings) -> WorkspaceSettings:
    row = db.get(WorkspaceSettings, workspace.id)
    if row is None:
        row = WorkspaceSettings(workspace_id=workspace.id)
        db.add(row)
    for name, value in settings.items():
        setattr(row, name, value)
    db.commit()
    return row


def make_user(db: Session, email: str) -> User:
    user = User(email=email.lower(), name=email.split("@")[0])
    db.add(user)
    db.commit()
    return user


def add_workspace_member(
    db: Session, workspace: Workspace, user: User, role: str = "MEMBER"
) -> WorkspaceMember:
    row = WorkspaceMember(workspace_id=workspace.id, user_id=user.id, role=role)
    db.add(row)
    db.commit()
    return row


def make_member(db: Session, workspace: Workspace, email: str, role: str = "MEMBER") -> User:
    user = make_user(db, email)
    add_workspace_member(db, workspace, user, role)
    return user


def make_project(db: Session, workspace: Workspace, key: str, name: str | None = None) -> Project:
    project = Project(workspace_id=workspace.id, key=key, name=name or key)
    db.add(project)
    db.commit()
    return project


def add_project_member(db: Session, project: Project, user: User, role: str) -> ProjectMember:
    row = ProjectMember(project_id=project.id, user_id=user.id, role=role)
    db.add(row)
    db.commit()
    return row


def make_installation(
    db: Session,
    workspace: Workspace,
    installation_id: int = TEST_INSTALLATION_ID,
    webhook_secret: str | None = None,
) -> GithubInstallation:
    installation = GithubInstallation(
        workspace_id=workspace.id,
        installation_id=installation_id,
        account_type="Organization",
        account_login="acme",
        webhook_secret=webhook_secret,
    )
    db.add(installation)
    db.commit()
    return installation


def link_github_user(
    db: Session,
    workspace: Workspace,
    user: User,
    login: str,
    github_user_id: int | None = None,
) -> GithubUserLink:
    link = GithubUserLink(
        workspace_id=workspace.id,
        user_id=user.id,
        github_login=login.lower(),
        github_user_id=github_user_id,
    )
    db.add(link)
    db.commit()
    return link


def make_repo_link(
    db: Session,
    workspace: Workspace,
    repo_id: int,
    full_name: str,
    project: Project | None = None,
    is_active: bool = True,
) -> GithubRepoLink:
    owner, name = full_name.split("/")
    link = GithubRepoLink(
        workspace_id=workspace.id,
        github_repo_id=repo_id,
        full_name=full_name,
        owner_login=owner,
        repo_name=name,
        linked_project_id=project.id if project else None,
        is_active=is_active,
    )
    db.add(link)
    db.commit()
    return link


def project_roles(db: Session, project: Project) -> dict[str, str]:
    """``{email: role}`` for the project's member rows."""
    rows = db.execute(
        select(User.email, ProjectMember.role)
        .join(ProjectMember, ProjectMember.user_id == User.id)
        .where(ProjectMember.project_id == project.id)
    ).all()
    return {email: role for email, role in rows}


def workspace_roles(db: Session, workspace: Workspace) -> dict[str, str]:
    rows = db.execute(
        select(User.email, WorkspaceMember.role)
        .join(WorkspaceMember, WorkspaceMember.user_id == User.id)
        .where(WorkspaceMember.workspace_id == workspace.id)
    ).all()
    return {email: role for email, role in rows}


def audit_actions(db: Session, workspace: Workspace | None = None) -> list[str]:
    stmt = select(AuditLog.action).order_by(AuditLog.created_at.asc())
    if workspace is not None:
        stmt = stmt.where(AuditLog.workspace_id == workspace.id)
    return list(db.execute(stmt).scalars())

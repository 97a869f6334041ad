"""Project resolution schemas."""

from __future__ import annotations

from pydantic import BaseModel, Field

from memory_core.models.enums import ResolutionKind


class GithubRemote(BaseModel):
    """Git remote as reported by the client; ``normalized`` wins over owner/repo."""

    host: str | None = None
    owner: str | None = None
    repo: str | None = None
    normalized: str | None = None


class MonorepoContext(BaseModel):
    enabled: bool | None = None
    candidate_subpaths: list[str] = Field(default_factory=list)


class ResolveProjectRequest(BaseModel):
    """Client-side git context used to pick (or create) a project."""

    workspace_key: str = Field(..., min_length=1)
    github_remote: GithubRemote | None = None
    repo_root_slug: str | None = None
    repo_root: str | None = None
    cwd: str | None = None
    relative_path: str | None = None
    monorepo: MonorepoContext | None = None
    manual_project_key: str | None = None


class ProjectRef(BaseModel):
    key: str
    id: str
    name: str


class ResolveProjectResponse(BaseModel):
    workspace_key: str
    project: ProjectRef
    resolution: ResolutionKind
    matched_mapping_id: str | None = None
    created: bool = False

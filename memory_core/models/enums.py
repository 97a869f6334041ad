"""String enums stored in VARCHAR columns."""

from enum import Enum


class WorkspaceRole(str, Enum):
    OWNER = "OWNER"
    ADMIN = "ADMIN"
    MEMBER = "MEMBER"


class ProjectRole(str, Enum):
    OWNER = "OWNER"
    MAINTAINER = "MAINTAINER"
    WRITER = "WRITER"
    READER = "READER"


class ResolutionKind(str, Enum):
    github_remote = "github_remote"
    repo_root_slug = "repo_root_slug"
    manual = "manual"


class MonorepoMode(str, Enum):
    repo_only = "repo_only"
    repo_hash_subpath = "repo_hash_subpath"
    repo_colon_subpath = "repo_colon_subpath"


class MonorepoContextMode(str, Enum):
    shared_repo = "shared_repo"
    split_on_demand = "split_on_demand"
    split_auto = "split_auto"


class SyncMode(str, Enum):
    add_only = "add_only"
    add_and_remove = "add_and_remove"


class TeamMappingTargetType(str, Enum):
    workspace = "workspace"
    project = "project"


class WebhookEventStatus(str, Enum):
    queued = "queued"
    processing = "processing"
    done = "done"
    failed = "failed"

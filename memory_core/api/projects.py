"""Project resolution endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from memory_core.api.deps import get_db, require_auth
from memory_core.auth import AuthContext
from memory_core.schemas.project import ResolveProjectRequest, ResolveProjectResponse
from memory_core.services.project_resolver import resolve_project_by_priority

router = APIRouter()


@router.post("/resolve-project", response_model=ResolveProjectResponse)
def resolve_project(
    data: ResolveProjectRequest,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_auth),
) -> ResolveProjectResponse:
    """Resolve (or auto-create) the project for a client's git context."""
    return resolve_project_by_priority(db, auth, data)

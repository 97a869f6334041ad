"""GitHub App install callback.

GitHub redirects the installing admin's browser here, so there is no bearer
token; the signed ``state`` from ``/install-url`` identifies the workspace
and the admin.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from memory_core.api.deps import get_db, get_github_client
from memory_core.github.client import GithubApi
from memory_core.schemas.github import InstallationConnectResponse
from memory_core.services.github_integration import connect_github_installation

router = APIRouter()


@router.get("/callback", response_model=InstallationConnectResponse)
async def github_install_callback(
    installation_id: str = Query(...),
    state: str = Query(...),
    db: Session = Depends(get_db),
    client: GithubApi = Depends(get_github_client),
) -> InstallationConnectResponse:
    result = await connect_github_installation(db, client, installation_id, state)
    return InstallationConnectResponse(**result)

"""GitHub REST client for the workspace's GitHub App.

Authenticates as the App (RS256 JWT) to mint installation tokens, then calls
the REST API with the installation token. List endpoints paginate at 100 per
page until a short page. Every non-2xx response raises ``GithubApiError``;
429s, 5xx and transport failures are flagged ``retryable`` so callers can
decide how many attempts to spend.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Protocol

import httpx
from jose import jwt

from memory_core.config import Settings, get_settings
from memory_core.errors import GithubApiError, ValidationError

logger = logging.getLogger(__name__)

_DEFAULT_PAGE_SIZE = 100
_JWT_BACKDATE_SECS = 30  # tolerate clock drift between us and GitHub
_JWT_LIFETIME_SECS = 540  # GitHub caps App JWTs at 10 minutes
_USER_AGENT = "memory-core/0.1 (github-app)"


def require_github_app_config(settings: Settings | None = None) -> tuple[str, str]:
    """Return (app_id, private_key) or raise ValidationError."""
    settings = settings or get_settings()
    if not settings.github_app_id or not settings.github_app_private_key:
        raise ValidationError(
            "GitHub App credentials are missing. Set GITHUB_APP_ID and GITHUB_APP_PRIVATE_KEY."
        )
    return settings.github_app_id, settings.github_app_private_key


def create_github_app_jwt(app_id: str, private_key: str, now: int | None = None) -> str:
    """Sign an App JWT: iat backdated 30s, 9-minute lifetime."""
    issued = int(now if now is not None else time.time())
    payload = {
        "iat": issued - _JWT_BACKDATE_SECS,
        "exp": issued + _JWT_LIFETIME_SECS,
        "iss": str(app_id),
    }
    return jwt.encode(payload, private_key, algorithm="RS256")


class GithubApi(Protocol):
    """What the sync services need from GitHub; tests provide in-memory fakes."""

    async def get_installation_token(self, installation_id: int) -> str: ...

    async def get_installation_details(self, installation_id: int) -> dict[str, Any]: ...

    async def list_installation_repositories(self, token: str) -> list[dict[str, Any]]: ...

    async def list_repository_collaborators(
        self, token: str, owner: str, repo: str
    ) -> list[dict[str, Any]]: ...

    async def list_repository_teams(
        self, token: str, owner: str, repo: str
    ) -> list[dict[str, Any]]: ...

    async def list_team_members(
        self, token: str, org_login: str, team_slug: str
    ) -> list[dict[str, Any]]: ...

    async def get_user_by_login(self, token: str, login: str) -> dict[str, Any] | None: ...


def _api_error(response: httpx.Response) -> GithubApiError:
    status = response.status_code
    try:
        message = response.json().get("message") or response.text
    except ValueError:
        message = response.text
    rate_limited = status == 429 or (
        status == 403 and response.headers.get("x-ratelimit-remaining") == "0"
    )
    return GithubApiError(
        f"GitHub API error: {status} {message}".strip(),
        status_code=status,
        retryable=rate_limited or status >= 500,
        rate_limited=rate_limited,
    )


class GithubClient:
    """httpx-backed implementation of ``GithubApi``.

    Use as an async context manager, or call ``aclose()`` when done.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._client = httpx.AsyncClient(
            base_url=self._settings.github_api_base,
            timeout=self._settings.github_api_timeout,
            headers={
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
                "User-Agent": _USER_AGENT,
            },
            transport=transport,
        )

    async def __aenter__(self) -> GithubClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        token: str,
        params: dict[str, Any] | None = None,
    ) -> httpx.Response:
        try:
            response = await self._client.request(
                method,
                path,
                params=params,
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.TimeoutException as exc:
            raise GithubApiError(
                f"GitHub API error: timeout calling {method} {path}", retryable=True
            ) from exc
        except httpx.HTTPError as exc:
            raise GithubApiError(f"GitHub API error: {exc}", retryable=True) from exc
        if response.status_code >= 400:
            raise _api_error(response)
        return response

    async def _paginate(
        self,
        path: str,
        token: str,
        params: dict[str, Any] | None = None,
        items_key: str | None = None,
    ) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        page = 1
        while True:
            response = await self._request(
                "GET",
                path,
                token,
                params={**(params or {}), "per_page": _DEFAULT_PAGE_SIZE, "page": page},
            )
            data = response.json()
            batch = data.get(items_key, []) if items_key else data
            if not isinstance(batch, list):
                break
            items.extend(batch)
            if len(batch) < _DEFAULT_PAGE_SIZE:
                break
            page += 1
        return items

    async def create_installation_access_token(self, app_jwt: str, installation_id: int) -> str:
        response = await self._request(
            "POST", f"/app/installations/{installation_id}/access_tokens", app_jwt
        )
        token = response.json().get("token")
        if not token:
            raise GithubApiError("GitHub API error: installation token missing in response")
        return token

    async def get_installation_token(self, installation_id: int) -> str:
        app_id, private_key = require_github_app_config(self._settings)
        app_jwt = create_github_app_jwt(app_id, private_key)
        return await self.create_installation_access_token(app_jwt, installation_id)

    async def get_installation_details(self, installation_id: int) -> dict[str, Any]:
        app_id, private_key = require_github_app_config(self._settings)
        app_jwt = create_github_app_jwt(app_id, private_key)
        response = await self._request("GET", f"/app/installations/{installation_id}", app_jwt)
        return response.json()

    async def list_installation_repositories(self, token: str) -> list[dict[str, Any]]:
        return await self._paginate("/installation/repositories", token, items_key="repositories")

    async def list_repository_collaborators(
        self, token: str, owner: str, repo: str
    ) -> list[dict[str, Any]]:
        return await self._paginate(
            f"/repos/{owner}/{repo}/collaborators", token, params={"affiliation": "all"}
        )

    async def list_repository_teams(
        self, token: str, owner: str, repo: str
    ) -> list[dict[str, Any]]:
        return await self._paginate(f"/repos/{owner}/{repo}/teams", token)

    async def list_team_members(
        self, token: str, org_login: str, team_slug: str
    ) -> list[dict[str, Any]]:
        return await self._paginate(f"/orgs/{org_login}/teams/{team_slug}/members", token)

    async def get_user_by_login(self, token: str, login: str) -> dict[str, Any] | None:
        try:
            response = await self._request("GET", f"/users/{login}", token)
        except GithubApiError as exc:
            if exc.github_status == 404:
                return None
            raise
        return response.json()

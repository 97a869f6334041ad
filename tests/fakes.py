"""In-memory stand-in for the GitHub REST client, plus webhook signing helpers."""

from __future__ import annotations

import hashlib
import hmac
import json
from typing import Any

from memory_core.errors import GithubApiError
from tests.test_constants import (
    TEST_INSTALLATION_ID,
    TEST_INSTALLATION_TOKEN,
    TEST_WEBHOOK_SECRET,
)


class FakeGithub:
    """Implements the ``GithubApi`` protocol from plain dicts.

    ``failures`` maps an operation key (``"collaborators:owner/repo"``,
    ``"teams:owner/repo"``, ``"members:org/slug"``, ``"user:login"``,
    ``"repos"``, ``"token:<id>"``, ``"installation:<id>"``) to an exception,
    or to a list of exceptions raised one per call before the call succeeds.
    """

    def __init__(self) -> None:
        self.token = TEST_INSTALLATION_TOKEN
        self.repos: list[dict[str, Any]] = []
        self.collaborators: dict[str, list[dict[str, Any]]] = {}
        self.repo_teams: dict[str, list[dict[str, Any]]] = {}
        self.team_members: dict[str, list[dict[str, Any]]] = {}
        self.users: dict[str, dict[str, Any]] = {}
        self.installations: dict[int, dict[str, Any]] = {}
        self.failures: dict[str, Exception | list[Exception]] = {}
        self.calls: list[str] = []

    def _call(self, key: str) -> None:
        self.calls.append(key)
        failure = self.failures.get(key)
        if isinstance(failure, list):
            if failure:
                raise failure.pop(0)
        elif failure is not None:
            raise failure

    async def get_installation_token(self, installation_id: int) -> str:
        self._call(f"token:{installation_id}")
        return self.token

    async def get_installation_details(self, installation_id: int) -> dict[str, Any]:
        self._call(f"installation:{installation_id}")
        if installation_id not in self.installations:
            raise not_found()
        return self.installations[installation_id]

    async def list_installation_repositories(self, token: str) -> list[dict[str, Any]]:
        self._call("repos")
        return list(self.repos)

    async def list_repository_collaborators(
        self, token: str, owner: str, repo: str
    ) -> list[dict[str, Any]]:
        self._call(f"collaborators:{owner}/{repo}")
        return list(self.collaborators.get(f"{owner}/{repo}", []))

    async def list_repository_teams(
        self, token: str, owner: str, repo: str
    ) -> list[dict[str, Any]]:
        self._call(f"teams:{owner}/{repo}")
        return list(self.repo_teams.get(f"{owner}/{repo}", []))

    async def list_team_members(
        self, token: str, org_login: str, team_slug: str
    ) -> list[dict[str, Any]]:
        self._call(f"members:{org_login}/{team_slug}")
        return list(self.team_members.get(f"{org_login}/{team_slug}", []))

    async def get_user_by_login(self, token: str, login: str) -> dict[str, Any] | None:
        self._call(f"user:{login}")
        return self.users.get(login)

    def count(self, key: str) -> int:
        return sum(1 for call in self.calls if call == key)


def rate_limited(message: str = "API rate limit exceeded") -> GithubApiError:
    return GithubApiError(
        f"GitHub API error: 403 {message}", status_code=403, retryable=True, rate_limited=True
    )


def not_found(message: str = "Not Found") -> GithubApiError:
    return GithubApiError(f"GitHub API error: 404 {message}", status_code=404)


def bad_gateway() -> GithubApiError:
    return GithubApiError("GitHub API error: 502 Bad Gateway", status_code=502, retryable=True)


def repo_payload(repo_id: int, full_name: str, private: bool = False) -> dict[str, Any]:
    owner, name = full_name.split("/")
    return {
        "id": repo_id,
        "full_name": full_name,
        "name": name,
        "owner": {"login": owner},
        "default_branch": "main",
        "private": private,
    }


def member(github_id: int, login: str) -> dict[str, Any]:
    return {"id": github_id, "login": login}


def sign_payload(body: bytes, secret: str = TEST_WEBHOOK_SECRET) -> str:
    """``X-Hub-Signature-256`` value for ``body``."""
    return "sha256=" + hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def webhook_body(installation_id: int = TEST_INSTALLATION_ID, **fields: Any) -> bytes:
    return json.dumps({"installation": {"id": installation_id}, **fields}).encode()


def installation_payload(
    installation_id: int,
    login: str = "acme",
    account_type: str = "Organization",
    repository_selection: str = "all",
) -> dict[str, Any]:
    """``GET /app/installations/{id}`` body."""
    return {
        "id": installation_id,
        "account": {"login": login, "type": account_type},
        "repository_selection": repository_selection,
        "permissions": {"metadata": "read", "members": "read", "administration": "write"},
    }

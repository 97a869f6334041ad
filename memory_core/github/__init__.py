from memory_core.github.client import (
    GithubApi,
    GithubClient,
    create_github_app_jwt,
    require_github_app_config,
)

__all__ = ["GithubApi", "GithubClient", "create_github_app_jwt", "require_github_app_config"]

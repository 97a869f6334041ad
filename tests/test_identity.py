"""GitHub identity normalization tests."""

from __future__ import annotations

import pytest

from memory_core.errors import ValidationError
from memory_core.schemas.project import GithubRemote
from memory_core.services.identity import (
    build_github_external_id_candidates,
    normalize_github_login,
    normalize_github_repo_id,
    normalize_github_selector,
    parse_owner_repo,
    to_github_mapping_external_id,
)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("Acme/Platform", "acme/platform"),
        ("/acme/platform/", "acme/platform"),
        ("  acme/platform ", "acme/platform"),
        ("acme", None),
        ("acme/platform/extra", None),
        ("", None),
        (None, None),
    ],
)
def test_normalize_github_repo_id(raw, expected):
    assert normalize_github_repo_id(raw) == expected


def test_selector_prefers_normalized_over_owner_repo():
    selector = normalize_github_selector(
        GithubRemote(host="GitHub.com", owner="other", repo="thing", normalized="Acme/Platform")
    )
    assert selector.normalized == "acme/platform"
    assert selector.with_host == "github.com/acme/platform"


def test_selector_falls_back_to_owner_and_repo():
    selector = normalize_github_selector(GithubRemote(owner="Acme", repo="Platform"))
    assert selector.normalized == "acme/platform"
    assert selector.with_host is None


def test_selector_is_none_without_usable_parts():
    assert normalize_github_selector(None) is None
    assert normalize_github_selector(GithubRemote(owner="acme")) is None


def test_candidates_include_host_and_both_subpath_separators():
    selector = normalize_github_selector(
        GithubRemote(host="github.com", normalized="acme/platform")
    )
    assert build_github_external_id_candidates(selector, "apps/web") == [
        "acme/platform",
        "acme/platform#apps/web",
        "acme/platform:apps/web",
        "github.com/acme/platform",
        "github.com/acme/platform#apps/web",
        "github.com/acme/platform:apps/web",
    ]


def test_candidates_without_base():
    selector = normalize_github_selector(GithubRemote(normalized="acme/platform"))
    assert build_github_external_id_candidates(selector, "apps/web", include_base=False) == [
        "acme/platform#apps/web",
        "acme/platform:apps/web",
    ]


def test_new_mapping_ids_always_use_hash():
    assert to_github_mapping_external_id("acme/platform") == "acme/platform"
    assert to_github_mapping_external_id("acme/platform", "apps/web") == "acme/platform#apps/web"


def test_normalize_github_login():
    assert normalize_github_login("  @Octo-One ") == "octo-one"
    assert normalize_github_login(None) == ""


def test_parse_owner_repo():
    assert parse_owner_repo("Acme/Platform") == ("acme", "platform")
    with pytest.raises(ValidationError, match="Invalid repository full name"):
        parse_owner_repo("platform")

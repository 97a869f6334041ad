"""Monorepo subpath detection tests."""

from __future__ import annotations

import pytest

from memory_core.models.enums import MonorepoMode
from memory_core.schemas.project import MonorepoContext, ResolveProjectRequest
from memory_core.services.monorepo import (
    compose_monorepo_project_key,
    matches_any_glob,
    normalize_monorepo_subpath,
    normalize_subpath_for_split_policy,
    resolve_monorepo_subpath,
)
from memory_core.services.workspace_settings import EffectiveWorkspaceSettings


def _request(**kwargs) -> ResolveProjectRequest:
    return ResolveProjectRequest(workspace_key="acme", **kwargs)


class TestNormalizeSubpath:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("./Apps//Admin UI/", "apps/admin-ui"),
            ("apps\\web", "apps/web"),
            ("packages/@scope+lib", "packages/scope-lib"),
            ("../etc", None),
            (".", None),
            ("", None),
            (None, None),
        ],
    )
    def test_sanitizes_segments(self, raw, expected):
        assert normalize_monorepo_subpath(raw) == expected


class TestGlobs:
    def test_double_star_exclude_matches_anywhere(self):
        assert matches_any_glob("apps/web/node_modules/react", ["**/node_modules/**"])
        assert matches_any_glob("dist", ["**/dist/**"])
        assert not matches_any_glob("apps/distribution", ["**/dist/**"])

    def test_trailing_double_star_matches_prefix(self):
        assert matches_any_glob("apps/web", ["apps/**"])
        assert matches_any_glob("apps", ["apps/**"])

    def test_negated_patterns_are_ignored(self):
        assert not matches_any_glob("apps/web", ["!apps/web"])


class TestResolveMonorepoSubpath:
    def test_candidate_is_truncated_to_glob_depth(self):
        request = _request(
            monorepo=MonorepoContext(candidate_subpaths=["apps/admin-ui/src/components"])
        )
        assert resolve_monorepo_subpath(request, EffectiveWorkspaceSettings()) == "apps/admin-ui"

    def test_derived_from_repo_root_and_cwd(self):
        request = _request(repo_root="/home/me/platform", cwd="/home/me/platform/packages/Core Lib/src")
        assert resolve_monorepo_subpath(request, EffectiveWorkspaceSettings()) == "packages/core-lib"

    def test_cwd_outside_repo_root_is_ignored(self):
        request = _request(repo_root="/home/me/platform", cwd="/home/me/other/apps/web")
        assert resolve_monorepo_subpath(request, EffectiveWorkspaceSettings()) is None

    def test_excluded_candidate_is_skipped_for_next_one(self):
        request = _request(
            monorepo=MonorepoContext(
                candidate_subpaths=["apps/web/node_modules/x", "packages/ui"]
            )
        )
        assert resolve_monorepo_subpath(request, EffectiveWorkspaceSettings()) == "packages/ui"

    def test_double_star_include_glob_spans_segments(self):
        settings = EffectiveWorkspaceSettings(
            monorepo_workspace_globs=["services/**/api"], monorepo_max_depth=4
        )
        request = _request(relative_path="services/billing/v2/api/handlers")
        assert resolve_monorepo_subpath(request, settings) == "services/billing/v2/api"

    def test_max_depth_rejects_deep_subpaths(self):
        settings = EffectiveWorkspaceSettings(monorepo_workspace_globs=["services/**/api"])
        request = _request(relative_path="services/billing/v2/api/handlers")
        assert resolve_monorepo_subpath(request, settings) is None

    def test_repo_only_mode_never_detects(self):
        settings = EffectiveWorkspaceSettings(monorepo_mode=MonorepoMode.repo_only)
        request = _request(relative_path="apps/web")
        assert resolve_monorepo_subpath(request, settings) is None


class TestSplitPolicy:
    def test_depth_window(self):
        assert normalize_subpath_for_split_policy("apps/web", 3, []) == "apps/web"
        assert normalize_subpath_for_split_policy("apps", 3, []) is None
        assert normalize_subpath_for_split_policy("apps/a/b/c", 10, []) is None

    def test_excluded_subpath(self):
        assert normalize_subpath_for_split_policy("apps/dist", 3, ["**/dist/**"]) is None


@pytest.mark.parametrize(
    "subpath, mode, expected",
    [
        ("apps/web", MonorepoMode.repo_hash_subpath, "github:acme/platform#apps/web"),
        ("apps/web", MonorepoMode.repo_colon_subpath, "github:acme/platform:apps/web"),
        ("apps/web", MonorepoMode.repo_only, "github:acme/platform"),
        (None, MonorepoMode.repo_hash_subpath, "github:acme/platform"),
    ],
)
def test_compose_monorepo_project_key(subpath, mode, expected):
    assert compose_monorepo_project_key("github:acme/platform", subpath, mode) == expected

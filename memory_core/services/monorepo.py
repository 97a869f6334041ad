"""Monorepo subpath detection.

Derives a sanitized subpath (e.g. ``apps/admin-ui``) from the client's
declared candidate subpaths, or from ``relative(repo_root, cwd)``, using the
workspace's include globs, exclude globs and max depth.
"""

from __future__ import annotations

import posixpath
import re
from typing import TYPE_CHECKING

from memory_core.models.enums import MonorepoMode
from memory_core.schemas.project import ResolveProjectRequest

if TYPE_CHECKING:
    from memory_core.services.workspace_settings import EffectiveWorkspaceSettings

DEFAULT_MONOREPO_GLOBS: tuple[str, ...] = ("apps/*", "packages/*")
DEFAULT_MONOREPO_EXCLUDE_GLOBS: tuple[str, ...] = (
    "**/node_modules/**",
    "**/.git/**",
    "**/dist/**",
    "**/build/**",
    ".next/**",
)
DEFAULT_MONOREPO_MAX_DEPTH = 3

# Split-policy subprojects are always 2..3 segments deep (e.g. apps/web, apps/web/api)
_SPLIT_POLICY_MIN_DEPTH = 2
_SPLIT_POLICY_MAX_DEPTH = 3

_REGEX_SPECIALS = re.compile(r"[.+?^${}()|\[\]\\]")


def _escape(value: str) -> str:
    # Leaves "*" alone so callers can expand it
    return _REGEX_SPECIALS.sub(lambda m: "\\" + m.group(0), value)


def _normalize_path(value: str) -> str:
    return re.sub(r"/{2,}", "/", value.replace("\\", "/")).strip()


def _normalize_relative_path(value: str | None) -> str | None:
    raw = _normalize_path(value or "")
    raw = re.sub(r"^\./+", "", raw).lstrip("/").rstrip("/")
    if not raw or raw == ".":
        return None
    segments = [segment for segment in raw.split("/") if segment]
    if any(segment in (".", "..") for segment in segments):
        return None
    return "/".join(segments)


def _sanitize_segment(segment: str) -> str:
    value = re.sub(r"\s+", "-", segment.strip())
    value = re.sub(r"[^a-zA-Z0-9._-]", "-", value)
    value = re.sub(r"-+", "-", value)
    value = re.sub(r"^[-_.]+", "", value)
    value = re.sub(r"[-_.]+$", "", value)
    return value.lower()


def normalize_monorepo_subpath(value: str | None) -> str | None:
    """Sanitize every segment; None when nothing usable is left."""
    normalized = _normalize_relative_path(value)
    if not normalized:
        return None
    segments = [_sanitize_segment(segment) for segment in normalized.split("/")]
    segments = [segment for segment in segments if segment]
    if not segments:
        return None
    return "/".join(segments)


# ── Include globs (segment-wise) ─────────────────────────────────────


def _segment_matches(pattern_segment: str, segment: str) -> bool:
    regex = "^" + _escape(pattern_segment).replace("*", "[^/]+") + "$"
    return re.match(regex, segment, re.IGNORECASE) is not None


def _covered_prefix_length(glob_segments: list[str], path_segments: list[str]) -> int | None:
    """How many leading path segments the glob covers, or None if it does not match.

    ``*`` covers exactly one segment; a whole-segment ``**`` covers any number
    of segments, shortest first.
    """
    if not glob_segments:
        return 0
    head, rest = glob_segments[0], glob_segments[1:]
    if head == "**":
        for skip in range(len(path_segments) + 1):
            covered = _covered_prefix_length(rest, path_segments[skip:])
            if covered is not None:
                return skip + covered
        return None
    if not path_segments or not _segment_matches(head, path_segments[0]):
        return None
    covered = _covered_prefix_length(rest, path_segments[1:])
    return None if covered is None else covered + 1


def _derive_subpath_from_relative_path(relative_path: str, globs: list[str]) -> str | None:
    normalized = normalize_monorepo_subpath(relative_path)
    if not normalized:
        return None
    segments = normalized.split("/")
    for glob in globs:
        normalized_glob = _normalize_relative_path(glob)
        if not normalized_glob:
            continue
        covered = _covered_prefix_length(normalized_glob.split("/"), segments)
        if not covered:
            continue
        return normalize_monorepo_subpath("/".join(segments[:covered]))
    return None


# ── Exclude globs (whole path) ───────────────────────────────────────


def _glob_match(path: str, pattern: str) -> bool:
    tokenized = (
        _escape(pattern)
        .replace("**", "\0")
        .replace("*", "[^/]*")
        .replace("\0", ".*")
    )
    return re.match(f"^{tokenized}$", path, re.IGNORECASE) is not None


def matches_any_glob(relative_path: str, globs: list[str] | tuple[str, ...]) -> bool:
    normalized_path = normalize_monorepo_subpath(relative_path)
    if not normalized_path:
        return False
    for glob in globs:
        pattern = _normalize_relative_path(glob)
        if not pattern or pattern.startswith("!"):
            continue
        if pattern.startswith("**/") and pattern.endswith("/**"):
            middle = pattern[3:-3].strip("/")
            if middle and (
                normalized_path == middle
                or normalized_path.startswith(f"{middle}/")
                or normalized_path.endswith(f"/{middle}")
                or f"/{middle}/" in normalized_path
            ):
                return True
        if _glob_match(normalized_path, pattern):
            return True
        if pattern.endswith("/**"):
            prefix = pattern[:-3].rstrip("/")
            if normalized_path == prefix or normalized_path.startswith(f"{prefix}/"):
                return True
    return False


# ── Resolution ───────────────────────────────────────────────────────


def _derive_relative_path_from_repo_root(request: ResolveProjectRequest) -> str | None:
    direct = _normalize_relative_path(request.relative_path)
    if direct:
        return direct
    if not request.repo_root or not request.cwd:
        return None
    root = _normalize_path(request.repo_root)
    cwd = _normalize_path(request.cwd)
    if not root or not cwd:
        return None
    relative = posixpath.relpath(cwd, root)
    if not relative or relative.startswith("..") or posixpath.isabs(relative):
        return None
    return _normalize_relative_path(relative)


def resolve_monorepo_subpath(
    request: ResolveProjectRequest, settings: EffectiveWorkspaceSettings
) -> str | None:
    """First candidate that matches an include glob and survives excludes and depth."""
    if settings.monorepo_mode == MonorepoMode.repo_only:
        return None

    globs = list(settings.monorepo_workspace_globs) or list(DEFAULT_MONOREPO_GLOBS)
    max_depth = settings.monorepo_max_depth
    if max_depth <= 0:
        max_depth = DEFAULT_MONOREPO_MAX_DEPTH
    excludes = settings.monorepo_exclude_globs

    candidates: list[str] = []
    if request.monorepo is not None:
        candidates.extend(request.monorepo.candidate_subpaths)
    derived_relative = _derive_relative_path_from_repo_root(request)
    if derived_relative:
        candidates.append(derived_relative)

    for candidate in candidates:
        if matches_any_glob(candidate, excludes):
            continue
        derived = _derive_subpath_from_relative_path(candidate, globs)
        if not derived:
            continue
        if matches_any_glob(derived, excludes):
            continue
        if len(derived.split("/")) > max_depth:
            continue
        return derived
    return None


def normalize_subpath_for_split_policy(
    subpath: str | None, max_depth: int, exclude_globs: list[str] | tuple[str, ...]
) -> str | None:
    """Subpath usable as a subproject key, or None."""
    normalized = normalize_monorepo_subpath(subpath)
    if not normalized:
        return None
    depth = len(normalized.split("/"))
    upper = min(
        max(int(max_depth or DEFAULT_MONOREPO_MAX_DEPTH), _SPLIT_POLICY_MIN_DEPTH),
        _SPLIT_POLICY_MAX_DEPTH,
    )
    if depth < _SPLIT_POLICY_MIN_DEPTH or depth > upper:
        return None
    if matches_any_glob(normalized, exclude_globs):
        return None
    return normalized


def compose_monorepo_project_key(base_key: str, subpath: str | None, mode: MonorepoMode) -> str:
    if not subpath or mode == MonorepoMode.repo_only:
        return base_key
    if mode == MonorepoMode.repo_colon_subpath:
        return f"{base_key}:{subpath}"
    return f"{base_key}#{subpath}"

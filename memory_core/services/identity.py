"""GitHub identity normalization.

Turns client-reported remotes into canonical ``owner/repo`` external ids and
the host- and subpath-qualified variants used to look up project mappings.
New mappings are always written with ``#``; the ``:`` variant is only matched
so that legacy rows keep resolving.
"""

from __future__ import annotations

from dataclasses import dataclass

from memory_core.errors import ValidationError
from memory_core.schemas.project import GithubRemote


@dataclass(frozen=True)
class GithubSelector:
    normalized: str
    with_host: str | None = None


def normalize_github_repo_id(value: str | None) -> str | None:
    """Return lowercase ``owner/repo`` or None unless exactly two segments."""
    raw = str(value or "").strip().strip("/")
    segments = [segment for segment in raw.split("/") if segment]
    if len(segments) != 2:
        return None
    owner, repo = segments
    return f"{owner.lower()}/{repo.lower()}"


def normalize_github_selector(remote: GithubRemote | None) -> GithubSelector | None:
    if remote is None:
        return None
    host = (remote.host or "").strip().lower()

    normalized = normalize_github_repo_id(remote.normalized)
    if normalized is None:
        owner = (remote.owner or "").strip().lower()
        repo = (remote.repo or "").strip().lower()
        if not owner or not repo:
            return None
        normalized = normalize_github_repo_id(f"{owner}/{repo}")
        if normalized is None:
            return None

    return GithubSelector(normalized=normalized, with_host=f"{host}/{normalized}" if host else None)


def build_github_external_id_candidates(
    selector: GithubSelector,
    subpath: str | None = None,
    include_base: bool = True,
) -> list[str]:
    """Ordered, de-duplicated external ids to try for a repo (and subpath)."""
    bases = [selector.normalized]
    if selector.with_host:
        bases.append(selector.with_host)

    values: list[str] = []
    for base in bases:
        candidates = [base] if include_base else []
        if subpath:
            candidates += [f"{base}#{subpath}", f"{base}:{subpath}"]
        for candidate in candidates:
            if candidate not in values:
                values.append(candidate)
    return values


def to_github_mapping_external_id(normalized_repo: str, subpath: str | None = None) -> str:
    if not subpath:
        return normalized_repo
    return f"{normalized_repo}#{subpath}"


def normalize_github_login(value: str | None) -> str:
    return str(value or "").strip().lstrip("@").lower()


def parse_owner_repo(full_name: str) -> tuple[str, str]:
    """Split ``owner/repo``; raises ValidationError on anything else."""
    normalized = normalize_github_repo_id(full_name)
    if normalized is None:
        raise ValidationError(f"Invalid repository full name: {full_name}")
    owner, repo = normalized.split("/")
    return owner, repo

"""GitHub user link tests."""

from __future__ import annotations

import uuid

import pytest

from memory_core.auth import user_auth
from memory_core.errors import NotFoundError, ValidationError
from memory_core.services.github_user_links import (
    create_github_user_link,
    delete_github_user_link,
    list_github_user_links,
)
from tests.factories import audit_actions, make_installation, make_member, make_user, make_workspace
from tests.fakes import rate_limited


@pytest.fixture
def setup(db):
    workspace = make_workspace(db, "acme")
    make_installation(db, workspace)
    admin = make_member(db, workspace, "admin@example.com", "ADMIN")
    dev = make_member(db, workspace, "dev@example.com")
    return workspace, dev, user_auth(admin.id, admin.email)


async def test_create_looks_up_github_id(db, github, setup):
    workspace, dev, auth = setup
    github.users["octo-dev"] = {"id": 31, "login": "Octo-Dev"}

    link = await create_github_user_link(db, auth, "acme", dev.id, " @Octo-Dev ", github)

    assert (link.github_login, link.github_user_id) == ("octo-dev", 31)
    assert audit_actions(db, workspace) == ["github.user_link.created"]


async def test_lookup_failure_still_links_by_login(db, github, setup):
    _, dev, auth = setup
    github.failures["user:octo-dev"] = rate_limited()

    link = await create_github_user_link(db, auth, "acme", dev.id, "octo-dev", github)

    assert link.github_user_id is None


async def test_relinking_replaces_the_login(db, github, setup):
    _, dev, auth = setup
    await create_github_user_link(db, auth, "acme", dev.id, "old-login", github)
    await create_github_user_link(db, auth, "acme", dev.id, "new-login", github)

    links = list_github_user_links(db, auth, "acme")
    assert [link.github_login for link in links] == ["new-login"]


async def test_login_cannot_be_shared(db, github, setup):
    workspace, dev, auth = setup
    other = make_member(db, workspace, "other@example.com")
    await create_github_user_link(db, auth, "acme", dev.id, "octo", github)

    with pytest.raises(ValidationError, match="already linked"):
        await create_github_user_link(db, auth, "acme", other.id, "OCTO", github)


async def test_user_must_be_workspace_member(db, github, setup):
    *_, auth = setup
    stranger = make_user(db, "stranger@example.com")

    with pytest.raises(NotFoundError, match="not a workspace member"):
        await create_github_user_link(db, auth, "acme", stranger.id, "octo", github)
    with pytest.raises(ValidationError, match="github_login is required"):
        await create_github_user_link(db, auth, "acme", stranger.id, " @ ", github)


async def test_delete(db, github, setup):
    workspace, dev, auth = setup
    await create_github_user_link(db, auth, "acme", dev.id, "octo", github)

    delete_github_user_link(db, auth, "acme", dev.id)

    assert list_github_user_links(db, auth, "acme") == []
    assert "github.user_link.deleted" in audit_actions(db, workspace)
    with pytest.raises(NotFoundError):
        delete_github_user_link(db, auth, "acme", uuid.uuid4())

"""Shared fixtures for pinbump tests."""

import os
import pytest
import requests
from unittest.mock import Mock

from dependency import Dependency, RepositoryHandle
from registry_api import make_tag
from updater_config import UpdaterConfig

# ---------------------------------------------------------------------------
# Build scripts
# ---------------------------------------------------------------------------

# One version variable and three image references on a single line
SCRIPT_A = """\
#!/bin/bash
set -e

demo_version="1.0.0"

buildah from docker.io/postgres:15 docker.io/redis:7 docker.io/nginx:1.25
"""

# Realistic module build script: variables, substitutions, comments
SCRIPT_PENPOT = """\
#!/bin/bash

# Terminate on error
set -e

images=()
repobase="${REPOBASE:-ghcr.io/nethserver}"
reponame="penpot"

penpot_version="2.8.0"
POSTGRES_TAG="15.4.0"

container=$(buildah from scratch)
buildah config \\
    --label="org.nethserver.images=docker.io/penpotapp/frontend:${penpot_version} docker.io/postgres:${POSTGRES_TAG}" \\
    "${container}"
# docker.io/redis:6.0.0 is no longer used
buildah commit "${container}" "${repobase}/${reponame}"
images+=("${repobase}/${reponame}")
"""

# ---------------------------------------------------------------------------
# Registry payloads
# ---------------------------------------------------------------------------

DOCKERHUB_PAGE_1 = {
    "count": 4,
    "next": "https://hub.docker.com/v2/repositories/library/postgres/tags?page=2&page_size=100",
    "results": [{"name": "latest"}, {"name": "16.1.0"}],
}

DOCKERHUB_PAGE_2 = {
    "count": 4,
    "next": None,
    "results": [{"name": "15.4.0"}, {"name": "16.1.0-alpine"}],
}

GHCR_TAG_LIST = {
    "name": "penpot/frontend",
    "tags": ["latest", "2.8.0", "2.8.1", "2.9.0", "3.0.0", "main"],
}

# Current 1.2.0: nearest upgrade is 1.2.1, absolute latest is 2.0.0
UPGRADE_TAG_NAMES = ["latest", "1.2.0", "1.2.1", "1.3.0", "2.0.0", "2.0.0-amd64", "nightly"]


def tags_from(names):
    return [make_tag(name) for name in names]


def mock_response(payload, status_ok=True):
    """A requests.Response stand-in returning ``payload`` from .json()."""
    response = Mock()
    response.json.return_value = payload
    if not status_ok:
        response.raise_for_status.side_effect = requests.HTTPError("404 Client Error")
    return response


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def upgrade_tags():
    return tags_from(UPGRADE_TAG_NAMES)


@pytest.fixture
def config():
    return UpdaterConfig.default()


@pytest.fixture
def script_a(tmp_path):
    path = tmp_path / "build-images.sh"
    path.write_text(SCRIPT_A)
    return path


@pytest.fixture
def repo(tmp_path):
    """A repository checkout holding Scenario A's build script."""
    repo_dir = tmp_path / "ns8-demo"
    repo_dir.mkdir()
    (repo_dir / "build-images.sh").write_text(SCRIPT_A)
    return RepositoryHandle(name="ns8-demo", path=str(repo_dir))


@pytest.fixture
def fake_resolvers():
    """Resolver stand-in that maps dependency names to fixed latest versions."""
    resolvers = Mock()
    resolvers.latest = {}

    def _resolve(dep: Dependency) -> str:
        return resolvers.latest.get(dep.name, dep.current_version)

    resolvers.resolve.side_effect = _resolve
    return resolvers


@pytest.fixture
def fake_git():
    git = Mock()
    git.stage_and_commit.return_value = "0123456789abcdef0123456789abcdef01234567"
    return git


def make_dependency(path, name, current, latest, kind):
    return Dependency(
        name=name,
        current_version=current,
        latest_version=latest,
        file=os.fspath(path),
        source_kind=kind,
    )


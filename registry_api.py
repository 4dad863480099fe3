"""Registry tag listing and upgrade-target selection.

Two listing shapes are normalized to ``[Tag]``:

* Docker Hub: paginated ``{"results": [{"name": ...}], "next": url}``
* GHCR, Quay, registry.k8s.io: flat ``{"name": ..., "tags": [...]}``

Two selection policies are offered side by side and deliberately kept
separate: *absolute latest* (greatest version) and *nearest upgrade*
(smallest version strictly greater than the current one).
"""

import logging
from typing import Any, Dict, List, Optional

import requests

from dependency import Tag
from version_compare import extract_version, is_greater, parse_version

logger = logging.getLogger(__name__)

DOCKER_HUB = "docker.io"
DEFAULT_NAMESPACE = "library"
SUPPORTED_REGISTRIES = (DOCKER_HUB, "ghcr.io", "quay.io", "registry.k8s.io")
PAGINATED_REGISTRIES = (DOCKER_HUB,)
REQUEST_TIMEOUT = 30
PAGE_SIZE = 100


class RegistryError(Exception):
    """Tag listing failed: network error, bad status or unparsable body."""

    def __init__(self, registry: str, repository: str, message: str):
        self.registry = registry
        self.repository = repository
        self.message = message
        super().__init__(f"Registry error for {registry}/{repository}: {message}")


class UnsupportedRegistryError(RegistryError):
    """The registry hostname is not in the supported set."""

    def __init__(self, registry: str, repository: str = ""):
        super().__init__(registry, repository, f"unsupported registry: {registry}")


def endpoint_for(registry: str, repository: str) -> str:
    """Return the tag listing URL for a registry/repository pair.

    Raises:
        UnsupportedRegistryError: for hostnames outside SUPPORTED_REGISTRIES
    """
    if registry == DOCKER_HUB:
        # Official images live under the implicit library/ namespace
        if '/' not in repository:
            repository = f"{DEFAULT_NAMESPACE}/{repository}"
        return f"https://hub.docker.com/v2/repositories/{repository}/tags?page_size={PAGE_SIZE}"
    if registry in SUPPORTED_REGISTRIES:
        return f"https://{registry}/v2/{repository}/tags/list"
    raise UnsupportedRegistryError(registry, repository)


def make_tag(name: str) -> Tag:
    return Tag(name=name, version=extract_version(name))


def _canonical_name(name: str) -> str:
    """Strip a trailing architecture qualifier (text after the last hyphen)."""
    if '-' in name:
        return name.rsplit('-', 1)[0]
    return name


def canonicalize_tags(tags: List[Tag]) -> List[Tag]:
    """Collapse tags to one entry per version, sorted newest first.

    Tags without a version are dropped. Qualified variants of a version
    (``1.2.3-amd64``, ``1.2.3-arm64``) collapse into one entry; an
    unqualified tag is preferred as the representative, otherwise the
    first one seen is kept.
    """
    by_version: Dict[str, Tag] = {}
    for tag in tags:
        if not tag.has_version:
            continue
        canonical = _canonical_name(tag.name)
        version = extract_version(canonical) or tag.version
        existing = by_version.get(version)
        if existing is None:
            by_version[version] = tag
        elif '-' in existing.name and '-' not in tag.name:
            by_version[version] = tag

    return sorted(by_version.values(), key=lambda t: parse_version(t.version), reverse=True)


def find_absolute_latest(tags: List[Tag]) -> Optional[Tag]:
    """Greatest version among the tags, or None when none has a version."""
    canonical = canonicalize_tags(tags)
    if not canonical:
        return None
    return canonical[0]


def find_nearest_upgrade(current: str, tags: List[Tag]) -> Optional[Tag]:
    """Smallest version strictly greater than ``current``.

    Returns None if ``current`` is not a three-component version or if no
    tag is newer.
    """
    if parse_version(current) is None:
        return None

    best: Optional[Tag] = None
    for tag in canonicalize_tags(tags):
        if not is_greater(tag.version, current):
            continue
        if best is None or is_greater(best.version, tag.version):
            best = tag
    return best


class RegistryClient:
    """Synchronous tag lister for the supported registries.

    No retries are attempted: a transient failure surfaces exactly like a
    permanent one, as a RegistryError.
    """

    def __init__(self, timeout: int = REQUEST_TIMEOUT):
        self.timeout = timeout

    def _get_json(self, url: str, registry: str, repository: str) -> Dict[str, Any]:
        try:
            response = requests.get(url, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as e:
            raise RegistryError(registry, repository, str(e)) from e
        except ValueError as e:
            raise RegistryError(registry, repository, f"invalid JSON response: {e}") from e
        if not isinstance(data, dict):
            raise RegistryError(registry, repository, "unexpected response shape")
        return data

    def _list_paginated(self, url: str, registry: str, repository: str) -> List[str]:
        names: List[str] = []
        visited = set()
        page = 0
        while url and url not in visited:
            visited.add(url)
            page += 1
            data = self._get_json(url, registry, repository)
            for result in data.get('results') or []:
                name = result.get('name') if isinstance(result, dict) else None
                if name:
                    names.append(name)
            url = data.get('next')
        logger.debug(f"Fetched {len(names)} tags for {registry}/{repository} in {page} page(s)")
        return names

    def _list_flat(self, url: str, registry: str, repository: str) -> List[str]:
        data = self._get_json(url, registry, repository)
        tags = data.get('tags') or []
        if not isinstance(tags, list):
            raise RegistryError(registry, repository, "unexpected response shape")
        return [name for name in tags if isinstance(name, str) and name]

    def list_tags(self, registry: str, repository: str) -> List[Tag]:
        """Fetch every tag of an image, each with its parsed version.

        Raises:
            UnsupportedRegistryError: for an unknown registry hostname
            RegistryError: on network failure, bad status or bad payload
        """
        url = endpoint_for(registry, repository)
        if registry in PAGINATED_REGISTRIES:
            names = self._list_paginated(url, registry, repository)
        else:
            names = self._list_flat(url, registry, repository)
        return [make_tag(name) for name in names]

    def latest_tag(self, registry: str, repository: str) -> Optional[Tag]:
        return find_absolute_latest(self.list_tags(registry, repository))

    def nearest_upgrade_tag(self, registry: str, repository: str, current: str) -> Optional[Tag]:
        return find_nearest_upgrade(current, self.list_tags(registry, repository))

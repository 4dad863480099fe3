"""Latest-version resolution, one resolver per dependency source kind.

Version variables (``penpot_version="2.8.0"``) are mapped to a known image
family and resolved with the *nearest upgrade* policy. Image references
(``docker.io/postgres:15``) are resolved with the *absolute latest* policy.
"""

import logging
from typing import Callable, Dict, List, Mapping, Optional, Tuple

from dependency import DEFAULT_TAG, Dependency, SourceKind, Tag
from registry_api import (
    DOCKER_HUB, SUPPORTED_REGISTRIES, RegistryClient,
    find_absolute_latest, find_nearest_upgrade,
)

logger = logging.getLogger(__name__)

TagLister = Callable[[str, str], List[Tag]]

DEFAULT_IMAGE_FAMILIES = {
    "penpot": "docker.io/penpotapp/frontend",
    "nextcloud": "docker.io/nextcloud",
    "postgres": "docker.io/postgres",
    "redis": "docker.io/redis",
    "mariadb": "docker.io/mariadb",
}


def split_image_family(image: str) -> Tuple[str, str]:
    """Split ``registry/repository`` into its parts; bare names default to Docker Hub."""
    first, _, rest = image.partition('/')
    if rest and first in SUPPORTED_REGISTRIES:
        return first, rest
    return DOCKER_HUB, image


class DependencyResolver:
    """Resolve the latest version of one kind of dependency.

    ``resolve`` returns the version to write back; returning the current
    version means "nothing to do". RegistryError propagates to the caller.
    """

    kind: SourceKind

    def __init__(self, list_tags: TagLister):
        self.list_tags = list_tags

    def resolve(self, dependency: Dependency) -> str:
        raise NotImplementedError


class VersionVariableResolver(DependencyResolver):
    kind = SourceKind.VERSION_VARIABLE

    def __init__(self, list_tags: TagLister, image_families: Optional[Mapping[str, str]] = None):
        super().__init__(list_tags)
        self.image_families = dict(DEFAULT_IMAGE_FAMILIES if image_families is None else image_families)

    def resolve(self, dependency: Dependency) -> str:
        current = dependency.current_version
        family = self.image_families.get(dependency.app_name)
        if not family:
            logger.debug(f"No image family known for {dependency.name}, keeping {current}")
            return current

        registry, repository = split_image_family(family)
        upgrade = find_nearest_upgrade(current, self.list_tags(registry, repository))
        if upgrade is None:
            return current

        # Registry tag name, following the current pin's v-prefix convention
        name = upgrade.name
        if name[:1] == 'v' and name[1:2].isdigit():
            name = name[1:]
        if current.startswith('v'):
            return f"v{name}"
        return name


class ImageReferenceResolver(DependencyResolver):
    kind = SourceKind.IMAGE_REFERENCE

    def resolve(self, dependency: Dependency) -> str:
        current = dependency.current_version
        image = dependency.image
        if image is None or current == DEFAULT_TAG:
            # Floating tag, nothing pinned to rewrite
            return current

        latest = find_absolute_latest(self.list_tags(image.registry, image.repository))
        if latest is None:
            logger.debug(f"No versioned tags for {image.registry}/{image.repository}")
            return current
        return latest.name


class ResolverSet:
    """Dispatch each dependency to the resolver for its source kind.

    Tag listings are cached per (registry, repository) for the lifetime of
    the set, so an image referenced from several scripts is fetched once.
    """

    def __init__(self, client: Optional[RegistryClient] = None,
                 image_families: Optional[Mapping[str, str]] = None):
        self.client = client or RegistryClient()
        self._tag_cache: Dict[Tuple[str, str], List[Tag]] = {}
        self._resolvers: Dict[SourceKind, DependencyResolver] = {
            SourceKind.VERSION_VARIABLE: VersionVariableResolver(self._cached_tags, image_families),
            SourceKind.IMAGE_REFERENCE: ImageReferenceResolver(self._cached_tags),
        }

    def _cached_tags(self, registry: str, repository: str) -> List[Tag]:
        key = (registry, repository)
        if key not in self._tag_cache:
            self._tag_cache[key] = self.client.list_tags(registry, repository)
        return self._tag_cache[key]

    def resolver_for(self, kind: SourceKind) -> DependencyResolver:
        return self._resolvers[kind]

    def resolve(self, dependency: Dependency) -> str:
        return self._resolvers[dependency.source_kind].resolve(dependency)

"""Data model shared by the scanner, resolvers, applier and workflow."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

DEFAULT_TAG = "latest"
SUBSTITUTION_SIGIL = "$"


class SourceKind(str, Enum):
    """Which scanner code path produced a dependency."""
    VERSION_VARIABLE = "version_variable"
    IMAGE_REFERENCE = "image_reference"


@dataclass(frozen=True)
class Tag:
    """A raw registry tag with its parsed version (empty when none)."""
    name: str
    version: str = ""

    @property
    def has_version(self) -> bool:
        return bool(self.version)


@dataclass(frozen=True)
class ImageReference:
    """A ``registry/path[:tag]`` reference found in a build script."""
    registry: str
    repository: str
    tag: str
    raw: str

    @classmethod
    def parse(cls, raw: str) -> "ImageReference":
        """Split a resolved reference into registry, repository and tag.

        The registry is everything before the first ``/``; the tag is
        everything after the first ``:`` of the remainder and defaults to
        ``latest``.
        """
        registry, _, remainder = raw.partition('/')
        repository = remainder
        tag = DEFAULT_TAG
        if ':' in remainder:
            repository, tag = remainder.split(':', 1)
        return cls(registry=registry, repository=repository, tag=tag, raw=raw)

    @property
    def has_unresolved_tag(self) -> bool:
        return SUBSTITUTION_SIGIL in self.tag


@dataclass
class Dependency:
    """One version declaration discovered in a build script.

    ``current_version`` is always the literal found in the file at scan time.
    ``latest_version`` is attached once, after registry resolution.
    """
    name: str
    current_version: str
    file: str
    source_kind: SourceKind
    latest_version: Optional[str] = None
    image: Optional[ImageReference] = None

    @property
    def identity(self) -> Union[Tuple[str, str], str]:
        if self.source_kind is SourceKind.IMAGE_REFERENCE and self.image is not None:
            return self.image.raw
        return (self.file, self.name)

    @property
    def app_name(self) -> str:
        """Identifier without its ``_version`` suffix (version variables only)."""
        if self.name.endswith('_version'):
            return self.name[:-len('_version')]
        return self.name

    @property
    def has_update(self) -> bool:
        return self.latest_version is not None and self.latest_version != self.current_version

    def describe_change(self) -> str:
        return f"{self.name}: {self.current_version} -> {self.latest_version}"

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'name': self.name,
            'current_version': self.current_version,
            'latest_version': self.latest_version,
            'file': self.file,
            'source_kind': self.source_kind.value,
        }
        if self.image is not None:
            data['image'] = self.image.raw
        return data


@dataclass(frozen=True)
class RepositoryHandle:
    """A local checkout. Only its path and identity matter to the engine."""
    name: str
    path: str
    url: str = ""


@dataclass
class UpdateOutcome:
    """Result of processing one repository."""
    repository: str
    dependencies: List[Dependency] = field(default_factory=list)
    success: bool = False
    message: str = ""
    branch: Optional[str] = None
    commit: Optional[str] = None
    state: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            'repository': self.repository,
            'dependencies': [dep.to_dict() for dep in self.dependencies],
            'success': self.success,
            'message': self.message,
            'branch': self.branch,
            'commit': self.commit,
            'state': self.state,
        }

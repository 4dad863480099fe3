"""Three-component numeric version parsing and ordering.

Only ``MAJOR.MINOR.PATCH`` (optionally prefixed with ``v``) is comparable.
Anything else is reported as "not comparable" instead of raising, so callers
can filter malformed tags before sorting.
"""

import re
from typing import Iterable, List, Optional, Tuple

VersionTuple = Tuple[int, int, int]

# Whole-string form, used for declared versions
SEMVER_PATTERN = re.compile(r'^v?(\d+)\.(\d+)\.(\d+)$')

# Embedded form, used for raw registry tag names (e.g. v1.46.0-ls3)
EMBEDDED_SEMVER_PATTERN = re.compile(r'v?(\d+\.\d+\.\d+)')


def parse_version(text: Optional[str]) -> Optional[VersionTuple]:
    """Parse ``text`` into a (major, minor, patch) tuple, or None if not comparable."""
    if not text:
        return None
    match = SEMVER_PATTERN.match(text)
    if not match:
        return None
    return int(match.group(1)), int(match.group(2)), int(match.group(3))


def extract_version(tag: str) -> str:
    """Return the first version embedded in a tag name, without the ``v`` prefix.

    Returns an empty string when the tag carries no three-component version.
    """
    match = EMBEDDED_SEMVER_PATTERN.search(tag or '')
    if match:
        return match.group(1)
    return ''


def compare_versions(a: str, b: str) -> Optional[int]:
    """Compare two versions.

    Returns:
        1 if a > b, -1 if a < b, 0 if equal, None if either is not comparable
    """
    left = parse_version(a)
    right = parse_version(b)
    if left is None or right is None:
        return None
    if left == right:
        return 0
    return 1 if left > right else -1


def is_greater(a: str, b: str) -> bool:
    return compare_versions(a, b) == 1


def sort_versions(versions: Iterable[str], descending: bool = True) -> List[str]:
    """Sort comparable versions, dropping the ones that are not comparable."""
    comparable = [v for v in versions if parse_version(v) is not None]
    comparable.sort(key=parse_version, reverse=descending)
    return comparable

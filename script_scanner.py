"""Extract version declarations and image references from build scripts.

Scripts are treated as plain text, not parsed as shell. Two declaration
shapes are recognized:

* ``identifier_version="literal"`` assignments
* ``registryhost/path[:tag]`` substrings for a closed set of registries

Comments are stripped first (respecting single and double quotes on the same
line) and ``${NAME}`` references inside image strings are resolved from the
script's top-level variable assignments.
"""

import logging
import os
import re
from typing import Callable, Dict, List, Tuple

from dependency import Dependency, ImageReference, SourceKind

logger = logging.getLogger(__name__)

KNOWN_REGISTRIES = ("docker.io", "ghcr.io", "quay.io", "registry.k8s.io")

IMAGE_PATTERN = re.compile(
    r'(?<![\w.-])'
    r'(?:' + '|'.join(re.escape(host) for host in KNOWN_REGISTRIES) + r')'
    r'/[a-zA-Z0-9._/-]+'
    r'(?::[^\s"\',;)\\`]+)?'
)

VERSION_VARIABLE_PATTERN = re.compile(r'\b(\w+_version)="([^"]+)"')

# NAME="value" or NAME=value at the start of a line
ASSIGNMENT_PATTERN = re.compile(
    r'^([A-Za-z_][A-Za-z0-9_]*)=(?:"([^"]+)"|([^\s#]+))',
    re.MULTILINE,
)

VARIABLE_REFERENCE_PATTERN = re.compile(r'\$\{([A-Za-z0-9_]+)\}')


class ScanError(Exception):
    """A build script could not be read or decoded."""

    def __init__(self, path: str, message: str):
        self.path = path
        self.message = message
        super().__init__(f"Cannot scan {path}: {message}")


def strip_comments(content: str) -> str:
    """Drop ``#`` comments that are not inside a quoted string.

    Quote state does not carry across lines.
    """
    cleaned_lines = []
    for line in content.split('\n'):
        in_single = False
        in_double = False
        end = len(line)
        for i, ch in enumerate(line):
            if ch == "'" and not in_double:
                in_single = not in_single
            elif ch == '"' and not in_single:
                in_double = not in_double
            elif ch == '#' and not in_single and not in_double:
                end = i
                break
        cleaned_lines.append(line[:end])
    return '\n'.join(cleaned_lines)


def extract_variables(content: str) -> Dict[str, str]:
    """Build the variable table from top-of-line assignments.

    Later assignments overwrite earlier ones, regardless of any conditional
    the assignment sits in.
    """
    variables: Dict[str, str] = {}
    for match in ASSIGNMENT_PATTERN.finditer(content):
        name = match.group(1)
        value = match.group(2) if match.group(2) is not None else match.group(3)
        variables[name] = value
    return variables


def resolve_variables(text: str, variables: Dict[str, str]) -> str:
    """Substitute ``${NAME}`` from the table, leaving unknown names untouched."""
    def _replace(match: re.Match) -> str:
        return variables.get(match.group(1), match.group(0))

    return VARIABLE_REFERENCE_PATTERN.sub(_replace, text)


def find_image_references(content: str, variables: Dict[str, str]) -> List[ImageReference]:
    """Return one ImageReference per distinct resolved image string, in order of appearance."""
    seen: Dict[str, ImageReference] = {}
    for match in IMAGE_PATTERN.finditer(content):
        resolved = resolve_variables(match.group(0), variables)
        if resolved not in seen:
            seen[resolved] = ImageReference.parse(resolved)
    return list(seen.values())


def find_version_variables(content: str) -> List[Tuple[str, str]]:
    """Return ``(name, literal)`` pairs for ``*_version="..."`` declarations.

    One entry per name; a later declaration replaces the literal but keeps
    the position of the first one.
    """
    found: Dict[str, str] = {}
    for line in content.split('\n'):
        if not line.strip():
            continue
        for match in VERSION_VARIABLE_PATTERN.finditer(line):
            found[match.group(1)] = match.group(2)
    return list(found.items())


def scan_script(content: str, file_path: str = "") -> List[Dependency]:
    """Extract candidate dependencies from one script's text.

    Pure: no network access, no file access. Version variables come first,
    followed by image references whose tag is fully resolved.
    """
    stripped = strip_comments(content)
    variables = extract_variables(stripped)

    dependencies = [
        Dependency(
            name=name,
            current_version=literal,
            file=file_path,
            source_kind=SourceKind.VERSION_VARIABLE,
        )
        for name, literal in find_version_variables(stripped)
    ]

    for image in find_image_references(stripped, variables):
        if image.has_unresolved_tag:
            logger.debug(f"Skipping {image.raw}: tag is an unresolved variable reference")
            continue
        dependencies.append(Dependency(
            name=image.repository,
            current_version=image.tag,
            file=file_path,
            source_kind=SourceKind.IMAGE_REFERENCE,
            image=image,
        ))

    return dependencies


def scan_file(path: str) -> List[Dependency]:
    """Scan a single script file.

    Raises:
        ScanError: if the file cannot be read or is not valid UTF-8
    """
    try:
        with open(path, 'r', encoding='utf-8') as f:
            content = f.read()
    except (OSError, UnicodeDecodeError) as e:
        raise ScanError(path, str(e)) from e
    return scan_script(content, path)


def scan_tree(root: str, matches: Callable[[str], bool]) -> List[Dependency]:
    """Scan every file under ``root`` whose basename satisfies ``matches``.

    Unreadable files are logged and skipped; they never abort the walk.
    """
    dependencies: List[Dependency] = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if d != '.git')
        for filename in sorted(filenames):
            if not matches(filename):
                continue
            path = os.path.join(dirpath, filename)
            try:
                found = scan_file(path)
            except ScanError as e:
                logger.warning(f"Skipping {path}: {e.message}")
                continue
            logger.debug(f"Found {len(found)} dependencies in {path}")
            dependencies.extend(found)
    return dependencies

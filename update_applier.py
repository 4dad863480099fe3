"""Rewrite a build script to replace one dependency's version literal."""

import logging
import os
import stat
import tempfile

from dependency import Dependency

logger = logging.getLogger(__name__)


class ApplyError(Exception):
    """The target file could not be read or written."""

    def __init__(self, path: str, message: str):
        self.path = path
        self.message = message
        super().__init__(f"Cannot update {path}: {message}")


def _write_preserving_mode(path: str, content: str, mode: int) -> None:
    """Write through a temporary file in the same directory, then rename over the target."""
    directory = os.path.dirname(os.path.abspath(path))
    fd, temp_path = tempfile.mkstemp(dir=directory, prefix='.pinbump-', suffix='.tmp')
    try:
        with os.fdopen(fd, 'w', encoding='utf-8', newline='') as f:
            f.write(content)
        os.chmod(temp_path, mode)
        os.replace(temp_path, path)
    except Exception:
        try:
            os.unlink(temp_path)
        except OSError:
            pass
        raise


def apply_update(file_path: str, name: str, current_version: str, latest_version: str) -> bool:
    """Replace ``name="current"`` and ``name:current`` with the latest version.

    Both forms are always attempted. A file containing neither form is left
    untouched and is not an error, so re-applying the same update is a no-op.

    Returns:
        True if the file content changed

    Raises:
        ApplyError: if the file cannot be read or written
    """
    try:
        with open(file_path, 'r', encoding='utf-8', newline='') as f:
            content = f.read()
        mode = stat.S_IMODE(os.stat(file_path).st_mode)
    except (OSError, UnicodeDecodeError) as e:
        raise ApplyError(file_path, str(e)) from e

    updated = content.replace(f'{name}="{current_version}"', f'{name}="{latest_version}"')
    updated = updated.replace(f'{name}:{current_version}', f'{name}:{latest_version}')

    if updated == content:
        logger.debug(f"{name}: no occurrence of {current_version} left in {file_path}")
        return False

    try:
        _write_preserving_mode(file_path, updated, mode)
    except OSError as e:
        raise ApplyError(file_path, str(e)) from e

    logger.debug(f"Updated {name} {current_version} -> {latest_version} in {file_path}")
    return True


def apply_dependency(dependency: Dependency) -> bool:
    return apply_update(
        dependency.file, dependency.name,
        dependency.current_version, dependency.latest_version,
    )

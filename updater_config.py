"""Updater configuration: schema, defaults, loading and validation.

The configuration is built once (from a JSON file or defaults) and passed to
the workflow explicitly. Validation happens up front so a bad configuration
fails before any repository is touched.
"""

import fnmatch
import json
import logging
import os
import re
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Sequence

import jsonschema

from resolvers import DEFAULT_IMAGE_FAMILIES

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = os.path.join(Path.home(), ".config", "pinbump", "config.json")
UPDATES_PLACEHOLDER = "{updates}"
EMAIL_PATTERN = re.compile(r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$')

CONFIG_SCHEMA = {
    "type": "object",
    "properties": {
        "repo_patterns": {"type": "array", "items": {"type": "string"}},
        "exclude_repos": {"type": "array", "items": {"type": "string"}},
        "scan_patterns": {"type": "array", "items": {"type": "string"}},
        "image_families": {
            "type": "object",
            "additionalProperties": {"type": "string"}
        },
        "git": {
            "type": "object",
            "properties": {
                "default_branch": {"type": "string"},
                "commit_template": {"type": "string"},
                "author_name": {"type": "string"},
                "author_email": {"type": "string"}
            }
        },
        "update": {
            "type": "object",
            "properties": {
                "push_branches": {"type": "boolean"},
                "update_all": {"type": "boolean"},
                "batch_size": {"type": "integer", "minimum": 1}
            }
        }
    }
}


class ConfigurationError(Exception):
    """The configuration is invalid; nothing has been executed."""


@dataclass
class GitSettings:
    default_branch: str = "updater"
    commit_template: str = "Update Docker dependencies\n\n" + UPDATES_PLACEHOLDER
    author_name: str = "pinbump"
    author_email: str = "pinbump@example.com"


@dataclass
class UpdateSettings:
    push_branches: bool = True
    update_all: bool = True
    batch_size: int = 10


@dataclass
class UpdaterConfig:
    repo_patterns: List[str] = field(default_factory=lambda: ["ns8-*"])
    exclude_repos: List[str] = field(default_factory=list)
    scan_patterns: List[str] = field(default_factory=lambda: ["build-images.sh"])
    image_families: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_IMAGE_FAMILIES))
    git: GitSettings = field(default_factory=GitSettings)
    update: UpdateSettings = field(default_factory=UpdateSettings)

    @classmethod
    def default(cls) -> "UpdaterConfig":
        return cls()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UpdaterConfig":
        """Build a config from parsed JSON, filling missing or empty fields with defaults.

        Raises:
            ConfigurationError: if the data does not match CONFIG_SCHEMA
        """
        try:
            jsonschema.validate(data, CONFIG_SCHEMA)
        except jsonschema.ValidationError as e:
            raise ConfigurationError(f"Configuration validation failed: {e.message}") from e

        defaults = cls.default()
        git_data = data.get('git') or {}
        update_data = data.get('update') or {}
        return cls(
            repo_patterns=list(data.get('repo_patterns') or defaults.repo_patterns),
            exclude_repos=list(data.get('exclude_repos') or []),
            scan_patterns=list(data.get('scan_patterns') or defaults.scan_patterns),
            image_families=dict(data.get('image_families') or defaults.image_families),
            git=GitSettings(
                default_branch=git_data.get('default_branch') or defaults.git.default_branch,
                commit_template=git_data.get('commit_template') or defaults.git.commit_template,
                author_name=git_data.get('author_name', defaults.git.author_name),
                author_email=git_data.get('author_email', defaults.git.author_email),
            ),
            update=UpdateSettings(
                push_branches=update_data.get('push_branches', defaults.update.push_branches),
                update_all=update_data.get('update_all', defaults.update.update_all),
                batch_size=update_data.get('batch_size') or defaults.update.batch_size,
            ),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def validate(self) -> None:
        """Check everything the schema cannot express.

        Raises:
            ConfigurationError: on the first problem found
        """
        if not self.repo_patterns:
            raise ConfigurationError("at least one repository pattern must be specified")
        if not self.scan_patterns:
            raise ConfigurationError("at least one scan pattern must be specified")

        for pattern in self.repo_patterns:
            if not _is_valid_glob(pattern):
                raise ConfigurationError(f"invalid repository pattern: {pattern!r}")
        for pattern in self.scan_patterns:
            if not _is_valid_glob(pattern) or '/' in pattern:
                raise ConfigurationError(f"invalid scan pattern: {pattern!r}")

        if not self.git.default_branch.strip():
            raise ConfigurationError("default branch name cannot be empty")
        if not self.git.commit_template.strip():
            raise ConfigurationError("commit template cannot be empty")
        if self.git.author_email and not EMAIL_PATTERN.match(self.git.author_email):
            raise ConfigurationError(f"invalid author email format: {self.git.author_email}")

        if not isinstance(self.update.batch_size, int) or self.update.batch_size <= 0:
            raise ConfigurationError("batch size must be greater than 0")

    def matches_repo_pattern(self, repo_name: str) -> bool:
        return any(fnmatch.fnmatchcase(repo_name, p) for p in self.repo_patterns)

    def is_excluded(self, repo_name: str) -> bool:
        return repo_name in self.exclude_repos

    def should_update_repo(self, repo_name: str) -> bool:
        return self.matches_repo_pattern(repo_name) and not self.is_excluded(repo_name)

    def matches_scan_pattern(self, filename: str) -> bool:
        return any(fnmatch.fnmatchcase(filename, p) for p in self.scan_patterns)

    def render_commit_message(self, updates: Sequence[str]) -> str:
        """Fill the commit template with one ``name: old -> new`` line per update."""
        body = '\n'.join(updates)
        if UPDATES_PLACEHOLDER in self.git.commit_template:
            return self.git.commit_template.replace(UPDATES_PLACEHOLDER, body)
        return f"{self.git.commit_template.rstrip()}\n\n{body}"


def _is_valid_glob(pattern: str) -> bool:
    """Reject empty patterns and unterminated character classes."""
    if not pattern:
        return False
    i = 0
    while i < len(pattern):
        ch = pattern[i]
        if ch == '\\':
            i += 2
            continue
        if ch == "[":
            j = i + 1
            if pattern[j:j + 1] == "!":
                j += 1
            if pattern[j:j + 1] == "]":
                j += 1
            close = pattern.find("]", j)
            if close == -1:
                return False
            i = close
        i += 1
    return True


def load_config(config_path: str) -> UpdaterConfig:
    """Load and validate configuration; a missing file yields the defaults.

    Raises:
        ConfigurationError: if the file is unreadable, not JSON, or invalid
    """
    path = Path(config_path)
    if not path.exists():
        logger.debug(f"Config file {path} not found, using defaults")
        config = UpdaterConfig.default()
        config.validate()
        return config

    try:
        with open(path, 'r') as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        logger.error(f"Error parsing config file: {e}")
        raise ConfigurationError(f"failed to parse config file {path}: {e}") from e
    except OSError as e:
        logger.error(f"Error reading config file: {e}")
        raise ConfigurationError(f"failed to read config file {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"config file {path} must contain a JSON object")

    config = UpdaterConfig.from_dict(data)
    config.validate()
    return config


def save_config(config: UpdaterConfig, config_path: str) -> None:
    """Write the configuration as JSON, atomically."""
    path = Path(config_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_file = path.with_suffix('.tmp')
    with open(temp_file, 'w') as f:
        json.dump(config.to_dict(), f, indent=2)
    temp_file.replace(path)

#!/usr/bin/env python3
"""
Pinned dependency updater for container build scripts

Scans local repositories for build scripts, checks the pinned image and
application versions they declare against their registries, and rewrites
outdated pins on a fresh branch which is then committed and pushed.
"""

__version__ = "1.0.0"

import argparse
import json
import logging
import os
import sys
import time
from pathlib import Path
from typing import List, Optional, Sequence

from dependency import RepositoryHandle, UpdateOutcome
from git_api import discover_repositories
from repo_workflow import RepositoryWorkflow
from updater_config import (
    DEFAULT_CONFIG_PATH, ConfigurationError, UpdaterConfig, load_config, save_config,
)

# Apply TZ from environment (default UTC) before any logging is configured
os.environ.setdefault('TZ', 'UTC')
if hasattr(time, 'tzset'):
    time.tzset()

DEFAULT_BASE_DIR = os.path.join(Path.home(), "ns8-apps")
LOG_FORMAT = '%(asctime)s - [%(name)s] - %(levelname)s - %(message)s'
LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S %Z'

logger = logging.getLogger('pinbump')


def setup_logging(level: str) -> None:
    """Install a single stream handler on the root logger."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper()))

    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
        root.addHandler(handler)


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------

def render_outcomes(outcomes: Sequence[UpdateOutcome]) -> str:
    """Human-readable report of per-repository outcomes."""
    lines: List[str] = []
    for outcome in outcomes:
        status = "OK" if outcome.success else "FAILED"
        lines.append(f"[{status}] {outcome.repository}: {outcome.message}")
        if outcome.branch:
            lines.append(f"    branch: {outcome.branch}")
        if outcome.commit:
            lines.append(f"    commit: {outcome.commit}")
        for dep in outcome.dependencies:
            if dep.has_update:
                lines.append(f"    {dep.describe_change()}  ({dep.file})")
            else:
                lines.append(f"    {dep.name}: {dep.current_version} (up to date)  ({dep.file})")

    updated = sum(1 for o in outcomes for d in o.dependencies if d.has_update)
    failed = sum(1 for o in outcomes if o.state == 'failed')
    lines.append(f"{len(outcomes)} repositories, {updated} outdated dependencies, {failed} failed")
    return '\n'.join(lines)


def render_repositories(repos: Sequence[RepositoryHandle], config: UpdaterConfig) -> str:
    lines = []
    for repo in repos:
        marker = "*" if config.should_update_repo(repo.name) else " "
        url = f"  {repo.url}" if repo.url else ""
        lines.append(f"{marker} {repo.name}{url}")
    return '\n'.join(lines)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def _load(args: argparse.Namespace) -> UpdaterConfig:
    config = load_config(args.config)
    if args.author_name:
        config.git.author_name = args.author_name
    if args.author_email:
        config.git.author_email = args.author_email
    if getattr(args, 'branch', None):
        config.git.default_branch = args.branch
    config.validate()
    return config


def _select_repositories(args: argparse.Namespace) -> List[RepositoryHandle]:
    repos = discover_repositories(args.base_dir)
    name = getattr(args, 'repository', None)
    if name:
        repos = [r for r in repos if r.name == name]
        if not repos:
            raise ConfigurationError(f"repository {name} not found under {args.base_dir}")
    return repos


def cmd_scan(args: argparse.Namespace) -> int:
    config = _load(args)
    workflow = RepositoryWorkflow(config, dry_run=True)
    outcomes = workflow.scan_all(_select_repositories(args))
    print(render_outcomes(outcomes))
    return 0


def cmd_json(args: argparse.Namespace) -> int:
    config = _load(args)
    workflow = RepositoryWorkflow(config, dry_run=True)
    outcomes = workflow.scan_all(_select_repositories(args))
    print(json.dumps([o.to_dict() for o in outcomes], indent=2))
    return 0


def cmd_update(args: argparse.Namespace) -> int:
    config = _load(args)
    workflow = RepositoryWorkflow(config, dry_run=args.dry_run)
    outcomes = workflow.update_all(_select_repositories(args), selected=args.only)
    print(render_outcomes(outcomes))
    return 1 if any(o.state == 'failed' for o in outcomes) else 0


def cmd_list(args: argparse.Namespace) -> int:
    config = _load(args)
    print(render_repositories(discover_repositories(args.base_dir), config))
    return 0


def cmd_config_show(args: argparse.Namespace) -> int:
    config = _load(args)
    print(json.dumps(config.to_dict(), indent=2))
    return 0


def cmd_config_init(args: argparse.Namespace) -> int:
    if os.path.exists(args.config) and not args.force:
        logger.error(f"Config file {args.config} already exists (use --force to overwrite)")
        return 1
    if args.dry_run:
        logger.info(f"[DRY RUN] Would write default configuration to {args.config}")
        return 0
    save_config(UpdaterConfig.default(), args.config)
    logger.info(f"Wrote default configuration to {args.config}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Update pinned dependency versions in container build scripts'
    )
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    parser.add_argument(
        '--base-dir',
        default=os.environ.get('PINBUMP_BASE_DIR', DEFAULT_BASE_DIR),
        help='Directory holding local repository checkouts (env: PINBUMP_BASE_DIR)'
    )
    parser.add_argument(
        '--config',
        default=os.environ.get('CONFIG_FILE', DEFAULT_CONFIG_PATH),
        help=f'Path to configuration JSON file (env: CONFIG_FILE, default: {DEFAULT_CONFIG_PATH})'
    )
    parser.add_argument(
        '--log-level',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        default=os.environ.get('LOG_LEVEL', 'INFO'),
        help='Logging level (env: LOG_LEVEL, default: INFO)'
    )
    parser.add_argument('--author-name', help='Override the commit author name')
    parser.add_argument('--author-email', help='Override the commit author email')
    parser.add_argument(
        '--dry-run',
        action='store_true',
        default=os.environ.get('DRY_RUN', '').lower() == 'true',
        help='Show what would be done without making any changes (env: DRY_RUN)'
    )

    subparsers = parser.add_subparsers(dest='command', required=True)

    scan = subparsers.add_parser('scan', help='Report dependencies and available updates')
    scan.add_argument('repository', nargs='?', help='Only scan this repository')
    scan.set_defaults(func=cmd_scan)

    as_json = subparsers.add_parser('json', help='Scan results as JSON')
    as_json.add_argument('repository', nargs='?', help='Only scan this repository')
    as_json.set_defaults(func=cmd_json)

    update = subparsers.add_parser('update', help='Apply updates, commit and push')
    update.add_argument('repository', nargs='?', help='Only update this repository')
    update.add_argument('--branch', help='Base name for update branches')
    update.add_argument(
        '--only',
        nargs='+',
        metavar='NAME',
        help='Only update dependencies with these names'
    )
    update.set_defaults(func=cmd_update)

    listing = subparsers.add_parser('list', help='List discovered repositories')
    listing.set_defaults(func=cmd_list)

    config = subparsers.add_parser('config', help='Inspect or create the configuration')
    config_sub = config.add_subparsers(dest='config_command', required=True)
    show = config_sub.add_parser('show', help='Print the effective configuration')
    show.set_defaults(func=cmd_config_show)
    init = config_sub.add_parser('init', help='Write a default configuration file')
    init.add_argument('--force', action='store_true', help='Overwrite an existing file')
    init.set_defaults(func=cmd_config_init)

    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.log_level)

    try:
        return args.func(args)
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return 1
    except KeyboardInterrupt:
        logger.info("Exiting...")
        return 130


if __name__ == '__main__':
    sys.exit(main())

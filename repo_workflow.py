"""Per-repository update workflow.

Each repository moves through::

    SCANNING -> DIFFING -> BRANCH_READY -> APPLYING -> COMMITTING -> PUSHING -> DONE

with FAILED reachable from any step. Repositories are processed strictly one
at a time; a failure in one never stops the next. Edits written before a
failure are left on disk for the operator.
"""

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence

from dependency import Dependency, RepositoryHandle, UpdateOutcome
from git_api import GitError, GitRepository
from registry_api import RegistryError
from resolvers import ResolverSet
from script_scanner import scan_tree
from update_applier import ApplyError, apply_dependency
from updater_config import ConfigurationError, UpdaterConfig

logger = logging.getLogger(__name__)

BRANCH_TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"

ProgressCallback = Callable[[str, Dict[str, Any]], None]


class WorkflowState(str, Enum):
    SCANNING = "scanning"
    DIFFING = "diffing"
    BRANCH_READY = "branch_ready"
    APPLYING = "applying"
    COMMITTING = "committing"
    PUSHING = "pushing"
    DONE = "done"
    FAILED = "failed"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RepositoryWorkflow:
    def __init__(self, config: UpdaterConfig, resolvers: Optional[ResolverSet] = None,
                 git_factory: Optional[Callable[[RepositoryHandle], GitRepository]] = None,
                 clock: Optional[Callable[[], datetime]] = None, dry_run: bool = False):
        """
        Args:
            config: Validated updater configuration
            resolvers: Latest-version resolvers (defaults to live registries)
            git_factory: Builds the version-control collaborator for a repository
            clock: Returns the current time, used for branch names
            dry_run: Resolve and report only; no branch, edit, commit or push
        """
        self.config = config
        self.resolvers = resolvers or ResolverSet(image_families=config.image_families)
        self.git_factory = git_factory or self._default_git
        self.clock = clock or _utc_now
        self.dry_run = dry_run

    def _default_git(self, repo: RepositoryHandle) -> GitRepository:
        return GitRepository(
            repo,
            author_name=self.config.git.author_name,
            author_email=self.config.git.author_email,
        )

    # ── Scanning and diffing ──────────────────────────────────────

    def resolve_dependency(self, dependency: Dependency) -> Dependency:
        """Attach the latest version; registry failures fall back to the current one.

        The fallback means "could not check" is reported the same way as
        "up to date".
        """
        try:
            dependency.latest_version = self.resolvers.resolve(dependency)
        except RegistryError as e:
            logger.warning(f"Could not check latest version for {dependency.name}: {e.message}")
            dependency.latest_version = dependency.current_version
        return dependency

    def scan_repository(self, repo: RepositoryHandle) -> List[Dependency]:
        """Scan a repository's build scripts and resolve every dependency."""
        logger.debug(f"[{repo.name}] {WorkflowState.SCANNING.value}")
        dependencies = scan_tree(repo.path, self.config.matches_scan_pattern)

        logger.debug(f"[{repo.name}] {WorkflowState.DIFFING.value} {len(dependencies)} dependencies")
        for dependency in dependencies:
            self.resolve_dependency(dependency)
        return dependencies

    # ── Single repository ─────────────────────────────────────────

    def branch_name(self) -> str:
        timestamp = self.clock().astimezone(timezone.utc).strftime(BRANCH_TIMESTAMP_FORMAT)
        return f"{self.config.git.default_branch}-{timestamp}"

    def _fail(self, outcome: UpdateOutcome, message: str) -> UpdateOutcome:
        logger.error(f"[{outcome.repository}] {message}")
        outcome.success = False
        outcome.message = message
        outcome.state = WorkflowState.FAILED.value
        return outcome

    def _enter(self, outcome: UpdateOutcome, state: WorkflowState) -> None:
        logger.debug(f"[{outcome.repository}] {outcome.state or 'start'} -> {state.value}")
        outcome.state = state.value

    def update_repository(self, repo: RepositoryHandle,
                          dependencies: Optional[List[Dependency]] = None,
                          selected: Optional[Sequence[str]] = None) -> UpdateOutcome:
        """Run the full update workflow for one repository.

        Args:
            repo: Repository to update
            dependencies: Already scanned dependencies; scanned now if None
            selected: Restrict updates to these dependency names

        Returns:
            UpdateOutcome describing where the workflow ended
        """
        outcome = UpdateOutcome(repository=repo.name)

        self._enter(outcome, WorkflowState.SCANNING)
        if dependencies is None:
            dependencies = self.scan_repository(repo)
        else:
            for dependency in dependencies:
                if dependency.latest_version is None:
                    self.resolve_dependency(dependency)

        self._enter(outcome, WorkflowState.DIFFING)
        to_update = [
            dep for dep in dependencies
            if dep.has_update and (not selected or dep.name in selected)
        ]

        if not to_update:
            self._enter(outcome, WorkflowState.DONE)
            outcome.success = True
            outcome.message = "No dependencies need updating"
            outcome.dependencies = dependencies
            return outcome

        if self.dry_run:
            for dep in to_update:
                logger.info(f"[DRY RUN] [{repo.name}] Would update {dep.describe_change()}")
            self._enter(outcome, WorkflowState.DONE)
            outcome.success = True
            outcome.message = f"[DRY RUN] Would update {len(to_update)} dependencies"
            outcome.dependencies = to_update
            return outcome

        git = self.git_factory(repo)
        branch = self.branch_name()
        try:
            git.create_or_checkout_branch(branch)
        except GitError as e:
            return self._fail(outcome, f"Failed to create update branch {branch}: {e.message}")
        self._enter(outcome, WorkflowState.BRANCH_READY)
        outcome.branch = branch

        self._enter(outcome, WorkflowState.APPLYING)
        applied: List[Dependency] = []
        for dep in to_update:
            try:
                changed = apply_dependency(dep)
            except ApplyError as e:
                outcome.dependencies = applied
                return self._fail(outcome, f"Failed to apply update for {dep.name}: {e.message}")
            if changed:
                applied.append(dep)
            else:
                logger.warning(f"[{repo.name}] {dep.name} {dep.current_version} not found in {dep.file}")
        outcome.dependencies = applied

        if not applied:
            self._enter(outcome, WorkflowState.DONE)
            outcome.success = True
            outcome.message = f"No file changes were needed on branch {branch}"
            return outcome

        self._enter(outcome, WorkflowState.COMMITTING)
        touched_files = list(dict.fromkeys(dep.file for dep in applied))
        message = self.config.render_commit_message([dep.describe_change() for dep in applied])
        try:
            outcome.commit = git.stage_and_commit(message, touched_files)
        except GitError as e:
            return self._fail(outcome, f"Failed to commit changes: {e.message}")

        if self.config.update.push_branches:
            self._enter(outcome, WorkflowState.PUSHING)
            try:
                git.push(branch)
            except GitError as e:
                return self._fail(outcome, f"Failed to push branch {branch}: {e.message}")
            outcome.message = f"Updated {len(applied)} dependencies and pushed to branch {branch}"
        else:
            outcome.message = f"Updated {len(applied)} dependencies on branch {branch} (not pushed)"

        self._enter(outcome, WorkflowState.DONE)
        outcome.success = True
        logger.info(f"[{repo.name}] {outcome.message}")
        return outcome

    # ── Many repositories ─────────────────────────────────────────

    def _excluded(self, repo: RepositoryHandle) -> UpdateOutcome:
        return UpdateOutcome(
            repository=repo.name,
            success=False,
            message="Repository excluded by configuration",
        )

    def scan_all(self, repos: Sequence[RepositoryHandle]) -> List[UpdateOutcome]:
        """Scan and resolve every eligible repository without changing anything."""
        outcomes = []
        for repo in repos:
            if not self.config.should_update_repo(repo.name):
                outcomes.append(self._excluded(repo))
                continue
            try:
                dependencies = self.scan_repository(repo)
            except Exception as e:
                logger.error(f"[{repo.name}] Failed to scan dependencies: {e}")
                outcomes.append(UpdateOutcome(
                    repository=repo.name,
                    success=False,
                    message=f"Failed to scan dependencies: {e}",
                    state=WorkflowState.FAILED.value,
                ))
                continue
            outcomes.append(UpdateOutcome(
                repository=repo.name,
                dependencies=dependencies,
                success=True,
                message=f"Found {len(dependencies)} dependencies",
                state=WorkflowState.DIFFING.value,
            ))
        return outcomes

    def check_selection(self, selected: Optional[Sequence[str]]) -> None:
        """Refuse an unselected run when the configuration disables updating everything.

        Raises:
            ConfigurationError: if update_all is off and nothing is selected
        """
        if not self.config.update.update_all and not selected:
            raise ConfigurationError(
                "update_all is disabled in the configuration; select dependencies to update"
            )

    def update_all(self, repos: Sequence[RepositoryHandle],
                   selected: Optional[Sequence[str]] = None,
                   progress_callback: Optional[ProgressCallback] = None) -> List[UpdateOutcome]:
        """Update every eligible repository, one at a time, in configured batches.

        Args:
            repos: Repositories to process
            selected: Restrict updates to these dependency names
            progress_callback: Optional function(event_type, data) called per repository

        Raises:
            ConfigurationError: before any work, if the selection is not allowed
        """
        self.check_selection(selected)

        outcomes: List[UpdateOutcome] = []
        batch_size = self.config.update.batch_size
        total = len(repos)
        batches = (total + batch_size - 1) // batch_size

        for batch_index, start in enumerate(range(0, total, batch_size), 1):
            batch = repos[start:start + batch_size]
            logger.info(f"Processing batch {batch_index}/{batches} ({len(batch)} repositories)")

            for offset, repo in enumerate(batch, 1):
                if progress_callback:
                    progress_callback('checking_repository', {
                        'repository': repo.name,
                        'progress': start + offset,
                        'total': total,
                    })

                outcome = self._update_one(repo, selected)
                outcomes.append(outcome)

                if progress_callback:
                    progress_callback('repository_done', outcome.to_dict())

        failed = sum(1 for o in outcomes if o.state == WorkflowState.FAILED.value)
        if failed:
            logger.warning(f"Update summary: {failed}/{total} repositories failed")
        else:
            logger.info(f"Update summary: {total} repositories processed")
        return outcomes

    def _update_one(self, repo: RepositoryHandle,
                    selected: Optional[Sequence[str]]) -> UpdateOutcome:
        if not self.config.should_update_repo(repo.name):
            return self._excluded(repo)
        try:
            dependencies = self.scan_repository(repo)
            if not any(dep.has_update for dep in dependencies):
                return UpdateOutcome(
                    repository=repo.name,
                    dependencies=dependencies,
                    success=True,
                    message="No updates available",
                    state=WorkflowState.DONE.value,
                )
            return self.update_repository(repo, dependencies, selected)
        except Exception as e:
            logger.error(f"[{repo.name}] Failed to update: {e}")
            return UpdateOutcome(
                repository=repo.name,
                success=False,
                message=f"Failed to update: {e}",
                state=WorkflowState.FAILED.value,
            )

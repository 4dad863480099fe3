"""Git operations for update branches, via the ``git`` CLI.

Update branches are created or checked out, then the touched files are
committed and the branch is pushed. Each call shells out to ``git`` in the
repository's working tree and raises GitError on failure.
"""

import logging
import os
import subprocess
from typing import List, Optional, Sequence

from dependency import RepositoryHandle

logger = logging.getLogger(__name__)

DEFAULT_REMOTE = "origin"


class GitError(Exception):
    """A git command failed."""

    def __init__(self, operation: str, message: str):
        self.operation = operation
        self.message = message
        super().__init__(f"git {operation} failed: {message}")


class GitRepository:
    """Version-control collaborator for one local checkout."""

    def __init__(self, handle: RepositoryHandle, author_name: str = "",
                 author_email: str = "", remote: str = DEFAULT_REMOTE):
        self.handle = handle
        self.path = handle.path
        self.author_name = author_name
        self.author_email = author_email
        self.remote = remote

    def _run(self, operation: str, args: Sequence[str], check: bool = True) -> subprocess.CompletedProcess:
        """Run ``git <args>`` inside the working tree.

        Raises:
            GitError: when the command exits non-zero (if check) or git is missing
        """
        cmd = ['git', *args]
        logger.debug(f"[{self.handle.name}] {' '.join(cmd)}")
        try:
            return subprocess.run(
                cmd,
                cwd=self.path,
                capture_output=True,
                text=True,
                check=check,
            )
        except subprocess.CalledProcessError as e:
            stderr = (e.stderr or '').strip()
            raise GitError(operation, stderr or str(e)) from e
        except OSError as e:
            raise GitError(operation, str(e)) from e

    def branch_exists(self, branch: str) -> bool:
        result = self._run(
            'rev-parse', ['rev-parse', '--verify', '--quiet', f'refs/heads/{branch}'], check=False
        )
        return result.returncode == 0

    def current_branch(self) -> Optional[str]:
        result = self._run('rev-parse', ['rev-parse', '--abbrev-ref', 'HEAD'])
        branch = result.stdout.strip()
        if not branch or branch == 'HEAD':
            return None
        return branch

    def head_commit(self) -> str:
        return self._run('rev-parse', ['rev-parse', 'HEAD']).stdout.strip()

    def create_or_checkout_branch(self, branch: str) -> None:
        """Check out ``branch``, creating it from HEAD when it does not exist yet."""
        if self.branch_exists(branch):
            logger.info(f"[{self.handle.name}] Branch {branch} exists, checking it out")
            self._run('checkout', ['checkout', branch])
        else:
            self._run('checkout', ['checkout', '-b', branch])

    def stage_and_commit(self, message: str, files: Sequence[str]) -> str:
        """Stage exactly ``files`` and commit them.

        Args:
            message: Commit message
            files: Absolute paths, or paths relative to the current directory

        Returns:
            The new commit's SHA
        """
        root = os.path.abspath(self.path)
        relative = [os.path.relpath(os.path.abspath(f), root) for f in files]
        self._run('add', ['add', '--', *relative])

        identity: List[str] = []
        if self.author_name:
            identity += ['-c', f'user.name={self.author_name}']
        if self.author_email:
            identity += ['-c', f'user.email={self.author_email}']
        self._run('commit', [*identity, 'commit', '-m', message, '--', *relative])

        sha = self.head_commit()
        logger.info(f"[{self.handle.name}] Committed changes: {sha}")
        return sha

    def push(self, branch: str) -> None:
        refspec = f'refs/heads/{branch}:refs/heads/{branch}'
        self._run('push', ['push', self.remote, refspec])


def _remote_url(path: str) -> str:
    try:
        result = subprocess.run(
            ['git', 'config', '--get', f'remote.{DEFAULT_REMOTE}.url'],
            cwd=path,
            capture_output=True,
            text=True,
        )
    except OSError as e:
        logger.warning(f"Could not read remote URL for {path}: {e}")
        return ''
    return result.stdout.strip() if result.returncode == 0 else ''


def discover_repositories(base_dir: str) -> List[RepositoryHandle]:
    """Find local git checkouts under ``base_dir``.

    Any directory containing ``.git`` is a repository; the walk does not
    descend into it. Repository paths are absolute.
    """
    repos: List[RepositoryHandle] = []
    if not os.path.isdir(base_dir):
        logger.warning(f"Base directory {base_dir} does not exist")
        return repos

    root = os.path.abspath(base_dir)
    for dirpath, dirnames, _ in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if d != '.git')
        if dirpath == root:
            continue
        if os.path.exists(os.path.join(dirpath, '.git')):
            dirnames[:] = []
            repos.append(RepositoryHandle(
                name=os.path.basename(dirpath),
                path=dirpath,
                url=_remote_url(dirpath),
            ))
    return repos

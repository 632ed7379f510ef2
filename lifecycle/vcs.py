"""Version-control sink: durable commit and push of checkpoints."""

import subprocess
from collections.abc import Sequence
from pathlib import Path
from typing import Protocol, runtime_checkable

from lifecycle.exceptions import VersionControlError
from lifecycle.logging import get_logger

logger = get_logger("vcs")


@runtime_checkable
class VersionControl(Protocol):
    """Durable sink for group checkpoints."""

    def commit(self, group: int, artifacts: Sequence[str], message: str) -> str:
        """Persist the artifacts of a group and return a commit reference."""
        ...

    def push(self) -> bool:
        """Publish committed checkpoints. True once acknowledged."""
        ...


class GitVersionControl:
    """Git-backed VersionControl.

    Stages exactly the group's artifacts, commits them, and pushes the
    current branch on request.
    """

    def __init__(self, repo_path: str | Path = ".", remote: str = "origin", timeout: int = 60) -> None:
        """Initialize git sink.

        Args:
            repo_path: Path to the git repository
            remote: Remote to push to
            timeout: Timeout in seconds per git command

        Raises:
            VersionControlError: If the path is not a git repository
        """
        self.repo_path = Path(repo_path).resolve()
        self.remote = remote
        self.timeout = timeout
        if not (self.repo_path / ".git").exists():
            raise VersionControlError(f"Not a git repository: {self.repo_path}", details={"path": str(self.repo_path)})

    def _run(self, *args: str, check: bool = True) -> subprocess.CompletedProcess[str]:
        """Run a git command.

        Raises:
            VersionControlError: If the command fails (when check=True) or times out
        """
        cmd = ["git", "-C", str(self.repo_path), *args]
        logger.debug(f"Running: {' '.join(cmd)}")

        try:
            return subprocess.run(cmd, capture_output=True, text=True, check=check, timeout=self.timeout)
        except subprocess.TimeoutExpired as e:
            raise VersionControlError(
                f"Git command timed out after {self.timeout}s: {' '.join(args)}",
                command=" ".join(cmd),
                exit_code=-1,
            ) from e
        except subprocess.CalledProcessError as e:
            raise VersionControlError(
                f"Git command failed: {e.stderr.strip() if e.stderr else str(e)}",
                command=" ".join(cmd),
                exit_code=e.returncode,
            ) from e

    def current_commit(self) -> str:
        return self._run("rev-parse", "HEAD").stdout.strip()

    def current_branch(self) -> str:
        return self._run("rev-parse", "--abbrev-ref", "HEAD").stdout.strip()

    def commit(self, group: int, artifacts: Sequence[str], message: str) -> str:
        """Stage the group's artifacts and commit.

        Artifacts that no longer exist are staged as deletions. A group
        without changes still gets an (empty) commit so every checkpoint
        has its own reference.
        """
        if artifacts:
            tracked = set(self._run("ls-files", "--", *artifacts).stdout.splitlines())
            stageable = [a for a in artifacts if (self.repo_path / a).exists() or a in tracked]
            if stageable:
                self._run("add", "-A", "--", *stageable)
        self._run("commit", "--allow-empty", "-m", message)
        commit_sha = self.current_commit()
        logger.info(f"Created commit {commit_sha[:8]} for group {group}: {message[:50]}")
        return commit_sha

    def push(self) -> bool:
        branch = self.current_branch()
        self._run("push", self.remote, branch)
        logger.info(f"Pushed {branch} to {self.remote}")
        return True

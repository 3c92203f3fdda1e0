"""Git transport for Tether - a narrow subprocess wrapper around one working tree.

The sync engine only talks to git through GitRepo, so its conflict logic
can be exercised against any object with the same methods.
"""

import subprocess
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

from loguru import logger

from tether_core.constants import DEFAULT_FETCH_TIMEOUT
from tether_core.exceptions import GitError

__all__ = ["GitRepo"]

PathLike = Union[str, Path]

# Identity used only when the user has none configured
FALLBACK_IDENTITY = ("-c", "user.name=tether", "-c", "user.email=tether@localhost")


class GitRepo:
    """A git working tree (the record store) driven through the git CLI."""

    def __init__(self, path: PathLike, timeout: float = DEFAULT_FETCH_TIMEOUT):
        self.path = Path(path)
        self.timeout = timeout

    def run(
        self,
        *args: str,
        check: bool = True,
        timeout: Optional[float] = None,
    ) -> subprocess.CompletedProcess:
        """Run a git command in this working tree.

        Args:
            *args: git arguments (without "git")
            check: Raise GitError on a non-zero exit status
            timeout: Seconds before the command is killed (None = no limit)

        Raises:
            GitError: If git is missing, times out, or fails with check=True
        """
        command = ["git", "-C", str(self.path), *args]
        logger.debug(f"$ {' '.join(command)}")

        try:
            proc = subprocess.run(
                command,
                capture_output=True,
                timeout=timeout,
                stdin=subprocess.DEVNULL,
            )
        except FileNotFoundError as e:
            raise GitError("git executable not found", command=command) from e
        except subprocess.TimeoutExpired as e:
            raise GitError(f"git {args[0]} timed out after {timeout}s", command=command) from e

        if check and proc.returncode != 0:
            stderr = proc.stderr.decode("utf-8", "replace").strip()
            raise GitError(
                f"git {args[0]} failed ({proc.returncode}): {stderr}",
                command=command,
                returncode=proc.returncode,
                stderr=stderr,
            )

        return proc

    def output(self, *args: str, **kwargs) -> str:
        return self.run(*args, **kwargs).stdout.decode("utf-8", "replace")

    # Setup

    def init(self, branch: str) -> None:
        self.path.mkdir(parents=True, exist_ok=True)
        self.run("init", "--quiet")
        # Works on every git version, unlike "init -b"
        self.run("symbolic-ref", "HEAD", f"refs/heads/{branch}")

    def remote_url(self, remote: str) -> Optional[str]:
        proc = self.run("remote", "get-url", remote, check=False)
        if proc.returncode != 0:
            return None
        return proc.stdout.decode("utf-8", "replace").strip() or None

    def remote_add(self, remote: str, url: str) -> None:
        self.run("remote", "add", remote, url)

    # Observation

    def has_commits(self) -> bool:
        return self.run("rev-parse", "--verify", "--quiet", "HEAD", check=False).returncode == 0

    def ref_exists(self, ref: str) -> bool:
        return self.run("rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}", check=False).returncode == 0

    def fetch(self, remote: str, branch: str) -> str:
        """Fetch remote/branch into its remote-tracking ref.

        Returns:
            "fetched" on success, "missing" if the remote is reachable but has
            no such branch, "unreachable" if the remote cannot be contacted
            (including timeouts)
        """
        try:
            proc = self.run(
                "ls-remote", "--exit-code", "--heads", remote, branch,
                check=False,
                timeout=self.timeout,
            )
        except GitError as e:
            logger.warning(f"Remote {remote} unavailable: {e}")
            return "unreachable"

        if proc.returncode == 2:
            logger.info(f"Remote branch {remote}/{branch} does not exist yet")
            return "missing"
        if proc.returncode != 0:
            stderr = proc.stderr.decode("utf-8", "replace").strip()
            logger.warning(f"Remote {remote} unavailable: {stderr}")
            return "unreachable"

        try:
            self.run(
                "fetch", "--quiet", remote,
                f"+refs/heads/{branch}:refs/remotes/{remote}/{branch}",
                timeout=self.timeout,
            )
        except GitError as e:
            logger.warning(f"Fetch of {remote}/{branch} failed: {e}")
            return "unreachable"

        return "fetched"

    def log_range(self, base: Optional[str], head: str) -> List[str]:
        """Oneline descriptors of commits reachable from head but not base."""
        rev_range = f"{base}..{head}" if base else head
        out = self.output("log", "--oneline", "--no-decorate", rev_range)
        return [line for line in out.splitlines() if line.strip()]

    def working_tree_status(self, *paths: str) -> List[Tuple[str, str]]:
        """Porcelain status as (two-letter code, path) pairs."""
        out = self.output("status", "--porcelain", "--untracked-files=all", "--", *paths)
        entries = []
        for line in out.splitlines():
            if len(line) < 4:
                continue
            code, path = line[:2], line[3:]
            if " -> " in path:
                path = path.split(" -> ", 1)[1]
            entries.append((code, path.strip('"')))
        return entries

    def is_ancestor(self, a: str, b: str) -> bool:
        return self.run("merge-base", "--is-ancestor", a, b, check=False).returncode == 0

    def merge_base(self, a: str, b: str) -> Optional[str]:
        proc = self.run("merge-base", a, b, check=False)
        if proc.returncode != 0:
            return None
        return proc.stdout.decode("utf-8").strip() or None

    def changed_files(self, base: Optional[str], head: str) -> List[str]:
        """Files changed between base and head (every file in head if no base)."""
        if base is None:
            out = self.output("ls-tree", "-r", "--name-only", head)
        else:
            out = self.output("diff", "--name-only", "--no-renames", base, head)
        return [line for line in out.splitlines() if line.strip()]

    def show(self, ref: str, path: str) -> Optional[bytes]:
        """Exact bytes of path at ref, or None if it does not exist there."""
        proc = self.run("show", f"{ref}:{path}", check=False)
        if proc.returncode != 0:
            return None
        return proc.stdout

    # Mutation

    def add(self, *paths: str) -> None:
        self.run("add", "--all", "--", *paths)

    def commit(self, message: str) -> bool:
        """Commit the index. Returns False when there was nothing to commit."""
        if self.run("diff", "--cached", "--quiet", check=False).returncode == 0:
            return False
        self.run(*self._identity(), "commit", "--quiet", "--no-verify", "-m", message)
        return True

    def merge_no_commit(self, ref: str) -> bool:
        """Start a merge of ref without committing.

        Returns:
            True if git merged cleanly, False if it left conflicts to resolve
        """
        proc = self.run(
            *self._identity(),
            "merge", "--no-commit", "--no-ff", "--allow-unrelated-histories", ref,
            check=False,
        )
        if proc.returncode != 0 and not self.unmerged_paths():
            stderr = proc.stderr.decode("utf-8", "replace").strip()
            raise GitError(f"git merge failed: {stderr}", returncode=proc.returncode, stderr=stderr)
        return proc.returncode == 0

    def unmerged_paths(self) -> List[str]:
        out = self.output("diff", "--name-only", "--diff-filter=U")
        return [line for line in out.splitlines() if line.strip()]

    def merge_in_progress(self) -> bool:
        return self.run("rev-parse", "--verify", "--quiet", "MERGE_HEAD", check=False).returncode == 0

    def commit_merge(self, message: str) -> None:
        self.run(*self._identity(), "commit", "--quiet", "--no-verify", "-m", message)

    def abort_merge(self) -> None:
        self.run("merge", "--abort", check=False)

    def fast_forward(self, ref: str) -> None:
        self.run("merge", "--ff-only", "--quiet", ref)

    def reset_to(self, ref: str) -> None:
        self.run("reset", "--hard", "--quiet", ref)

    def remove(self, *paths: str) -> None:
        self.run("rm", "--quiet", "--ignore-unmatch", "--", *paths)

    def push(self, remote: str, branch: str) -> None:
        self.run("push", "--quiet", remote, f"HEAD:refs/heads/{branch}", timeout=self.timeout)
        # Record what the remote now holds so the next status sees no local changes
        self.run("update-ref", f"refs/remotes/{remote}/{branch}", "HEAD")

    def _identity(self) -> Sequence[str]:
        proc = self.run("config", "user.email", check=False)
        if proc.returncode == 0 and proc.stdout.strip():
            return ()
        return FALLBACK_IDENTITY

import logging
import subprocess
from pathlib import Path

from .constants import APP_NAME

logger = logging.getLogger(APP_NAME)


class GitRepo:
    """A wrapper around the Git command-line interface for a backup directory.

    This class provides methods to execute the Git operations the backup cycle
    needs using `subprocess`, abstracting away the command construction and
    output handling.

    Attributes:
        path (Path): The file system path to the repository root.
        env (dict | None): Environment passed to every git subprocess.
    """

    def __init__(self, path: Path, env: dict | None = None):
        """Initializes the GitRepo instance.

        Args:
            path (Path): The path to the repository root directory.
            env (Optional[dict], optional): Environment variables for git
                                            subprocesses. Defaults to None.

        Raises:
            ValueError: If the specified path does not contain a .git directory.
        """
        self.path = path
        self.env = env
        if not (self.path / ".git").exists():
            raise ValueError(f"Not a git repository: {self.path}")

    @classmethod
    def init(cls, path: Path, branch: str, env: dict | None = None) -> "GitRepo":
        """Runs `git init` in a directory and wraps the result.

        Args:
            path (Path): The directory to initialize. Must exist.
            branch (str): The name of the initial branch.
            env (Optional[dict], optional): Environment for git subprocesses.

        Returns:
            GitRepo: A wrapper for the new repository.

        Raises:
            RuntimeError: If `git init` fails.
        """
        try:
            subprocess.run(
                ["git", "init", "--quiet", f"--initial-branch={branch}"],
                cwd=path,
                capture_output=True,
                text=True,
                check=True,
                env=env,
            )
        except subprocess.CalledProcessError as e:
            raise RuntimeError(f"Git error: {e.stderr or e}") from e
        return cls(path, env=env)

    def _run(
        self, args: list[str], capture: bool = True, env: dict | None = None
    ) -> str:
        """Executes a Git command within the repository context.

        Args:
            args (list[str]): A list of arguments to pass to the git command.
            capture (bool, optional):   Whether to return stdout.
                                        Defaults to True.
            env (Optional[dict], optional): Environment variables overriding
                                            the instance environment.

        Returns:
            str:    The stripped stdout of the command if capture is True,
                    otherwise an empty string.

        Raises:
            RuntimeError: If the git command returns a non-zero exit code.
        """
        try:
            res = subprocess.run(
                ["git", *args],
                cwd=self.path,
                capture_output=True,
                text=True,
                check=True,
                env=env if env is not None else self.env,
            )
            return res.stdout.strip() if capture else ""
        except subprocess.CalledProcessError as e:
            raise RuntimeError(f"Git error: {(e.stderr or '').strip() or e}") from e

    def set_config(self, key: str, value: str) -> None:
        """Sets a repository-local configuration value.

        Args:
            key (str): The config key (e.g. 'user.name').
            value (str): The value to store.
        """
        self._run(["config", key, value], capture=False)

    def get_remote_url(self, name: str) -> str | None:
        """Returns the URL of a remote, or None if it is not configured.

        Args:
            name (str): The remote name.
        """
        try:
            return self._run(["remote", "get-url", name])
        except RuntimeError:
            return None

    def add_remote(self, name: str, url: str) -> None:
        """Registers a new remote."""
        self._run(["remote", "add", name, url], capture=False)

    def set_remote_url(self, name: str, url: str) -> None:
        """Points an existing remote at a new URL."""
        self._run(["remote", "set-url", name, url], capture=False)

    def status_porcelain(self) -> list[str]:
        """Returns the porcelain (machine-readable) status of the repository.

        Returns:
            list[str]: A list of status lines returned by `git status --porcelain`.
        """
        output = self._run(["status", "--porcelain"])
        return output.splitlines() if output else []

    def add_all(self) -> None:
        """
        Stages all changes (modified, deleted, and untracked files)
        in the working directory.
        """
        self._run(["add", "--all", "."], capture=False)

    def commit(self, message: str) -> None:
        """Creates a new commit with the provided message.

        Args:
            message (str): The commit message.
        """
        self._run(["commit", "--quiet", "--no-verify", "-m", message], capture=False)

    def fetch(self, remote: str) -> None:
        """Fetches all branches from a remote."""
        self._run(["fetch", "--quiet", remote], capture=False)

    def merge_theirs(self, ref: str) -> str:
        """Merges a reference, resolving conflicting hunks in favour of `ref`.

        Unrelated histories are allowed so that a fresh local repository can
        adopt a pre-existing remote.

        Args:
            ref (str): The reference to merge (e.g. 'origin/master').

        Returns:
            str: The merge output.
        """
        return self._run(
            [
                "merge",
                "--no-edit",
                "--strategy-option=theirs",
                "--allow-unrelated-histories",
                ref,
            ]
        )

    def merge_abort(self) -> None:
        """Aborts an in-progress merge, restoring the pre-merge state."""
        self._run(["merge", "--abort"], capture=False)

    def push_force(self, remote: str, branch: str) -> None:
        """Force-pushes a branch and sets it as upstream.

        Args:
            remote (str): The remote name.
            branch (str): The branch to publish.
        """
        self._run(
            ["push", "--force", "--quiet", "--set-upstream", remote, branch],
            capture=False,
        )

    def rev_parse(self, rev: str) -> str | None:
        """Resolves a revision (tag, branch, relative ref) to a full SHA-1 hash.

        Args:
            rev (str): The revision to parse (e.g., 'HEAD', 'origin/master').

        Returns:
            Optional[str]:  The full SHA-1 hash,
                            or None if the revision could not be resolved.
        """
        try:
            return self._run(["rev-parse", "--verify", "--quiet", f"{rev}^{{commit}}"])
        except RuntimeError as e:
            logger.debug(f"rev-parse failed for '{rev}': {e}")
            return None

    def merge_base(self, a: str, b: str) -> str | None:
        """Returns the best common ancestor of two commits, or None."""
        try:
            return self._run(["merge-base", a, b]) or None
        except RuntimeError:
            return None

    def changed_paths(
        self, base: str, target: str, modified_only: bool = False
    ) -> set[str]:
        """Lists paths that differ between two commits.

        Args:
            base (str): The base revision.
            target (str): The revision to compare against `base`.
            modified_only (bool, optional): Only report paths present on both
                                            sides with different content.

        Returns:
            set[str]: The differing paths.
        """
        cmd = ["diff", "--name-only"]
        if modified_only:
            cmd.append("--diff-filter=M")
        cmd.extend([base, target])
        output = self._run(cmd)
        return set(output.splitlines()) if output else set()

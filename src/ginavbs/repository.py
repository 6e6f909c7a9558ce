import enum
import logging
import shlex
import shutil
from pathlib import Path

from rich.console import Console

from .config import BackupTarget, Config
from .constants import APP_NAME
from .git_wrapper import GitRepo

console = Console()
logger = logging.getLogger(APP_NAME)


class RepositoryState(enum.Enum):
    """What the backup directory currently is."""

    ABSENT = "absent"
    UNINITIALIZED_DIR = "uninitialized_dir"
    INITIALIZED = "initialized"


def detect_state(path: Path) -> RepositoryState:
    """Inspects a directory without modifying it.

    Args:
        path (Path): The backup directory.

    Returns:
        RepositoryState: INITIALIZED iff the directory holds a `.git` directory.
    """
    if not path.is_dir():
        return RepositoryState.ABSENT
    if (path / ".git").is_dir():
        return RepositoryState.INITIALIZED
    return RepositoryState.UNINITIALIZED_DIR


def ssh_command(target: BackupTarget) -> str:
    """Builds the non-interactive ssh command git should use for this target."""
    if target.ssh_key_path:
        key = shlex.quote(str(target.ssh_key_path))
        return f"ssh -i {key} -o IdentitiesOnly=yes -o BatchMode=yes"
    return "ssh -o BatchMode=yes"


def register_remote(repo: GitRepo, name: str, url: str) -> None:
    """Binds the repository to its backup remote.

    Re-registering an existing remote is not an error: a remote with the
    same URL is left alone and a remote with a different URL is repointed.

    Args:
        repo (GitRepo): The repository.
        name (str): The remote name (e.g. 'origin').
        url (str): The remote URL.
    """
    current = repo.get_remote_url(name)
    if current is None:
        repo.add_remote(name, url)
    elif current != url:
        logger.info(f"Remote '{name}' changed; updating its URL.")
        repo.set_remote_url(name, url)


def ensure_initialized(
    path: Path, target: BackupTarget, config: Config
) -> RepositoryState:
    """Makes sure the backup directory is a git repository bound to the remote.

    Existing files in the directory are kept; they become part of the first
    backup commit. For an already initialized repository only the remote
    binding is refreshed, so a changed -r or -k takes effect.

    Args:
        path (Path): The backup directory.
        target (BackupTarget): Provides the remote URL and SSH key.
        config (Config): Provides branch, remote name and commit identity.

    Returns:
        RepositoryState: Always INITIALIZED on return.

    Raises:
        RuntimeError: If `git init` or configuring the repository fails.
    """
    state = detect_state(path)
    if state is RepositoryState.INITIALIZED:
        logger.debug(f"{path} is already a repository.")
        repo = GitRepo(path)
    else:
        console.print(
            f"[bold blue]INIT:[/bold blue] Creating repository in {path}..."
        )
        path.mkdir(parents=True, exist_ok=True)
        repo = GitRepo.init(path, config.core.branch)
        repo.set_config("user.name", config.identity.name)
        repo.set_config("user.email", config.identity.email)
        logger.info(f"Initialized backup repository in {path} (was {state.value}).")

    if target.ssh_key:
        repo.set_config("core.sshCommand", ssh_command(target))
    register_remote(repo, config.core.remote_name, target.repository_url)
    return RepositoryState.INITIALIZED


def destroy(path: Path) -> None:
    """Irreversibly deletes every entry of the backup directory, `.git` included.

    The directory itself is kept (empty). There is no confirmation.

    Args:
        path (Path): The backup directory.

    Raises:
        ValueError: If `path` is the filesystem root.
    """
    path = path.resolve()
    if path == Path(path.anchor):
        raise ValueError(f"Refusing to delete the filesystem root ({path}).")
    if not path.is_dir():
        logger.info(f"Nothing to delete: {path} does not exist.")
        return

    logger.warning(f"DELETE: Removing all local backup data in {path}.")
    for entry in path.iterdir():
        if entry.is_dir() and not entry.is_symlink():
            shutil.rmtree(entry)
        else:
            entry.unlink()
    console.print(f"[bold red]DELETED:[/bold red] All local backup data in {path}.")

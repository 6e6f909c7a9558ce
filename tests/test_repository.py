from pathlib import Path

import pytest
from conftest import git, requires_git

from ginavbs import repository
from ginavbs.config import BackupTarget, Config
from ginavbs.git_wrapper import GitRepo
from ginavbs.repository import RepositoryState


def test_detect_state(tmp_path: Path) -> None:
    path = tmp_path / "backup"
    assert repository.detect_state(path) is RepositoryState.ABSENT

    path.mkdir()
    assert repository.detect_state(path) is RepositoryState.UNINITIALIZED_DIR

    (path / ".git").mkdir()
    assert repository.detect_state(path) is RepositoryState.INITIALIZED


def test_ssh_command_with_key(tmp_path: Path) -> None:
    key = tmp_path / "my key"
    target = BackupTarget("git@h:r.git", "h", "git", "git", ssh_key=str(key))

    assert repository.ssh_command(target) == (
        f"ssh -i '{key}' -o IdentitiesOnly=yes -o BatchMode=yes"
    )


def test_ssh_command_without_key() -> None:
    target = BackupTarget("https://a:b@h/r.git", "h", "a", "b")
    assert repository.ssh_command(target) == "ssh -o BatchMode=yes"


@requires_git
def test_ensure_initialized_absent_directory(
    tmp_path: Path, target: BackupTarget, config: Config
) -> None:
    path = tmp_path / "new" / "backup"

    state = repository.ensure_initialized(path, target, config)

    assert state is RepositoryState.INITIALIZED
    assert (path / ".git").is_dir()
    repo = GitRepo(path)
    assert repo.get_remote_url("origin") == target.repository_url
    # Read through GitRepo: the test helper overrides the identity with -c.
    assert repo._run(["config", "--local", "user.name"]) == "GINAvbs"
    assert repo._run(["config", "--local", "user.email"]) == "ginavbs@erebos.xyz"
    assert git(path, "symbolic-ref", "--short", "HEAD") == "master"


@requires_git
def test_ensure_initialized_keeps_existing_files(
    backup_dir: Path, target: BackupTarget, config: Config
) -> None:
    (backup_dir / "data.txt").write_text("important")

    repository.ensure_initialized(backup_dir, target, config)

    assert (backup_dir / "data.txt").read_text() == "important"
    assert GitRepo(backup_dir).status_porcelain() == ["?? data.txt"]


@requires_git
def test_ensure_initialized_is_idempotent(
    backup_dir: Path, target: BackupTarget, config: Config
) -> None:
    """A second run leaves tracked content intact and re-registers cleanly."""
    (backup_dir / "data.txt").write_text("important")
    repository.ensure_initialized(backup_dir, target, config)
    git(backup_dir, "add", "data.txt")
    git(backup_dir, "commit", "--quiet", "-m", "first")
    head = git(backup_dir, "rev-parse", "HEAD")

    state = repository.ensure_initialized(backup_dir, target, config)

    assert state is RepositoryState.INITIALIZED
    assert git(backup_dir, "rev-parse", "HEAD") == head
    assert (backup_dir / "data.txt").read_text() == "important"
    assert GitRepo(backup_dir).status_porcelain() == []


@requires_git
def test_ensure_initialized_repoints_changed_remote(
    backup_dir: Path, target: BackupTarget, config: Config, tmp_path: Path
) -> None:
    repository.ensure_initialized(backup_dir, target, config)
    moved = BackupTarget(str(tmp_path / "other.git"), "", "alice", "secret")

    repository.ensure_initialized(backup_dir, moved, config)

    assert GitRepo(backup_dir).get_remote_url("origin") == moved.repository_url


@requires_git
def test_ensure_initialized_configures_ssh_key(
    backup_dir: Path, config: Config, tmp_path: Path
) -> None:
    key = tmp_path / "id_ed25519"
    key.write_text("key")
    target = BackupTarget("git@h:r.git", "h", "git", "git", ssh_key=str(key))

    repository.ensure_initialized(backup_dir, target, config)

    assert git(backup_dir, "config", "core.sshCommand") == repository.ssh_command(
        target
    )


def test_destroy_empties_directory(backup_dir: Path) -> None:
    (backup_dir / ".git" / "objects").mkdir(parents=True)
    (backup_dir / "sub").mkdir()
    (backup_dir / "sub" / "f.txt").write_text("x")
    (backup_dir / "top.txt").write_text("y")
    (backup_dir / "link").symlink_to(backup_dir / "sub")

    repository.destroy(backup_dir)

    assert backup_dir.is_dir()
    assert list(backup_dir.iterdir()) == []


def test_destroy_missing_directory(tmp_path: Path) -> None:
    repository.destroy(tmp_path / "missing")
    assert not (tmp_path / "missing").exists()


def test_destroy_refuses_filesystem_root() -> None:
    with pytest.raises(ValueError, match="filesystem root"):
        repository.destroy(Path("/"))

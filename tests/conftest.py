"""Shared fixtures for tests that drive a real git binary."""

import logging
import shutil
import subprocess
from collections.abc import Iterator
from pathlib import Path

import pytest

from ginavbs.config import BackupTarget, Config, CoreConfig
from ginavbs.constants import APP_NAME

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git not found")


def git(cwd: Path, *args: str) -> str:
    """Runs git as an independent client with its own identity."""
    res = subprocess.run(
        [
            "git",
            "-c",
            "user.name=Other Machine",
            "-c",
            "user.email=other@example.com",
            "-c",
            "commit.gpgsign=false",
            *args,
        ],
        cwd=cwd,
        capture_output=True,
        text=True,
        check=True,
    )
    return res.stdout.strip()


@pytest.fixture(autouse=True)
def reset_logger() -> Iterator[None]:
    """Drops handlers a test installed through `setup_logging`."""
    yield
    logger = logging.getLogger(APP_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def bare_remote(tmp_path: Path) -> Path:
    """An empty bare repository acting as the backup remote."""
    remote = tmp_path / "remote.git"
    remote.mkdir()
    git(remote, "init", "--bare", "--quiet", "--initial-branch=master")
    return remote


@pytest.fixture
def backup_dir(tmp_path: Path) -> Path:
    path = tmp_path / "backup"
    path.mkdir()
    return path


@pytest.fixture
def config(backup_dir: Path) -> Config:
    return Config(core=CoreConfig(directory=str(backup_dir)))


@pytest.fixture
def target(bare_remote: Path) -> BackupTarget:
    return BackupTarget(
        repository_url=str(bare_remote), host="", user="alice", secret="secret"
    )

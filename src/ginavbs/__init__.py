"""GINAvbs: versioned backups of a directory to a remote git repository.

This package provides the command-line interface, the dependency installer,
the repository lifecycle and the sync engine that commits a directory,
merges the remote (remote wins) and force-pushes the result, plus the
periodic job that repeats the cycle unattended.
"""

from . import (
    backup,
    cli,
    config,
    connection,
    constants,
    errors,
    git_wrapper,
    repository,
    service,
    sync,
    system,
)

__all__ = [
    "backup",
    "cli",
    "config",
    "connection",
    "constants",
    "errors",
    "git_wrapper",
    "repository",
    "service",
    "sync",
    "system",
]

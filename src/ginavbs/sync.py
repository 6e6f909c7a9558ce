"""One backup cycle: commit, fetch, merge (remote wins), force push.

Every step is best-effort. A failing step is logged and recorded in the
`SyncReport`, and the next step still runs, so an unattended scheduled run
always completes its cycle and the next tick gets a fresh attempt.

Conflicts are resolved toward the remote and the result is force-pushed.
Local edits to a path that the remote also changed can therefore be lost;
such paths are listed in the report and logged as warnings.
"""

import contextlib
import datetime
import enum
import logging
import os
import subprocess
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from .config import BackupTarget, Config
from .constants import APP_NAME, COMMIT_TAG
from .git_wrapper import GitRepo
from .repository import ssh_command

logger = logging.getLogger(APP_NAME)

DENIED_MARKERS = (
    "permission denied",
    "authentication failed",
    "access denied",
    "could not read username",
    "invalid username or password",
    "the requested url returned error: 401",
    "the requested url returned error: 403",
)
"""tuple[str, ...]: Lower-case fragments of git errors caused by bad credentials."""


class SyncOutcome(enum.Enum):
    """Terminal result of one sync cycle."""

    SUCCESS = "success"
    MERGE_CONFLICT_FORCED_RESOLVED = "merge_conflict_forced_resolved"
    REMOTE_UNREACHABLE = "remote_unreachable"
    DENIED = "denied"


@dataclass
class StepResult:
    """The result of one protocol step.

    Attributes:
        name (str): Step name ('dump', 'commit', 'fetch', 'merge', 'push').
        ok (bool): Whether the step succeeded (or had nothing to do).
        detail (str): A short description or the error message.
    """

    name: str
    ok: bool
    detail: str = ""


@dataclass
class SyncReport:
    """Structured result of `sync_once`.

    Attributes:
        outcome (SyncOutcome): The terminal outcome.
        steps (list[StepResult]): Step results in execution order.
        resolved_paths (list[str]): Paths changed on both sides whose
            overlapping hunks were taken from the remote.
    """

    outcome: SyncOutcome
    steps: list[StepResult] = field(default_factory=list)
    resolved_paths: list[str] = field(default_factory=list)

    def step(self, name: str) -> StepResult | None:
        """Returns the result of the named step, if it ran."""
        return next((s for s in self.steps if s.name == name), None)

    @property
    def failed_steps(self) -> list[StepResult]:
        """The steps that did not succeed."""
        return [s for s in self.steps if not s.ok]


def commit_message(now: datetime.datetime | None = None) -> str:
    """Builds the backup commit message: a `date`-style timestamp plus the tag."""
    now = now or datetime.datetime.now().astimezone()
    return f"{now.strftime('%a %b %d %H:%M:%S %Z %Y')} {COMMIT_TAG}"


def git_env(target: BackupTarget) -> dict[str, str]:
    """Environment for git subprocesses that must never block on a prompt."""
    env = os.environ.copy()
    env["GIT_TERMINAL_PROMPT"] = "0"
    env["GIT_SSH_COMMAND"] = ssh_command(target)
    return env


def _run_step(name: str, action: Callable[[], str]) -> StepResult:
    """Runs one step, converting any failure into a recorded result."""
    try:
        detail = action()
    except Exception as e:
        logger.warning(f"{name.upper()} failed: {e}")
        return StepResult(name, False, str(e))
    logger.info(f"{name.upper()}: {detail}")
    return StepResult(name, True, detail)


def dump_database(path: Path, config: Config) -> str:
    """Writes the SQL dump into the backup directory.

    The dump is written to a temporary file first and swapped in atomically,
    so a failed dump never replaces the previous good one.

    Raises:
        RuntimeError: If the dump command fails.
    """
    dump_file = path / config.sql.dump_file
    tmp_file = dump_file.with_suffix(dump_file.suffix + ".tmp")
    try:
        with open(tmp_file, "w") as f:
            subprocess.run(
                config.sql.command,
                cwd=path,
                stdout=f,
                stderr=subprocess.PIPE,
                text=True,
                check=True,
            )
        os.replace(tmp_file, dump_file)
    except subprocess.CalledProcessError as e:
        raise RuntimeError(f"Dump failed: {(e.stderr or '').strip() or e}") from e
    finally:
        with contextlib.suppress(OSError):
            tmp_file.unlink()
    return f"wrote {dump_file.name}"


def _commit(repo: GitRepo) -> str:
    if not repo.status_porcelain():
        return "nothing to commit"
    repo.add_all()
    message = commit_message()
    repo.commit(message)
    return f"committed '{message}'"


def _fetch(repo: GitRepo, remote: str) -> str:
    repo.fetch(remote)
    return f"fetched {remote}"


def _overlapping_paths(repo: GitRepo, head: str | None, remote: str) -> set[str]:
    """Paths changed both locally and on the remote since they diverged."""
    if head is None:
        return set()
    base = repo.merge_base(head, remote)
    if base is None:
        # Unrelated histories: paths present on both sides with different content.
        return repo.changed_paths(head, remote, modified_only=True)
    return repo.changed_paths(base, head) & repo.changed_paths(base, remote)


def _merge(repo: GitRepo, ref: str, resolved: list[str]) -> str:
    remote_sha = repo.rev_parse(ref)
    if remote_sha is None:
        return f"{ref} does not exist yet"

    head = repo.rev_parse("HEAD")
    if head == remote_sha:
        return "already up to date"

    overlap = _overlapping_paths(repo, head, remote_sha)
    try:
        repo.merge_theirs(ref)
    except RuntimeError:
        # Leave the tree as it was before the merge rather than half-merged.
        with contextlib.suppress(RuntimeError):
            repo.merge_abort()
        raise

    resolved.extend(sorted(overlap))
    if overlap:
        logger.warning(
            f"CONFLICT: kept the remote version for {', '.join(sorted(overlap))}; "
            "overlapping local edits are overwritten."
        )
        return f"merged {ref}, remote won on {len(overlap)} path(s)"
    return f"merged {ref}"


def _push(repo: GitRepo, remote: str, branch: str) -> str:
    if repo.rev_parse("HEAD") is None:
        return "nothing to publish"
    repo.push_force(remote, branch)
    return f"published {branch} to {remote}"


def _classify(report: SyncReport) -> SyncOutcome:
    push = report.step("push")
    if push is not None and push.ok:
        if report.resolved_paths:
            return SyncOutcome.MERGE_CONFLICT_FORCED_RESOLVED
        return SyncOutcome.SUCCESS

    detail = push.detail.lower() if push else ""
    if any(marker in detail for marker in DENIED_MARKERS):
        return SyncOutcome.DENIED
    return SyncOutcome.REMOTE_UNREACHABLE


def sync_once(path: Path, target: BackupTarget, config: Config) -> SyncReport:
    """Runs one backup cycle against the remote.

    Steps, strictly in order: (SQL mode) dump, commit, fetch, merge
    preferring the remote, force push. A failing step does not stop the
    following ones.

    Args:
        path (Path): The initialized backup directory.
        target (BackupTarget): The backup target.
        config (Config): Provides remote, branch and SQL settings.

    Returns:
        SyncReport: The outcome and every step's result.
    """
    repo = GitRepo(path, env=git_env(target))
    remote, branch = config.core.remote_name, config.core.branch
    report = SyncReport(outcome=SyncOutcome.REMOTE_UNREACHABLE)

    if target.sql_mode:
        report.steps.append(_run_step("dump", lambda: dump_database(path, config)))
    report.steps.append(_run_step("commit", lambda: _commit(repo)))
    report.steps.append(_run_step("fetch", lambda: _fetch(repo, remote)))
    report.steps.append(
        _run_step(
            "merge", lambda: _merge(repo, f"{remote}/{branch}", report.resolved_paths)
        )
    )
    report.steps.append(_run_step("push", lambda: _push(repo, remote, branch)))

    report.outcome = _classify(report)
    return report

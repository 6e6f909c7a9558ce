import logging
import shlex
import shutil
import subprocess
from pathlib import Path

from rich.console import Console

from .config import BackupTarget, Config, Interval
from .constants import APP_NAME, COMMIT_TAG

console = Console()
logger = logging.getLogger(APP_NAME)


def get_job_path(interval: Interval, config: Config) -> Path:
    """Resolves where busybox crond expects the job for an interval.

    Args:
        interval (Interval): The backup interval.
        config (Config): Provides the periodic directory and job name.

    Returns:
        Path: e.g. /etc/periodic/weekly/ginavbs.
    """
    schedule = config.schedule
    return Path(schedule.periodic_dir) / interval.value / schedule.job_name


def render_job(target: BackupTarget, config: Config, directory: Path) -> str:
    """Renders the periodic job script.

    The script repeats the sync cycle outside this process: pull (remote
    wins), optional SQL dump, add, commit, force push. Each step is allowed to
    fail without stopping the others, like `sync.sync_once`.

    Args:
        target (BackupTarget): Provides the SQL mode flag.
        config (Config): Provides remote, branch and dump settings.
        directory (Path): The backup directory.

    Returns:
        str: The script content.
    """
    remote = shlex.quote(config.core.remote_name)
    branch = shlex.quote(config.core.branch)

    lines = [
        "#!/bin/sh",
        f"# Generated by {APP_NAME}. Changes are overwritten on the next run.",
        "",
        "set -x",
        "",
        f"cd {shlex.quote(str(directory))} || exit 1",
        "",
        "export GIT_TERMINAL_PROMPT=0",
        "",
        "# Commit changes to remote repository",
        f"git pull --no-edit --strategy-option=theirs --allow-unrelated-histories "
        f"{remote} {branch} || true",
    ]
    if target.sql_mode:
        dump = shlex.join(config.sql.command)
        dump_file = shlex.quote(config.sql.dump_file)
        lines.append(
            f"{dump} > {dump_file}.tmp && mv {dump_file}.tmp {dump_file} "
            f"|| rm -f {dump_file}.tmp"
        )
    lines.extend(
        [
            "git add --all . || true",
            f'git commit --no-verify -m "$(date) {COMMIT_TAG}" || true',
            f"git push --force --set-upstream {remote} {branch} || true",
            "",
        ]
    )
    return "\n".join(lines)


def _start_crond() -> None:
    """Starts busybox crond if it is installed and not already running."""
    crond = shutil.which("crond")
    if not crond:
        logger.warning("crond not found; the periodic job will not run.")
        return
    if subprocess.run(["pgrep", "crond"], capture_output=True).returncode == 0:
        return
    try:
        # busybox crond daemonizes itself when started without -f.
        subprocess.run([crond], check=True)
        logger.info("Started crond.")
    except (OSError, subprocess.CalledProcessError) as e:
        logger.warning(f"Could not start crond: {e}")


def install(target: BackupTarget, config: Config, directory: Path) -> Path:
    """Writes the periodic job for the target's interval and starts crond.

    Args:
        target (BackupTarget): Provides interval and SQL mode.
        config (Config): Schedule, remote and dump settings.
        directory (Path): The backup directory.

    Returns:
        Path: The job file that was written.
    """
    job = get_job_path(target.interval, config)
    job.parent.mkdir(parents=True, exist_ok=True)
    job.write_text(render_job(target, config, directory))
    job.chmod(0o755)

    console.print(
        f"[bold green]SUCCESS:[/bold green] {target.interval.value} backup job "
        f"placed in {job}"
    )
    _start_crond()
    return job


def uninstall(config: Config) -> list[Path]:
    """Removes the periodic job from every interval directory.

    Returns:
        list[Path]: The job files that were removed.
    """
    removed = []
    for interval in Interval:
        job = get_job_path(interval, config)
        if job.exists():
            job.unlink()
            removed.append(job)
            logger.info(f"Removed periodic job {job}.")
    return removed

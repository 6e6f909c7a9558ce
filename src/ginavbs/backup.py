"""The backup run: dependencies, schedule, repository, one sync cycle."""

import logging
import sys
from logging.handlers import RotatingFileHandler

from rich.console import Console

from . import repository, service, sync, system
from .config import BackupTarget, Config
from .constants import APP_NAME, LOG_FILE, REQUIRED_BINARIES
from .errors import InstallError, PermissionDeniedError

console = Console()
logger = logging.getLogger(APP_NAME)


def setup_logging(config: Config, verbose: bool = False) -> None:
    """Configures the logging subsystem.

    Args:
        config (Config): Provides the log rotation size.
        verbose (bool): If True, debug messages are shown on stderr.
    """
    formatter = logging.Formatter(
        "[%(asctime)s] %(levelname)s: %(message)s", "%Y-%m-%d %H:%M:%S"
    )

    # main() can run more than once per process (tests); never stack handlers.
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    stream_handler.setLevel(logging.DEBUG if verbose else logging.WARNING)
    logger.addHandler(stream_handler)

    try:
        file_handler = RotatingFileHandler(
            LOG_FILE,
            maxBytes=config.limits.max_log_size,
            backupCount=5,
        )
    except OSError as e:
        logger.warning(f"Cannot write log file {LOG_FILE}: {e}")
    else:
        file_handler.setFormatter(formatter)
        file_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
        logger.addHandler(file_handler)

    logger.setLevel(logging.DEBUG)


def run_backup(
    target: BackupTarget,
    config: Config,
    manager: system.PackageManager | None = None,
) -> sync.SyncReport:
    """Performs one full backup run for a validated target.

    Order: install missing dependencies, place the periodic job (on hosts
    with busybox periodic directories), initialize the repository, sync.

    Args:
        target (BackupTarget): The validated backup target.
        config (Config): The loaded configuration.
        manager (system.PackageManager | None): The package manager strategy.
            Detected from /etc/os-release when omitted.

    Returns:
        sync.SyncReport: The result of the sync cycle.

    Raises:
        PermissionDeniedError: If installing dependencies needs root.
        InstallError: If the package manager failed outright.
        UnsupportedPlatformError: If dependencies are missing on an unknown host.
        RuntimeError: If the repository cannot be initialized.
    """
    manager = manager or system.detect_package_manager()
    logger.debug(f"Package manager: {manager.name}")

    result = system.ensure_installed(REQUIRED_BINARIES, manager)
    if result is system.InstallResult.NEEDS_PRIVILEGED_RETRY:
        raise PermissionDeniedError(
            f"Installing {', '.join(REQUIRED_BINARIES)} requires root privileges."
        )
    if result is system.InstallResult.FAILED:
        raise InstallError(f"{manager.name} failed to install dependencies.")

    directory = config.directory
    if manager.periodic_jobs:
        try:
            service.install(target, config, directory)
        except PermissionError as e:
            raise PermissionDeniedError(f"Cannot write the periodic job: {e}") from e

    repository.ensure_initialized(directory, target, config)

    console.print(f"[bold blue]SYNC:[/bold blue] Backing up {directory}...")
    report = sync.sync_once(directory, target, config)

    if report.outcome is sync.SyncOutcome.SUCCESS:
        console.print("[bold green]SUCCESS:[/bold green] Backup published.")
    elif report.outcome is sync.SyncOutcome.MERGE_CONFLICT_FORCED_RESOLVED:
        console.print(
            "[bold yellow]RESOLVED:[/bold yellow] Backup published; remote version "
            f"kept for {', '.join(report.resolved_paths)}."
        )
    else:
        console.print(
            f"[bold red]FAILED:[/bold red] Backup not published "
            f"({report.outcome.value}). Next scheduled run will retry."
        )
    logger.info(f"Sync finished: {report.outcome.value}")
    return report

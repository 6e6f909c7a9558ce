"""Host identification and dependency installation.

The host's package manager is identified once from `/etc/os-release` and
represented by one strategy class per family. Installation is planned first
(binaries already on PATH are never reinstalled) and then dispatched to the
strategy, which reports an `InstallResult` instead of re-executing itself
with elevated privileges.
"""

import enum
import logging
import shutil
import subprocess
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from rich.console import Console

from .constants import APP_NAME, OS_RELEASE_FILE
from .errors import UnsupportedPlatformError

console = Console()
logger = logging.getLogger(APP_NAME)


class InstallResult(enum.Enum):
    """Outcome of a dependency check/installation."""

    ALREADY_SATISFIED = "already_satisfied"
    INSTALLED = "installed"
    NEEDS_PRIVILEGED_RETRY = "needs_privileged_retry"
    FAILED = "failed"


def read_os_release(path: Path = OS_RELEASE_FILE) -> dict[str, str]:
    """Parses an os-release file into a dictionary.

    Args:
        path (Path): The file to read. Defaults to /etc/os-release.

    Returns:
        dict[str, str]: Upper-case keys mapped to unquoted values. Empty if
        the file cannot be read.
    """
    data: dict[str, str] = {}
    try:
        text = path.read_text()
    except OSError as e:
        logger.debug(f"Could not read {path}: {e}")
        return data

    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        data[key.strip()] = value.strip().strip("\"'")
    return data


def _run_quiet(cmd: list[str]) -> bool:
    """Runs a command, returning True on a zero exit status."""
    try:
        res = subprocess.run(cmd, capture_output=True, text=True)
    except OSError as e:
        logger.debug(f"Could not execute {cmd[0]}: {e}")
        return False
    if res.returncode != 0:
        logger.debug(
            f"{' '.join(cmd)} failed ({res.returncode}): {res.stderr.strip()}"
        )
    return res.returncode == 0


class PackageManager:
    """Base strategy. Used as-is for hosts whose package manager is unknown."""

    name = "unsupported"
    periodic_jobs = False
    """bool: Whether the host runs busybox crond with /etc/periodic directories."""

    def install(self, packages: list[str]) -> InstallResult:
        """Installs the given packages.

        Args:
            packages (list[str]): Package names to install. Never empty.

        Returns:
            InstallResult: INSTALLED, NEEDS_PRIVILEGED_RETRY or FAILED.

        Raises:
            UnsupportedPlatformError: Always, for the base strategy.
        """
        raise UnsupportedPlatformError(
            f"Unsupported distribution: cannot install {', '.join(packages)}."
        )


class AlpineManager(PackageManager):
    """Alpine Linux (apk). Expects to already run as root."""

    name = "alpine"
    periodic_jobs = True
    cache_dirs: tuple[Path, ...] = (
        Path("/var/cache/apk"),
        Path("/var/cache/distfiles"),
    )

    def install(self, packages: list[str]) -> InstallResult:
        """Installs all packages in one `apk add --force` call, without retry."""
        if not _run_quiet(["apk", "add", "--force", *packages]):
            logger.error(f"apk could not install {', '.join(packages)}.")
            return InstallResult.FAILED
        self.clean_cache()
        return InstallResult.INSTALLED

    def clean_cache(self) -> None:
        """Empties the apk and distfiles caches."""
        for cache in self.cache_dirs:
            if not cache.is_dir():
                continue
            for entry in cache.iterdir():
                try:
                    if entry.is_dir() and not entry.is_symlink():
                        shutil.rmtree(entry)
                    else:
                        entry.unlink()
                except OSError as e:
                    logger.warning(f"Could not remove cached file {entry}: {e}")


class EscalatingPackageManager(PackageManager):
    """A package manager tried unprivileged first, then once through sudo."""

    install_cmd: list[str] = []
    clean_cmd: list[str] = []

    @staticmethod
    def _elevate(cmd: list[str]) -> list[str]:
        # -n: never prompt; a cron run has no terminal to answer on.
        return ["sudo", "-n", *cmd]

    def install(self, packages: list[str]) -> InstallResult:
        """Installs packages, escalating through sudo once on failure.

        Returns:
            InstallResult: INSTALLED on success, NEEDS_PRIVILEGED_RETRY if both
            the plain and the sudo attempt failed.
        """
        cmd = [*self.install_cmd, *packages]
        if _run_quiet(cmd):
            self.clean_cache(privileged=False)
            return InstallResult.INSTALLED

        if shutil.which("sudo"):
            logger.info(f"Retrying {self.name} install with sudo...")
            if _run_quiet(self._elevate(cmd)):
                self.clean_cache(privileged=True)
                return InstallResult.INSTALLED

        logger.warning(f"Could not install {', '.join(packages)}: retry as root.")
        return InstallResult.NEEDS_PRIVILEGED_RETRY

    def clean_cache(self, privileged: bool) -> None:
        """Clears the local package cache with the privilege that installed."""
        cmd = self._elevate(self.clean_cmd) if privileged else list(self.clean_cmd)
        if not _run_quiet(cmd):
            logger.warning(f"Could not clean the {self.name} package cache.")


class ArchManager(EscalatingPackageManager):
    """Arch-like distributions (pacman)."""

    name = "arch"
    install_cmd = ["pacman", "-S", "--noconfirm"]
    clean_cmd = ["pacman", "-Scc", "--noconfirm"]


class DebianManager(EscalatingPackageManager):
    """Debian-like distributions (apt-get)."""

    name = "debian"
    install_cmd = ["apt-get", "install", "-y"]
    clean_cmd = ["apt-get", "clean", "-y"]


DISTRO_MANAGERS: dict[str, type[PackageManager]] = {
    "alpine": AlpineManager,
    "arch": ArchManager,
    "manjaro": ArchManager,
    "debian": DebianManager,
    "ubuntu": DebianManager,
    "mint": DebianManager,
    "linuxmint": DebianManager,
    "kali": DebianManager,
}
"""dict[str, type[PackageManager]]: os-release IDs mapped to their strategy."""


def detect_package_manager(
    os_release: dict[str, str] | None = None,
) -> PackageManager:
    """Factory function to retrieve the package manager strategy for this host.

    The os-release `ID` is matched first, then each token of `ID_LIKE`.

    Args:
        os_release (dict[str, str] | None): Parsed os-release data. Read from
            /etc/os-release when omitted.

    Returns:
        PackageManager: An AlpineManager, ArchManager or DebianManager, or the
        base PackageManager if the distribution is not supported.
    """
    if os_release is None:
        os_release = read_os_release()

    candidates = [os_release.get("ID", "")]
    candidates.extend(os_release.get("ID_LIKE", "").split())
    for distro in candidates:
        manager_cls = DISTRO_MANAGERS.get(distro.lower())
        if manager_cls:
            return manager_cls()
    return PackageManager()


@dataclass(frozen=True)
class InstallPlan:
    """The binaries that still need installing, and who installs them.

    Attributes:
        missing (tuple[str, ...]): Required binaries not found on PATH.
        manager (PackageManager): The strategy that would install them.
    """

    missing: tuple[str, ...]
    manager: PackageManager


def plan_install(requirements: Iterable[str], manager: PackageManager) -> InstallPlan:
    """Looks up each required binary on PATH.

    Args:
        requirements (Iterable[str]): Binary names, in order.
        manager (PackageManager): The host's package manager strategy.

    Returns:
        InstallPlan: The missing subset, order preserved.
    """
    missing = []
    for binary in dict.fromkeys(requirements):
        if shutil.which(binary):
            console.print(f"[green]✓[/green] Checking for {binary} (is installed)")
        else:
            console.print(
                f"[yellow]i[/yellow] Checking for {binary} (will be installed)"
            )
            missing.append(binary)
    return InstallPlan(missing=tuple(missing), manager=manager)


def ensure_installed(
    requirements: Iterable[str], manager: PackageManager
) -> InstallResult:
    """Makes sure every required binary is available.

    Safe to call on every scheduled run: when nothing is missing, the package
    manager is not invoked at all.

    Args:
        requirements (Iterable[str]): Binary names that must be on PATH.
        manager (PackageManager): The host's package manager strategy.

    Returns:
        InstallResult: ALREADY_SATISFIED, INSTALLED, NEEDS_PRIVILEGED_RETRY or
        FAILED.

    Raises:
        UnsupportedPlatformError: If something is missing and the host's
            package manager is not supported.
    """
    plan = plan_install(requirements, manager)
    if not plan.missing:
        return InstallResult.ALREADY_SATISFIED

    logger.info(f"Installing {', '.join(plan.missing)} via {manager.name}...")
    result = manager.install(list(plan.missing))
    if result is InstallResult.INSTALLED:
        console.print(
            "[bold green]SUCCESS:[/bold green] All dependencies are now installed."
        )
    return result

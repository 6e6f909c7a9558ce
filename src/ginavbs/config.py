import enum
import logging
import re
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from .connection import parse_repository_url, with_credentials
from .constants import (
    APP_NAME,
    CONFIG_FILE,
    DEFAULT_INTERVAL,
    ENV_PREFIX,
    SERVICE_EMAIL,
    SERVICE_NAME,
)
from .errors import CredentialError, InvalidOptionError

logger = logging.getLogger(APP_NAME)


def parse_size(value: int | str) -> int:
    """Converts human-readable size strings (e.g., '5MB') to bytes."""
    if isinstance(value, int):
        return value
    match = re.match(r"^(\d+(?:\.\d+)?)\s*([kmg]b?)$", str(value).strip().lower())
    if not match:
        raise ValueError(f"Invalid size format '{value}'")
    num, unit = float(match.group(1)), match.group(2)
    multiplier = {
        "k": 1024,
        "kb": 1024,
        "m": 1024**2,
        "mb": 1024**2,
        "g": 1024**3,
        "gb": 1024**3,
    }
    return int(num * multiplier[unit])


def parse_bool(value: str | None) -> bool:
    """Interprets common truthy spellings used in environment variables."""
    return str(value or "").strip().lower() in {"1", "true", "yes", "on"}


class Interval(enum.Enum):
    """Backup intervals. Values match the busybox `/etc/periodic` directories."""

    FIFTEEN_MINUTES = "15min"
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"

    @classmethod
    def parse(cls, value: str) -> "Interval":
        """Resolves an interval name.

        Raises:
            InvalidOptionError: If the name is not a known interval.
        """
        try:
            return cls(value.strip().lower())
        except ValueError:
            choices = ", ".join(i.value for i in cls)
            raise InvalidOptionError(
                f"Invalid interval '{value}' (choose from {choices})."
            ) from None


@dataclass(frozen=True)
class CoreConfig:
    """Core settings.

    Attributes:
        directory (str): The directory that is backed up.
        remote_name (str): The git remote backups are pushed to.
        branch (str): The branch that carries the backup history.
    """

    directory: str = "."
    remote_name: str = "origin"
    branch: str = "master"


@dataclass(frozen=True)
class IdentityConfig:
    """The service identity written into backup commits.

    Attributes:
        name (str): Value for `user.name`.
        email (str): Value for `user.email`.
    """

    name: str = SERVICE_NAME
    email: str = SERVICE_EMAIL


@dataclass(frozen=True)
class SqlConfig:
    """SQL dump settings.

    Attributes:
        command (list[str]): The dump command; its stdout becomes the dump file.
        dump_file (str): The dump file name, relative to the backup directory.
    """

    command: list[str] = field(
        default_factory=lambda: [
            "mysqldump",
            "--user=root",
            "--lock-tables",
            "--all-databases",
        ]
    )
    dump_file: str = "dbs.sql"


@dataclass(frozen=True)
class ScheduleConfig:
    """Periodic job settings.

    Attributes:
        periodic_dir (str): Root of the busybox crond interval directories.
        job_name (str): File name of the generated job.
    """

    periodic_dir: str = "/etc/periodic"
    job_name: str = APP_NAME


@dataclass(frozen=True)
class LimitsConfig:
    """Resource limitation settings.

    Attributes:
        max_log_size (int): Max bytes for the log file before rotation.
    """

    max_log_size: int = 5 * 1024 * 1024


@dataclass(frozen=True)
class Config:
    """Global configuration aggregator.

    Attributes:
        core (CoreConfig): Core settings.
        identity (IdentityConfig): Commit identity.
        sql (SqlConfig): SQL dump settings.
        schedule (ScheduleConfig): Periodic job settings.
        limits (LimitsConfig): Resource limits.
    """

    core: CoreConfig = field(default_factory=CoreConfig)
    identity: IdentityConfig = field(default_factory=IdentityConfig)
    sql: SqlConfig = field(default_factory=SqlConfig)
    schedule: ScheduleConfig = field(default_factory=ScheduleConfig)
    limits: LimitsConfig = field(default_factory=LimitsConfig)

    @property
    def directory(self) -> Path:
        """The absolute path of the backup directory."""
        return Path(self.core.directory).expanduser().resolve()

    @classmethod
    def load(cls, path: Path | None = None) -> "Config":
        """Loads configuration from a TOML file, applying defaults where necessary.

        Args:
            path (Path | None): The file to read. Defaults to CONFIG_FILE.

        Returns:
            Config: The populated configuration object.
        """
        path = path or CONFIG_FILE
        instance = cls()
        if not path.exists():
            return instance

        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            logger.error(f"Config syntax error in {path}: {e}")
            return instance
        except OSError as e:
            logger.warning(f"Failed to load config from {path}: {e}")
            return instance

        updates = {}
        for section in ("core", "identity", "sql", "schedule", "limits"):
            if section in data:
                updates[section] = cls._update_dataclass(
                    section, getattr(instance, section), data[section]
                )

        unknown = set(data) - {"core", "identity", "sql", "schedule", "limits"}
        if unknown:
            logger.warning(
                f"Unknown config sections in {path}: {', '.join(sorted(unknown))}. "
                "Ignoring."
            )

        return replace(instance, **updates)

    @staticmethod
    def _update_dataclass(section_name: str, instance: Any, updates: dict) -> Any:
        """Updates a dataclass, warning on invalid keys and parsing sizes."""
        valid_keys = instance.__dataclass_fields__.keys()
        filtered_updates = {}

        invalid_keys = set(updates.keys()) - set(valid_keys)
        if invalid_keys:
            logger.warning(
                f"Unknown config keys in [{section_name}]: "
                f"{', '.join(sorted(invalid_keys))}. Ignoring."
            )

        for k, v in updates.items():
            if k not in valid_keys:
                continue
            try:
                if k == "max_log_size":
                    filtered_updates[k] = parse_size(v)
                elif k == "command":
                    if not isinstance(v, list) or not all(
                        isinstance(a, str) for a in v
                    ):
                        raise ValueError("expected a list of strings")
                    filtered_updates[k] = v
                else:
                    filtered_updates[k] = v
            except ValueError as e:
                logger.warning(
                    f"Config error in [{section_name}].{k}: {e}. "
                    "Falling back to default."
                )

        return replace(instance, **filtered_updates)


@dataclass(frozen=True)
class BackupTarget:
    """Everything one run needs to know about where and how to back up.

    Attributes:
        repository_url (str): The remote URL registered as the backup remote.
        host (str): Host parsed from the URL.
        user (str): Username parsed from the URL (or GINA_USER).
        secret (str): Password or token parsed from the URL (or GINA_PASSWORD).
        ssh_key (str | None): Path to a private key for SSH remotes.
        interval (Interval): How often the periodic job runs.
        sql_mode (bool): Whether a database dump is generated before commit.
    """

    repository_url: str
    host: str
    user: str
    secret: str
    ssh_key: str | None = None
    interval: Interval = Interval.WEEKLY
    sql_mode: bool = False

    @property
    def has_password_credential(self) -> bool:
        """True if a distinct username/secret pair is available."""
        return self.user != self.secret

    @property
    def ssh_key_path(self) -> Path | None:
        """The expanded SSH key path, if one was given."""
        return Path(self.ssh_key).expanduser() if self.ssh_key else None

    @property
    def has_ssh_key(self) -> bool:
        """True if an SSH key was given and the file exists."""
        key = self.ssh_key_path
        return key is not None and key.is_file()

    def validate(self) -> None:
        """Ensures at least one usable credential is present.

        Raises:
            CredentialError: If there is neither a user/secret pair nor an SSH key.
        """
        if self.has_password_credential or self.has_ssh_key:
            return
        if self.ssh_key:
            raise CredentialError(
                f"SSH key '{self.ssh_key}' not found and no username/password given."
            )
        raise CredentialError(
            f"No username/password in '{self.repository_url}' and no SSH key (-k)."
        )


def build_target(
    repository: str | None = None,
    interval: str | None = None,
    ssh_key: str | None = None,
    sql_mode: bool = False,
    environ: Mapping[str, str] | None = None,
) -> BackupTarget:
    """Builds the immutable BackupTarget from flags and GINA_* defaults.

    Flag values win over environment values. Host, user and secret come from
    the repository URL; GINA_HOST, GINA_USER and GINA_PASSWORD only fill in
    what the URL does not provide. Credentials taken from the environment are
    embedded into the registered URL so git can use them; when the URL cannot
    carry them (scp-like SSH remotes) they are ignored.

    Args:
        repository (str | None): The -r/--repository value.
        interval (str | None): The -i/--interval value.
        ssh_key (str | None): The -k/--sshkey value.
        sql_mode (bool): Whether -s/--sql was given.
        environ (Mapping[str, str] | None): Environment to read defaults from.

    Returns:
        BackupTarget: The resolved target. Credentials are not validated here.

    Raises:
        ParseError: If the repository URL is empty.
        InvalidOptionError: If the interval is unknown.
    """
    env = environ if environ is not None else {}

    def _env(name: str) -> str:
        return env.get(f"{ENV_PREFIX}{name}", "")

    url = repository or _env("REPOSITORY")
    conn = parse_repository_url(url)

    host = conn.host or _env("HOST")
    user, secret = conn.user, conn.secret
    if not conn.has_credentials and _env("USER") and _env("PASSWORD"):
        embedded = with_credentials(url, _env("USER"), _env("PASSWORD"))
        if embedded != url:
            url, user, secret = embedded, _env("USER"), _env("PASSWORD")
            logger.debug("Using credentials from the environment.")
        else:
            logger.debug(f"Cannot embed environment credentials into '{url}'.")

    return BackupTarget(
        repository_url=url,
        host=host,
        user=user,
        secret=secret,
        ssh_key=ssh_key or _env("SSHKEY") or None,
        interval=Interval.parse(interval or _env("INTERVAL") or DEFAULT_INTERVAL),
        sql_mode=sql_mode or parse_bool(_env("SQL")),
    )

"""Error taxonomy and the exit summary renderer.

Every failure that should terminate a run is raised as a `GinaError` subclass
carrying the process exit code it maps to. The CLI catches these in one place
and hands the code to `report`, which is the only function that turns a code
into human-readable text.
"""

import enum

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel

console = Console()
err_console = Console(stderr=True)


class ExitCode(enum.IntEnum):
    """Process exit codes understood by callers and schedulers."""

    SUCCESS = 0
    INTERNAL_ERROR = 1
    MISSING_ARGUMENT = 40
    PERMISSION_DENIED = 43
    CREDENTIALS_NOT_FOUND = 44
    NOT_IMPLEMENTED = 51


EXIT_MESSAGES: dict[int, str] = {
    ExitCode.MISSING_ARGUMENT: "Bad Request: This option expects an argument!",
    ExitCode.PERMISSION_DENIED: "Permission Denied: Please try again as root!",
    ExitCode.CREDENTIALS_NOT_FOUND: "Not Found: Username and Password not found!",
    ExitCode.NOT_IMPLEMENTED: "Not Implemented: Please read the manual (-h).",
}
"""dict[int, str]: Summary line for each classified exit code."""

UNCLASSIFIED_MESSAGE = "Internal Error: Something has gone wrong."


class GinaError(Exception):
    """Base class for errors that terminate a run with a specific exit code."""

    exit_code: ExitCode = ExitCode.INTERNAL_ERROR


class ArgumentError(GinaError):
    """An option was given without its required value."""

    exit_code = ExitCode.MISSING_ARGUMENT


class InvalidOptionError(GinaError):
    """An unknown option or an invalid option value was given."""

    exit_code = ExitCode.NOT_IMPLEMENTED


class PermissionDeniedError(GinaError):
    """A privileged operation failed; the run must be repeated as root."""

    exit_code = ExitCode.PERMISSION_DENIED


class CredentialError(GinaError):
    """No usable username/password pair and no SSH key."""

    exit_code = ExitCode.CREDENTIALS_NOT_FOUND


class ParseError(CredentialError):
    """The repository connection string could not be decomposed."""


class UnsupportedPlatformError(GinaError):
    """The host's package manager is not one GINAvbs knows how to drive."""


class InstallError(GinaError):
    """Dependency installation failed in a way a root retry will not fix."""


def describe(code: int) -> str:
    """Returns the summary line for an exit code."""
    return EXIT_MESSAGES.get(code, UNCLASSIFIED_MESSAGE)


def report(code: int, detail: str | None = None) -> None:
    """Renders the end-of-run summary for the given exit code.

    Args:
        code (int): The exit code the process is about to return.
        detail (str | None): Optional context (usually the exception text).
    """
    if code == ExitCode.SUCCESS:
        console.print(
            Panel(
                "Thanks for using GINAvbs",
                border_style="magenta",
                expand=False,
            )
        )
        return

    body = f"[bold]ERROR:[/bold] {describe(code)}"
    if detail:
        body += f"\n[dim]{escape(detail)}[/dim]"
    body += f"\n\nerror_code {int(code)}"
    err_console.print(Panel(body, border_style="red", expand=False))

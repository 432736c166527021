from __future__ import annotations
import logging
from dataclasses import dataclass
import httpx
from app.core.build_host import BuildHostClient
from app.core.errors import CommandNotAllowedError

log = logging.getLogger(__name__)

# Read-only inspection commands only; anything that writes is refused.
ALLOWED_COMMANDS = frozenset({
    "grep", "find", "tree", "cat", "head", "tail", "wc", "ls",
    "pwd", "file", "dirname", "basename", "realpath",
})

# Characters the host shell could interpret; tool args never need them.
_FORBIDDEN_ARG_CHARS = set(";&|`$<>")


@dataclass(frozen=True)
class CommandResult:
    success: bool
    output: str


def check_command(command: str, args: list[str]) -> None:
    if command not in ALLOWED_COMMANDS:
        raise CommandNotAllowedError(f"Command not allowed: {command}")
    for arg in args:
        if _FORBIDDEN_ARG_CHARS.intersection(arg):
            raise CommandNotAllowedError(f"Argument contains shell metacharacters: {arg!r}")
    if command == "find" and any(a in ("-delete", "-exec", "-execdir", "-ok", "-fprint") for a in args):
        raise CommandNotAllowedError("find actions are not allowed")


@dataclass
class RemoteCommandExecutor:
    """Runs allow-listed inspection commands in the project's preview sandbox."""
    client: BuildHostClient
    project_id: str

    def __call__(self, command: str, args: list[str], working_directory: str | None = None) -> CommandResult:
        check_command(command, args)
        try:
            r = self.client.execute(self.project_id, command, args, working_directory)
        except httpx.HTTPError as e:
            log.warning("Command %s failed to reach preview host: %s", command, e,
                        extra={"job_id": "-", "stage": "context_gather"})
            return CommandResult(False, str(e))
        try:
            data = r.json()
        except ValueError:
            return CommandResult(False, f"invalid response from preview host ({r.status_code})")
        output = data.get("output") or data.get("stdout") or data.get("error") or ""
        return CommandResult(bool(data.get("success")) and r.is_success, str(output))

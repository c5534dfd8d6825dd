"""Thin async wrapper over external commands (tmux, git, gh, ps)."""

from __future__ import annotations

import asyncio
import logging
import os
import re
from dataclasses import dataclass

logger = logging.getLogger(__name__)


class CommandError(RuntimeError):
    """An external command exited non-zero or could not be started."""

    def __init__(self, argv: tuple[str, ...], returncode: int | None, stderr: str) -> None:
        self.argv = argv
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(f"{' '.join(argv[:2])} failed (rc={returncode}): {stderr}")


@dataclass(frozen=True)
class CommandResult:
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


async def run_command(*argv: str, cwd: str | None = None) -> CommandResult:
    """Run *argv* and capture its output; never raises on non-zero exit."""
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            cwd=cwd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        raise CommandError(argv, None, str(e)) from e
    stdout, stderr = await proc.communicate()
    result = CommandResult(
        returncode=proc.returncode if proc.returncode is not None else -1,
        stdout=stdout.decode(errors="replace"),
        stderr=stderr.decode(errors="replace").strip(),
    )
    if not result.ok:
        logger.debug("%s exited %d: %s", argv[0], result.returncode, result.stderr)
    return result


async def check_output(*argv: str, cwd: str | None = None) -> str:
    """Run *argv* and return stdout without trailing whitespace; raise CommandError on failure."""
    result = await run_command(*argv, cwd=cwd)
    if not result.ok:
        raise CommandError(argv, result.returncode, result.stderr)
    return result.stdout.rstrip()


def pid_alive(pid: int) -> bool:
    """Check if a process exists (EPERM still means it exists)."""
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


async def find_pane_process(tmux_target: str, process_re: re.Pattern[str]) -> int | None:
    """Return the pid of a process matching *process_re* on any pane tty of *tmux_target*."""
    try:
        tty_out = await check_output("tmux", "list-panes", "-t", tmux_target, "-F", "#{pane_tty}")
        ps_out = await check_output("ps", "-eo", "pid,tty,args")
    except CommandError:
        return None

    ttys = {t.strip().removeprefix("/dev/") for t in tty_out.splitlines() if t.strip()}
    if not ttys:
        return None
    for line in ps_out.splitlines():
        cols = line.split(None, 2)
        if len(cols) < 3 or cols[1] not in ttys:
            continue
        if process_re.search(cols[2]) and cols[0].isdigit():
            return int(cols[0])
    return None

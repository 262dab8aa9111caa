"""Subprocess helpers for the Perl tools (maf2vcf.pl, VEP, vcf2maf.pl)."""

from __future__ import annotations

import logging
import shlex
import shutil
import subprocess
import textwrap
from typing import Optional, Sequence

logger = logging.getLogger(__name__)


class ExternalCommandError(RuntimeError):
    """Raised when an external command fails."""

    def __init__(
        self,
        message: str,
        *,
        cmd: Sequence[str],
        returncode: int,
        stdout: Optional[str] = None,
        stderr: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.cmd = list(cmd)
        self.returncode = int(returncode)
        self.stdout = stdout
        self.stderr = stderr


def cmd_to_str(cmd: Sequence[str]) -> str:
    return " ".join(shlex.quote(str(x)) for x in cmd)


def ensure_executable_in_path(exe: str, *, hint: Optional[str] = None) -> str:
    """Ensure an executable exists in PATH and return its full path.

    ``exe`` may also be an absolute path to an executable file.
    """
    found = shutil.which(exe)
    if found is None:
        msg = f"Required executable '{exe}' was not found in your PATH."
        if hint:
            msg += "\n\n" + hint
        raise FileNotFoundError(msg)
    return found


def run_command(cmd: Sequence[str], *, check: bool = True) -> subprocess.CompletedProcess:
    """Run ``cmd`` with stdout and stderr captured as text.

    VEP and vcf2maf report progress on stderr, so a failure (with ``check``)
    raises ``ExternalCommandError`` quoting the tail of it.
    """
    logger.debug("Running command: %s", cmd_to_str(cmd))
    cp = subprocess.run([str(x) for x in cmd], check=False, capture_output=True, text=True)

    if check and cp.returncode != 0:
        raise ExternalCommandError(
            textwrap.dedent(
                f"""
                External command failed (exit code {cp.returncode}).

                Command:
                  {cmd_to_str(cmd)}

                STDERR (tail):
                  {_tail(cp.stderr)}
                """
            ).strip(),
            cmd=cmd,
            returncode=cp.returncode,
            stdout=cp.stdout,
            stderr=cp.stderr,
        )
    return cp


def _tail(s: Optional[str], n: int = 3000) -> str:
    if not s:
        return "(empty)"
    s = str(s)
    if len(s) <= n:
        return s
    return "..." + s[-n:]

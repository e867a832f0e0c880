"""Shell command execution.

CONTRACT
- Inputs: argv (list) or shell string, cwd, identity to run as, timeout
- Outputs (required):
  - CmdResult(returncode, stdout_path, stderr_path)
- Invariants:
  - Writes stdout/stderr to log files (one pair per command label)
  - Every external action names the identity it runs as (ROOT or the operator)
  - Respects timeout_s (returncode 124 if exceeded)
- Failure:
  - run_cmd/Shell.run return CmdResult with exit code (do NOT raise on non-zero exit)
  - Shell.require raises FatalAbort on non-zero exit
"""

from __future__ import annotations

import os
import pwd
import shlex
import subprocess
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path

from ..errors import FatalAbort
from .paths import safe_filename


def which(cmd: str, path: str | None = None) -> str | None:
    search = os.environ.get("PATH", "") if path is None else path
    for p in search.split(os.pathsep):
        if not p:
            continue
        candidate = Path(p) / cmd
        if candidate.exists() and os.access(candidate, os.X_OK):
            return str(candidate)
    return None


@dataclass(frozen=True)
class Identity:
    """A user that an external command runs as."""

    name: str
    uid: int
    gid: int
    home: Path

    @property
    def is_root(self) -> bool:
        return self.uid == 0


ROOT = Identity(name="root", uid=0, gid=0, home=Path("/root"))


def resolve_operator(environ: dict[str, str] | None = None) -> Identity:
    """Return the invoking operator: SUDO_USER when elevated, else the effective user."""
    env = os.environ if environ is None else environ
    name = env.get("SUDO_USER") or pwd.getpwuid(os.geteuid()).pw_name
    try:
        entry = pwd.getpwnam(name)
    except KeyError as exc:
        raise FatalAbort(f"Unknown user '{name}'.") from exc
    return Identity(name=entry.pw_name, uid=entry.pw_uid, gid=entry.pw_gid, home=Path(entry.pw_dir))


@dataclass(frozen=True)
class CmdResult:
    cmd: str
    returncode: int
    stdout_path: Path
    stderr_path: Path
    elapsed_s: float
    stdout_bytes: int
    stderr_bytes: int

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def stdout_text(self) -> str:
        if self.stdout_path.exists():
            return self.stdout_path.read_text(encoding="utf-8", errors="replace")
        return ""


def run_cmd(
    cmd: str | list[str],
    cwd: Path | None = None,
    stdout_path: Path | None = None,
    stderr_path: Path | None = None,
    env: dict[str, str] | None = None,
    timeout_s: float | None = None,
    input_text: str | None = None,
) -> CmdResult:
    """Run a command and store stdout/stderr to files.

    CONTRACT:
    - Accepts cmd as str (run with shell=True) or list[str] (run with shell=False).
    - Always writes stdout/stderr files (creates temp if not provided).
    - Never raises for non-zero exit; caller inspects return code.
    - Records duration and output size.
    """
    if stdout_path is None:
        tf_out = tempfile.NamedTemporaryFile(delete=False, prefix="minerkit_stdout_")
        stdout_path = Path(tf_out.name)
        tf_out.close()
    if stderr_path is None:
        tf_err = tempfile.NamedTemporaryFile(delete=False, prefix="minerkit_stderr_")
        stderr_path = Path(tf_err.name)
        tf_err.close()

    stdout_path.parent.mkdir(parents=True, exist_ok=True)
    stderr_path.parent.mkdir(parents=True, exist_ok=True)

    use_shell = isinstance(cmd, str)

    start_t = time.time()
    with (
        stdout_path.open("w", encoding="utf-8") as out_f,
        stderr_path.open("w", encoding="utf-8") as err_f,
    ):
        try:
            p = subprocess.run(
                cmd,
                cwd=str(cwd) if cwd else None,
                shell=use_shell,
                env=(os.environ | env) if env else None,
                input=input_text,
                stdout=out_f,
                stderr=err_f,
                timeout=timeout_s,
                text=True,
            )
            rc = p.returncode
        except subprocess.TimeoutExpired:
            rc = 124
            err_f.write("\nTimeout expired.\n")
        except OSError as e:
            rc = 127 if isinstance(e, FileNotFoundError) else 126
            err_f.write(f"\nException: {e}\n")

    end_t = time.time()

    out_b = stdout_path.stat().st_size if stdout_path.exists() else 0
    err_b = stderr_path.stat().st_size if stderr_path.exists() else 0

    return CmdResult(
        cmd=cmd if isinstance(cmd, str) else shlex.join(cmd),
        returncode=rc,
        stdout_path=stdout_path,
        stderr_path=stderr_path,
        elapsed_s=end_t - start_t,
        stdout_bytes=out_b,
        stderr_bytes=err_b,
    )


@dataclass
class Shell:
    """Runs external commands as a named identity, logging each under log_dir.

    Commands for the current effective user run directly; everything else is
    wrapped in `sudo` (root) or `sudo -u <name> -H` (any other user).
    """

    log_dir: Path
    env: dict[str, str] = field(default_factory=dict)
    euid: int = field(default_factory=os.geteuid)
    _seq: int = 0

    def search_path(self) -> str:
        return self.env.get("PATH", os.environ.get("PATH", ""))

    def as_argv(self, argv: list[str], as_user: Identity) -> list[str]:
        if as_user.uid == self.euid:
            return list(argv)
        if as_user.is_root:
            return ["sudo", *argv]
        return ["sudo", "-u", as_user.name, "-H", *argv]

    def _log_paths(self, label: str, kind: str = "logs") -> tuple[Path, Path]:
        self._seq += 1
        stem = f"{self._seq:03d}_{safe_filename(label, default='cmd')}"
        base = self.log_dir / kind
        return base / f"{stem}.stdout.log", base / f"{stem}.stderr.log"

    def _execute(
        self,
        argv: list[str],
        *,
        cwd: Path | None,
        label: str,
        kind: str,
        input_text: str | None,
        timeout_s: float | None,
    ) -> CmdResult:
        out, err = self._log_paths(label, kind)
        return run_cmd(
            argv,
            cwd=cwd,
            stdout_path=out,
            stderr_path=err,
            env=self.env or None,
            timeout_s=timeout_s,
            input_text=input_text,
        )

    def run(
        self,
        argv: list[str],
        *,
        as_user: Identity = ROOT,
        cwd: Path | None = None,
        label: str | None = None,
        input_text: str | None = None,
        timeout_s: float | None = None,
    ) -> CmdResult:
        full = self.as_argv(argv, as_user)
        return self._execute(
            full,
            cwd=cwd,
            label=label or " ".join(argv[:2]),
            kind="logs",
            input_text=input_text,
            timeout_s=timeout_s,
        )

    def require(self, argv: list[str], message: str, **kwargs) -> CmdResult:
        res = self.run(argv, **kwargs)
        if not res.ok:
            raise FatalAbort(f"{message} (see {res.stderr_path})")
        return res

    def require_script(self, script: str, message: str, *, as_user: Identity = ROOT, label: str | None = None) -> CmdResult:
        """Run a pipeline through `sh -c` as the given identity; abort on failure."""
        return self.require(["sh", "-c", script], message, as_user=as_user, label=label or script[:40])

    def query(self, argv: list[str], *, cwd: Path | None = None, timeout_s: float | None = 30) -> CmdResult:
        """Read-only command run as the current process (never elevated)."""
        return self._execute(
            list(argv),
            cwd=cwd,
            label=" ".join(argv[:2]),
            kind="probes",
            input_text=None,
            timeout_s=timeout_s,
        )

    def probe(self, argv: list[str], *, cwd: Path | None = None, timeout_s: float | None = 30) -> bool:
        """Read-only check: True when the command exits 0."""
        return self.query(argv, cwd=cwd, timeout_s=timeout_s).ok

    def which(self, cmd: str) -> str | None:
        return which(cmd, self.search_path())

    def write_file(self, path: Path, text: str, *, as_user: Identity = ROOT, append: bool = False) -> CmdResult:
        argv = ["tee", "-a", str(path)] if append else ["tee", str(path)]
        return self.require(
            argv,
            f"Failed to write {path}.",
            as_user=as_user,
            label=f"write {path.name}",
            input_text=text,
        )


if __name__ == "__main__":
    import argparse
    import sys

    parser = argparse.ArgumentParser(description="Run a command the way minerkit does")
    parser.add_argument("--cmd", required=True, help="Command to run")
    parser.add_argument("--cwd", default=".", help="Working directory")
    parser.add_argument("--timeout", type=int, default=10, help="Timeout in seconds")
    args = parser.parse_args()

    res = run_cmd(cmd=args.cmd, cwd=Path(args.cwd), timeout_s=args.timeout)
    print(f"Exit code: {res.returncode}")
    print(f"Stdout: {res.stdout_text()}")
    print(f"Stderr: {res.stderr_path.read_text(encoding='utf-8')}")
    sys.exit(res.returncode)

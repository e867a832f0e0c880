import io
import json
import os
from dataclasses import dataclass
from pathlib import Path

import pytest
from rich.console import Console

from minerkit.config import Settings
from minerkit.util.shell import CmdResult, Identity, Shell

# Distinct from both root and the test user so RunAs wrapping is always visible.
FOREIGN_EUID = 424242


@dataclass
class Call:
    kind: str  # "logs" (actions) or "probes" (read-only)
    argv: list[str]
    bare: list[str]
    cwd: Path | None
    input_text: str | None


def _strip_sudo(argv: list[str]) -> list[str]:
    if argv[:2] == ["sudo", "-u"] and len(argv) > 4:
        return argv[4:]
    if argv[:1] == ["sudo"]:
        return argv[1:]
    return argv


def _contains(argv: list[str], seq: tuple[str, ...]) -> bool:
    n = len(seq)
    return any(tuple(argv[i : i + n]) == seq for i in range(len(argv) - n + 1))


class RecordingShell(Shell):
    """Shell that records commands instead of running them."""

    def __init__(self, log_dir: Path, *, env=None, euid=FOREIGN_EUID, probes_ok=False, binaries=None):
        super().__init__(log_dir=log_dir, env=dict(env or {}), euid=euid)
        self.calls: list[Call] = []
        self.responses: list[tuple[tuple[str, ...], int, str]] = []
        self.probes_ok = probes_ok
        self.binaries = dict(binaries or {})

    def respond(self, *seq: str, rc: int = 0, stdout: str = "") -> None:
        self.responses.append((tuple(seq), rc, stdout))

    def which(self, cmd):
        return self.binaries.get(cmd)

    def _execute(self, argv, *, cwd, label, kind, input_text, timeout_s):
        bare = _strip_sudo(list(argv))
        self.calls.append(Call(kind, list(argv), bare, cwd, input_text))
        rc = 0 if kind == "logs" or self.probes_ok else 1
        out = ""
        for seq, r, o in reversed(self.responses):
            if _contains(bare, seq):
                rc, out = r, o
                break
        out_path, err_path = self._log_paths(label, kind)
        out_path.parent.mkdir(parents=True, exist_ok=True)
        out_path.write_text(out, encoding="utf-8")
        err_path.write_text("", encoding="utf-8")
        return CmdResult(
            cmd=" ".join(argv),
            returncode=rc,
            stdout_path=out_path,
            stderr_path=err_path,
            elapsed_s=0.0,
            stdout_bytes=len(out),
            stderr_bytes=0,
        )

    @property
    def actions(self) -> list[list[str]]:
        return [c.bare for c in self.calls if c.kind == "logs"]

    def action_calls(self) -> list[Call]:
        return [c for c in self.calls if c.kind == "logs"]


def read_events(path: Path) -> list[dict]:
    if not path.exists():
        return []
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines() if line.strip()]


class ScriptedPrompt:
    def __init__(self, answers):
        self.answers = list(answers)
        self.asked: list[str] = []

    def __call__(self, text: str) -> str:
        self.asked.append(text)
        if not self.answers:
            raise AssertionError(f"Unexpected prompt: {text}")
        return self.answers.pop(0)


@pytest.fixture
def operator(tmp_path):
    home = tmp_path / "home" / "miner"
    home.mkdir(parents=True)
    return Identity(name="miner", uid=os.getuid(), gid=os.getgid(), home=home)


@pytest.fixture
def settings():
    return Settings()


@pytest.fixture
def shell(tmp_path):
    return RecordingShell(tmp_path / "logs")


@pytest.fixture
def quiet_console():
    return Console(file=io.StringIO(), width=120)


@pytest.fixture
def nvcc_path(tmp_path):
    bin_dir = tmp_path / "cuda-bin"
    bin_dir.mkdir()
    nvcc = bin_dir / "nvcc"
    nvcc.write_text("#!/bin/sh\nexit 0\n")
    nvcc.chmod(0o755)
    return str(bin_dir)


@pytest.fixture
def wallets(operator, settings):
    wallet_dir = operator.home / settings.wallet_dir
    wallet_dir.mkdir(parents=True)
    for name in ("bob", "alice"):
        (wallet_dir / name).mkdir()
    return wallet_dir

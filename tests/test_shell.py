import pwd
from pathlib import Path

import pytest

from minerkit.errors import FatalAbort
from minerkit.util.shell import ROOT, Identity, Shell, resolve_operator, run_cmd, which


def test_run_cmd_success(tmp_path):
    stdout = tmp_path / "out.log"
    stderr = tmp_path / "err.log"

    res = run_cmd("echo 'hello'", tmp_path, stdout, stderr)

    assert res.returncode == 0
    assert res.ok
    assert "hello" in stdout.read_text()
    assert res.stdout_text().strip() == "hello"
    assert res.stdout_bytes > 0
    assert res.elapsed_s >= 0


def test_run_cmd_failure(tmp_path):
    res = run_cmd("false", tmp_path, tmp_path / "out.log", tmp_path / "err.log")

    assert res.returncode != 0
    assert not res.ok


def test_run_cmd_timeout(tmp_path):
    stderr = tmp_path / "err.log"

    res = run_cmd("sleep 2", tmp_path, tmp_path / "out.log", stderr, timeout_s=0.5)

    assert res.returncode == 124
    assert "Timeout expired" in stderr.read_text()


def test_run_cmd_capture_stderr(tmp_path):
    stderr = tmp_path / "err.log"

    res = run_cmd("echo 'error message' >&2", tmp_path, tmp_path / "out.log", stderr)

    assert res.returncode == 0
    assert "error message" in stderr.read_text()
    assert res.stderr_bytes > 0


def test_run_cmd_feeds_stdin(tmp_path):
    res = run_cmd(["cat"], tmp_path, tmp_path / "out.log", tmp_path / "err.log", input_text="piped\n")

    assert res.stdout_text() == "piped\n"


def test_run_cmd_missing_binary(tmp_path):
    stderr = tmp_path / "err.log"

    res = run_cmd(["definitely-not-a-real-binary-xyz"], tmp_path, tmp_path / "out.log", stderr)

    assert res.returncode == 127
    assert "Exception" in stderr.read_text()


def test_which_uses_given_path(tmp_path):
    tool = tmp_path / "tool"
    tool.write_text("#!/bin/sh\n")
    tool.chmod(0o755)

    assert which("tool", str(tmp_path)) == str(tool)
    assert which("tool", "") is None


def test_as_argv_wraps_by_identity(tmp_path):
    user = Identity(name="miner", uid=1000, gid=1000, home=Path("/home/miner"))

    as_root = Shell(log_dir=tmp_path, euid=0)
    assert as_root.as_argv(["apt-get", "update"], ROOT) == ["apt-get", "update"]
    assert as_root.as_argv(["pip", "install"], user) == ["sudo", "-u", "miner", "-H", "pip", "install"]

    as_user = Shell(log_dir=tmp_path, euid=1000)
    assert as_user.as_argv(["apt-get", "update"], ROOT) == ["sudo", "apt-get", "update"]
    assert as_user.as_argv(["pip", "install"], user) == ["pip", "install"]


def test_require_raises_with_log_path(tmp_path):
    sh = Shell(log_dir=tmp_path / "logs", euid=0)
    me = Identity(name="me", uid=0, gid=0, home=tmp_path)

    with pytest.raises(FatalAbort, match="Step exploded") as exc:
        sh.require(["sh", "-c", "echo boom >&2; exit 3"], "Step exploded.", as_user=me)

    assert "stderr.log" in str(exc.value)


def test_shell_logs_each_command_separately(tmp_path):
    sh = Shell(log_dir=tmp_path / "logs", euid=0)
    me = Identity(name="me", uid=0, gid=0, home=tmp_path)

    first = sh.run(["echo", "one"], as_user=me)
    second = sh.run(["echo", "two"], as_user=me)

    assert first.stdout_path != second.stdout_path
    assert first.stdout_path.parent == tmp_path / "logs" / "logs"
    assert second.stdout_text().strip() == "two"


def test_probe_runs_unwrapped(tmp_path):
    sh = Shell(log_dir=tmp_path / "logs", euid=12345)

    assert sh.probe(["true"])
    assert not sh.probe(["false"])
    assert (tmp_path / "logs" / "probes").is_dir()


def test_resolve_operator_prefers_sudo_user(monkeypatch):
    entry = pwd.struct_passwd(("alice", "x", 1001, 1002, "", "/home/alice", "/bin/bash"))

    def getpwnam(name):
        if name != "alice":
            raise KeyError(name)
        return entry

    monkeypatch.setattr(pwd, "getpwnam", getpwnam)

    ident = resolve_operator({"SUDO_USER": "alice"})

    assert ident == Identity(name="alice", uid=1001, gid=1002, home=Path("/home/alice"))


def test_resolve_operator_unknown_user(monkeypatch):
    def missing(name):
        raise KeyError(name)

    monkeypatch.setattr(pwd, "getpwnam", missing)

    with pytest.raises(FatalAbort, match="Unknown user 'ghost'"):
        resolve_operator({"SUDO_USER": "ghost"})

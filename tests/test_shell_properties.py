from unittest.mock import MagicMock, patch

from minerkit.util.shell import ROOT, Shell, run_cmd


def test_run_cmd_list_mode(tmp_path):
    """Test that run_cmd with a list arg uses shell=False."""
    with patch("subprocess.run") as mock_run:
        mock_run.return_value = MagicMock(returncode=0)

        cmd = ["ls", "-l"]
        run_cmd(cmd, tmp_path)

        args, kwargs = mock_run.call_args
        assert args[0] == cmd
        assert kwargs["shell"] is False
        assert kwargs["cwd"] == str(tmp_path)


def test_run_cmd_merges_env_overlay(tmp_path, monkeypatch):
    monkeypatch.setenv("MINERKIT_TEST_VAR", "kept")
    with patch("subprocess.run") as mock_run:
        mock_run.return_value = MagicMock(returncode=0)

        run_cmd(["env"], tmp_path, env={"PATH": "/opt/cuda/bin"})

        _, kwargs = mock_run.call_args
        assert kwargs["env"]["PATH"] == "/opt/cuda/bin"
        assert kwargs["env"]["MINERKIT_TEST_VAR"] == "kept"


def test_write_file_uses_tee_as_identity(tmp_path):
    sh = Shell(log_dir=tmp_path, euid=1000)
    with patch("minerkit.util.shell.run_cmd") as mock_run_cmd:
        mock_run_cmd.return_value = MagicMock(ok=True)

        sh.write_file(tmp_path / "docker.list", "deb x\n", as_user=ROOT, append=True)

        args, kwargs = mock_run_cmd.call_args
        assert args[0] == ["sudo", "tee", "-a", str(tmp_path / "docker.list")]
        assert kwargs["input_text"] == "deb x\n"

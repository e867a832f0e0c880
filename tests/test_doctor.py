from conftest import RecordingShell
from minerkit.doctor import doctor_report

READY = {"nvcc": "/usr/local/cuda-12.8/bin/nvcc", "docker": "/usr/bin/docker", "git": "/usr/bin/git", "sudo": "/usr/bin/sudo"}


def _status(report):
    return {item.name: item.status for item in report.items}


def test_ready_host(tmp_path, operator, settings, wallets):
    sh = RecordingShell(tmp_path / "logs", probes_ok=True, binaries={**READY, "pm2": "/usr/bin/pm2"})

    report = doctor_report(sh, operator, settings, system="Linux")

    assert report.ok
    status = _status(report)
    assert status["nvcc"] == "OK"
    assert status["docker"] == "OK"
    assert status["wallets"] == "OK"
    assert status["pm2"] == "OK"
    assert "sudo" not in status


def test_doctor_only_probes(tmp_path, operator, settings):
    sh = RecordingShell(tmp_path / "logs", binaries=READY)

    doctor_report(sh, operator, settings, system="Linux")

    assert sh.calls
    assert sh.actions == []


def test_missing_cuda_is_critical(tmp_path, operator, settings):
    sh = RecordingShell(tmp_path / "logs", binaries={"sudo": "/usr/bin/sudo"})

    report = doctor_report(sh, operator, settings, system="Linux")

    assert not report.ok
    status = _status(report)
    assert status["nvcc"] == "FAIL"
    assert status["docker"] == "WARN"
    assert status["wallets"] == "WARN"
    assert status["checkout"] == "INFO"


def test_unsupported_platform(tmp_path, operator, settings):
    sh = RecordingShell(tmp_path / "logs", binaries=READY)

    report = doctor_report(sh, operator, settings, system="Darwin")

    assert not report.ok
    assert _status(report)["platform"] == "FAIL"


def test_docker_not_running(tmp_path, operator, settings):
    sh = RecordingShell(tmp_path / "logs", probes_ok=True, binaries=READY)
    sh.respond("docker", "info", rc=1)

    report = doctor_report(sh, operator, settings, system="Linux")

    assert _status(report)["docker"] == "WARN"
    assert report.ok


def test_non_git_checkout_is_flagged(tmp_path, operator, settings):
    (operator.home / settings.app.checkout_dir).mkdir()
    sh = RecordingShell(tmp_path / "logs", binaries=READY)

    report = doctor_report(sh, operator, settings, system="Linux")

    item = next(i for i in report.items if i.name == "checkout")
    assert item.status == "WARN"
    assert "will be recreated" in item.details


def test_sudo_required_when_not_root(tmp_path, operator, settings):
    no_sudo = {k: v for k, v in READY.items() if k != "sudo"}

    as_user = doctor_report(RecordingShell(tmp_path / "a", binaries=no_sudo), operator, settings, system="Linux")
    as_root = doctor_report(RecordingShell(tmp_path / "b", euid=0, binaries=no_sudo), operator, settings, system="Linux")

    assert not as_user.ok
    assert _status(as_user)["sudo"] == "FAIL"
    assert as_root.ok

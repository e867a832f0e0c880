"""Stage B: application provisioning.

CONTRACT
- Inputs: Shell, operator Identity, Settings, ConfigCollector
- Outputs (required):
  - Operator virtualenv, application checkout with dependencies installed
  - <checkout>/pm2_miner_config.json
  - The miner running under pm2
- Invariants:
  - Requires nvcc (on PATH or under the CUDA home)
  - Checkout is owned by the operator before every per-user action
  - A directory at the checkout path without .git is removed and cloned fresh
- Failure:
  - Raises FatalAbort on the first failed step, bad wallet input or pm2 failure
"""

from __future__ import annotations

import hashlib
import os
from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from ..collector import ConfigCollector
from ..config import HostPaths, Settings
from ..errors import FatalAbort
from ..models import MinerConfig
from ..ownership import foreign_entries, normalize_ownership
from ..packages import Apt
from ..renderer import write_document
from ..runner import ProvisioningStep, StepReport, require_platform, run_steps
from ..supervisor import Pm2Supervisor
from ..util.events import EventLog
from ..util.shell import ROOT, Identity, Shell, which

PYTHON_PACKAGES = ("python3", "python3-pip", "python3-venv")
OPENCL_PACKAGES = ("ocl-icd-libopencl1", "pocl-opencl-icd")
DEPS_STAMP = ".minerkit-requirements.sha256"


def find_cuda_path(shell: Shell, settings: Settings) -> str:
    """PATH under which nvcc resolves, prepending the CUDA bin dir if needed."""
    path = shell.search_path()
    if which("nvcc", path):
        return path
    path = os.pathsep.join([str(settings.cuda.bin_dir), path]) if path else str(settings.cuda.bin_dir)
    if which("nvcc", path) is None:
        raise FatalAbort(
            "CUDA does not appear to be installed. Please run 'minerkit platform' first and reboot."
        )
    return path


def _prepend(entry: str, value: str) -> str:
    parts = [p for p in value.split(os.pathsep) if p]
    if entry in parts:
        return value
    return os.pathsep.join([entry, *parts])


def toolkit_env(settings: Settings, path: str, ld_library_path: str = "") -> dict[str, str]:
    return {
        "PATH": _prepend(str(settings.cuda.bin_dir), path),
        "LD_LIBRARY_PATH": _prepend(str(settings.cuda.lib_dir), ld_library_path),
    }


@dataclass(frozen=True)
class ApplicationResult:
    report: StepReport
    config: MinerConfig
    document: Path


@dataclass
class ApplicationProvisioner:
    shell: Shell
    operator: Identity
    settings: Settings

    def __post_init__(self) -> None:
        self.apt = Apt(self.shell)
        self.paths = HostPaths.for_operator(self.operator, self.settings)

    def _git(self, *args: str) -> list[str]:
        checkout = str(self.paths.checkout)
        return ["git", "-c", f"safe.directory={checkout}", "-C", checkout, *args]

    # -- probes ---------------------------------------------------------

    def checkout_valid(self) -> bool:
        return (self.paths.checkout / ".git").is_dir()

    def checkout_current(self) -> bool:
        """True when the upstream tip is already contained in HEAD (read-only)."""
        upstream = self.shell.query(self._git("rev-parse", "--abbrev-ref", "--symbolic-full-name", "@{u}"))
        if not upstream.ok or "/" not in upstream.stdout_text():
            return False
        remote, branch = upstream.stdout_text().strip().split("/", 1)
        remote_head = self.shell.query(self._git("ls-remote", remote, f"refs/heads/{branch}"))
        if not remote_head.ok or not remote_head.stdout_text().strip():
            return False
        tip = remote_head.stdout_text().split()[0]
        return self.shell.probe(self._git("merge-base", "--is-ancestor", tip, "HEAD"))

    def requirements_digest(self) -> str:
        h = hashlib.sha256()
        head = self.shell.query(self._git("rev-parse", "HEAD"))
        h.update(head.stdout_text().strip().encode())
        for name in (*self.settings.app.requirements, *self.settings.app.requirements_no_deps):
            manifest = self.paths.checkout / name
            h.update(name.encode())
            h.update(manifest.read_bytes() if manifest.is_file() else b"<missing>")
        return h.hexdigest()

    def dependencies_current(self) -> bool:
        stamp = self.paths.venv / DEPS_STAMP
        if not stamp.is_file():
            return False
        return stamp.read_text(encoding="utf-8").strip() == self.requirements_digest()

    # -- actions --------------------------------------------------------

    def install_python(self) -> None:
        self.apt.update()
        self.apt.install(PYTHON_PACKAGES, "Failed to install Python or venv.")

    def create_venv(self) -> None:
        venv = self.paths.venv
        logger.info(f"Creating virtual environment in {venv} ...")
        self.shell.require(
            ["python3", "-m", "venv", str(venv)],
            "Failed to create virtual environment.",
            as_user=self.operator,
        )
        self.shell.require(
            [str(self.paths.venv_pip), "install", "--upgrade", "pip"],
            "Failed to upgrade pip in virtual environment.",
            as_user=self.operator,
        )

    def clone_checkout(self) -> None:
        checkout = self.paths.checkout
        if checkout.exists() or checkout.is_symlink():
            logger.warning(f"{checkout} exists but is not a git checkout; recreating it.")
            self.shell.require(["rm", "-rf", str(checkout)], f"Failed to remove {checkout}.", as_user=ROOT)
        self.shell.require(
            ["git", "clone", self.settings.app.repo_url, str(checkout)],
            "Git clone failed.",
            as_user=ROOT,
            label="git clone",
        )
        normalize_ownership(self.shell, checkout, self.operator)

    def take_ownership(self) -> None:
        normalize_ownership(self.shell, self.paths.checkout, self.operator)

    def update_checkout(self) -> None:
        self.shell.require(
            ["git", "-C", str(self.paths.checkout), "pull", "--ff-only"],
            "Git pull failed.",
            as_user=self.operator,
            label="git pull",
        )

    def install_dependencies(self) -> None:
        sh, pip, checkout = self.shell, str(self.paths.venv_pip), self.paths.checkout
        for manifest in self.settings.app.requirements:
            sh.require(
                [pip, "install", "-r", manifest],
                f"Failed to install {manifest}.",
                as_user=self.operator,
                cwd=checkout,
            )
        for manifest in self.settings.app.requirements_no_deps:
            sh.require(
                [pip, "install", "--no-deps", "-r", manifest],
                f"Failed to install {manifest}.",
                as_user=self.operator,
                cwd=checkout,
            )
        sh.require(
            [pip, "install", "-e", "."],
            f"Editable install of {checkout.name} failed.",
            as_user=self.operator,
            cwd=checkout,
        )
        sh.write_file(self.paths.venv / DEPS_STAMP, self.requirements_digest() + "\n", as_user=self.operator)

    def install_opencl(self) -> None:
        self.apt.install(OPENCL_PACKAGES, "Failed to install OpenCL libraries.")

    def install_pm2(self) -> None:
        if self.shell.which("npm") is None:
            self.apt.update()
            self.apt.install(("npm",), "Failed to install npm.")
        self.shell.require(["npm", "install", "-g", "pm2"], "Failed to install PM2.", as_user=ROOT)

    def steps(self) -> list[ProvisioningStep]:
        return [
            ProvisioningStep(
                "Installing Python3, pip, and virtual environment",
                lambda: self.apt.installed(PYTHON_PACKAGES),
                self.install_python,
                "Failed to install Python or venv.",
            ),
            ProvisioningStep(
                "Creating virtual environment",
                self.paths.venv_python.exists,
                self.create_venv,
                "Failed to create virtual environment.",
            ),
            ProvisioningStep(
                f"Cloning {self.paths.checkout.name} repository",
                self.checkout_valid,
                self.clone_checkout,
                "Git clone failed.",
            ),
            ProvisioningStep(
                f"Setting ownership of {self.paths.checkout.name}",
                lambda: not foreign_entries(self.paths.checkout, self.operator),
                self.take_ownership,
                "Failed to set checkout ownership.",
            ),
            ProvisioningStep(
                f"Updating {self.paths.checkout.name} repository",
                self.checkout_current,
                self.update_checkout,
                "Git pull failed.",
            ),
            ProvisioningStep(
                f"Installing {self.paths.checkout.name} dependencies",
                self.dependencies_current,
                self.install_dependencies,
                "Failed to install dependencies.",
            ),
            ProvisioningStep(
                "Installing extra OpenCL libraries",
                lambda: self.apt.installed(OPENCL_PACKAGES),
                self.install_opencl,
                "Failed to install OpenCL libraries.",
            ),
            ProvisioningStep(
                "Installing npm and PM2",
                lambda: self.shell.which("pm2") is not None,
                self.install_pm2,
                "Failed to install PM2.",
            ),
        ]


def provision_application(
    shell: Shell,
    operator: Identity,
    settings: Settings,
    collector: ConfigCollector,
    *,
    events: EventLog | None = None,
    system: str | None = None,
) -> ApplicationResult:
    require_platform(system)
    cuda_path = find_cuda_path(shell, settings)
    extra_env = toolkit_env(settings, cuda_path, os.environ.get("LD_LIBRARY_PATH", ""))

    provisioner = ApplicationProvisioner(shell=shell, operator=operator, settings=settings)
    report = run_steps(provisioner.steps(), events=events)

    config = collector.collect(provisioner.paths, extra_env)
    if events:
        events.emit(event="config", netuid=config.netuid, wallet_cold=config.wallet_cold, wallet_hot=config.wallet_hot)

    logger.info("Creating PM2 configuration file for the miner process...")
    document = write_document(config, settings.app, provisioner.paths.document)
    normalize_ownership(shell, provisioner.paths.checkout, operator)

    Pm2Supervisor(shell=shell, operator=operator).start(document, provisioner.paths.checkout)
    if events:
        events.emit(event="launched", process=settings.app.process_name)
    return ApplicationResult(report=report, config=config, document=document)

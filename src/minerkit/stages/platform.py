"""Stage A: platform provisioning.

CONTRACT
- Inputs: Shell, operator Identity, Settings, os-release codename
- Outputs (required):
  - Docker engine, operator in `docker` group, NVIDIA container toolkit,
    CUDA toolkit + drivers, CUDA lines in the operator's ~/.bashrc
  - A reboot when anything was installed
- Invariants:
  - Linux only
  - Each step is skipped when its probe already holds
  - A run where every probe holds changes nothing and does not reboot
- Failure:
  - Raises FatalAbort on the first failed step or an unsupported codename
"""

from __future__ import annotations

import platform
import shlex
import tempfile
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from ..config import HostPaths, Settings
from ..errors import FatalAbort
from ..packages import Apt
from ..runner import ProvisioningStep, StepReport, require_platform, run_steps
from ..util.events import EventLog
from ..util.shell import ROOT, Identity, Shell

PREREQUISITES = ("apt-utils", "curl", "git", "cmake", "build-essential", "ca-certificates")
DOCKER_PACKAGES = (
    "docker-ce",
    "docker-ce-cli",
    "containerd.io",
    "docker-buildx-plugin",
    "docker-compose-plugin",
)
NVIDIA_DOCKER_PACKAGES = ("nvidia-container-toolkit", "nvidia-docker2")

KEYRINGS_DIR = Path("/etc/apt/keyrings")
DOCKER_KEY = KEYRINGS_DIR / "docker.asc"
DOCKER_LIST = Path("/etc/apt/sources.list.d/docker.list")
DOCKER_GPG_URL = "https://download.docker.com/linux/ubuntu/gpg"
NVIDIA_KEY = Path("/etc/apt/trusted.gpg.d/nvidia-docker.gpg")
NVIDIA_LIST = Path("/etc/apt/sources.list.d/nvidia-docker.list")
NVIDIA_DOCKER_URL = "https://nvidia.github.io/nvidia-docker"
CUDA_PIN = Path("/etc/apt/preferences.d/cuda-repository-pin-600")
CUDA_DOWNLOAD_URL = "https://developer.download.nvidia.com/compute/cuda"
CUDA_MANUAL_URL = "https://developer.nvidia.com/cuda-downloads"

BASHRC_MARKER = "# CUDA configuration added by minerkit"


def read_codename(os_release: dict[str, str] | None = None) -> str:
    if os_release is None:
        try:
            os_release = platform.freedesktop_os_release()
        except OSError as e:
            raise FatalAbort("Cannot determine OS version.") from e
    codename = os_release.get("VERSION_CODENAME") or os_release.get("UBUNTU_CODENAME")
    if not codename:
        raise FatalAbort("Cannot determine OS version.")
    return codename


def nvidia_distribution(codename: str) -> str:
    # NVIDIA publishes jammy under its version number.
    return "ubuntu22.04" if codename == "jammy" else codename


def bashrc_block(settings: Settings) -> str:
    cuda = settings.cuda
    return "\n".join(
        [
            "",
            BASHRC_MARKER,
            f"export PATH={cuda.bin_dir}:$PATH",
            f"export LD_LIBRARY_PATH={cuda.lib_dir}:$LD_LIBRARY_PATH",
            "",
        ]
    )


@dataclass
class PlatformProvisioner:
    shell: Shell
    operator: Identity
    settings: Settings
    codename: str

    def __post_init__(self) -> None:
        self.apt = Apt(self.shell)
        self.paths = HostPaths.for_operator(self.operator, self.settings)

    # -- probes ---------------------------------------------------------

    def _file_present(self, path: Path) -> bool:
        return self.shell.probe(["test", "-s", str(path)])

    def _operator_in_docker_group(self) -> bool:
        user = shlex.quote(self.operator.name)
        return self.shell.probe(["sh", "-c", f"id -nG {user} | tr ' ' '\\n' | grep -qx docker"])

    def _cuda_present(self) -> bool:
        if self.shell.which("nvcc"):
            return True
        return self.shell.probe(["test", "-x", str(self.settings.cuda.bin_dir / "nvcc")])

    def _bashrc_configured(self) -> bool:
        # Blocks written by older installers carry a different marker but the same PATH line.
        path_line = f"export PATH={self.settings.cuda.bin_dir}:"
        return self.shell.probe(["grep", "-qF", "-e", BASHRC_MARKER, "-e", path_line, str(self.paths.bashrc)])

    # -- actions --------------------------------------------------------

    def install_prerequisites(self) -> None:
        self.apt.update()
        self.apt.install(
            PREREQUISITES,
            "Failed to install prerequisites.",
            options=("--no-install-recommends", "--no-install-suggests"),
        )

    def add_docker_repository(self) -> None:
        sh = self.shell
        sh.require(["install", "-m", "0755", "-d", str(KEYRINGS_DIR)], "Failed to create apt keyrings directory.")
        sh.require(["curl", "-fsSL", DOCKER_GPG_URL, "-o", str(DOCKER_KEY)], "Failed to download Docker GPG key.")
        sh.require(["chmod", "a+r", str(DOCKER_KEY)], "Failed to make Docker GPG key readable.")
        arch = sh.query(["dpkg", "--print-architecture"])
        if not arch.ok:
            raise FatalAbort("Cannot determine package architecture.")
        line = (
            f"deb [arch={arch.stdout_text().strip()} signed-by={DOCKER_KEY}] "
            f"https://download.docker.com/linux/ubuntu {self.codename} stable\n"
        )
        sh.write_file(DOCKER_LIST, line)
        self.apt.update("Failed to update package lists after adding Docker repository.")

    def install_docker(self) -> None:
        self.apt.install(DOCKER_PACKAGES, "Docker installation failed.")

    def add_operator_to_docker_group(self) -> None:
        logger.info(f"Adding user {self.operator.name} to docker group...")
        self.shell.require(
            ["usermod", "-aG", "docker", self.operator.name],
            "Failed to add user to docker group.",
        )

    def install_at(self) -> None:
        self.apt.install(("at",), "Failed to install 'at'.")

    def add_nvidia_docker_repository(self) -> None:
        self.shell.require_script(
            f"curl -fsSL {NVIDIA_DOCKER_URL}/gpgkey | gpg --dearmor --yes -o {NVIDIA_KEY}",
            "Failed to add NVIDIA Docker GPG key.",
            label="nvidia gpgkey",
        )
        dist = nvidia_distribution(self.codename)
        self.shell.require(
            ["curl", "-fsSL", f"{NVIDIA_DOCKER_URL}/{dist}/nvidia-docker.list", "-o", str(NVIDIA_LIST)],
            "Failed to add NVIDIA Docker repository.",
        )
        self.apt.update("Failed to update package lists after adding NVIDIA Docker repository.")

    def install_nvidia_docker(self) -> None:
        self.apt.install(NVIDIA_DOCKER_PACKAGES, "Failed to install NVIDIA Docker packages.")

    def install_cuda(self) -> None:
        cuda = self.settings.cuda
        slug = cuda.repos.get(self.codename)
        if slug is None:
            raise FatalAbort(
                f"Automatic CUDA installation is not supported for Ubuntu {self.codename}. "
                f"Please install CUDA manually from {CUDA_MANUAL_URL}."
            )
        logger.info(f"Installing CUDA Toolkit {cuda.version} for {slug}...")
        sh = self.shell
        self.apt.update()
        self.apt.install(
            ("build-essential", "dkms", f"linux-headers-{platform.release()}"),
            "Failed to install build essentials for CUDA.",
        )
        sh.require(
            ["curl", "-fsSL", f"{CUDA_DOWNLOAD_URL}/repos/{slug}/x86_64/cuda-{slug}.pin", "-o", str(CUDA_PIN)],
            "Failed to download CUDA pin.",
        )
        local_repo = f"cuda-repo-{slug}-{cuda.package_suffix}-local"
        deb_name = f"{local_repo}_{cuda.version}.0-{cuda.driver_build}_amd64.deb"
        deb_path = Path(tempfile.gettempdir()) / "cuda-repo.deb"
        sh.require(
            ["curl", "-fsSL", f"{CUDA_DOWNLOAD_URL}/{cuda.version}.0/local_installers/{deb_name}", "-o", str(deb_path)],
            "Failed to download CUDA repository package.",
        )
        sh.require(["dpkg", "-i", str(deb_path)], "dpkg failed for CUDA repository package.")
        sh.require_script(
            f"cp /var/{local_repo}/cuda-*-keyring.gpg /usr/share/keyrings/",
            "Failed to copy CUDA keyring.",
            label="cuda keyring",
        )
        self.apt.update()
        self.apt.install(
            (f"cuda-toolkit-{cuda.package_suffix}", "cuda-drivers"),
            "Failed to install CUDA Toolkit or drivers.",
        )

    def configure_cuda_environment(self) -> None:
        self.shell.write_file(self.paths.bashrc, bashrc_block(self.settings), as_user=self.operator, append=True)

    def steps(self) -> list[ProvisioningStep]:
        return [
            ProvisioningStep(
                "Installing prerequisites",
                lambda: self.apt.installed(PREREQUISITES),
                self.install_prerequisites,
                "Failed to install prerequisites.",
            ),
            ProvisioningStep(
                "Setting up Docker repository",
                lambda: self._file_present(DOCKER_LIST),
                self.add_docker_repository,
                "Failed to set up Docker repository.",
            ),
            ProvisioningStep(
                "Installing Docker packages",
                lambda: self.shell.which("docker") is not None,
                self.install_docker,
                "Docker installation failed.",
            ),
            ProvisioningStep(
                "Adding operator to docker group",
                self._operator_in_docker_group,
                self.add_operator_to_docker_group,
                "Failed to add user to docker group.",
            ),
            ProvisioningStep(
                "Installing 'at' package",
                lambda: self.shell.which("at") is not None,
                self.install_at,
                "Failed to install 'at'.",
            ),
            ProvisioningStep(
                "Setting up NVIDIA Docker repository",
                lambda: self._file_present(NVIDIA_LIST),
                self.add_nvidia_docker_repository,
                "Failed to add NVIDIA Docker repository.",
            ),
            ProvisioningStep(
                "Installing NVIDIA Docker support",
                lambda: self.apt.installed(NVIDIA_DOCKER_PACKAGES),
                self.install_nvidia_docker,
                "Failed to install NVIDIA Docker packages.",
            ),
            ProvisioningStep(
                "Installing CUDA Toolkit and NVIDIA drivers",
                self._cuda_present,
                self.install_cuda,
                "Failed to install CUDA Toolkit or drivers.",
            ),
            ProvisioningStep(
                "Configuring CUDA environment variables in ~/.bashrc",
                self._bashrc_configured,
                self.configure_cuda_environment,
                "Failed to configure CUDA environment variables.",
            ),
        ]


def provision_platform(
    shell: Shell,
    operator: Identity,
    settings: Settings,
    *,
    confirm: Callable[[], None],
    events: EventLog | None = None,
    system: str | None = None,
    os_release: dict[str, str] | None = None,
) -> StepReport:
    require_platform(system)
    codename = read_codename(os_release)

    logger.warning(
        "This will install Docker, NVIDIA drivers, NVIDIA Docker support, and the CUDA Toolkit, "
        "then reboot your machine."
    )
    confirm()

    provisioner = PlatformProvisioner(shell=shell, operator=operator, settings=settings, codename=codename)
    report = run_steps(provisioner.steps(), events=events)

    if not report.changed:
        logger.info("Docker, NVIDIA components, and CUDA are already installed; no reboot needed.")
        return report

    logger.info("Installation of Docker, NVIDIA components, and CUDA is complete.")
    logger.info("A reboot is required to finalize installations. Rebooting now...")
    if events:
        events.emit(event="reboot")
    shell.require(["shutdown", "-r", "now"], "Failed to reboot.", as_user=ROOT, label="reboot")
    return report

"""minerkit package.

Two-stage provisioning for a GPU Compute Subnet miner host:

    minerkit platform   # Docker + NVIDIA container toolkit + CUDA, then reboot
    minerkit miner      # venv + checkout + deps + pm2 miner

Programmatic use mirrors the CLI:

    from minerkit import Shell, resolve_operator, load_settings, provision_platform
"""

__version__ = "0.1.0"

from .config import HostPaths, Settings, load_settings
from .errors import FatalAbort
from .models import MinerConfig, SupervisorProcessSpec, WalletSelection
from .renderer import render_document, write_document
from .runner import ProvisioningStep, run_steps
from .stages.application import provision_application
from .stages.platform import provision_platform
from .util.shell import Identity, Shell, resolve_operator

__all__ = [
    "FatalAbort",
    "HostPaths",
    "Identity",
    "MinerConfig",
    "ProvisioningStep",
    "Settings",
    "Shell",
    "SupervisorProcessSpec",
    "WalletSelection",
    "load_settings",
    "provision_application",
    "provision_platform",
    "render_document",
    "resolve_operator",
    "run_steps",
    "write_document",
]

"""Settings models.

CONTRACT
- Inputs: optional YAML file (path from MINERKIT_CONFIG) or dictionary data
- Outputs (required):
  - Validated Settings (CudaSettings, AppSettings) and per-operator HostPaths
- Invariants:
  - Defaults reproduce the stock installer (CUDA 12.8, Compute-Subnet, pm2 process subnet27_miner)
  - Settings are frozen once loaded
- Failure:
  - Raises FatalAbort on unreadable files or schema violations
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .errors import FatalAbort
from .util.shell import Identity

CONFIG_ENV_VAR = "MINERKIT_CONFIG"

DEFAULT_MINER_FLAGS = (
    "--logging.debug",
    "--miner.blacklist.force_validator_permit",
    "--auto_update",
    "yes",
)


@dataclass(frozen=True)
class CudaSettings:
    version: str = "12.8"
    driver_build: str = "570.86.10-1"
    # os-release VERSION_CODENAME -> NVIDIA repository slug
    repos: dict[str, str] = field(
        default_factory=lambda: {
            "jammy": "ubuntu2204",
            "lunar": "ubuntu2404",
            "noble": "ubuntu2404",
        }
    )

    @property
    def home(self) -> Path:
        return Path(f"/usr/local/cuda-{self.version}")

    @property
    def bin_dir(self) -> Path:
        return self.home / "bin"

    @property
    def lib_dir(self) -> Path:
        return self.home / "lib64"

    @property
    def package_suffix(self) -> str:
        return self.version.replace(".", "-")


@dataclass(frozen=True)
class AppSettings:
    repo_url: str = "https://github.com/neuralinternet/Compute-Subnet.git"
    checkout_dir: str = "Compute-Subnet"
    venv_dir: str = "venv"
    process_name: str = "subnet27_miner"
    script: str = "./neurons/miner.py"
    document_name: str = "pm2_miner_config.json"
    requirements: tuple[str, ...] = ("requirements.txt",)
    requirements_no_deps: tuple[str, ...] = ("requirements-compute.txt",)
    extra_args: tuple[str, ...] = DEFAULT_MINER_FLAGS


@dataclass(frozen=True)
class Settings:
    cuda: CudaSettings = field(default_factory=CudaSettings)
    app: AppSettings = field(default_factory=AppSettings)
    wallet_dir: str = ".bittensor/wallets"
    default_axon_port: str = "8091"
    log_root: Path | None = None


@dataclass(frozen=True)
class HostPaths:
    """Every path the stages touch for one operator."""

    home: Path
    bashrc: Path
    wallet_dir: Path
    checkout: Path
    venv: Path
    document: Path

    @property
    def venv_python(self) -> Path:
        return self.venv / "bin" / "python"

    @property
    def venv_pip(self) -> Path:
        return self.venv / "bin" / "pip"

    @classmethod
    def for_operator(cls, operator: Identity, settings: Settings) -> HostPaths:
        home = operator.home
        checkout = home / settings.app.checkout_dir
        return cls(
            home=home,
            bashrc=home / ".bashrc",
            wallet_dir=home / settings.wallet_dir,
            checkout=checkout,
            venv=home / settings.app.venv_dir,
            document=checkout / settings.app.document_name,
        )


SETTINGS_SCHEMA = {
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "cuda": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "version": {"type": "string", "pattern": r"^\d+\.\d+$"},
                "driver_build": {"type": "string"},
                "repos": {"type": "object", "additionalProperties": {"type": "string"}},
            },
        },
        "app": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "repo_url": {"type": "string", "minLength": 1},
                "checkout_dir": {"type": "string", "minLength": 1},
                "venv_dir": {"type": "string", "minLength": 1},
                "process_name": {"type": "string", "pattern": "^[A-Za-z0-9][A-Za-z0-9_.-]*$"},
                "script": {"type": "string", "minLength": 1},
                "document_name": {"type": "string", "minLength": 1},
                "requirements": {"type": "array", "items": {"type": "string"}},
                "requirements_no_deps": {"type": "array", "items": {"type": "string"}},
                "extra_args": {"type": "array", "items": {"type": "string"}},
            },
        },
        "wallet_dir": {"type": "string", "minLength": 1},
        "default_axon_port": {"type": ["string", "integer"]},
        "log_root": {"type": "string"},
    },
}


def settings_from_dict(data: dict[str, Any]) -> Settings:
    import jsonschema  # lazy import

    try:
        jsonschema.validate(instance=data, schema=SETTINGS_SCHEMA)
    except jsonschema.ValidationError as e:
        raise FatalAbort(f"Invalid settings file: {e.message}") from e

    cuda_raw = data.get("cuda", {}) or {}
    app_raw = data.get("app", {}) or {}
    base_cuda = CudaSettings()
    base_app = AppSettings()

    cuda = CudaSettings(
        version=str(cuda_raw.get("version", base_cuda.version)),
        driver_build=str(cuda_raw.get("driver_build", base_cuda.driver_build)),
        repos=dict(cuda_raw.get("repos", base_cuda.repos)),
    )
    app = AppSettings(
        repo_url=str(app_raw.get("repo_url", base_app.repo_url)),
        checkout_dir=str(app_raw.get("checkout_dir", base_app.checkout_dir)),
        venv_dir=str(app_raw.get("venv_dir", base_app.venv_dir)),
        process_name=str(app_raw.get("process_name", base_app.process_name)),
        script=str(app_raw.get("script", base_app.script)),
        document_name=str(app_raw.get("document_name", base_app.document_name)),
        requirements=tuple(app_raw.get("requirements", base_app.requirements)),
        requirements_no_deps=tuple(app_raw.get("requirements_no_deps", base_app.requirements_no_deps)),
        extra_args=tuple(app_raw.get("extra_args", base_app.extra_args)),
    )
    log_root = data.get("log_root")
    return Settings(
        cuda=cuda,
        app=app,
        wallet_dir=str(data.get("wallet_dir", ".bittensor/wallets")),
        default_axon_port=str(data.get("default_axon_port", "8091")),
        log_root=Path(log_root) if log_root else None,
    )


def load_settings(path: Path | None = None) -> Settings:
    """Load settings from `path`, or from $MINERKIT_CONFIG, or fall back to defaults."""
    if path is None:
        env_path = os.environ.get(CONFIG_ENV_VAR)
        if not env_path:
            return Settings()
        path = Path(env_path)
    if not path.exists():
        raise FatalAbort(f"Settings file not found: {path}")
    try:
        text = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise FatalAbort(f"Cannot read settings file {path}: not UTF-8 text.") from e
    except OSError as e:
        raise FatalAbort(f"Cannot read settings file {path}: {e.strerror or e}") from e
    try:
        data = yaml.safe_load(text) or {}
    except yaml.YAMLError as e:
        raise FatalAbort(f"Settings file {path} is not valid YAML.") from e
    if not isinstance(data, dict):
        raise FatalAbort(f"Invalid settings file: {path} must contain a mapping.")
    return settings_from_dict(data)

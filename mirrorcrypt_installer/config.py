from __future__ import annotations

import dataclasses
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml

from .errors import ConfigurationError
from .lib.env import PATHS

_USERNAME_RE = re.compile(r"^[a-z_][a-z0-9_-]*$")
_HOSTNAME_RE = re.compile(r"^[A-Za-z0-9]([A-Za-z0-9-]{0,61}[A-Za-z0-9])?$")


@dataclass(frozen=True)
class InstallerConfig:
    """Run-wide settings. Built once, then only read."""

    devices: Tuple[str, ...] = ()
    hostname: str = "black"
    username: str = "user"
    swap_size_gb: int = 16
    distribution: str = "noble"
    archive_url: str = "http://archive.ubuntu.com/ubuntu/"
    install_nvidia_drivers: bool = True
    nvidia_driver_package: str = "ubuntu-drivers-common"
    mount_point: str = PATHS.mount_point
    mapper_name: str = "cryptroot"
    raid_device: str = "/dev/md0"
    bootloader_id: str = "debian"
    pbkdf_iter_time_ms: int = 4000
    pbkdf_memory_kib: int = 1024
    pbkdf_parallel: int = 4
    luks_password: Optional[str] = field(default=None, repr=False)
    user_password: Optional[str] = field(default=None, repr=False)

    @property
    def swap_enabled(self) -> bool:
        return self.swap_size_gb > 0

    def with_secrets(self, *, luks_password: str, user_password: str) -> "InstallerConfig":
        return dataclasses.replace(self, luks_password=luks_password, user_password=user_password)


_FIELDS = {f.name for f in dataclasses.fields(InstallerConfig)}
_STRING_FIELDS = (
    "hostname",
    "username",
    "distribution",
    "archive_url",
    "nvidia_driver_package",
    "mount_point",
    "mapper_name",
    "raid_device",
    "bootloader_id",
)


def _coerce(raw: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(raw)
    if "devices" in out:
        devices = out["devices"]
        if isinstance(devices, str):
            devices = [devices]
        if not isinstance(devices, (list, tuple)):
            raise ConfigurationError("devices must be a list of block device paths")
        out["devices"] = tuple(str(d) for d in devices)
    for key in _STRING_FIELDS:
        if key in out and not isinstance(out[key], str):
            raise ConfigurationError(f"{key} must be a string, got {out[key]!r}")
    for key in ("swap_size_gb", "pbkdf_iter_time_ms", "pbkdf_memory_kib", "pbkdf_parallel"):
        if key in out:
            try:
                out[key] = int(out[key])
            except (TypeError, ValueError) as e:
                raise ConfigurationError(f"{key} must be an integer, got {out[key]!r}") from e
    return out


def validate(cfg: InstallerConfig) -> InstallerConfig:
    if cfg.swap_size_gb < 0:
        raise ConfigurationError(f"swap_size_gb must be >= 0, got {cfg.swap_size_gb}")
    if not _HOSTNAME_RE.match(cfg.hostname or ""):
        raise ConfigurationError(f"Invalid hostname: {cfg.hostname!r}")
    if not _USERNAME_RE.match(cfg.username or ""):
        raise ConfigurationError(f"Invalid username: {cfg.username!r}")
    if len(set(cfg.devices)) != len(cfg.devices):
        raise ConfigurationError(f"Duplicate target devices: {', '.join(cfg.devices)}")
    for key in ("pbkdf_iter_time_ms", "pbkdf_memory_kib", "pbkdf_parallel"):
        if getattr(cfg, key) <= 0:
            raise ConfigurationError(f"{key} must be positive")
    return cfg


def build_config(raw: Mapping[str, Any], overrides: Optional[Mapping[str, Any]] = None) -> InstallerConfig:
    merged: Dict[str, Any] = dict(raw)
    for k, v in (overrides or {}).items():
        if v is not None:
            merged[k] = v

    unknown = sorted(set(merged) - _FIELDS)
    if unknown:
        raise ConfigurationError(f"Unknown configuration keys: {', '.join(unknown)}")

    return validate(InstallerConfig(**_coerce(merged)))


def load_config(path: Optional[str], overrides: Optional[Mapping[str, Any]] = None) -> InstallerConfig:
    """Load YAML config (optional) and apply command-line overrides on top."""

    raw: Dict[str, Any] = {}
    if path:
        p = Path(path)
        if not p.exists():
            raise ConfigurationError(f"Config file not found: {path}")
        try:
            data = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Config file {path} is not valid YAML: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError("Config file must contain a mapping/object")
        raw = data

    return build_config(raw, overrides)

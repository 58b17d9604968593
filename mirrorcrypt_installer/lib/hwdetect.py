from __future__ import annotations

import logging
import platform
from typing import Callable, Optional, Sequence

from .command import run_cmd

logger = logging.getLogger(__name__)

SUPPORTED_ARCHES = ("amd64", "arm64")
DEFAULT_ARCH = "amd64"

GRUB_TARGET_BY_ARCH = {
    "amd64": "x86_64-efi",
    "arm64": "arm64-efi",
}


def normalize_arch(machine: str) -> str:
    m = machine.strip().lower()
    return {
        "x86_64": "amd64",
        "amd64": "amd64",
        "aarch64": "arm64",
        "arm64": "arm64",
    }.get(m, m)


def _dpkg_arch() -> Optional[str]:
    r = run_cmd(["dpkg", "--print-architecture"], check=False)
    out = (r.stdout or "").strip()
    return out if r.returncode == 0 and out else None


def _machine_arch() -> Optional[str]:
    return platform.machine() or None


ARCH_PROBES: Sequence[Callable[[], Optional[str]]] = (_dpkg_arch, _machine_arch)


def detect_arch(probes: Sequence[Callable[[], Optional[str]]] = ARCH_PROBES) -> str:
    """Detect the target architecture.

    The first probe that answers wins. An unknown or missing answer falls back
    to ``amd64`` with a warning rather than failing the run.
    """

    raw = None
    for probe in probes:
        raw = probe()
        if raw:
            break

    arch = normalize_arch(raw or "")
    if arch not in SUPPORTED_ARCHES:
        logger.warning("Unknown architecture %r, defaulting to %s", raw, DEFAULT_ARCH)
        arch = DEFAULT_ARCH

    logger.info("Detected architecture: %s (GRUB target: %s)", arch, GRUB_TARGET_BY_ARCH[arch])
    return arch


def grub_target(arch: str) -> str:
    return GRUB_TARGET_BY_ARCH.get(arch, GRUB_TARGET_BY_ARCH[DEFAULT_ARCH])

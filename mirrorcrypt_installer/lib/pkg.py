from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Sequence

from .command import run_cmd

logger = logging.getLogger(__name__)

ESSENTIAL_DIRS = ("etc", "usr", "var")


def debootstrap_rootfs(
    *,
    target_root: str,
    suite: str,
    mirror: str,
    arch: str,
) -> None:
    """Bootstrap collaborator: populate ``target_root`` or raise. Never retried."""

    argv = ["debootstrap", f"--arch={arch}", suite, target_root, mirror]
    run_cmd(argv)


def missing_essentials(target_root: str, required: Sequence[str] = ESSENTIAL_DIRS) -> List[str]:
    root = Path(target_root)
    return [d for d in required if not (root / d).is_dir()]


def missing_boot_artifacts(target_root: str) -> List[str]:
    """What a usable target cannot do without: kernel modules and grub-install."""

    root = Path(target_root)
    missing = []
    modules = root / "lib/modules"
    if not modules.is_dir() or not any(modules.iterdir()):
        missing.append("lib/modules")
    if not (root / "usr/sbin/grub-install").exists():
        missing.append("usr/sbin/grub-install")
    return missing

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from .btrfs import subvolumes_for
from .command import run_cmd

logger = logging.getLogger(__name__)

SWAPFILE_REL = "swap/swapfile"


@dataclass(frozen=True)
class MountBinding:
    source: str
    target: str
    options: Tuple[str, ...] = ()
    subvolume: Optional[str] = None

    @property
    def mount_options(self) -> List[str]:
        opts = list(self.options)
        if self.subvolume:
            opts.insert(0, f"subvol={self.subvolume}")
        return opts


def _join(root: str, rel: str) -> str:
    rel = rel.lstrip("/")
    return os.path.normpath(os.path.join(root, rel)) if rel else os.path.normpath(root)


def build_mount_tree(*, mount_point: str, mapper_device: str, boot_partition: str, swap_enabled: bool) -> List[MountBinding]:
    """Ordered bindings: root, children, swap, then the first device's ESP."""

    tree = [
        MountBinding(
            source=mapper_device,
            target=_join(mount_point, sv.mount_path),
            options=sv.options,
            subvolume=sv.name,
        )
        for sv in subvolumes_for(swap_enabled)
    ]
    tree.append(MountBinding(source=boot_partition, target=_join(mount_point, "boot")))
    return tree


def unwind_order(tree: Sequence[MountBinding]) -> List[str]:
    return [b.target for b in reversed(tree)]


def mount_binding(binding: MountBinding) -> None:
    os.makedirs(binding.target, exist_ok=True)
    cmd = ["mount"]
    if binding.mount_options:
        cmd += ["-o", ",".join(binding.mount_options)]
    run_cmd([*cmd, binding.source, binding.target])


def mount_tree(tree: Sequence[MountBinding]) -> None:
    for binding in tree:
        mount_binding(binding)
    logger.info("Filesystems mounted successfully")


def swapfile_path(mount_point: str) -> str:
    return _join(mount_point, SWAPFILE_REL)


def provision_swapfile(path: str, size_gb: int) -> None:
    """Create, size, format and activate a swap file on a btrfs subvolume."""

    logger.info("Creating %dGB swapfile at %s", size_gb, path)
    with open(path, "w"):
        pass
    # Copy-on-write must be off before any data is written; not every fs supports it.
    r = run_cmd(["chattr", "+C", path], check=False)
    if not r.ok:
        logger.warning("Could not disable copy-on-write on %s (continuing)", path)
    run_cmd(["fallocate", "-l", f"{size_gb}G", path])
    os.chmod(path, 0o600)
    run_cmd(["mkswap", path])
    run_cmd(["swapon", path])
    logger.info("Swapfile created and enabled")

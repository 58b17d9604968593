from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, List, Tuple

from . import block
from .command import run_cmd

logger = logging.getLogger(__name__)

COMPRESS_OPTS = ("compress=zstd", "noatime")
SWAP_OPTS = ("noatime",)


@dataclass(frozen=True)
class Subvolume:
    key: str
    name: str
    mount_path: str
    options: Tuple[str, ...]


# Mount order; root first, swap last.
SUBVOLUMES: Tuple[Subvolume, ...] = (
    Subvolume("root", "@", "/", COMPRESS_OPTS),
    Subvolume("home", "@home", "/home", COMPRESS_OPTS),
    Subvolume("var", "@var", "/var", COMPRESS_OPTS),
    Subvolume("snapshots", "@snapshots", "/.snapshots", COMPRESS_OPTS),
    Subvolume("swap", "@swap", "/swap", SWAP_OPTS),
)


def subvolumes_for(swap_enabled: bool) -> List[Subvolume]:
    return [s for s in SUBVOLUMES if swap_enabled or s.key != "swap"]


def format_esp(partition: str) -> None:
    logger.info("Formatting EFI partition %s", partition)
    run_cmd(["mkfs.fat", "-F32", partition])


def format_btrfs(device: str, label: str = "root") -> None:
    run_cmd(["mkfs.btrfs", "-f", "-L", label, device])


@contextmanager
def scratch_mount(device: str, path: str) -> Iterator[str]:
    """Mount the top-level btrfs volume; always unmount and remove the dir."""

    os.makedirs(path, exist_ok=True)
    run_cmd(["mount", device, path])
    try:
        yield path
    finally:
        if block.is_mounted(path):
            run_cmd(["umount", path], check=False)
        try:
            os.rmdir(path)
        except OSError as e:
            logger.warning("Could not remove %s: %s", path, e)


def create_subvolumes(device: str, scratch: str, swap_enabled: bool) -> List[str]:
    created = []
    with scratch_mount(device, scratch) as top:
        for sv in subvolumes_for(swap_enabled):
            logger.info("Creating %s subvolume (%s)", sv.name, sv.mount_path)
            run_cmd(["btrfs", "subvolume", "create", os.path.join(top, sv.name)])
            created.append(sv.name)
    return created

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Sequence

from . import block
from .block import partition_path
from .command import run_cmd, udev_settle

logger = logging.getLogger(__name__)

BOOT_START_MIB = 1
BOOT_SIZE_MIB = 512


@dataclass(frozen=True)
class PartitionPlan:
    disk: str
    raid_member: bool
    boot_start_mib: int = BOOT_START_MIB
    boot_size_mib: int = BOOT_SIZE_MIB

    @property
    def boot_end_mib(self) -> int:
        return self.boot_start_mib + self.boot_size_mib


@dataclass(frozen=True)
class PartitionResult:
    boot_part: str
    data_part: str


def partition_commands(plan: PartitionPlan) -> List[List[str]]:
    """parted invocations for one disk: GPT, ESP, then the data/RAID partition."""

    disk = plan.disk
    cmds = [
        ["parted", "-s", disk, "mklabel", "gpt"],
        ["parted", "-s", disk, "mkpart", "EFI", "fat32", f"{plan.boot_start_mib}MiB", f"{plan.boot_end_mib}MiB"],
        ["parted", "-s", disk, "set", "1", "esp", "on"],
    ]
    if plan.raid_member:
        cmds += [
            ["parted", "-s", disk, "mkpart", "RAID", "ext4", f"{plan.boot_end_mib}MiB", "100%"],
            ["parted", "-s", disk, "set", "2", "raid", "on"],
        ]
    else:
        cmds.append(["parted", "-s", disk, "mkpart", "DATA", "ext4", f"{plan.boot_end_mib}MiB", "100%"])
    return cmds


def partition_disk(plan: PartitionPlan) -> PartitionResult:
    """Write a fresh GPT with an ESP and one data partition."""

    logger.info("Partitioning %s (raid_member=%s)", plan.disk, plan.raid_member)
    for argv in partition_commands(plan):
        run_cmd(argv)
    return PartitionResult(boot_part=partition_path(plan.disk, 1), data_part=partition_path(plan.disk, 2))


def reread_partitions(disks: Sequence[str]) -> None:
    udev_settle()
    run_cmd(["partprobe", *disks], check=False)
    udev_settle()


def wait_for_partitions(results: Sequence[PartitionResult], *, timeout: float = 30.0) -> None:
    """Block until every partition node the later stages need is a block device."""

    nodes = [p for r in results for p in (r.boot_part, r.data_part)]
    block.wait_for(
        lambda: all(block.is_block_device(n) for n in nodes),
        what=f"partition nodes {' '.join(nodes)}",
        timeout=timeout,
    )

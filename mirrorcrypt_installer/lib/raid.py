from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterable, Sequence

from . import block
from .command import run_cmd

logger = logging.getLogger(__name__)

NOT_READY_STATES = {"inactive", "clear", "suspended"}


def check_members(members: Sequence[str]) -> None:
    """Every member must exist and carry no array superblock or mapping yet."""

    for m in members:
        if not block.is_block_device(m):
            raise RuntimeError(f"RAID member {m} does not exist")
        r = run_cmd(["mdadm", "--examine", m], check=False)
        if r.returncode == 0:
            raise RuntimeError(f"RAID member {m} already carries an md superblock")
        holders = os.path.join("/sys/class/block", os.path.basename(m), "holders")
        try:
            busy = os.listdir(holders)
        except OSError:
            busy = []
        if busy:
            raise RuntimeError(f"RAID member {m} is in use by {', '.join(busy)}")


def create_mirror(md_device: str, members: Sequence[str]) -> None:
    logger.info("Creating RAID1 array %s with partitions: %s", md_device, " ".join(members))
    # --run suppresses mdadm's own "Continue creating array?" prompt.
    run_cmd(
        [
            "mdadm",
            "--create",
            md_device,
            "--run",
            "--level=1",
            "--metadata=1.2",
            f"--raid-devices={len(members)}",
            *members,
        ],
        input_text="yes\n",
    )


def wait_for_array(md_device: str, *, timeout: float = 60.0) -> None:
    name = os.path.basename(md_device)

    def _ready() -> bool:
        if name not in block.active_arrays():
            return False
        state = block.array_state(md_device)
        return state is not None and state not in NOT_READY_STATES and block.is_block_device(md_device)

    block.wait_for(_ready, what=f"RAID array {md_device}", timeout=timeout)


def scan_descriptor() -> str:
    r = run_cmd(["mdadm", "--detail", "--scan"])
    return r.stdout


def persist_descriptor(descriptor: str, paths: Iterable[str]) -> None:
    """Write the array identity to every path (host copy + staging copy)."""

    for path in paths:
        p = Path(path)
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(descriptor if descriptor.endswith("\n") else descriptor + "\n", encoding="utf-8")
        logger.info("Saved RAID configuration to %s", p)

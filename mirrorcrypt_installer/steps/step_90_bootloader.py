from __future__ import annotations

import logging
import os
from typing import Any, Dict, List

from ..lib.bootloader import ensure_kernel_boot_files, install_on_all, kernel_cmdline, write_grub_fragment
from ..pipeline import RunContext
from ..state_store import record_decision

logger = logging.getLogger(__name__)

BOOT_FILES = ("vmlinuz", "initrd.img", "grub/grub.cfg")


def missing_boot_files(target_root: str) -> List[str]:
    boot = os.path.join(target_root, "boot")
    return [f for f in BOOT_FILES if not os.path.exists(os.path.join(boot, f))]


class BootloaderStep:
    step_id = "90_bootloader"

    def run(self, ctx: RunContext, state: Dict[str, Any]) -> Dict[str, Any]:
        cfg = ctx.config
        plan = ctx.plan
        root = ctx.target_root

        cmdline = kernel_cmdline(
            mapper_name=cfg.mapper_name,
            raid_device=plan.raid_device,
            redundancy_enabled=plan.redundancy_enabled,
        )
        write_grub_fragment(root, cmdline)
        ensure_kernel_boot_files(root)

        installed = install_on_all(
            target_root=root,
            boot_partitions=[plan.boot_partition(d) for d in plan.devices],
            grub_target=plan.grub_target,
            bootloader_id=cfg.bootloader_id,
        )
        ensure_kernel_boot_files(root)

        missing = missing_boot_files(root)
        if missing:
            logger.warning("Boot files missing after installation: %s", ", ".join(missing))
        else:
            logger.info("All required boot files are present")

        record_decision(state, "grub_installed_on", installed)
        record_decision(state, "kernel_cmdline", cmdline)
        return state

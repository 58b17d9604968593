from __future__ import annotations

import logging
import os
import shutil
from typing import Any, Dict

from ..errors import SecondaryContextError
from ..lib.bootloader import ensure_kernel_boot_files
from ..lib.chroot import ensure_resolver, mount_chroot_binds, remove_policy_shim, run_script
from ..lib.env import PATHS
from ..lib.pkg import missing_boot_artifacts
from ..lib.scripts import RAID_STAGING_IN_TARGET, packages_script
from ..pipeline import RunContext
from ..state_store import record_decision

logger = logging.getLogger(__name__)


def stage_raid_descriptor(target_root: str) -> bool:
    src = os.path.join(PATHS.raid_staging_dir, "mdadm.conf")
    if not os.path.isfile(src):
        return False
    dst = os.path.join(target_root, RAID_STAGING_IN_TARGET.lstrip("/"))
    os.makedirs(os.path.dirname(dst), exist_ok=True)
    shutil.copyfile(src, dst)
    logger.info("Copied RAID configuration into chroot")
    return True


class ChrootPackagesStep:
    step_id = "70_chroot_packages"

    def run(self, ctx: RunContext, state: Dict[str, Any]) -> Dict[str, Any]:
        cfg = ctx.config
        root = ctx.target_root

        mount_chroot_binds(root)
        record_decision(state, "resolver_provisioned", ensure_resolver(root))
        if ctx.plan.redundancy_enabled:
            stage_raid_descriptor(root)

        script = packages_script(
            arch=ctx.plan.architecture,
            install_nvidia=cfg.install_nvidia_drivers,
            nvidia_package=cfg.nvidia_driver_package,
        )
        try:
            run_script(root, script.name, script.text)
        except SecondaryContextError as e:
            missing = missing_boot_artifacts(root)
            if missing:
                logger.error("Chroot setup failed and essential components are missing: %s", ", ".join(missing))
                raise
            logger.warning("Chroot setup reported errors, but essential components are installed: %s", e)
            record_decision(state, "chroot_setup_warning", str(e))
        finally:
            # A leftover shim keeps every service from starting on first boot.
            remove_policy_shim(root)

        boot_files = ensure_kernel_boot_files(root)
        record_decision(state, "kernel", boot_files.get("kernel"))
        return state

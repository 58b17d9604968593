from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict

from ..errors import StageError
from ..lib.block import get_uuid
from ..lib.fstab import fstab_entries, render_fstab
from ..lib.pkg import debootstrap_rootfs, missing_essentials
from ..pipeline import RunContext
from ..state_store import record_decision

logger = logging.getLogger(__name__)


class BaseSystemStep:
    step_id = "60_base_system"

    def run(self, ctx: RunContext, state: Dict[str, Any]) -> Dict[str, Any]:
        cfg = ctx.config
        plan = ctx.plan
        root = ctx.target_root

        logger.info("Installing base system (%s, %s)", cfg.distribution, plan.architecture)
        debootstrap_rootfs(
            target_root=root,
            suite=cfg.distribution,
            mirror=cfg.archive_url,
            arch=plan.architecture,
        )

        missing = missing_essentials(root)
        if missing:
            raise StageError(self.step_id, f"base system incomplete, missing: {', '.join(missing)}")

        boot_uuid = get_uuid(plan.boot_partition(plan.first_device))
        entries = fstab_entries(
            tree=ctx.mount_tree(),
            mount_point=root,
            boot_uuid=boot_uuid,
            swap_enabled=plan.swap_enabled,
        )
        fstab_path = Path(root) / "etc/fstab"
        fstab_path.write_text(render_fstab(entries), encoding="utf-8")

        record_decision(state, "boot_uuid", boot_uuid)
        logger.info("Wrote fstab (boot_uuid=%s)", boot_uuid)
        return state

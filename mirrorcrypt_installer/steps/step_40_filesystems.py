from __future__ import annotations

import logging
from typing import Any, Dict

from ..lib.btrfs import create_subvolumes, format_btrfs, format_esp
from ..lib.env import PATHS
from ..pipeline import RunContext
from ..state_store import record_decision

logger = logging.getLogger(__name__)


class FilesystemStep:
    step_id = "40_filesystems"

    def run(self, ctx: RunContext, state: Dict[str, Any]) -> Dict[str, Any]:
        plan = ctx.plan
        for disk in plan.devices:
            format_esp(plan.boot_partition(disk))

        logger.info("Formatting encrypted device with btrfs")
        format_btrfs(ctx.mapper_device)
        created = create_subvolumes(ctx.mapper_device, PATHS.btrfs_scratch, plan.swap_enabled)

        record_decision(state, "subvolumes", created)
        logger.info("Filesystems created successfully")
        return state

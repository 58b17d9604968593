from __future__ import annotations

import logging
from typing import Any, Dict

from ..lib.mounts import mount_tree, provision_swapfile, swapfile_path
from ..pipeline import RunContext
from ..state_store import record_decision

logger = logging.getLogger(__name__)


class MountStep:
    step_id = "50_mount"

    def run(self, ctx: RunContext, state: Dict[str, Any]) -> Dict[str, Any]:
        tree = ctx.mount_tree()
        mount_tree(tree)
        record_decision(state, "mounts", [b.target for b in tree])

        if ctx.plan.swap_enabled:
            provision_swapfile(swapfile_path(ctx.target_root), ctx.plan.swap_size_gb)
        else:
            logger.info("Swap disabled (size 0)")
        return state

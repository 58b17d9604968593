from __future__ import annotations

import logging
import os
from typing import Any, Dict

from ..lib.env import PATHS
from ..lib.raid import check_members, create_mirror, persist_descriptor, scan_descriptor, wait_for_array
from ..pipeline import RunContext
from ..state_store import record_decision

logger = logging.getLogger(__name__)

STAGED_DESCRIPTOR = "mdadm.conf"


class RedundancyStep:
    step_id = "20_raid"

    def run(self, ctx: RunContext, state: Dict[str, Any]) -> Dict[str, Any]:
        plan = ctx.plan
        if not plan.redundancy_enabled:
            logger.info("Single drive - skipping RAID setup")
            return state

        members = [plan.data_partition(d) for d in plan.devices]
        check_members(members)
        create_mirror(plan.raid_device, members)
        wait_for_array(plan.raid_device)

        # Boot-time assembly in the target reads this file, not the live kernel registry.
        descriptor = scan_descriptor()
        persist_descriptor(
            descriptor,
            [PATHS.host_mdadm_conf, os.path.join(PATHS.raid_staging_dir, STAGED_DESCRIPTOR)],
        )

        record_decision(state, "raid_members", members)
        logger.info("RAID1 array %s created", plan.raid_device)
        return state

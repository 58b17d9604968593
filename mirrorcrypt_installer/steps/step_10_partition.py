from __future__ import annotations

import logging
from typing import Any, Dict

from ..lib.storage import PartitionPlan, partition_disk, reread_partitions, wait_for_partitions
from ..pipeline import RunContext
from ..state_store import record_decision

logger = logging.getLogger(__name__)


class PartitionStep:
    step_id = "10_partition"

    def run(self, ctx: RunContext, state: Dict[str, Any]) -> Dict[str, Any]:
        plan = ctx.plan
        results = [
            partition_disk(PartitionPlan(disk=disk, raid_member=plan.redundancy_enabled))
            for disk in plan.devices
        ]

        reread_partitions(plan.devices)
        wait_for_partitions(results)

        role = "raid" if plan.redundancy_enabled else "data"
        layout = {}
        for r in results:
            layout[r.boot_part] = "esp"
            layout[r.data_part] = role
        record_decision(state, "partitions", layout)
        logger.info("Partitioning completed on %d drive(s)", len(results))
        return state

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict

from ..lib.block import get_uuid
from ..lib.fstab import render_crypttab
from ..pipeline import RunContext
from ..state_store import record_decision

logger = logging.getLogger(__name__)


class CrypttabStep:
    step_id = "80_crypttab"

    def run(self, ctx: RunContext, state: Dict[str, Any]) -> Dict[str, Any]:
        plan = ctx.plan
        uuid = get_uuid(plan.encryption_target)
        text = render_crypttab(
            mapper_name=ctx.config.mapper_name,
            device_uuid=uuid,
            redundancy_enabled=plan.redundancy_enabled,
        )
        path = Path(ctx.target_root) / "etc/crypttab"
        path.write_text(text, encoding="utf-8")

        record_decision(state, "luks_uuid", uuid)
        logger.info("Wrote crypttab for %s (UUID=%s)", plan.encryption_target, uuid)
        return state

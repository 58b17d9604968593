from __future__ import annotations

import logging
from typing import Any, Dict

from ..errors import ConfigurationError
from ..lib import block
from ..lib.crypto import cryptsetup_version, luks_format, luks_open, select_tier
from ..pipeline import RunContext
from ..state_store import record_decision

logger = logging.getLogger(__name__)


class EncryptionStep:
    step_id = "30_encrypt"

    def run(self, ctx: RunContext, state: Dict[str, Any]) -> Dict[str, Any]:
        cfg = ctx.config
        target = ctx.plan.encryption_target
        password = cfg.luks_password
        if not password:
            raise ConfigurationError("Encryption password is required")

        tier = select_tier(cryptsetup_version())
        record_decision(state, "luks_tier", tier.name)
        record_decision(state, "encryption_target", target)

        luks_format(
            target,
            password,
            tier,
            iter_time_ms=cfg.pbkdf_iter_time_ms,
            memory_kib=cfg.pbkdf_memory_kib,
            parallel=cfg.pbkdf_parallel,
        )
        # A crash between format and open leaves a locked container; teardown erases it.
        luks_open(target, cfg.mapper_name, password)
        block.wait_for(lambda: block.mapping_open(cfg.mapper_name), what=ctx.mapper_device)

        logger.info("LUKS encryption setup completed on %s", target)
        return state

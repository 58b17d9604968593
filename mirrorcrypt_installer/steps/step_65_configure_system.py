from __future__ import annotations

from typing import Any, Dict

from ..lib.netcfg import write_system_identity
from ..pipeline import RunContext


class ConfigureSystemStep:
    step_id = "65_configure_system"

    def run(self, ctx: RunContext, state: Dict[str, Any]) -> Dict[str, Any]:
        write_system_identity(ctx.target_root, ctx.config.hostname)
        return state

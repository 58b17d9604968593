from __future__ import annotations

import logging
from typing import Any, Dict

from ..errors import ConfigurationError
from ..lib.chroot import run_script
from ..lib.scripts import user_script
from ..pipeline import RunContext

logger = logging.getLogger(__name__)


class CreateUserStep:
    step_id = "75_create_user"

    def run(self, ctx: RunContext, state: Dict[str, Any]) -> Dict[str, Any]:
        cfg = ctx.config
        if not cfg.user_password:
            raise ConfigurationError("User password is required")

        script = user_script(username=cfg.username)
        run_script(ctx.target_root, script.name, script.text, input_text=cfg.user_password + "\n")
        logger.info("User %s created", cfg.username)
        return state

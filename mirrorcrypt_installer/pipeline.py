from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Protocol, Sequence

from .config import InstallerConfig
from .errors import CommandError, InstallerError, StageError
from .lib.mounts import MountBinding, build_mount_tree
from .plan import ProvisioningPlan

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RunContext:
    """Read-only inputs shared by every stage."""

    config: InstallerConfig
    plan: ProvisioningPlan

    @property
    def target_root(self) -> str:
        return self.config.mount_point

    @property
    def mapper_device(self) -> str:
        return f"/dev/mapper/{self.config.mapper_name}"

    def mount_tree(self) -> List[MountBinding]:
        return build_mount_tree(
            mount_point=self.config.mount_point,
            mapper_device=self.mapper_device,
            boot_partition=self.plan.boot_partition(self.plan.first_device),
            swap_enabled=self.plan.swap_enabled,
        )


class Step(Protocol):
    """A single construction stage."""

    step_id: str

    def run(self, ctx: RunContext, state: Dict[str, Any]) -> Dict[str, Any]:
        ...


@dataclass(frozen=True)
class PipelineResult:
    state: Dict[str, Any]
    ran_steps: List[str]


def run_pipeline(
    *,
    ctx: RunContext,
    state: Dict[str, Any],
    steps: Sequence[Step],
) -> PipelineResult:
    """Run every stage in order. The first failure stops the run as a StageError.

    ``state`` is a journal of what happened; no stage reads it to decide what
    exists on disk.
    """

    ran: List[str] = []
    exe = state.setdefault("execution", {})

    for step in steps:
        exe["current_step"] = step.step_id
        logger.info("Running step %s", step.step_id)
        try:
            state = step.run(ctx, state)
        except StageError:
            raise
        except CommandError as e:
            raise StageError(step.step_id, str(e)) from e
        except InstallerError:
            raise
        except Exception as e:
            raise StageError(step.step_id, f"{type(e).__name__}: {e}") from e
        ran.append(step.step_id)
        exe.setdefault("ran_steps", []).append(step.step_id)

    exe["current_step"] = None
    return PipelineResult(state=state, ran_steps=ran)

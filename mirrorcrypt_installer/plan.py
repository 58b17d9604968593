from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from .config import InstallerConfig
from .errors import ConfigurationError
from .lib import block, hwdetect
from .lib.block import partition_path

logger = logging.getLogger(__name__)

BOOT_PART = 1
DATA_PART = 2


@dataclass(frozen=True)
class ProvisioningPlan:
    devices: Tuple[str, ...]
    redundancy_enabled: bool
    architecture: str
    grub_target: str
    swap_size_gb: int
    raid_device: str = "/dev/md0"

    def __post_init__(self) -> None:
        if not self.devices:
            raise ConfigurationError("No target devices specified")
        if self.redundancy_enabled != (len(self.devices) > 1):
            raise ConfigurationError("redundancy_enabled must be true exactly when more than one device is given")

    @property
    def first_device(self) -> str:
        return self.devices[0]

    def boot_partition(self, device: str) -> str:
        return partition_path(device, BOOT_PART)

    def data_partition(self, device: str) -> str:
        return partition_path(device, DATA_PART)

    @property
    def encryption_target(self) -> str:
        if self.redundancy_enabled:
            return self.raid_device
        return self.data_partition(self.first_device)

    @property
    def swap_enabled(self) -> bool:
        return self.swap_size_gb > 0


def build_plan(
    config: InstallerConfig,
    *,
    arch_detector: Optional[Callable[[], str]] = None,
    block_check: Optional[Callable[[str], bool]] = None,
) -> ProvisioningPlan:
    """Device Prober: inspect the host and derive the immutable plan."""

    arch_detector = arch_detector or hwdetect.detect_arch
    block_check = block_check or block.is_block_device
    devices = tuple(config.devices)
    if not devices:
        raise ConfigurationError("No target drives specified (use --device or the config file)")

    missing = [d for d in devices if not block_check(d)]
    if missing:
        raise ConfigurationError(f"Not a block device: {', '.join(missing)}")

    arch = arch_detector()
    plan = ProvisioningPlan(
        devices=devices,
        redundancy_enabled=len(devices) > 1,
        architecture=arch,
        grub_target=hwdetect.grub_target(arch),
        swap_size_gb=config.swap_size_gb,
        raid_device=config.raid_device,
    )

    logger.info("Found %d target drive(s): %s", len(devices), " ".join(devices))
    if plan.redundancy_enabled:
        logger.info("Multiple drives detected (%d) - RAID1 enabled", len(devices))
    else:
        logger.info("Single drive detected - RAID disabled")
    return plan


def plan_summary(plan: ProvisioningPlan) -> dict:
    return {
        "devices": list(plan.devices),
        "redundancy_enabled": plan.redundancy_enabled,
        "architecture": plan.architecture,
        "grub_target": plan.grub_target,
        "swap_size_gb": plan.swap_size_gb,
        "encryption_target": plan.encryption_target,
    }

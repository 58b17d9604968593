from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Sequence

from . import block

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConflictReport:
    arrays: List[str] = field(default_factory=list)
    mappings: List[str] = field(default_factory=list)
    partitions: Dict[str, List[str]] = field(default_factory=dict)

    @property
    def has_conflicts(self) -> bool:
        return bool(self.arrays or self.mappings or any(self.partitions.values()))

    def describe(self) -> List[str]:
        lines = []
        if self.arrays:
            lines.append(f"active RAID arrays: {', '.join(self.arrays)}")
        if self.mappings:
            lines.append(f"device-mapper devices: {', '.join(self.mappings)}")
        for dev, parts in self.partitions.items():
            if parts:
                lines.append(f"{dev} has existing partitions: {', '.join(parts)}")
        return lines


def scan_conflicts(devices: Sequence[str]) -> ConflictReport:
    """Check the three independent signals. Reads only."""

    logger.info("Checking for existing configurations...")
    report = ConflictReport(
        arrays=block.active_arrays(),
        mappings=block.mapper_devices(),
        partitions={d: block.existing_partitions(d) for d in devices},
    )
    for line in report.describe():
        logger.warning("Existing configuration: %s", line)
    return report

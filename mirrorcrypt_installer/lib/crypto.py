"""LUKS container lifecycle and cryptsetup capability negotiation."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from .command import run_cmd, udev_settle

logger = logging.getLogger(__name__)

Version = Tuple[int, int]

_VERSION_RE = re.compile(r"(\d+)\.(\d+)")


@dataclass(frozen=True)
class LuksTier:
    name: str
    min_version: Version
    rank: int

    def format_args(self, *, iter_time_ms: int, memory_kib: int, parallel: int) -> List[str]:
        base = ["--cipher", "aes-xts-plain64", "--key-size", "512", "--hash", "sha256"]
        if self.rank == 0:
            return base
        args = ["--type", "luks2", *base, "--pbkdf", "argon2id"]
        if self.rank >= 2:
            args += [
                "--iter-time",
                str(iter_time_ms),
                "--pbkdf-memory",
                str(memory_kib),
                "--pbkdf-parallel",
                str(parallel),
            ]
        return args


# Highest tier first. A tool version selects the first tier whose minimum it meets.
LUKS_TIERS: Sequence[LuksTier] = (
    LuksTier("luks2-argon2id-tuned", (2, 1), 2),
    LuksTier("luks2-argon2id", (2, 0), 1),
    LuksTier("luks1-legacy", (0, 0), 0),
)


def parse_version(text: str) -> Optional[Version]:
    m = _VERSION_RE.search(text or "")
    if not m:
        return None
    return int(m.group(1)), int(m.group(2))


def select_tier(version: Optional[Version]) -> LuksTier:
    if version is None:
        return LUKS_TIERS[-1]
    for tier in LUKS_TIERS:
        if version >= tier.min_version:
            return tier
    return LUKS_TIERS[-1]


def cryptsetup_version() -> Optional[Version]:
    r = run_cmd(["cryptsetup", "--version"], check=False)
    first = (r.stdout or "").splitlines()[:1]
    version = parse_version(first[0] if first else "")
    if version is None:
        logger.warning("Could not parse cryptsetup version from %r", r.stdout)
    else:
        logger.info("Detected cryptsetup version: %d.%d", *version)
    return version


def luks_format(device: str, password: str, tier: LuksTier, *, iter_time_ms: int, memory_kib: int, parallel: int) -> None:
    logger.info("Creating LUKS container on %s using %s options", device, tier.name)
    args = tier.format_args(iter_time_ms=iter_time_ms, memory_kib=memory_kib, parallel=parallel)
    run_cmd(
        ["cryptsetup", "-q", "--batch-mode", "luksFormat", *args, "--key-file", "-", device],
        input_text=password,
        timeout=600.0,
    )
    udev_settle()


def luks_open(device: str, name: str, password: str) -> None:
    run_cmd(["cryptsetup", "open", device, name, "--key-file", "-"], input_text=password, timeout=120.0)
    udev_settle()


def luks_close(name: str) -> bool:
    return run_cmd(["cryptsetup", "close", name], check=False).ok


def luks_erase(device: str) -> bool:
    """Destroy every keyslot; the container becomes permanently unreadable."""

    return run_cmd(["cryptsetup", "-q", "erase", device], check=False, input_text="YES\n").ok

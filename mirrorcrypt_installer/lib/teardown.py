"""Teardown engine.

Unwinds whatever part of the storage stack exists on the target devices:
mounts, swap, encrypted mappings, LUKS headers, md arrays and superblocks,
filesystem signatures, partition tables and the metadata at both ends of
each disk. Every action is guarded by a probe and individually non-fatal, so
the engine can run after a failure at any stage, after a crash, or twice in
a row with the same result.
"""

from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Sequence

from ..config import InstallerConfig
from . import block, chroot, crypto
from .block import partition_path
from .command import CmdResult, run_cmd
from .env import PATHS
from .mounts import build_mount_tree, unwind_order

logger = logging.getLogger(__name__)

BOUNDARY_WIPE_MIB = 100
SECTORS_PER_MIB = 2048


@dataclass
class TeardownReport:
    arrays: List[str] = field(default_factory=list)
    mappings: List[str] = field(default_factory=list)
    signatures: Dict[str, List[str]] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)

    @property
    def clean(self) -> bool:
        return not (self.arrays or self.mappings or any(self.signatures.values()))

    def as_dict(self) -> dict:
        return {
            "arrays": list(self.arrays),
            "mappings": list(self.mappings),
            "signatures": {k: list(v) for k, v in self.signatures.items()},
            "errors": list(self.errors),
            "clean": self.clean,
        }


class _Actions:
    """Runs destructive actions one by one, recording failures instead of raising."""

    def __init__(self, report: TeardownReport) -> None:
        self.report = report

    def cmd(self, argv: Sequence[str], *, input_text: str | None = None) -> bool:
        r: CmdResult = run_cmd(argv, check=False, input_text=input_text)
        if not r.ok:
            msg = f"{' '.join(argv)} -> rc={r.returncode} {(r.stderr or '').strip()}".strip()
            logger.warning("Teardown step failed: %s", msg)
            self.report.errors.append(msg)
        return r.ok

    def call(self, what: str, fn: Callable[[], object]) -> None:
        try:
            fn()
        except OSError as e:
            logger.warning("Teardown step failed: %s: %s", what, e)
            self.report.errors.append(f"{what}: {e}")


def _unmount(act: _Actions, path: str) -> None:
    logger.info("Unmounting %s", path)
    if run_cmd(["umount", "-l", path], check=False).ok:
        return
    act.cmd(["umount", "-f", path])


def _target_mounts(config: InstallerConfig) -> List[str]:
    tree = build_mount_tree(
        mount_point=config.mount_point,
        mapper_device=f"/dev/mapper/{config.mapper_name}",
        boot_partition=partition_path(config.devices[0], 1) if config.devices else "",
        swap_enabled=True,
    )
    return unwind_order(tree)


def release_target_root(config: InstallerConfig, act: _Actions) -> None:
    """Undo the chroot plumbing: installer files in the target, then bind mounts."""

    root = config.mount_point
    if os.path.isdir(os.path.join(root, "etc")):
        act.call("remove resolv.conf", lambda: chroot.remove_resolver(root))
        act.call("remove policy-rc.d", lambda: chroot.remove_policy_shim(root))
    for failed in chroot.umount_chroot_binds(root):
        act.report.errors.append(f"umount {failed}")


def _disable_swap(config: InstallerConfig, act: _Actions) -> None:
    root = os.path.normpath(config.mount_point)
    for swap in block.active_swaps():
        if swap == root or swap.startswith(root + "/"):
            logger.info("Disabling swap %s", swap)
            act.cmd(["swapoff", swap])
    if block.active_swaps():
        act.cmd(["swapoff", "-a"])


def _unmount_tree(config: InstallerConfig, act: _Actions) -> None:
    for path in _target_mounts(config):
        if block.is_mounted(path):
            _unmount(act, path)
    # Anything else still mounted below the mount point, deepest first.
    for path in block.mounts_below(config.mount_point):
        _unmount(act, path)
    if block.is_mounted(PATHS.btrfs_scratch):
        _unmount(act, PATHS.btrfs_scratch)


def _close_mappings(config: InstallerConfig, act: _Actions) -> None:
    names = block.mapper_devices()
    ordered = [config.mapper_name] if config.mapper_name in names else []
    ordered += [n for n in names if n != config.mapper_name]
    for name in ordered:
        logger.info("Closing mapping %s", name)
        if crypto.luks_close(name):
            continue
        act.cmd(["dmsetup", "remove", "--retry", name])


def _erase_luks(config: InstallerConfig, act: _Actions) -> None:
    candidates = [config.raid_device] + [partition_path(d, 2) for d in config.devices]
    for dev in candidates:
        if not block.is_block_device(dev):
            continue
        if block.is_luks(dev):
            logger.info("Erasing LUKS keyslots on %s", dev)
            if not crypto.luks_erase(dev):
                act.report.errors.append(f"cryptsetup erase {dev}")
        if dev == config.raid_device:
            act.cmd(["wipefs", "-a", dev])


def _stop_arrays(config: InstallerConfig, act: _Actions) -> None:
    own = os.path.basename(config.raid_device)
    arrays = block.active_arrays()
    ordered = [own] if own in arrays else []
    ordered += [a for a in arrays if a != own]
    for name in ordered:
        logger.info("Stopping RAID array /dev/%s", name)
        act.cmd(["mdadm", "--stop", f"/dev/{name}"])


def _has_md_superblock(dev: str) -> bool:
    return run_cmd(["mdadm", "--examine", dev], check=False).ok


def _scrub_device(dev: str, act: _Actions) -> None:
    logger.info("Cleaning RAID metadata and signatures from %s", dev)
    for part in block.existing_partitions(dev):
        if not block.is_block_device(part):
            continue
        if _has_md_superblock(part):
            act.cmd(["mdadm", "--zero-superblock", part])
        act.cmd(["wipefs", "-a", part])

    if _has_md_superblock(dev):
        act.cmd(["mdadm", "--zero-superblock", dev])
    act.cmd(["wipefs", "-a", dev])

    sectors = block.device_size_sectors(dev)
    size_mib = sectors // SECTORS_PER_MIB
    head = min(BOUNDARY_WIPE_MIB, size_mib) if size_mib else BOUNDARY_WIPE_MIB
    logger.info("Zeroing first %d MiB of %s", head, dev)
    act.cmd(["dd", "if=/dev/zero", f"of={dev}", "bs=1M", f"count={head}", "conv=fsync", "status=none"])
    if size_mib > 2 * BOUNDARY_WIPE_MIB:
        seek = size_mib - BOUNDARY_WIPE_MIB
        logger.info("Zeroing last %d MiB of %s", BOUNDARY_WIPE_MIB, dev)
        act.cmd(
            [
                "dd",
                "if=/dev/zero",
                f"of={dev}",
                "bs=1M",
                f"count={BOUNDARY_WIPE_MIB}",
                f"seek={seek}",
                "conv=fsync",
                "status=none",
            ]
        )

    act.cmd(["sgdisk", "--zap-all", dev])
    act.cmd(["wipefs", "-af", dev])
    # Re-read is advisory; the kernel may lag behind until udev settles.
    run_cmd(["blockdev", "--rereadpt", dev], check=False)
    run_cmd(["partprobe", dev], check=False)


def _remove_staging(act: _Actions) -> None:
    if os.path.isdir(PATHS.raid_staging_dir):
        act.call("remove staging dir", lambda: shutil.rmtree(PATHS.raid_staging_dir))


def verify(devices: Sequence[str], report: TeardownReport) -> TeardownReport:
    report.arrays = block.active_arrays()
    report.mappings = block.mapper_devices()
    report.signatures = {d: block.signatures(d) for d in devices if block.is_block_device(d)}

    if report.arrays:
        logger.warning("Some RAID arrays may still be active: %s", ", ".join(report.arrays))
    else:
        logger.info("No active RAID arrays detected")
    if report.mappings:
        logger.warning("Some device mapper devices still exist: %s", ", ".join(report.mappings))
    else:
        logger.info("No device mapper devices detected")
    for dev, sigs in report.signatures.items():
        if sigs:
            logger.warning("%s still has signatures: %s", dev, "; ".join(sigs))
        else:
            logger.info("%s appears completely clean", dev)
    return report


def teardown(config: InstallerConfig) -> TeardownReport:
    """Remove every layer from ``config.devices``. Never raises for a stuck resource."""

    logger.info("Starting comprehensive cleanup (will destroy installation)...")
    report = TeardownReport()
    act = _Actions(report)

    release_target_root(config, act)
    _disable_swap(config, act)
    _unmount_tree(config, act)
    _close_mappings(config, act)
    _erase_luks(config, act)
    _stop_arrays(config, act)
    for dev in config.devices:
        if block.is_block_device(dev):
            _scrub_device(dev, act)
        else:
            logger.warning("Skipping %s: not a block device", dev)
    run_cmd(["dmsetup", "remove_all"], check=False)
    run_cmd(["udevadm", "settle"], check=False)
    _remove_staging(act)

    verify(config.devices, report)
    if report.errors:
        logger.warning("Cleanup finished with %d failed step(s)", len(report.errors))
    logger.info("Comprehensive cleanup completed")
    return report


def safe_unmount(config: InstallerConfig) -> TeardownReport:
    """Success-path cleanup: drop chroot plumbing, keep the installed system."""

    logger.info("Cleaning up chroot environment (leaving installed system intact)...")
    report = TeardownReport()
    act = _Actions(report)
    release_target_root(config, act)
    _remove_staging(act)
    logger.info("Safe cleanup completed - installed system preserved")
    return report

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Paths:
    mount_point: str = "/mnt/system-install"
    btrfs_scratch: str = "/mnt/btrfs-root"
    raid_staging_dir: str = "/tmp/raid-config"
    host_mdadm_conf: str = "/etc/mdadm/mdadm.conf"
    host_resolv_conf: str = "/etc/resolv.conf"
    journal_default: str = "/var/lib/mirrorcrypt-installer/journal.json"
    log_default: str = "/var/log/mirrorcrypt-installer.log"


PATHS = Paths()

# Tools the pipeline and the teardown engine shell out to.
REQUIRED_TOOLS = (
    "parted",
    "mdadm",
    "cryptsetup",
    "debootstrap",
    "mkfs.btrfs",
    "mkfs.fat",
    "sgdisk",
    "wipefs",
)

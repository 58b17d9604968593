from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Sequence

from .mounts import MountBinding


@dataclass(frozen=True)
class FstabEntry:
    spec: str
    mountpoint: str
    fstype: str
    options: str
    dump: int = 0
    passno: int = 0

    def render(self) -> str:
        return f"{self.spec} {self.mountpoint} {self.fstype} {self.options} {self.dump} {self.passno}"


def render_fstab(entries: Iterable[FstabEntry]) -> str:
    lines = ["# <file system> <mount point> <type> <options> <dump> <pass>"]
    lines += [e.render() for e in entries]
    return "\n".join(lines) + "\n"


def fstab_entries(
    *,
    tree: Sequence[MountBinding],
    mount_point: str,
    boot_uuid: str,
    swap_enabled: bool,
) -> List[FstabEntry]:
    """Translate the live mount tree into the installed system's view."""

    root = mount_point.rstrip("/")
    entries: List[FstabEntry] = []
    for b in tree:
        if not b.subvolume:
            continue
        target = b.target[len(root):] or "/"
        opts = ",".join(["defaults", *b.mount_options])
        entries.append(
            FstabEntry(spec=b.source, mountpoint=target, fstype="btrfs", options=opts, passno=1 if target == "/" else 2)
        )
    if swap_enabled:
        entries.append(FstabEntry(spec="/swap/swapfile", mountpoint="none", fstype="swap", options="sw"))
    entries.append(FstabEntry(spec=f"UUID={boot_uuid}", mountpoint="/boot", fstype="vfat", options="defaults", passno=2))
    return entries


def render_crypttab(*, mapper_name: str, device_uuid: str, redundancy_enabled: bool) -> str:
    comment = "# RAID device with LUKS encryption" if redundancy_enabled else "# Single drive partition with LUKS encryption"
    return f"{comment}\n{mapper_name} UUID={device_uuid} none luks\n"

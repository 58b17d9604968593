"""Side-effect-free probes of the live storage stack.

Nothing here changes state. Every stage and the teardown engine asks these
functions what exists instead of remembering what it did, so a run resumed
after a crash sees the same picture as the run that crashed.
"""

from __future__ import annotations

import glob
import logging
import os
import re
import stat
import time
from typing import Callable, List, Optional

from .command import run_cmd, udev_settle

logger = logging.getLogger(__name__)

PROC_MDSTAT = "/proc/mdstat"
PROC_MOUNTINFO = "/proc/self/mountinfo"
PROC_SWAPS = "/proc/swaps"
DEV_MAPPER = "/dev/mapper"
SYS_BLOCK = "/sys/block"


def partition_path(disk: str, n: int) -> str:
    # nvme/mmcblk devices use p suffix
    if disk.endswith(tuple("0123456789")):
        return f"{disk}p{n}"
    return f"{disk}{n}"


def is_block_device(path: str) -> bool:
    try:
        return stat.S_ISBLK(os.stat(path).st_mode)
    except OSError:
        return False


def get_uuid(dev: str) -> str:
    """Return filesystem/container UUID for a block device."""

    r = run_cmd(["blkid", "-s", "UUID", "-o", "value", dev], check=False)
    uuid = (r.stdout or "").strip()
    if not uuid:
        raise RuntimeError(f"Unable to determine UUID for {dev}")
    return uuid


def _read(path: str) -> str:
    try:
        with open(path, encoding="utf-8") as fh:
            return fh.read()
    except OSError:
        return ""


def active_arrays() -> List[str]:
    """Names of md arrays the kernel currently knows about (``md0``, ...)."""

    names = []
    for line in _read(PROC_MDSTAT).splitlines():
        if line.startswith("md"):
            names.append(line.split(":", 1)[0].strip())
    return names


def array_state(md_device: str) -> Optional[str]:
    name = os.path.basename(md_device)
    txt = _read(os.path.join(SYS_BLOCK, name, "md", "array_state")).strip()
    return txt or None


def mapper_devices() -> List[str]:
    try:
        entries = os.listdir(DEV_MAPPER)
    except OSError:
        return []
    return sorted(e for e in entries if e != "control")


def mapping_open(name: str) -> bool:
    return name in mapper_devices()


def existing_partitions(disk: str) -> List[str]:
    # Same suffix rule as partition_path, so loop10 is never a child of loop1.
    suffix = r"p\d+$" if disk.endswith(tuple("0123456789")) else r"\d+$"
    pattern = re.compile(re.escape(disk) + suffix)
    return sorted(p for p in glob.glob(f"{glob.escape(disk)}*") if pattern.match(p))


def _unescape_mount_field(field: str) -> str:
    return re.sub(r"\\([0-7]{3})", lambda m: chr(int(m.group(1), 8)), field)


def mounted_paths() -> List[str]:
    paths = []
    for line in _read(PROC_MOUNTINFO).splitlines():
        parts = line.split()
        if len(parts) > 4:
            paths.append(_unescape_mount_field(parts[4]))
    return paths


def is_mounted(path: str) -> bool:
    target = os.path.normpath(path)
    return target in mounted_paths()


def mounts_below(root: str) -> List[str]:
    """Mount points at or below ``root``, deepest first."""

    root = os.path.normpath(root)
    found = {p for p in mounted_paths() if p == root or p.startswith(root + "/")}
    return sorted(found, key=lambda p: (p.count("/"), p), reverse=True)


def active_swaps() -> List[str]:
    lines = _read(PROC_SWAPS).splitlines()[1:]
    return [ln.split()[0] for ln in lines if ln.strip()]


def is_luks(dev: str) -> bool:
    return run_cmd(["cryptsetup", "isLuks", dev], check=False).returncode == 0


def signatures(dev: str) -> List[str]:
    """Signature lines ``wipefs -n`` still reports on ``dev`` (header excluded)."""

    r = run_cmd(["wipefs", "-n", dev], check=False)
    lines = [ln for ln in (r.stdout or "").splitlines() if ln.strip()]
    if lines and lines[0].lstrip().upper().startswith("DEVICE"):
        lines = lines[1:]
    return lines


def device_size_sectors(dev: str) -> int:
    r = run_cmd(["blockdev", "--getsz", dev], check=False)
    try:
        return int((r.stdout or "0").strip() or 0)
    except ValueError:
        return 0


def wait_for(
    condition: Callable[[], bool],
    *,
    what: str,
    timeout: float = 30.0,
    interval: float = 0.5,
    settle: bool = True,
) -> None:
    """Poll ``condition`` until true; raise ``TimeoutError`` after ``timeout``."""

    deadline = time.monotonic() + timeout
    while True:
        if condition():
            logger.info("Ready: %s", what)
            return
        if time.monotonic() >= deadline:
            raise TimeoutError(f"{what} not ready after {timeout:.0f}s")
        if settle:
            udev_settle()
        time.sleep(interval)

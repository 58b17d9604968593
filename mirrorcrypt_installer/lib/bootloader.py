from __future__ import annotations

import logging
import os
import re
import shutil
import tempfile
from pathlib import Path
from typing import List, Optional, Sequence

from . import block
from .block import get_uuid
from .chroot import run_script
from .command import run_cmd
from .scripts import grub_script

logger = logging.getLogger(__name__)

GRUB_FRAGMENT_REL = "etc/default/grub.d/60-mirrorcrypt.cfg"


def _version_key(name: str) -> List[object]:
    return [int(p) if p.isdigit() else p for p in re.split(r"(\d+)", name)]


def latest_kernel(target_root: str) -> Optional[str]:
    try:
        versions = os.listdir(Path(target_root) / "lib/modules")
    except OSError:
        return None
    if not versions:
        return None
    return sorted(versions, key=_version_key)[-1]


def link_or_copy(boot_dir: str, alias: str, versioned: str) -> Optional[str]:
    """Point ``alias`` at ``versioned``: symlink first, copy when the fs has no symlinks.

    Returns "symlink", "copy", or None when neither worked.
    """

    src = Path(boot_dir) / versioned
    dst = Path(boot_dir) / alias
    if not src.is_file():
        return None
    try:
        if dst.is_symlink() or dst.exists():
            dst.unlink()
        os.symlink(versioned, dst)
        return "symlink"
    except OSError:
        pass
    try:
        shutil.copyfile(src, dst)
        return "copy"
    except OSError as e:
        logger.warning("Could not create %s link/copy: %s", alias, e)
        return None


def ensure_kernel_boot_files(target_root: str) -> dict:
    """Create /boot/vmlinuz and /boot/initrd.img if the versioned files exist."""

    boot = os.path.join(target_root, "boot")
    version = latest_kernel(target_root)
    result = {"kernel": version, "vmlinuz": None, "initrd.img": None}
    if not version:
        logger.warning("No kernel version found, boot files may need to be created manually")
        return result

    for alias, prefix in (("vmlinuz", "vmlinuz-"), ("initrd.img", "initrd.img-")):
        if os.path.lexists(os.path.join(boot, alias)):
            result[alias] = "present"
            continue
        how = link_or_copy(boot, alias, prefix + version)
        result[alias] = how
        if how:
            logger.info("Created %s %s", alias, how)
        else:
            logger.info("%s%s not found yet", prefix, version)
    return result


def kernel_cmdline(*, mapper_name: str, raid_device: str, redundancy_enabled: bool) -> str:
    root = f"root=/dev/mapper/{mapper_name} rootflags=subvol=@"
    if redundancy_enabled:
        return f"cryptdevice={raid_device}:{mapper_name} {root}"
    return root


def grub_fragment(cmdline: str) -> str:
    return f'GRUB_ENABLE_CRYPTODISK=y\nGRUB_CMDLINE_LINUX="{cmdline}"\n'


def write_grub_fragment(target_root: str, cmdline: str) -> Path:
    p = Path(target_root) / GRUB_FRAGMENT_REL
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(grub_fragment(cmdline), encoding="utf-8")
    logger.info("Wrote GRUB configuration fragment %s", p)
    return p


def _mount_esp(partition: str, boot_dir: str) -> None:
    if block.is_mounted(boot_dir):
        run_cmd(["umount", boot_dir])
    run_cmd(["mount", partition, boot_dir])


def copy_boot_tree(src: str, dst: str) -> int:
    """Copy kernels, initramfs images and grub/ between ESPs.

    Plain data copies only, since FAT keeps no links or modes. ``EFI/`` is
    skipped because grub-install writes it for each drive. Returns the number
    of files copied.
    """

    copied = 0
    for dirpath, dirnames, filenames in os.walk(src):
        rel = os.path.relpath(dirpath, src)
        if rel == ".":
            dirnames[:] = [d for d in dirnames if d != "EFI"]
        out = dst if rel == "." else os.path.join(dst, rel)
        os.makedirs(out, exist_ok=True)
        for name in filenames:
            s = os.path.join(dirpath, name)
            if not os.path.exists(s):
                continue
            d = os.path.join(out, name)
            if os.path.lexists(d):
                os.unlink(d)
            shutil.copyfile(s, d)
            copied += 1
    return copied


def retarget_grub_cfg(boot_dir: str, old_uuid: str, new_uuid: str) -> bool:
    """Point a copied grub.cfg at the ESP it now lives on."""

    cfg = Path(boot_dir) / "grub/grub.cfg"
    if not cfg.is_file() or old_uuid == new_uuid:
        return False
    text = cfg.read_text(encoding="utf-8")
    if old_uuid not in text:
        return False
    cfg.write_text(text.replace(old_uuid, new_uuid), encoding="utf-8")
    return True


def install_on_all(
    *,
    target_root: str,
    boot_partitions: Sequence[str],
    grub_target: str,
    bootloader_id: str,
) -> List[str]:
    """Install GRUB on every drive's ESP so any surviving mirror half boots.

    The first ESP is already mounted at /boot and gets the generated config,
    kernels and initramfs. Those are copied onto each further ESP before its
    own grub-install, and the first ESP is mounted back at the end.
    """

    boot_dir = os.path.join(target_root, "boot")
    installed = []

    first = grub_script(grub_target=grub_target, bootloader_id=bootloader_id)
    run_script(target_root, first.name, first.text)
    installed.append(boot_partitions[0])
    logger.info("GRUB installed to %s", boot_partitions[0])

    if len(boot_partitions) < 2:
        return installed

    first_uuid = get_uuid(boot_partitions[0])
    snapshot = tempfile.mkdtemp(prefix="mirrorcrypt-esp-")
    try:
        copy_boot_tree(boot_dir, snapshot)
        for idx, part in enumerate(boot_partitions[1:], start=1):
            _mount_esp(part, boot_dir)
            n = copy_boot_tree(snapshot, boot_dir)
            retarget_grub_cfg(boot_dir, first_uuid, get_uuid(part))
            logger.info("Copied %d boot files to %s", n, part)
            script = grub_script(grub_target=grub_target, bootloader_id=bootloader_id, drive_index=idx)
            run_script(target_root, script.name, script.text)
            installed.append(part)
            logger.info("GRUB installed to %s", part)
    finally:
        _mount_esp(boot_partitions[0], boot_dir)
        shutil.rmtree(snapshot, ignore_errors=True)

    return installed

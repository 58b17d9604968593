"""The secondary execution context: the target root entered with chroot.

Work crosses the boundary as a generated script written into the target's
/tmp. The script is the whole message; the only answer is its exit status.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import List, Mapping, Optional, Sequence

from ..errors import SecondaryContextError
from . import block
from .command import CmdResult, run_cmd
from .env import PATHS

logger = logging.getLogger(__name__)

# Mount order; unmounted in reverse.
BIND_MOUNTS = ("dev", "dev/pts", "proc", "sys", "run")

RESOLV_MARKER = "# mirrorcrypt-installer: temporary resolver for provisioning"
RESOLV_BACKUP_SUFFIX = ".mirrorcrypt-orig"
FALLBACK_NAMESERVERS = ("8.8.8.8", "8.8.4.4", "1.1.1.1")
POLICY_RC_REL = "usr/sbin/policy-rc.d"


def _target(target_root: str, rel: str) -> str:
    return os.path.join(target_root, rel)


def bind_targets(target_root: str) -> List[str]:
    return [_target(target_root, rel) for rel in BIND_MOUNTS]


def mount_chroot_binds(target_root: str) -> None:
    for rel in BIND_MOUNTS:
        dst = _target(target_root, rel)
        if block.is_mounted(dst):
            continue
        os.makedirs(dst, exist_ok=True)
        run_cmd(["mount", "--bind", f"/{rel}", dst])
    os.makedirs(_target(target_root, "run/udev"), exist_ok=True)
    logger.info("Bind mounts completed successfully")


def umount_chroot_binds(target_root: str) -> List[str]:
    """Lazy, then forced, unmount of each bind that is still mounted."""

    failed = []
    for dst in reversed(bind_targets(target_root)):
        if not block.is_mounted(dst):
            continue
        logger.info("Unmounting %s", dst)
        if run_cmd(["umount", "-l", dst], check=False).ok:
            continue
        if not run_cmd(["umount", "-f", dst], check=False).ok:
            failed.append(dst)
    return failed


def _resolver_usable(path: Path) -> bool:
    try:
        return path.is_file() and path.stat().st_size > 0
    except OSError:
        return False


def ensure_resolver(target_root: str, host_resolv: Optional[str] = None) -> bool:
    """Provide DNS inside the target unless it already has a resolver.

    Returns True when a temporary file was put in place.
    """

    host_resolv = host_resolv or PATHS.host_resolv_conf
    resolv = Path(target_root) / "etc/resolv.conf"
    if _resolver_usable(resolv):
        logger.info("resolv.conf already exists in chroot, keeping existing")
        return False

    if resolv.is_symlink():
        backup = resolv.with_name(resolv.name + RESOLV_BACKUP_SUFFIX)
        os.replace(resolv, backup)
        logger.info("Moved dangling %s aside to %s", resolv, backup)

    body = ""
    try:
        body = Path(host_resolv).read_text(encoding="utf-8")
    except OSError as e:
        logger.info("Could not read host resolv.conf (%s), using fallback nameservers", e)
    if not body.strip():
        body = "".join(f"nameserver {ns}\n" for ns in FALLBACK_NAMESERVERS)

    resolv.parent.mkdir(parents=True, exist_ok=True)
    resolv.write_text(f"{RESOLV_MARKER}\n{body}", encoding="utf-8")
    logger.info("DNS configuration for chroot completed")
    return True


def remove_resolver(target_root: str) -> bool:
    """Remove only a resolver this installer wrote; restore any moved-aside link."""

    resolv = Path(target_root) / "etc/resolv.conf"
    removed = False
    try:
        if resolv.is_file() and not resolv.is_symlink():
            with open(resolv, encoding="utf-8") as fh:
                first = fh.readline().rstrip("\n")
            if first == RESOLV_MARKER:
                resolv.unlink()
                removed = True
    except OSError as e:
        logger.warning("Could not inspect %s: %s", resolv, e)

    backup = resolv.with_name(resolv.name + RESOLV_BACKUP_SUFFIX)
    if os.path.lexists(backup) and not os.path.lexists(resolv):
        os.replace(backup, resolv)
    return removed


def remove_policy_shim(target_root: str) -> bool:
    shim = Path(target_root) / POLICY_RC_REL
    try:
        shim.unlink()
        logger.info("Removed %s", shim)
        return True
    except FileNotFoundError:
        return False


def chroot_cmd(
    target_root: str,
    argv: Sequence[str],
    *,
    check: bool = True,
    input_text: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
) -> CmdResult:
    """Run a command inside target root."""

    return run_cmd(["chroot", target_root, *argv], check=check, input_text=input_text, env=env)


def run_script(
    target_root: str,
    name: str,
    text: str,
    *,
    input_text: Optional[str] = None,
) -> CmdResult:
    """Write, execute once, and delete a generated script inside the target."""

    rel = f"tmp/{name}"
    host_path = Path(target_root) / rel
    host_path.parent.mkdir(parents=True, exist_ok=True)
    host_path.write_text(text, encoding="utf-8")
    os.chmod(host_path, 0o755)
    logger.info("Executing %s inside %s", name, target_root)
    try:
        r = chroot_cmd(
            target_root,
            [f"/{rel}"],
            check=False,
            input_text=input_text,
            env={"DEBIAN_FRONTEND": "noninteractive", "LC_ALL": "C", "LANG": "C"},
        )
    finally:
        try:
            host_path.unlink()
        except FileNotFoundError:
            pass

    if r.returncode != 0:
        tail = "\n".join((r.stderr or "").strip().splitlines()[-20:])
        if tail:
            logger.error("%s stderr (last lines):\n%s", name, tail)
        raise SecondaryContextError(name, r.returncode)
    return r

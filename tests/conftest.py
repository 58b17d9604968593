import logging
import os
import subprocess
from types import SimpleNamespace
from typing import Dict, List, Optional, Sequence, Set

import pytest

from mirrorcrypt_installer.config import InstallerConfig
from mirrorcrypt_installer.lib import block, command
from mirrorcrypt_installer.lib.block import partition_path
from mirrorcrypt_installer.lib.env import Paths

# Modules that bound PATHS at import time.
PATHS_USERS = (
    "mirrorcrypt_installer.lib.teardown",
    "mirrorcrypt_installer.lib.chroot",
    "mirrorcrypt_installer.steps.step_20_raid",
    "mirrorcrypt_installer.steps.step_40_filesystems",
    "mirrorcrypt_installer.steps.step_70_chroot_packages",
)

DISK_SECTORS = 2048 * 1024 * 64  # 64 GiB


class FakeHost:
    """In-memory model of the storage stack behind the real probe and command code.

    Commands go through ``run_cmd`` into ``subprocess.run``, which lands here;
    the /proc and /dev/mapper probes read files this class keeps in sync.
    """

    def __init__(self, root):
        self.root = root
        self.disks: Dict[str, int] = {}
        self.partitions: Dict[str, List[str]] = {}
        self.mounts: List[str] = []
        self.swaps: List[str] = []
        self.arrays: Dict[str, List[str]] = {}
        self.mappers: Dict[str, str] = {}
        self.luks: Set[str] = set()
        self.md_superblocks: Set[str] = set()
        self.sigs: Dict[str, List[str]] = {}
        self.calls: List[List[str]] = []
        self.inputs: List[Optional[str]] = []
        self.failures: Dict[tuple, int] = {}
        self.cryptsetup_version = "cryptsetup 2.7.0 flags: UDEV BLKID KEYRING"

        self.mdstat = root / "mdstat"
        self.mountinfo = root / "mountinfo"
        self.swapfile = root / "swaps"
        self.mapper_dir = root / "mapper"
        self.sys_block = root / "sys-block"
        self.mapper_dir.mkdir()
        self.sys_block.mkdir()
        self.sync()

    # -- state helpers -------------------------------------------------

    def add_disk(self, disk: str, sectors: int = DISK_SECTORS) -> None:
        self.disks[disk] = sectors
        self.partitions.setdefault(disk, [])
        self.sigs.setdefault(disk, [])

    def block_devices(self) -> Set[str]:
        devs = set(self.disks)
        for parts in self.partitions.values():
            devs.update(parts)
        devs.update(f"/dev/{name}" for name in self.arrays)
        devs.update(f"/dev/mapper/{name}" for name in self.mappers)
        return devs

    def fail(self, *prefix: str, rc: int = 1) -> None:
        self.failures[tuple(prefix)] = rc

    def commands(self, name: str) -> List[List[str]]:
        return [c for c in self.calls if c and c[0] == name]

    def sync(self) -> None:
        self.mdstat.write_text(
            "Personalities : [raid1]\n"
            + "".join(f"{name} : active raid1 {' '.join(os.path.basename(m) for m in members)}\n" for name, members in self.arrays.items())
            + "unused devices: <none>\n"
        )
        self.mountinfo.write_text(
            "".join(f"{i + 40} 1 0:{i} / {path} rw,relatime shared:1 - fake fake rw\n" for i, path in enumerate(self.mounts))
        )
        self.swapfile.write_text(
            "Filename\tType\tSize\tUsed\tPriority\n" + "".join(f"{s}\tfile\t1024\t0\t-2\n" for s in self.swaps)
        )
        for entry in self.mapper_dir.iterdir():
            entry.unlink()
        (self.mapper_dir / "control").touch()
        for name in self.mappers:
            (self.mapper_dir / name).touch()
        for name in self.arrays:
            md = self.sys_block / name / "md"
            md.mkdir(parents=True, exist_ok=True)
            (md / "array_state").write_text("clean\n")

    # -- command emulation ---------------------------------------------

    def run(self, argv, input=None, **_kwargs):
        argv = list(argv)
        self.calls.append(argv)
        self.inputs.append(input)
        for prefix, rc in self.failures.items():
            if tuple(argv[: len(prefix)]) == prefix:
                return subprocess.CompletedProcess(argv, rc, "", "simulated failure")
        rc, out = self._dispatch(argv)
        self.sync()
        return subprocess.CompletedProcess(argv, rc, out, "")

    def _dispatch(self, argv: Sequence[str]):
        cmd = argv[0]
        handler = getattr(self, "_cmd_" + cmd.replace(".", "_").replace("-", "_"), None)
        if handler is None:
            return 0, ""
        return handler(argv)

    def _cmd_mount(self, argv):
        target = os.path.normpath(argv[-1])
        if target not in self.mounts:
            self.mounts.append(target)
        return 0, ""

    def _cmd_umount(self, argv):
        target = os.path.normpath(argv[-1])
        if target not in self.mounts:
            return 32, ""
        self.mounts.remove(target)
        return 0, ""

    def _cmd_swapon(self, argv):
        self.swaps.append(argv[-1])
        return 0, ""

    def _cmd_swapoff(self, argv):
        if argv[-1] == "-a":
            self.swaps.clear()
        elif argv[-1] in self.swaps:
            self.swaps.remove(argv[-1])
        else:
            return 255, ""
        return 0, ""

    def _cmd_cryptsetup(self, argv):
        if "--version" in argv:
            return 0, self.cryptsetup_version + "\n"
        if "isLuks" in argv:
            return (0 if argv[-1] in self.luks else 1), ""
        if "luksFormat" in argv:
            self.luks.add(argv[-1])
            self.sigs[argv[-1]] = ["0x0 crypto_LUKS"]
            return 0, ""
        if "open" in argv:
            i = argv.index("open")
            self.mappers[argv[i + 2]] = argv[i + 1]
            return 0, ""
        if "close" in argv:
            return (0 if self.mappers.pop(argv[-1], None) else 4), ""
        if "erase" in argv:
            if argv[-1] not in self.luks:
                return 1, ""
            self.luks.discard(argv[-1])
            return 0, ""
        return 0, ""

    def _cmd_dmsetup(self, argv):
        if "remove_all" in argv:
            self.mappers.clear()
            return 0, ""
        return (0 if self.mappers.pop(argv[-1], None) else 1), ""

    def _cmd_mdadm(self, argv):
        if "--stop" in argv:
            return (0 if self.arrays.pop(os.path.basename(argv[-1]), None) is not None else 1), ""
        if "--examine" in argv:
            return (0 if argv[-1] in self.md_superblocks else 1), ""
        if "--zero-superblock" in argv:
            if argv[-1] not in self.md_superblocks:
                return 1, ""
            self.md_superblocks.discard(argv[-1])
            return 0, ""
        if "--create" in argv:
            md = argv[argv.index("--create") + 1]
            members = [a for a in argv if a.startswith("/dev/") and a != md]
            self.arrays[os.path.basename(md)] = members
            self.md_superblocks.update(members)
            return 0, ""
        if "--scan" in argv:
            return 0, "".join(f"ARRAY /dev/{n} metadata=1.2 name=live:{n[2:]} UUID=aaaa:bbbb\n" for n in self.arrays)
        return 0, ""

    def _cmd_wipefs(self, argv):
        dev = argv[-1]
        if "-n" in argv:
            lines = self.sigs.get(dev, [])
            header = "DEVICE OFFSET TYPE UUID LABEL\n" if lines else ""
            return 0, header + "".join(f"{dev} {ln}\n" for ln in lines)
        self.sigs[dev] = []
        return 0, ""

    def _cmd_sgdisk(self, argv):
        self.partitions[argv[-1]] = []
        return 0, ""

    def _cmd_parted(self, argv):
        disk = argv[2]
        if "mklabel" in argv:
            self.partitions[disk] = []
        elif "mkpart" in argv:
            parts = self.partitions.setdefault(disk, [])
            parts.append(partition_path(disk, len(parts) + 1))
        return 0, ""

    def _cmd_blkid(self, argv):
        dev = argv[-1]
        return 0, "UUID-" + os.path.basename(dev) + "\n"

    def _cmd_blockdev(self, argv):
        if "--getsz" in argv:
            return 0, f"{self.disks.get(argv[-1], 0)}\n"
        return 0, ""

    def _cmd_dpkg(self, argv):
        return 0, "amd64\n"

    def _cmd_mkfs_btrfs(self, argv):
        self.sigs[argv[-1]] = ["0x10040 btrfs"]
        return 0, ""

    def _cmd_debootstrap(self, argv):
        target = argv[-2]
        for d in ("etc", "usr/sbin", "var", "lib/modules/6.8.0-31-generic", "boot", "tmp"):
            os.makedirs(os.path.join(target, d), exist_ok=True)
        return 0, ""


@pytest.fixture
def fake_host(tmp_path, monkeypatch):
    (tmp_path / "host").mkdir()
    host = FakeHost(tmp_path / "host")

    monkeypatch.setattr(command, "subprocess", SimpleNamespace(run=host.run, PIPE=subprocess.PIPE, TimeoutExpired=subprocess.TimeoutExpired))
    monkeypatch.setattr(command.shutil, "which", lambda tool: f"/usr/sbin/{tool}")
    monkeypatch.setattr(block, "PROC_MDSTAT", str(host.mdstat))
    monkeypatch.setattr(block, "PROC_MOUNTINFO", str(host.mountinfo))
    monkeypatch.setattr(block, "PROC_SWAPS", str(host.swapfile))
    monkeypatch.setattr(block, "DEV_MAPPER", str(host.mapper_dir))
    monkeypatch.setattr(block, "SYS_BLOCK", str(host.sys_block))
    monkeypatch.setattr(block, "is_block_device", lambda path: path in host.block_devices())
    monkeypatch.setattr(block, "existing_partitions", lambda disk: list(host.partitions.get(disk, [])))
    monkeypatch.setattr(block.time, "sleep", lambda _s: None)

    paths = Paths(
        mount_point=str(tmp_path / "target"),
        btrfs_scratch=str(tmp_path / "btrfs-root"),
        raid_staging_dir=str(tmp_path / "raid-config"),
        host_mdadm_conf=str(tmp_path / "etc-mdadm" / "mdadm.conf"),
        host_resolv_conf=str(tmp_path / "resolv.conf"),
        journal_default=str(tmp_path / "journal.json"),
        log_default=str(tmp_path / "installer.log"),
    )
    for mod in PATHS_USERS:
        monkeypatch.setattr(f"{mod}.PATHS", paths)
    host.paths = paths
    return host


@pytest.fixture
def make_config(fake_host):
    def _make(*devices, **kw):
        kw.setdefault("mount_point", fake_host.paths.mount_point)
        kw.setdefault("luks_password", "luks-secret")
        kw.setdefault("user_password", "user-secret")
        return InstallerConfig(devices=tuple(devices), **kw)

    return _make


@pytest.fixture(autouse=True)
def _reset_root_logging():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for h in root.handlers[:]:
        if h not in handlers:
            root.removeHandler(h)
            h.close()
    root.setLevel(level)
    for attr in ("_mirrorcrypt_configured", "_mirrorcrypt_log_path"):
        if hasattr(root, attr):
            delattr(root, attr)

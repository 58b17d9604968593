import os

from mirrorcrypt_installer.lib import chroot, teardown
from mirrorcrypt_installer.lib.mounts import build_mount_tree, swapfile_path


def _build_full_stack(host, cfg):
    """Everything a run leaves behind right before the bootloader stage."""

    for disk in cfg.devices:
        host.add_disk(disk)
        host.partitions[disk] = [disk + "1", disk + "2"]
        host.sigs[disk] = ["0x200 gpt", "0x3ffffe00 gpt", "0x1fe PMBR"]
        host.sigs[disk + "1"] = ["0x52 vfat"]
    if len(cfg.devices) > 1:
        members = [d + "2" for d in cfg.devices]
        host.arrays["md0"] = members
        host.md_superblocks.update(members)
        backing = "/dev/md0"
    else:
        backing = cfg.devices[0] + "2"
    host.luks.add(backing)
    host.sigs[backing] = ["0x0 crypto_LUKS"]
    host.mappers[cfg.mapper_name] = backing

    root = cfg.mount_point
    tree = build_mount_tree(
        mount_point=root,
        mapper_device=f"/dev/mapper/{cfg.mapper_name}",
        boot_partition=cfg.devices[0] + "1",
        swap_enabled=True,
    )
    host.mounts.extend(b.target for b in tree)
    host.mounts.extend(chroot.bind_targets(root))
    host.swaps.append(swapfile_path(root))
    os.makedirs(os.path.join(root, "etc"), exist_ok=True)
    chroot.ensure_resolver(root, "/nonexistent")
    os.makedirs(host.paths.raid_staging_dir, exist_ok=True)
    host.sync()


def test_teardown_removes_every_layer(fake_host, make_config):
    cfg = make_config("/dev/sda", "/dev/sdb")
    _build_full_stack(fake_host, cfg)

    report = teardown.teardown(cfg)

    assert report.errors == []
    assert report.clean
    assert fake_host.mounts == []
    assert fake_host.swaps == []
    assert fake_host.arrays == {}
    assert fake_host.mappers == {}
    assert fake_host.luks == set()
    assert fake_host.md_superblocks == set()
    assert fake_host.partitions == {"/dev/sda": [], "/dev/sdb": []}
    assert not os.path.exists(os.path.join(cfg.mount_point, "etc/resolv.conf"))
    assert not os.path.exists(fake_host.paths.raid_staging_dir)


def test_teardown_is_idempotent(fake_host, make_config):
    cfg = make_config("/dev/sda", "/dev/sdb")
    _build_full_stack(fake_host, cfg)

    first = teardown.teardown(cfg)
    state_after_first = (list(fake_host.mounts), dict(fake_host.arrays), dict(fake_host.mappers), dict(fake_host.sigs))
    second = teardown.teardown(cfg)

    assert second.errors == []
    assert second.as_dict()["clean"] and first.as_dict()["clean"]
    assert (fake_host.mounts, fake_host.arrays, fake_host.mappers, fake_host.sigs) == state_after_first


def test_unwind_order_is_reverse_of_mount_order(fake_host, make_config):
    cfg = make_config("/dev/sda")
    _build_full_stack(fake_host, cfg)
    mount_order = list(fake_host.mounts)

    teardown.teardown(cfg)

    unmounted = [c[-1] for c in fake_host.commands("umount")]
    assert unmounted == list(reversed(mount_order))


def test_layers_are_removed_top_down(fake_host, make_config):
    cfg = make_config("/dev/sda", "/dev/sdb")
    _build_full_stack(fake_host, cfg)

    teardown.teardown(cfg)

    def first(pred):
        return next(i for i, c in enumerate(fake_host.calls) if pred(c))

    last_umount = max(i for i, c in enumerate(fake_host.calls) if c[0] == "umount")
    close = first(lambda c: c[:2] == ["cryptsetup", "close"])
    erase = first(lambda c: "erase" in c)
    stop = first(lambda c: c[:2] == ["mdadm", "--stop"])
    zap = first(lambda c: c[0] == "sgdisk")
    assert last_umount < close < erase < stop < zap


def test_formatted_but_locked_container_is_erased(fake_host, make_config):
    cfg = make_config("/dev/sda")
    fake_host.add_disk("/dev/sda")
    fake_host.partitions["/dev/sda"] = ["/dev/sda1", "/dev/sda2"]
    fake_host.luks.add("/dev/sda2")
    fake_host.sync()

    report = teardown.teardown(cfg)

    assert ["cryptsetup", "-q", "erase", "/dev/sda2"] in fake_host.calls
    assert fake_host.luks == set()
    assert report.errors == []


def test_boundary_wipe_covers_head_and_tail(fake_host, make_config):
    cfg = make_config("/dev/sda")
    fake_host.add_disk("/dev/sda", sectors=2048 * 1000)

    teardown.teardown(cfg)

    dds = fake_host.commands("dd")
    assert "count=100" in dds[0] and not any(a.startswith("seek=") for a in dds[0])
    assert "seek=900" in dds[1]


def test_one_stuck_resource_does_not_stop_the_rest(fake_host, make_config):
    cfg = make_config("/dev/sda", "/dev/sdb")
    _build_full_stack(fake_host, cfg)
    fake_host.fail("mdadm", "--stop")

    report = teardown.teardown(cfg)

    assert any("mdadm --stop" in e for e in report.errors)
    assert report.arrays == ["md0"]
    assert not report.clean
    assert fake_host.mappers == {}
    assert fake_host.partitions == {"/dev/sda": [], "/dev/sdb": []}


def test_missing_device_is_skipped(fake_host, make_config):
    report = teardown.teardown(make_config("/dev/sdz"))
    assert report.errors == []
    assert fake_host.commands("sgdisk") == []


def test_safe_unmount_keeps_installed_system(fake_host, make_config):
    cfg = make_config("/dev/sda")
    _build_full_stack(fake_host, cfg)
    shim = os.path.join(cfg.mount_point, chroot.POLICY_RC_REL)
    os.makedirs(os.path.dirname(shim), exist_ok=True)
    open(shim, "w").close()

    report = teardown.safe_unmount(cfg)

    assert report.errors == []
    assert not os.path.exists(shim)
    assert not os.path.exists(os.path.join(cfg.mount_point, "etc/resolv.conf"))
    assert not any(m.startswith(os.path.join(cfg.mount_point, "dev")) for m in fake_host.mounts)
    assert cfg.mount_point in fake_host.mounts
    assert fake_host.mappers and fake_host.luks
    assert fake_host.commands("sgdisk") == []

import os
import shutil

from mirrorcrypt_installer.lib import bootloader


def _kernel(root, version):
    (root / "lib/modules" / version).mkdir(parents=True)
    boot = root / "boot"
    boot.mkdir(exist_ok=True)
    (boot / f"vmlinuz-{version}").write_text("k")
    (boot / f"initrd.img-{version}").write_text("i")


def test_latest_kernel_uses_version_order(tmp_path):
    (tmp_path / "lib/modules/6.8.0-9-generic").mkdir(parents=True)
    (tmp_path / "lib/modules/6.8.0-31-generic").mkdir(parents=True)
    assert bootloader.latest_kernel(str(tmp_path)) == "6.8.0-31-generic"
    assert bootloader.latest_kernel(str(tmp_path / "empty")) is None


def test_boot_files_symlinked(tmp_path):
    _kernel(tmp_path, "6.8.0-31-generic")
    result = bootloader.ensure_kernel_boot_files(str(tmp_path))
    assert result["vmlinuz"] == "symlink"
    assert os.readlink(tmp_path / "boot/vmlinuz") == "vmlinuz-6.8.0-31-generic"
    assert bootloader.ensure_kernel_boot_files(str(tmp_path))["initrd.img"] == "present"


def test_boot_files_copied_when_symlinks_fail(tmp_path, monkeypatch):
    _kernel(tmp_path, "6.8.0-31-generic")

    def no_symlinks(*_a, **_kw):
        raise OSError("Operation not permitted")

    monkeypatch.setattr(bootloader.os, "symlink", no_symlinks)
    result = bootloader.ensure_kernel_boot_files(str(tmp_path))
    assert result["vmlinuz"] == "copy"
    assert (tmp_path / "boot/vmlinuz").read_text() == "k"
    assert not (tmp_path / "boot/vmlinuz").is_symlink()


def test_kernel_cmdline_depends_on_plan():
    raid = bootloader.kernel_cmdline(mapper_name="cryptroot", raid_device="/dev/md0", redundancy_enabled=True)
    single = bootloader.kernel_cmdline(mapper_name="cryptroot", raid_device="/dev/md0", redundancy_enabled=False)
    assert raid == "cryptdevice=/dev/md0:cryptroot root=/dev/mapper/cryptroot rootflags=subvol=@"
    assert single == "root=/dev/mapper/cryptroot rootflags=subvol=@"


def test_grub_fragment(tmp_path):
    path = bootloader.write_grub_fragment(str(tmp_path), "root=/dev/mapper/cryptroot")
    assert path == tmp_path / bootloader.GRUB_FRAGMENT_REL
    assert path.read_text() == 'GRUB_ENABLE_CRYPTODISK=y\nGRUB_CMDLINE_LINUX="root=/dev/mapper/cryptroot"\n'


def _first_esp(boot):
    (boot / "grub").mkdir(parents=True)
    (boot / "EFI/debian").mkdir(parents=True)
    (boot / "vmlinuz-6.8.0-31-generic").write_text("k")
    (boot / "initrd.img-6.8.0-31-generic").write_text("i")
    (boot / "grub/grub.cfg").write_text("search --no-floppy --fs-uuid --set=root UUID-sda1\n")
    (boot / "EFI/debian/grubx64.efi").write_text("efi")


def test_install_on_every_drive_and_restore_first_esp(fake_host, tmp_path, monkeypatch):
    root = tmp_path / "target"
    boot = root / "boot"
    _first_esp(boot)
    fake_host.mounts.append(str(boot))

    real_mount_esp = bootloader._mount_esp

    def fresh_esp(partition, boot_dir):
        real_mount_esp(partition, boot_dir)
        if partition != "/dev/sda1":
            shutil.rmtree(boot_dir)
            os.makedirs(boot_dir)

    monkeypatch.setattr(bootloader, "_mount_esp", fresh_esp)

    esp_contents = {}

    def chroot(argv):
        esp_contents[argv[-1]] = sorted(str(p.relative_to(boot)) for p in boot.rglob("*") if p.is_file())
        if argv[-1].endswith("drive_1.sh"):
            esp_contents["grub.cfg"] = (boot / "grub/grub.cfg").read_text()
        return 0, ""

    fake_host._cmd_chroot = chroot

    installed = bootloader.install_on_all(
        target_root=str(root),
        boot_partitions=["/dev/sda1", "/dev/sdb1"],
        grub_target="x86_64-efi",
        bootloader_id="debian",
    )

    assert installed == ["/dev/sda1", "/dev/sdb1"]
    scripts_run = [c[-1] for c in fake_host.commands("chroot")]
    assert scripts_run == ["/tmp/grub_setup.sh", "/tmp/grub_setup_drive_1.sh"]
    last_mount = fake_host.commands("mount")[-1]
    assert last_mount == ["mount", "/dev/sda1", str(boot)]
    # The second ESP boots on its own: kernel, initramfs and config are there
    # before its grub-install, and the config searches for its own UUID.
    assert esp_contents["/tmp/grub_setup_drive_1.sh"] == [
        "grub/grub.cfg",
        "initrd.img-6.8.0-31-generic",
        "vmlinuz-6.8.0-31-generic",
    ]
    assert "UUID-sdb1" in esp_contents["grub.cfg"]
    assert "UUID-sda1" not in esp_contents["grub.cfg"]


def test_copy_boot_tree_follows_links(tmp_path):
    src = tmp_path / "src"
    _first_esp(src)
    os.symlink("vmlinuz-6.8.0-31-generic", src / "vmlinuz")
    os.symlink("missing", src / "initrd.img")
    dst = tmp_path / "dst"

    assert bootloader.copy_boot_tree(str(src), str(dst)) == 4
    assert (dst / "vmlinuz").read_text() == "k"
    assert not (dst / "vmlinuz").is_symlink()
    assert not (dst / "EFI").exists()
    assert not os.path.lexists(dst / "initrd.img")


def test_retarget_grub_cfg(tmp_path):
    _first_esp(tmp_path)
    assert bootloader.retarget_grub_cfg(str(tmp_path), "UUID-sda1", "UUID-sdb1")
    assert "UUID-sdb1" in (tmp_path / "grub/grub.cfg").read_text()
    assert not bootloader.retarget_grub_cfg(str(tmp_path), "UUID-sda1", "UUID-sdb1")


def test_single_drive_installs_once(fake_host, tmp_path):
    installed = bootloader.install_on_all(
        target_root=str(tmp_path), boot_partitions=["/dev/sda1"], grub_target="arm64-efi", bootloader_id="debian"
    )
    assert installed == ["/dev/sda1"]
    assert fake_host.commands("mount") == []

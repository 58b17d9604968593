"""Generated scripts executed inside the target root.

Each script is a header of shell variable assignments (all values quoted with
shlex) followed by a fixed body. Nothing else crosses into the chroot.
"""

from __future__ import annotations

import shlex
from dataclasses import dataclass
from typing import Mapping, Sequence

PACKAGES_SCRIPT = "chroot_setup.sh"
USER_SCRIPT = "create_user.sh"
GRUB_SCRIPT = "grub_setup.sh"

BASE_PACKAGES = (
    "grub-efi-{arch}",
    "grub-efi-{arch}-signed",
    "shim-signed",
    "openssh-server",
    "mdadm",
    "cryptsetup",
    "btrfs-progs",
    "curl",
    "wget",
    "vim",
    "htop",
    "net-tools",
    "netplan.io",
)

KERNEL_PACKAGES = ("linux-image-generic", "linux-headers-generic")
ENABLED_SERVICES = ("ssh", "systemd-networkd", "systemd-resolved")
INITRAMFS_MODULES = ("dm_mod", "dm_crypt", "dm_raid", "raid1", "aes", "aes_x86_64", "xts", "cbc")
RAID_STAGING_IN_TARGET = "/tmp/raid-config/mdadm.conf"


@dataclass(frozen=True)
class GeneratedScript:
    name: str
    text: str


def _header(params: Mapping[str, str]) -> str:
    lines = ["#!/bin/bash", "set -euo pipefail", ""]
    lines += [f"{k}={shlex.quote(str(v))}" for k, v in params.items()]
    return "\n".join(lines) + "\n"


def _words(items: Sequence[str]) -> str:
    return " ".join(items)


_PACKAGES_BODY = r"""
export DEBIAN_FRONTEND=noninteractive LC_ALL=C LANG=C

log_progress() {
    echo "[$(date '+%Y-%m-%d %H:%M:%S')] $*"
}

restore_hooks() {
    rm -f /usr/sbin/policy-rc.d
    if [ -f /usr/bin/linux-update-symlinks.original ]; then
        mv -f /usr/bin/linux-update-symlinks.original /usr/bin/linux-update-symlinks
    fi
    rm -f /etc/kernel/postinst.d/zzz-skip-symlinks /etc/kernel/prerm.d/zzz-skip-symlinks
}
trap restore_hooks EXIT

log_progress "Updating package lists..."
apt-get update

log_progress "Installing locales..."
apt-get install -y locales
grep -qx 'en_US.UTF-8 UTF-8' /etc/locale.gen 2>/dev/null || echo 'en_US.UTF-8 UTF-8' >> /etc/locale.gen
locale-gen
update-locale LANG=en_US.UTF-8

cat > /etc/apt/apt.conf.d/90assumeyes << 'APT_EOF'
APT::Get::Assume-Yes "true";
APT_EOF
cat > /etc/apt/apt.conf.d/90allowoptions << 'APT_EOF'
APT::Get::Allow-Unauthenticated "true";
APT::Get::Allow-Downgrades "true";
APT::Get::Allow-Change-Held-Packages "true";
DPkg::Options "--force-confdef";
DPkg::Options "--force-confold";
APT_EOF

# Services must not start inside the chroot.
printf '#!/bin/sh\nexit 101\n' > /usr/sbin/policy-rc.d
chmod +x /usr/sbin/policy-rc.d

log_progress "Installing base packages (non-kernel)..."
apt-get install -y $BASE_PACKAGES

mkdir -p /etc/initramfs-tools/conf.d
cat > /etc/initramfs-tools/conf.d/cryptroot << 'INITRAMFS_EOF'
CRYPTSETUP=y
KEYFILE_PATTERN=/etc/keys/*.key
UMASK=0077
INITRAMFS_EOF

# Kernel symlink hooks fail inside a chroot; neutralise them until the kernel is in.
mkdir -p /etc/kernel/postinst.d /etc/kernel/prerm.d
for d in postinst.d prerm.d; do
    printf '#!/bin/sh\nexit 0\n' > /etc/kernel/$d/zzz-skip-symlinks
    chmod +x /etc/kernel/$d/zzz-skip-symlinks
done
if [ -f /usr/bin/linux-update-symlinks ]; then
    mv /usr/bin/linux-update-symlinks /usr/bin/linux-update-symlinks.original
    printf '#!/bin/sh\nexit 0\n' > /usr/bin/linux-update-symlinks
    chmod +x /usr/bin/linux-update-symlinks
fi

have_modules() {
    ls /lib/modules/ 2>/dev/null | grep -q .
}

log_progress "Installing kernel packages..."
if INITRD=No apt-get install -y $KERNEL_PACKAGES; then
    log_progress "Kernel packages installed successfully"
else
    log_progress "Kernel package installation had issues, attempting recovery..."
    dpkg --configure -a || true
    apt-get install -f -y || true
    if have_modules; then
        log_progress "Found installed kernel modules, proceeding despite package errors"
    else
        log_progress "No kernel modules found, trying alternative kernel packages..."
        for kernel_pkg in $(apt-cache search '^linux-image-[0-9]' | head -n "$KERNEL_CANDIDATES" | cut -d' ' -f1); do
            log_progress "Trying to install $kernel_pkg..."
            if apt-get install -y "$kernel_pkg"; then
                log_progress "Successfully installed $kernel_pkg"
                break
            fi
        done
    fi
fi

if ! ls /boot/vmlinuz-* >/dev/null 2>&1; then
    log_progress "No kernel image in /boot, attempting to finish incomplete configuration..."
    dpkg --configure -a || true
    apt-get install -f -y || true
fi

restore_hooks

if have_modules; then
    for kernel in $(ls /lib/modules/); do
        log_progress "  - Kernel: $kernel"
    done
else
    log_progress "Warning: no kernel modules found in /lib/modules"
fi
if ! ls /boot/vmlinuz-* >/dev/null 2>&1; then
    log_progress "Warning: still no kernel image in /boot after recovery attempts"
fi

if [ "$INSTALL_NVIDIA" = "true" ] && [ -n "$NVIDIA_PACKAGE" ]; then
    log_progress "Installing NVIDIA drivers via $NVIDIA_PACKAGE..."
    apt-get install -y "$NVIDIA_PACKAGE"
    if [ "$NVIDIA_PACKAGE" = "ubuntu-drivers-common" ]; then
        ubuntu-drivers autoinstall
    fi
fi

for svc in $ENABLED_SERVICES; do
    systemctl enable "$svc"
done

if ! netplan generate 2>&1; then
    echo "Warning: netplan configuration had issues, continuing (resolved on first boot)"
fi

log_progress "Configuring initramfs for RAID and LUKS..."
printf '%s\n' '# Modules required for RAID + LUKS setup' $INITRAMFS_MODULES > /etc/initramfs-tools/modules
echo "CRYPTSETUP=y" > /etc/initramfs-tools/conf.d/cryptsetup

mkdir -p /etc/mdadm
if [ -f "$RAID_STAGING" ]; then
    log_progress "Using RAID configuration from host"
    cp "$RAID_STAGING" /etc/mdadm/mdadm.conf
fi

log_progress "Generating initramfs..."
for kernel in $(ls /lib/modules/ 2>/dev/null); do
    if update-initramfs -c -k "$kernel"; then
        echo "Created initramfs for $kernel"
    elif update-initramfs -u -k "$kernel"; then
        echo "Updated initramfs for $kernel"
    else
        echo "Warning: failed to generate initramfs for $kernel, continuing"
    fi
done

log_progress "Chroot setup script completed successfully"
"""


def packages_script(*, arch: str, install_nvidia: bool, nvidia_package: str, kernel_candidates: int = 3) -> GeneratedScript:
    params = {
        "BASE_PACKAGES": _words([p.format(arch=arch) for p in BASE_PACKAGES]),
        "KERNEL_PACKAGES": _words(KERNEL_PACKAGES),
        "KERNEL_CANDIDATES": str(kernel_candidates),
        "INSTALL_NVIDIA": "true" if install_nvidia else "false",
        "NVIDIA_PACKAGE": nvidia_package,
        "ENABLED_SERVICES": _words(ENABLED_SERVICES),
        "INITRAMFS_MODULES": _words(INITRAMFS_MODULES),
        "RAID_STAGING": RAID_STAGING_IN_TARGET,
    }
    return GeneratedScript(PACKAGES_SCRIPT, _header(params) + _PACKAGES_BODY)


_USER_BODY = r"""
export DEBIAN_FRONTEND=noninteractive

IFS= read -r PASSWORD
if ! id "$USERNAME" >/dev/null 2>&1; then
    useradd -m -s /bin/bash -G sudo "$USERNAME"
fi
printf '%s:%s\n' "$USERNAME" "$PASSWORD" | chpasswd

mkdir -p "/home/$USERNAME/.ssh"
chmod 700 "/home/$USERNAME/.ssh"
chown "$USERNAME:$USERNAME" "/home/$USERNAME/.ssh"
"""


def user_script(*, username: str) -> GeneratedScript:
    """The password is fed on stdin so it never lands in the script file."""

    return GeneratedScript(USER_SCRIPT, _header({"USERNAME": username}) + _USER_BODY)


_GRUB_INSTALL = r"""
export DEBIAN_FRONTEND=noninteractive

grub-install --target="$GRUB_TARGET" --efi-directory=/boot --bootloader-id="$BOOTLOADER_ID" --recheck
"""

_GRUB_FINALIZE = r"""
update-grub

if ! update-initramfs -u -k all; then
    echo "Warning: initramfs update had issues, continuing"
fi
"""


def grub_script(*, grub_target: str, bootloader_id: str, drive_index: int = 0) -> GeneratedScript:
    """Install GRUB onto the ESP at /boot.

    Only the first drive regenerates config; later drives get copies of it.
    """

    params = {"GRUB_TARGET": grub_target, "BOOTLOADER_ID": bootloader_id}
    body = _GRUB_INSTALL
    name = GRUB_SCRIPT
    if drive_index == 0:
        body += _GRUB_FINALIZE
    else:
        name = f"grub_setup_drive_{drive_index}.sh"
    return GeneratedScript(name, _header(params) + body)

"""Mirrorcrypt installer.

Provisions an encrypted, optionally mirrored system onto raw disks from a
live environment:

- RAID1 across every target drive when more than one is given
- LUKS on the array (or on the single data partition)
- btrfs subvolumes, debootstrap, configuration inside a chroot
- GRUB on every drive's ESP
- Idempotent teardown for the failure path and for cleanup-only runs
"""

__version__ = "1.0.0"

__all__ = ["__version__"]

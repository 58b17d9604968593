from .step_10_partition import PartitionStep
from .step_20_raid import RedundancyStep
from .step_30_encrypt import EncryptionStep
from .step_40_filesystems import FilesystemStep
from .step_50_mount import MountStep
from .step_60_base_system import BaseSystemStep
from .step_65_configure_system import ConfigureSystemStep
from .step_70_chroot_packages import ChrootPackagesStep
from .step_75_create_user import CreateUserStep
from .step_80_crypttab import CrypttabStep
from .step_90_bootloader import BootloaderStep

__all__ = [
    "PartitionStep",
    "RedundancyStep",
    "EncryptionStep",
    "FilesystemStep",
    "MountStep",
    "BaseSystemStep",
    "ConfigureSystemStep",
    "ChrootPackagesStep",
    "CreateUserStep",
    "CrypttabStep",
    "BootloaderStep",
]

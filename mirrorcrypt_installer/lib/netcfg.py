from __future__ import annotations

import logging
import os
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

NETPLAN_REL = "etc/netplan/01-network-manager-all.yaml"


def _write_file(root: str, rel: str, contents: str, *, mode: int | None = None) -> Path:
    p = Path(root) / rel.lstrip("/")
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(contents, encoding="utf-8")
    if mode is not None:
        os.chmod(p, mode)
    return p


def hosts_file(hostname: str) -> str:
    return "\n".join(
        [
            "127.0.0.1 localhost",
            f"127.0.1.1 {hostname}",
            "",
            "# The following lines are desirable for IPv6 capable hosts",
            "::1 localhost ip6-localhost ip6-loopback",
            "ff02::1 ip6-allnodes",
            "ff02::2 ip6-allrouters",
            "",
        ]
    )


def netplan_config() -> str:
    doc = {
        "network": {
            "version": 2,
            "renderer": "networkd",
            "ethernets": {
                "ethernet-devices": {
                    "match": {"name": "enp*"},
                    "dhcp4": True,
                },
            },
        },
    }
    return yaml.safe_dump(doc, sort_keys=False)


def write_system_identity(target_root: str, hostname: str) -> None:
    _write_file(target_root, "/etc/hostname", hostname + "\n")
    _write_file(target_root, "/etc/hosts", hosts_file(hostname))
    # netplan refuses world-readable configs
    _write_file(target_root, NETPLAN_REL, netplan_config(), mode=0o600)
    logger.info("System configuration completed (hostname=%s)", hostname)

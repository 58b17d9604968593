import os

import yaml

from mirrorcrypt_installer.lib import netcfg


def test_system_identity_files(tmp_path):
    netcfg.write_system_identity(str(tmp_path), "black")

    assert (tmp_path / "etc/hostname").read_text() == "black\n"
    hosts = (tmp_path / "etc/hosts").read_text()
    assert "127.0.1.1 black" in hosts
    assert "::1 localhost ip6-localhost ip6-loopback" in hosts
    netplan = tmp_path / netcfg.NETPLAN_REL
    assert "renderer: networkd" in netplan.read_text()
    assert os.stat(netplan).st_mode & 0o777 == 0o600


def test_netplan_matches_ethernet_by_name():
    doc = yaml.safe_load(netcfg.netplan_config())
    match = doc["network"]["ethernets"]["ethernet-devices"]
    assert match == {"match": {"name": "enp*"}, "dhcp4": True}

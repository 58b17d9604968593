import logging
import subprocess

import pytest

from mirrorcrypt_installer.errors import CommandError
from mirrorcrypt_installer.lib import command


def test_failure_raises_with_context(fake_host):
    fake_host.fail("false", rc=2)
    with pytest.raises(CommandError) as exc:
        command.run_cmd(["false"])
    assert exc.value.returncode == 2
    assert exc.value.argv == ["false"]
    assert "simulated failure" in exc.value.stderr


def test_failure_without_check_returns_result(fake_host):
    fake_host.fail("false", rc=2)
    r = command.run_cmd(["false"], check=False)
    assert not r.ok
    assert r.returncode == 2


def test_stdin_is_never_logged(fake_host, caplog):
    caplog.set_level(logging.DEBUG)
    command.run_cmd(["cryptsetup", "open", "/dev/sda2", "x"], input_text="topsecret")
    assert "CMD cryptsetup open /dev/sda2 x" in caplog.text
    assert "topsecret" not in caplog.text
    assert fake_host.inputs[-1] == "topsecret"


def test_missing_executable(monkeypatch):
    def boom(*_a, **_kw):
        raise FileNotFoundError("no such file")

    monkeypatch.setattr(command.subprocess, "run", boom)
    assert command.run_cmd(["nope"], check=False).returncode == 127
    with pytest.raises(CommandError):
        command.run_cmd(["nope"])


def test_timeout(monkeypatch):
    def slow(argv, **_kw):
        raise subprocess.TimeoutExpired(argv, 1)

    monkeypatch.setattr(command.subprocess, "run", slow)
    assert command.run_cmd(["sleep", "9"], check=False, timeout=1).returncode == -1


def test_missing_tools(monkeypatch):
    monkeypatch.setattr(command.shutil, "which", lambda t: None if t == "sgdisk" else "/usr/bin/" + t)
    assert command.missing_tools(["parted", "sgdisk"]) == ["sgdisk"]

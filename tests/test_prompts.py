from mirrorcrypt_installer.lib import prompts


def test_confirm_requires_exact_token():
    assert prompts.confirm("Go?", input_fn=lambda _p: "yes")
    assert prompts.confirm("Go?", input_fn=lambda _p: "  yes\n")
    assert not prompts.confirm("Go?", input_fn=lambda _p: "YES")
    assert not prompts.confirm("Go?", input_fn=lambda _p: "y")
    assert not prompts.confirm("Go?", input_fn=lambda _p: "")


def test_confirm_eof_is_a_no():
    def eof(_p):
        raise EOFError

    assert not prompts.confirm("Go?", input_fn=eof)


def test_confirm_destruction_lists_devices(capsys):
    assert prompts.confirm_destruction(["/dev/sda", "/dev/sdb"], input_fn=lambda _p: "yes")
    out = capsys.readouterr().out
    assert "/dev/sda" in out and "/dev/sdb" in out


def test_secret_reprompts_until_entries_match(capsys):
    answers = iter(["", "abc", "abd", "abc", "abd", "good", "good"])
    assert prompts.prompt_secret("password", getpass_fn=lambda _p: next(answers)) == "good"
    out = capsys.readouterr().out
    assert out.count("do not match") == 2
    assert "must not be empty" in out

"""Interactive input: destructive-action confirmation and masked secrets."""

from __future__ import annotations

import getpass
from typing import Callable, Sequence

CONFIRM_TOKEN = "yes"


def confirm(
    message: str,
    *,
    token: str = CONFIRM_TOKEN,
    input_fn: Callable[[str], str] = input,
) -> bool:
    """Return True only when the operator types ``token`` exactly."""

    try:
        answer = input_fn(f"{message} Type '{token}' to continue: ")
    except EOFError:
        return False
    return answer.strip() == token


def confirm_destruction(devices: Sequence[str], *, input_fn: Callable[[str], str] = input) -> bool:
    print("WARNING: this will DESTROY ALL DATA on:")
    for dev in devices:
        print(f"  {dev}")
    return confirm("Are you sure?", input_fn=input_fn)


def prompt_secret(label: str, *, getpass_fn: Callable[[str], str] = getpass.getpass) -> str:
    """Masked double entry; mismatched or empty entries are asked again until they agree."""

    while True:
        first = getpass_fn(f"Enter {label}: ")
        if not first:
            print(f"{label} must not be empty, try again.")
            continue
        if getpass_fn(f"Confirm {label}: ") == first:
            return first
        print("Entries do not match, try again.")

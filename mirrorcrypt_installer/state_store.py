"""Run journal.

A JSON (or YAML, by file extension) record of one invocation: mode, plan,
stages run, decisions and errors. It exists for the operator after the fact;
nothing in the installer reads it back to decide what is on disk.
"""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Any, Dict

import yaml

from . import __version__

logger = logging.getLogger(__name__)


def _detect_format(path: Path) -> str:
    ext = path.suffix.lower().lstrip(".")
    if ext in {"json", "yaml", "yml"}:
        return ext
    # Default to JSON for unknown extensions.
    return "json"


def load_state(path: str) -> Dict[str, Any]:
    p = Path(path)
    if not p.exists():
        return {}

    if _detect_format(p) == "json":
        data = json.loads(p.read_text(encoding="utf-8"))
    else:
        data = yaml.safe_load(p.read_text(encoding="utf-8")) or {}

    if not isinstance(data, dict):
        raise ValueError(f"Journal file must be an object/dict, got {type(data)}")
    return data


def save_state(path: str, state: Dict[str, Any]) -> None:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)

    if _detect_format(p) == "json":
        p.write_text(json.dumps(state, indent=2, sort_keys=True, default=str) + "\n", encoding="utf-8")
    else:
        p.write_text(yaml.safe_dump(state, sort_keys=False) + "\n", encoding="utf-8")


def new_journal(mode: str) -> Dict[str, Any]:
    return {
        "version": __version__,
        "mode": mode,
        "started_at": time.strftime("%Y-%m-%dT%H:%M:%S%z"),
        "plan": {},
        "execution": {
            "current_step": None,
            "ran_steps": [],
            "decisions": {},
            "errors": [],
        },
    }


def record_decision(state: Dict[str, Any], key: str, value: Any) -> None:
    state.setdefault("execution", {}).setdefault("decisions", {})[key] = value


def record_error(state: Dict[str, Any], error: BaseException) -> None:
    exe = state.setdefault("execution", {})
    exe.setdefault("errors", []).append(
        {
            "step": exe.get("current_step"),
            "type": type(error).__name__,
            "error": str(error),
        }
    )


def finish_journal(path: str, state: Dict[str, Any], outcome: str) -> None:
    """Best-effort save; a journal write failure never changes the exit path."""

    state["outcome"] = outcome
    state["finished_at"] = time.strftime("%Y-%m-%dT%H:%M:%S%z")
    try:
        save_state(path, state)
    except OSError as e:
        logger.warning("Could not write journal %s: %s", path, e)

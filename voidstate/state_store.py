from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Union

logger = logging.getLogger(__name__)

STATE_VERSION = 1
STATE_FILE = "state.json"
HISTORY_LIMIT = 50


def state_path(state_location: Union[str, Path]) -> Path:
    return Path(state_location) / STATE_FILE


def load_state(path: Union[str, Path]) -> Dict[str, Any]:
    p = Path(path)
    if not p.exists():
        return ensure_defaults({})
    data = json.loads(p.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"State file must be an object/dict, got {type(data)}")
    return ensure_defaults(data)


def save_state(path: Union[str, Path], state: Dict[str, Any]) -> None:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(json.dumps(state, indent=2, sort_keys=True) + "\n", encoding="utf-8")
    logger.debug("Saved state to %s", p)


def ensure_defaults(state: Dict[str, Any]) -> Dict[str, Any]:
    """Fill required keys without overriding stored values."""
    state.setdefault("version", STATE_VERSION)
    state.setdefault("pinned", [])
    state.setdefault("installed", [])
    state.setdefault("config_files", {})
    state.setdefault("history", [])
    return state


def pinned(state: Dict[str, Any]) -> List[str]:
    return list(state.get("pinned") or [])


def pin(state: Dict[str, Any], *names: str) -> List[str]:
    """Pin packages so they are never removed. Returns the newly pinned names."""
    current = state.setdefault("pinned", [])
    added = [name for name in names if name not in current]
    current.extend(added)
    current.sort()
    return added


def unpin(state: Dict[str, Any], name: str) -> bool:
    current = state.setdefault("pinned", [])
    if name not in current:
        return False
    current.remove(name)
    return True


def record_config(state: Dict[str, Any], target: str, digest: str) -> None:
    state.setdefault("config_files", {})[target] = digest


def record_install(state: Dict[str, Any], name: str) -> None:
    """Remember that we installed ``name``; only such packages are ever removed."""
    current = state.setdefault("installed", [])
    if name not in current:
        current.append(name)
        current.sort()


def forget_install(state: Dict[str, Any], name: str) -> None:
    current = state.setdefault("installed", [])
    if name in current:
        current.remove(name)


def record_run(state: Dict[str, Any], summary: Dict[str, Any]) -> None:
    history = state.setdefault("history", [])
    entry = {"at": datetime.now(timezone.utc).isoformat(timespec="seconds")}
    entry.update(summary)
    history.append(entry)
    del history[:-HISTORY_LIMIT]

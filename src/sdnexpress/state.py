from __future__ import annotations

import os
from pathlib import Path

STATE_ENV_VAR = "SDNEXPRESS_STATE_HOME"
STATE_DIR_MODE = 0o700
PRIVATE_FILE_MODE = 0o600


def default_state_home() -> Path:
    """Return the configured state directory without creating it."""
    configured = os.getenv(STATE_ENV_VAR)
    if configured:
        return Path(configured).expanduser()
    return Path("~/.sdnexpress/state").expanduser()


def ensure_state_dir() -> Path:
    """Create the per-user state directory, readable by its owner only."""
    state_dir = default_state_home()
    state_dir.mkdir(parents=True, exist_ok=True, mode=STATE_DIR_MODE)
    return state_dir


def get_state_file(name: str) -> Path:
    return ensure_state_dir() / name


def write_private_file(name: str, content: bytes) -> Path:
    """
    Create a state file only the invoking user can read.

    Fails with FileExistsError rather than replacing an existing file.
    """
    path = get_state_file(name)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, PRIVATE_FILE_MODE)
    with os.fdopen(fd, "wb") as fh:
        fh.write(content)
    return path

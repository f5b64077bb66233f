from __future__ import annotations

from pathlib import Path
from typing import Any

import click
import yaml

from sdnexpress.state import get_state_file

CONFIG_FILENAME = "sdnexpress.yaml"

DEFAULT_READY_TIMEOUT = 1800
DEFAULT_READY_INTERVAL = 10
DEFAULT_SSH_PORT = 22
DEFAULT_COMMAND_TIMEOUT = 1800

_SETTINGS_FALLBACK: dict[str, Any] = {
    "ready_timeout": DEFAULT_READY_TIMEOUT,
    "ready_interval": DEFAULT_READY_INTERVAL,
    "ssh_port": DEFAULT_SSH_PORT,
    "command_timeout": DEFAULT_COMMAND_TIMEOUT,
    "management_host": None,
}

_INTEGER_SETTINGS = ("ready_timeout", "ready_interval", "ssh_port", "command_timeout")


def load_nested_yaml(path: Path) -> dict[str, Any]:
    """Load YAML content from disk and ensure the result is a mapping."""
    target = path.expanduser()
    try:
        raw = target.read_text()
    except FileNotFoundError as exc:
        raise click.ClickException(f"Expected configuration file at {target}") from exc

    try:
        data = yaml.safe_load(raw) or {}
    except yaml.YAMLError as exc:
        raise click.ClickException(f"Failed to parse YAML in {target}: {exc}") from exc

    if not isinstance(data, dict):
        raise click.ClickException(
            f"{target} has unexpected YAML structure (expected a mapping)."
        )

    return data


def _write_default_config(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    content = "\n".join(
        [
            "sdnexpress:",
            f"  ready_timeout: {DEFAULT_READY_TIMEOUT}",
            f"  ready_interval: {DEFAULT_READY_INTERVAL}",
            f"  ssh_port: {DEFAULT_SSH_PORT}",
            "  # Seconds a remote command may go without producing output.",
            f"  command_timeout: {DEFAULT_COMMAND_TIMEOUT}",
            "  # Host that runs the SDNExpress and NetworkController modules.",
            "  # Defaults to the first entry of HyperVHosts.",
            "  management_host: null",
            "",
        ]
    )
    path.write_text(content)


def _config_path() -> Path:
    return get_state_file(CONFIG_FILENAME)


def load_sdnexpress_config(
    path: Path | None = None, *, ensure: bool = False
) -> dict[str, Any]:
    """Return tool settings merged over the built-in defaults."""
    target = (path or _config_path()).expanduser()
    if ensure and not target.exists():
        _write_default_config(target)
    if not target.exists():
        return _SETTINGS_FALLBACK.copy()

    data = load_nested_yaml(target)
    section = data.get("sdnexpress")
    if section is None:
        section = data
    if not isinstance(section, dict):
        raise click.ClickException(
            f"{target} has unexpected structure for the 'sdnexpress' section."
        )

    settings = _SETTINGS_FALLBACK.copy()
    for key, value in section.items():
        if value is None:
            continue
        if key in _INTEGER_SETTINGS:
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise click.ClickException(
                    f"{target}: '{key}' must be a positive integer."
                )
        elif key == "management_host" and not isinstance(value, str):
            raise click.ClickException(
                f"{target}: 'management_host' must be a string."
            )
        settings[key] = value
    return settings

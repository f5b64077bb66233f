"""PowerShell command marshaling.

Every remote operation is a PowerShell script built from Python values. The
same script renders twice: once for execution, and once for display with every
secret masked.
"""

from __future__ import annotations

import base64
import dataclasses
from collections.abc import Mapping, Sequence

from sdnexpress.credentials import Credential

MASK = "********"


@dataclasses.dataclass(frozen=True)
class Raw:
    """A PowerShell expression inserted verbatim, such as ``$cert``."""

    text: str


def quote(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def _credential(cred: Credential, *, masked: bool) -> str:
    secret = MASK if masked else cred.password
    return (
        "(New-Object System.Management.Automation.PSCredential("
        f"{quote(cred.username)}, "
        f"(ConvertTo-SecureString {quote(secret)} -AsPlainText -Force)))"
    )


def literal(value: object, *, masked: bool = False) -> str:
    """Return the PowerShell literal for a Python value."""
    if isinstance(value, Raw):
        return value.text
    if isinstance(value, Credential):
        return _credential(value, masked=masked)
    if value is None:
        return "$null"
    if isinstance(value, bool):
        return "$true" if value else "$false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str):
        return quote(value)
    if isinstance(value, Mapping):
        pairs = "; ".join(
            f"{key} = {literal(item, masked=masked)}" for key, item in value.items()
        )
        return "@{" + pairs + "}"
    if isinstance(value, Sequence):
        return "@(" + ", ".join(literal(item, masked=masked) for item in value) + ")"
    raise TypeError(f"cannot marshal {type(value).__name__} to PowerShell")


@dataclasses.dataclass(frozen=True)
class Command:
    """A cmdlet invocation with named parameters; None values are omitted."""

    name: str
    params: Mapping[str, object] = dataclasses.field(default_factory=dict)
    assign_to: str | None = None

    def render(self, *, masked: bool = False) -> str:
        parts = [self.name]
        for key, value in self.params.items():
            if value is None:
                continue
            if value is True:
                parts.append(f"-{key}")
                continue
            parts.append(f"-{key} {literal(value, masked=masked)}")
        text = " ".join(parts)
        if self.assign_to:
            text = f"${self.assign_to} = {text}"
        return text


@dataclasses.dataclass(frozen=True)
class Script:
    statements: tuple[Command | Raw, ...]
    result: str | None = None

    def render(self, *, masked: bool = False) -> str:
        lines = [
            stmt.text if isinstance(stmt, Raw) else stmt.render(masked=masked)
            for stmt in self.statements
        ]
        body = "\n".join(lines)
        if self.result:
            body += f"\n{self.result} | ConvertTo-Json -Compress -Depth 5"
        return "$ErrorActionPreference = 'Stop'\n" + body

    def display(self) -> str:
        """Return a single-line, secret-free representation for logs."""
        return "; ".join(
            stmt.text if isinstance(stmt, Raw) else stmt.render(masked=True)
            for stmt in self.statements
        )


def script(*statements: Command | Raw, result: str | None = None) -> Script:
    return Script(tuple(statements), result=result)


def encode(text: str) -> str:
    """Encode a script for ``powershell.exe -EncodedCommand``."""
    return base64.b64encode(text.encode("utf-16-le")).decode("ascii")


def powershell_command_line(text: str) -> str:
    return f"powershell.exe -NoProfile -NonInteractive -EncodedCommand {encode(text)}"

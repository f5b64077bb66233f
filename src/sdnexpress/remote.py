from __future__ import annotations

import json
import socket
from typing import Callable, Protocol

import click
import paramiko

from sdnexpress.config import DEFAULT_COMMAND_TIMEOUT
from sdnexpress.credentials import Credential
from sdnexpress.errors import RemoteOperationFailed
from sdnexpress.powershell import Script, powershell_command_line


class RemoteAgent(Protocol):
    def invoke(
        self,
        host: str,
        credential: Credential,
        script: Script,
        *,
        operation: str,
    ) -> object:
        """Run a script on a host and return its JSON result (or None)."""


def parse_output(stdout: str) -> object:
    """Decode the JSON a script emits; plain text falls back to a string."""
    text = stdout.strip()
    if not text:
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass
    last_line = text.splitlines()[-1].strip()
    try:
        return json.loads(last_line)
    except json.JSONDecodeError:
        return text


def _echo_command(host: str, script: Script) -> None:
    click.echo(f"+ [{host}] {script.display()}")


class SSHPowerShellAgent:
    """Runs PowerShell on Windows hosts over OpenSSH with password auth.

    ``timeout`` bounds the SSH connect; ``command_timeout`` bounds every wait for
    output from the remote command, so a hung powershell.exe fails the call
    instead of blocking the run.
    """

    def __init__(
        self,
        *,
        port: int = 22,
        timeout: float = 30,
        command_timeout: float = DEFAULT_COMMAND_TIMEOUT,
        quiet: bool = False,
        client_factory: Callable[[], paramiko.SSHClient] = paramiko.SSHClient,
    ) -> None:
        self.port = port
        self.timeout = timeout
        self.command_timeout = command_timeout
        self.quiet = quiet
        self._client_factory = client_factory

    def _connect(self, host: str, credential: Credential) -> paramiko.SSHClient:
        client = self._client_factory()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        client.connect(
            host,
            port=self.port,
            username=credential.username,
            password=credential.password,
            timeout=self.timeout,
            allow_agent=False,
            look_for_keys=False,
        )
        return client

    def invoke(
        self,
        host: str,
        credential: Credential,
        script: Script,
        *,
        operation: str,
    ) -> object:
        if not self.quiet:
            _echo_command(host, script)

        try:
            client = self._connect(host, credential)
        except (paramiko.SSHException, OSError) as exc:
            raise RemoteOperationFailed(
                operation, host, f"unable to connect: {exc}"
            ) from exc

        try:
            _, stdout, stderr = client.exec_command(
                powershell_command_line(script.render()),
                timeout=self.command_timeout,
            )
            out = stdout.read().decode("utf-8", errors="replace")
            err = stderr.read().decode("utf-8", errors="replace")
            returncode = stdout.channel.recv_exit_status()
        except socket.timeout as exc:
            raise RemoteOperationFailed(
                operation, host, f"no response within {self.command_timeout:g}s"
            ) from exc
        except (paramiko.SSHException, OSError) as exc:
            raise RemoteOperationFailed(operation, host, str(exc)) from exc
        finally:
            client.close()

        if returncode != 0:
            detail = err.strip() or f"exit code {returncode}"
            raise RemoteOperationFailed(operation, host, detail)
        return parse_output(out)


class DryRunAgent:
    """Prints every script instead of running it; every call succeeds."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []

    def invoke(
        self,
        host: str,
        credential: Credential,
        script: Script,
        *,
        operation: str,
    ) -> object:
        _echo_command(host, script)
        self.calls.append((host, operation))
        return None

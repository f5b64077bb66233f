from __future__ import annotations

import time
from typing import Callable, Sequence

import click

from sdnexpress.config import DEFAULT_READY_INTERVAL, DEFAULT_READY_TIMEOUT
from sdnexpress.credentials import Credential
from sdnexpress.errors import ReadinessTimeout, RemoteOperationFailed
from sdnexpress.powershell import Raw, script
from sdnexpress.remote import RemoteAgent

PROBE_SCRIPT = script(Raw("$name = $env:COMPUTERNAME"), result="$name")


def probe(agent: RemoteAgent, computer: str, credential: Credential) -> bool:
    try:
        agent.invoke(computer, credential, PROBE_SCRIPT, operation="readiness probe")
    except RemoteOperationFailed:
        return False
    return True


def wait_until_ready(
    agent: RemoteAgent,
    computers: Sequence[str],
    credential: Credential,
    *,
    timeout: float = DEFAULT_READY_TIMEOUT,
    interval: float = DEFAULT_READY_INTERVAL,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> None:
    """
    Block until every computer answers a management probe.

    Probe failures are retried every ``interval`` seconds; computers still
    silent after ``timeout`` seconds raise ReadinessTimeout.
    """
    if timeout <= 0:
        raise click.ClickException("Readiness timeout must be a positive number.")
    if interval <= 0:
        raise click.ClickException("Readiness poll interval must be a positive number.")

    pending = list(dict.fromkeys(computers))
    if not pending:
        return

    click.echo(f"Waiting for {', '.join(pending)} (timeout {timeout:g}s)...")
    deadline = clock() + timeout
    while True:
        pending = [name for name in pending if not probe(agent, name, credential)]
        if not pending:
            return
        remaining = deadline - clock()
        if remaining <= 0:
            raise ReadinessTimeout(pending, timeout)
        sleep(min(interval, remaining))

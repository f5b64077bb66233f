from __future__ import annotations

from typing import Sequence

import click

from sdnexpress.credentials import Credential
from sdnexpress.powershell import Command, Script, script
from sdnexpress.remote import RemoteAgent

NETWORK_VIRTUALIZATION_FEATURE = "NetworkVirtualization"
VFP_EXTENSION = "Microsoft Azure VFP Switch Extension"
HOST_AGENT_SERVICE = "NCHostAgent"


def host_preparation_steps(switch_name: str) -> list[tuple[str, Script]]:
    """Return the idempotent (operation, script) pairs run on every host."""
    return [
        (
            "enable network virtualization feature",
            script(
                Command(
                    "Add-WindowsFeature",
                    {
                        "Name": NETWORK_VIRTUALIZATION_FEATURE,
                        "IncludeAllSubFeature": True,
                        "IncludeManagementTools": True,
                    },
                    assign_to="null",
                )
            ),
        ),
        (
            "enable VFP switch extension",
            script(
                Command(
                    "Enable-VMSwitchExtension",
                    {"VMSwitchName": switch_name, "Name": VFP_EXTENSION},
                    assign_to="null",
                )
            ),
        ),
        (
            "start host agent",
            script(
                Command(
                    "Set-Service",
                    {"Name": HOST_AGENT_SERVICE, "StartupType": "Automatic"},
                ),
                Command("Start-Service", {"Name": HOST_AGENT_SERVICE}),
            ),
        ),
    ]


def prepare_hosts(
    agent: RemoteAgent,
    hosts: Sequence[str],
    switch_name: str,
    credential: Credential,
) -> None:
    steps = host_preparation_steps(switch_name)
    for host in hosts:
        click.echo(f"Preparing host {host}")
        for operation, body in steps:
            agent.invoke(host, credential, body, operation=operation)

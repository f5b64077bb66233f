from __future__ import annotations

from pathlib import Path

import click

from sdnexpress import pipeline
from sdnexpress.config import load_sdnexpress_config
from sdnexpress.credentials import RunCredentials, encrypt_secret
from sdnexpress.deployconfig import (
    SAMPLE_CONFIG,
    DeploymentConfig,
    edit_config,
    resolve_config,
)
from sdnexpress.remote import DryRunAgent, SSHPowerShellAgent


@click.group()
def cli() -> None:
    """sdnexpress: deploy an SDN control plane onto Hyper-V hosts."""


@cli.command("deploy")
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Deployment configuration file. Without it, $EDITOR opens a template.",
)
@click.option(
    "--ready-timeout",
    type=click.IntRange(min=1),
    help="Seconds to wait for new VMs to respond (defaults to sdnexpress.yaml).",
)
@click.option(
    "--ready-interval",
    type=click.IntRange(min=1),
    help="Seconds between readiness probes (defaults to sdnexpress.yaml).",
)
@click.option(
    "--management-host",
    help="Host that runs the SDNExpress cmdlets (defaults to the first Hyper-V host).",
)
@click.option(
    "--skip-health-check",
    is_flag=True,
    help="Do not run the network controller health check at the end.",
)
@click.option(
    "--dry-run",
    is_flag=True,
    help="Only print the remote commands that would be executed.",
)
@click.option(
    "--quiet",
    is_flag=True,
    help="Do not echo each remote command.",
)
def deploy_command(
    config_path: Path | None,
    ready_timeout: int | None,
    ready_interval: int | None,
    management_host: str | None,
    skip_health_check: bool,
    dry_run: bool,
    quiet: bool,
) -> None:
    """Deploy the network controller, MUXes and gateways."""
    settings = load_sdnexpress_config()
    options = pipeline.PipelineOptions(
        ready_timeout=ready_timeout or settings["ready_timeout"],
        ready_interval=ready_interval or settings["ready_interval"],
        skip_health_check=skip_health_check,
    )

    def factory(
        config: DeploymentConfig, credentials: RunCredentials
    ) -> pipeline.Collaborators:
        # Configuration and credentials are settled; persist the settings file.
        current = load_sdnexpress_config(ensure=True)
        host = management_host or current["management_host"] or config.hyperv_hosts[0]
        if dry_run:
            agent = DryRunAgent()
        else:
            agent = SSHPowerShellAgent(
                port=current["ssh_port"],
                command_timeout=current["command_timeout"],
                quiet=quiet,
            )
        return pipeline.powershell_collaborators(
            agent, host, credentials.domain_join, dry_run=dry_run
        )

    result = pipeline.deploy(
        factory,
        path=config_path,
        builder=edit_config if config_path is None else None,
        options=options,
    )
    if result is None:
        return

    click.echo("\n=== Deployment complete! ===")
    click.echo(f"REST endpoint: {result.config.rest_name}")
    click.echo(f"REST certificate: {result.certificate_thumbprint}")
    if result.created_vms:
        click.echo(f"VMs created: {', '.join(result.created_vms)}")


@cli.command("validate")
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    required=True,
    help="Deployment configuration file to check.",
)
def validate_command(config_path: Path) -> None:
    """Check a configuration file without contacting any host."""
    config = resolve_config(path=config_path)
    if config is None:
        return
    click.echo(f"{config_path}: ScriptVersion {config.script_version} OK")
    click.echo(f"  REST name:   {config.rest_name}")
    click.echo(f"  Hyper-V hosts: {len(config.hyperv_hosts)}")
    click.echo(f"  Controllers: {len(config.ncs)}")
    click.echo(f"  MUXes:       {len(config.muxes)}")
    click.echo(f"  Gateways:    {len(config.gateways)}")


@cli.command("encrypt-secret")
def encrypt_secret_command() -> None:
    """Encrypt a password for a *SecurePassword configuration field.

    The result can only be decrypted by the same user on this machine.
    """
    secret = click.prompt("Secret", hide_input=True, confirmation_prompt=True)
    click.echo(encrypt_secret(secret))


@cli.command("sample-config")
def sample_config_command() -> None:
    """Print a configuration template."""
    click.echo(SAMPLE_CONFIG, nl=False)


if __name__ == "__main__":
    cli()

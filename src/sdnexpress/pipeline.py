"""The deployment pipeline: eight stages run strictly in order.

Nothing is retried and nothing is rolled back. The first failure aborts the
run and leaves completed side effects (prepared hosts, created VMs, partial
controller configuration) in place for inspection or a re-run.
"""

from __future__ import annotations

import dataclasses
import functools
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Iterator, Mapping

import click

from sdnexpress.collaborators import (
    CertificateStore,
    ControllerManager,
    HealthChecker,
    HealthReport,
    PlaceholderCertificateStore,
    PlaceholderHealthChecker,
    PowerShellCertificateStore,
    PowerShellControllerManager,
    PowerShellHealthChecker,
    PowerShellVMCreator,
    VMCreator,
)
from sdnexpress.config import DEFAULT_READY_INTERVAL, DEFAULT_READY_TIMEOUT
from sdnexpress.controller import bootstrap_controller
from sdnexpress.credentials import (
    Credential,
    Prompt,
    RunCredentials,
    click_prompt,
    resolve_run_credentials,
)
from sdnexpress.deployconfig import ConfigBuilder, DeploymentConfig, resolve_config
from sdnexpress.errors import HealthCheckFailed, RemoteOperationFailed, SDNExpressError
from sdnexpress.hosts import prepare_hosts
from sdnexpress.provision import provision_vms
from sdnexpress.readiness import wait_until_ready
from sdnexpress.registrar import register_gateways, register_hosts, register_muxes
from sdnexpress.remote import RemoteAgent


@dataclasses.dataclass
class Collaborators:
    agent: RemoteAgent
    vm_creator: VMCreator
    controller: ControllerManager
    certificates: CertificateStore
    health: HealthChecker


CollaboratorFactory = Callable[[DeploymentConfig, RunCredentials], Collaborators]


@dataclasses.dataclass(frozen=True)
class PipelineOptions:
    ready_timeout: float = DEFAULT_READY_TIMEOUT
    ready_interval: float = DEFAULT_READY_INTERVAL
    skip_health_check: bool = False


@dataclasses.dataclass
class DeploymentResult:
    config: DeploymentConfig
    created_vms: list[str]
    certificate_thumbprint: str
    health: HealthReport | None


def powershell_collaborators(
    agent: RemoteAgent,
    management_host: str,
    credential: Credential,
    *,
    dry_run: bool = False,
) -> Collaborators:
    certificates: CertificateStore
    health: HealthChecker
    if dry_run:
        certificates = PlaceholderCertificateStore()
        health = PlaceholderHealthChecker()
    else:
        certificates = PowerShellCertificateStore(agent, management_host, credential)
        health = PowerShellHealthChecker(agent, management_host, credential)
    return Collaborators(
        agent=agent,
        vm_creator=PowerShellVMCreator(agent, management_host, credential),
        controller=PowerShellControllerManager(agent, management_host, credential),
        certificates=certificates,
        health=health,
    )


@contextmanager
def stage(title: str) -> Iterator[None]:
    """Print a stage banner and attribute unexpected failures to the stage."""
    click.echo(f"==> {title}")
    try:
        yield
    except click.ClickException:
        raise
    except Exception as exc:
        raise RemoteOperationFailed(title, None, f"{type(exc).__name__}: {exc}") from exc


def run_pipeline(
    config: DeploymentConfig,
    credentials: RunCredentials,
    collaborators: Collaborators,
    options: PipelineOptions = PipelineOptions(),
    *,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> DeploymentResult:
    """Run stages 3 to 8 for an already loaded configuration and credentials."""
    wait = functools.partial(
        wait_until_ready,
        collaborators.agent,
        credential=credentials.domain_join,
        timeout=options.ready_timeout,
        interval=options.ready_interval,
        clock=clock,
        sleep=sleep,
    )

    with stage("Preparing Hyper-V hosts"):
        prepare_hosts(
            collaborators.agent,
            config.hyperv_hosts,
            config.switch_name,
            credentials.domain_join,
        )

    created: list[str] = []
    if config.creates_vms:
        with stage("Creating VMs"):
            created = provision_vms(config, credentials, collaborators.vm_creator)

    with stage("Bootstrapping network controller"):
        certificate = bootstrap_controller(
            config,
            credentials,
            collaborators.controller,
            collaborators.certificates,
            wait,
        )

    with stage("Registering hosts"):
        register_hosts(config, credentials, collaborators.controller, certificate)

    if config.muxes:
        with stage("Registering load balancer MUXes"):
            register_muxes(
                config, credentials, collaborators.controller, certificate, wait
            )

    if config.gateways:
        with stage("Registering gateways"):
            register_gateways(
                config, credentials, collaborators.controller, certificate, wait
            )

    report: HealthReport | None = None
    if options.skip_health_check:
        click.echo("Skipping health check.", err=True)
    else:
        with stage("Checking network controller health"):
            report = collaborators.health.check(config.rest_name, credentials.nc)
        if not report.passed:
            raise HealthCheckFailed(
                "Network controller health check failed"
                + (f":\n{report.details}" if report.details else ".")
            )

    return DeploymentResult(
        config=config,
        created_vms=created,
        certificate_thumbprint=certificate.thumbprint,
        health=report,
    )


def deploy(
    factory: CollaboratorFactory,
    *,
    path: Path | None = None,
    data: Mapping[str, Any] | None = None,
    builder: ConfigBuilder | None = None,
    prompt: Prompt = click_prompt,
    explicit_credentials: Mapping[str, Credential] | None = None,
    options: PipelineOptions = PipelineOptions(),
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> DeploymentResult | None:
    """
    Load the configuration, resolve credentials, then run the pipeline.

    Returns None when the interactive configuration builder was cancelled;
    in that case nothing else has happened.
    """
    with stage("Loading configuration"):
        config = resolve_config(path=path, data=data, builder=builder)
    if config is None:
        click.echo("Configuration cancelled; nothing to do.")
        return None

    with stage("Resolving credentials"):
        credentials = resolve_run_credentials(config, prompt, explicit_credentials)

    collaborators = factory(config, credentials)
    try:
        return run_pipeline(
            config, credentials, collaborators, options, clock=clock, sleep=sleep
        )
    except SDNExpressError:
        click.echo(
            "Deployment aborted; completed steps were left in place.", err=True
        )
        raise

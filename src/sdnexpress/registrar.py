from __future__ import annotations

import click

from sdnexpress.collaborators import ControllerManager, RestCertificate
from sdnexpress.controller import Waiter
from sdnexpress.credentials import RunCredentials
from sdnexpress.deployconfig import DEFAULT_REDUNDANT_COUNT, DeploymentConfig


def register_hosts(
    config: DeploymentConfig,
    credentials: RunCredentials,
    manager: ControllerManager,
    certificate: RestCertificate,
) -> None:
    for host in config.hyperv_hosts:
        click.echo(f"Registering host {host} with {config.rest_name}")
        manager.add_host(
            config.rest_name,
            host,
            config.pa_subnet,
            certificate,
            config.switch_name,
            credentials.nc,
        )


def register_muxes(
    config: DeploymentConfig,
    credentials: RunCredentials,
    manager: ControllerManager,
    certificate: RestCertificate,
    wait: Waiter,
) -> None:
    if not config.muxes:
        return
    wait([mux.computer_name for mux in config.muxes])
    for mux in config.muxes:
        click.echo(f"Registering MUX {mux.computer_name} (peer {mux.pa_ip_address})")
        manager.add_mux(
            config.rest_name,
            mux,
            config.sdn_asn or 0,
            config.routers,
            certificate,
            credentials.nc,
        )


def register_gateways(
    config: DeploymentConfig,
    credentials: RunCredentials,
    manager: ControllerManager,
    certificate: RestCertificate,
    wait: Waiter,
) -> None:
    if not config.gateways:
        return
    pool_name = config.pool_name or ""
    redundant_count = config.redundant_count
    if redundant_count is None:
        redundant_count = DEFAULT_REDUNDANT_COUNT

    click.echo(f"Creating gateway pool {pool_name} (redundant count {redundant_count})")
    manager.add_gateway_pool(
        config.rest_name,
        pool_name,
        config.capacity or 0,
        config.gre_subnet or "",
        redundant_count,
        credentials.nc,
    )

    wait([gateway.computer_name for gateway in config.gateways])
    for gateway in config.gateways:
        click.echo(f"Registering gateway {gateway.computer_name} in pool {pool_name}")
        manager.add_gateway(
            config.rest_name,
            gateway,
            pool_name,
            config.pa_subnet,
            config.sdn_asn or 0,
            config.routers,
            certificate,
            credentials.nc,
        )

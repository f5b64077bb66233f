from __future__ import annotations

from typing import Iterator

import click

from sdnexpress.collaborators import Interface, VMCreator, VMRequest
from sdnexpress.credentials import RunCredentials
from sdnexpress.deployconfig import (
    DEFAULT_VM_MEMORY,
    DEFAULT_VM_PROCESSOR_COUNT,
    ControllerNode,
    DeploymentConfig,
    GatewayNode,
    MuxNode,
)

ROLE_CONTROLLER = "NetworkController"
ROLE_MUX = "SoftwareLoadBalancer"
ROLE_GATEWAY = "Gateway"


def _management_interface(config: DeploymentConfig, ip: str, mac: str) -> Interface:
    return Interface(
        name="Management",
        mac_address=mac,
        ip_address=f"{ip}/{config.management_prefix_length}",
        gateway=config.management_gateway,
        dns=config.management_dns,
        vlan_id=config.management_vlan_id,
    )


def _build_request(
    config: DeploymentConfig,
    credentials: RunCredentials,
    *,
    host_name: str,
    vm_name: str,
    role: str,
    interfaces: tuple[Interface, ...],
) -> VMRequest:
    """Return a complete request; only the per-node arguments vary between calls."""
    return VMRequest(
        host_name=host_name,
        vm_name=vm_name,
        role=role,
        vhd_path=config.vhd_path or "",
        vhd_file=config.vhd_file or "",
        vm_location=config.vm_location or "",
        processor_count=(
            DEFAULT_VM_PROCESSOR_COUNT
            if config.vm_processor_count is None
            else config.vm_processor_count
        ),
        memory=DEFAULT_VM_MEMORY if config.vm_memory is None else config.vm_memory,
        switch_name=config.switch_name,
        interfaces=interfaces,
        join_domain=config.join_domain or "",
        domain_join=credentials.domain_join,
        local_admin=credentials.local_admin,
        product_key=config.product_key,
        locale=config.locale,
        time_zone=config.time_zone,
    )


def controller_request(
    config: DeploymentConfig, credentials: RunCredentials, node: ControllerNode
) -> VMRequest:
    return _build_request(
        config,
        credentials,
        host_name=node.host_name,
        vm_name=node.computer_name,
        role=ROLE_CONTROLLER,
        interfaces=(_management_interface(config, node.management_ip, node.mac_address),),
    )


def mux_request(
    config: DeploymentConfig, credentials: RunCredentials, node: MuxNode
) -> VMRequest:
    pa_interface = Interface(
        name="HNVPA",
        mac_address=node.pa_mac_address,
        ip_address=f"{node.pa_ip_address}/{config.pa_prefix_length}",
        vlan_id=config.pa_vlan_id,
        is_pa=True,
    )
    return _build_request(
        config,
        credentials,
        host_name=node.host_name,
        vm_name=node.computer_name,
        role=ROLE_MUX,
        interfaces=(
            _management_interface(config, node.management_ip, node.mac_address),
            pa_interface,
        ),
    )


def gateway_request(
    config: DeploymentConfig, credentials: RunCredentials, node: GatewayNode
) -> VMRequest:
    # Front-end and back-end addresses are assigned at gateway registration.
    front_end = Interface(
        name="FrontEnd", mac_address=node.front_end_mac, vlan_id=config.pa_vlan_id
    )
    back_end = Interface(
        name="BackEnd", mac_address=node.back_end_mac, vlan_id=config.pa_vlan_id
    )
    return _build_request(
        config,
        credentials,
        host_name=node.host_name,
        vm_name=node.computer_name,
        role=ROLE_GATEWAY,
        interfaces=(
            _management_interface(config, node.management_ip, node.mac_address),
            front_end,
            back_end,
        ),
    )


def vm_requests(
    config: DeploymentConfig, credentials: RunCredentials
) -> Iterator[VMRequest]:
    """Yield one request per declared node: controllers, then MUXes, then gateways."""
    for node in config.ncs:
        yield controller_request(config, credentials, node)
    for mux in config.muxes:
        yield mux_request(config, credentials, mux)
    for gateway in config.gateways:
        yield gateway_request(config, credentials, gateway)


def provision_vms(
    config: DeploymentConfig, credentials: RunCredentials, creator: VMCreator
) -> list[str]:
    created: list[str] = []
    for request in vm_requests(config, credentials):
        click.echo(
            f"Creating {request.role} VM {request.vm_name} on {request.host_name} "
            f"({request.processor_count} vCPU, {request.memory // (1 << 20)} MB)"
        )
        creator.create(request)
        created.append(request.vm_name)
    return created

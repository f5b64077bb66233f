from __future__ import annotations

from typing import Callable, Sequence

import click

from sdnexpress.collaborators import CertificateStore, ControllerManager, RestCertificate
from sdnexpress.credentials import RunCredentials
from sdnexpress.deployconfig import DeploymentConfig
from sdnexpress.errors import CertificateNotFound, DuplicateCertificate

Waiter = Callable[[Sequence[str]], None]


def rest_subject(rest_name: str) -> str:
    return f"CN={rest_name}"


def select_certificate(
    matches: Sequence[RestCertificate], description: str
) -> RestCertificate:
    """Return the single match, or fail on zero or several."""
    if not matches:
        raise CertificateNotFound(
            f"No certificate matching {description} in the trusted root store."
        )
    if len(matches) > 1:
        thumbprints = ", ".join(cert.thumbprint for cert in matches)
        raise DuplicateCertificate(
            f"Found {len(matches)} certificates matching {description} in the "
            f"trusted root store ({thumbprints}); remove the extras and re-run."
        )
    return matches[0]


def existing_certificate(
    certificates: CertificateStore, rest_name: str
) -> RestCertificate:
    subject = rest_subject(rest_name)
    return select_certificate(certificates.trusted_roots(subject=subject), subject)


def _retrieve_rest_certificate(
    config: DeploymentConfig,
    credentials: RunCredentials,
    certificates: CertificateStore,
) -> RestCertificate:
    first_node = config.ncs[0].computer_name
    thumbprint = certificates.rest_thumbprint(
        first_node, credentials.domain_join, config.rest_name
    )
    if not thumbprint:
        raise CertificateNotFound(
            f"{first_node} has no certificate for {rest_subject(config.rest_name)}."
        )
    matches = certificates.trusted_roots(thumbprint=thumbprint)
    if not matches:
        raise CertificateNotFound(
            f"Certificate {thumbprint} is not in the trusted root store."
        )
    return matches[0]


def bootstrap_controller(
    config: DeploymentConfig,
    credentials: RunCredentials,
    manager: ControllerManager,
    certificates: CertificateStore,
    wait: Waiter,
) -> RestCertificate:
    """
    Bring up the controller cluster and apply its global configuration.

    Without declared controller nodes the controller already exists, and only
    its certificate is looked up. Returns the REST certificate every later
    registration needs.
    """
    if not config.ncs:
        click.echo(
            f"No controller nodes declared; using existing controller {config.rest_name}."
        )
        return existing_certificate(certificates, config.rest_name)

    wait([node.computer_name for node in config.ncs])

    click.echo(f"Creating network controller cluster {config.rest_name}")
    manager.create_cluster(
        config.rest_name,
        config.ncs,
        credentials.nc,
        management_security_group=config.management_security_group,
        client_security_group=config.client_security_group,
    )

    certificate = _retrieve_rest_certificate(config, credentials, certificates)
    click.echo(f"Using REST certificate {certificate.thumbprint}")

    manager.configure_network_manager(
        config.rest_name,
        config.mac_pool_start or "",
        config.mac_pool_end or "",
        certificate,
        credentials.nc,
    )
    manager.configure_load_balancer_manager(
        config.rest_name,
        config.private_vip_subnet or "",
        config.public_vip_subnet or "",
        credentials.nc,
    )
    manager.add_pa_subnet(
        config.rest_name,
        config.pa_subnet,
        config.pa_vlan_id or 0,
        config.pa_gateway or "",
        config.pa_pool_start or "",
        config.pa_pool_end or "",
        credentials.nc,
    )
    if config.idns is not None and credentials.idns_admin is not None:
        manager.configure_idns(
            config.rest_name,
            config.idns.ip_address,
            config.idns.zone,
            credentials.idns_admin,
            credentials.nc,
        )
    return certificate

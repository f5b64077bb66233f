"""Interfaces to the pre-built administrative modules, and their PowerShell backends.

The deployment pipeline never talks to Hyper-V or the network controller
directly. It marshals parameters into the SDNExpress and NetworkController
cmdlets, which run on the management host through a RemoteAgent.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Mapping, Sequence
from typing import Protocol

from sdnexpress.credentials import Credential
from sdnexpress.deployconfig import ControllerNode, GatewayNode, MuxNode, Router
from sdnexpress.errors import RemoteOperationFailed
from sdnexpress.powershell import Command, Raw, Script, quote, script
from sdnexpress.remote import RemoteAgent

SDN_MODULE = "SDNExpressModule"


@dataclasses.dataclass(frozen=True)
class Interface:
    name: str
    mac_address: str
    ip_address: str | None = None
    gateway: str | None = None
    dns: tuple[str, ...] = ()
    vlan_id: int | None = None
    is_pa: bool = False


@dataclasses.dataclass(frozen=True)
class VMRequest:
    host_name: str
    vm_name: str
    role: str
    vhd_path: str
    vhd_file: str
    vm_location: str
    processor_count: int
    memory: int
    switch_name: str
    interfaces: tuple[Interface, ...]
    join_domain: str
    domain_join: Credential
    local_admin: Credential
    product_key: str | None = None
    locale: str | None = None
    time_zone: str | None = None


@dataclasses.dataclass(frozen=True)
class RestCertificate:
    thumbprint: str
    subject: str


@dataclasses.dataclass(frozen=True)
class HealthReport:
    passed: bool
    details: str = ""


class VMCreator(Protocol):
    def create(self, request: VMRequest) -> None: ...


class CertificateStore(Protocol):
    def rest_thumbprint(
        self, computer: str, credential: Credential, rest_name: str
    ) -> str | None: ...

    def trusted_roots(
        self, *, thumbprint: str | None = None, subject: str | None = None
    ) -> list[RestCertificate]: ...


class ControllerManager(Protocol):
    def create_cluster(
        self,
        rest_name: str,
        nodes: Sequence[ControllerNode],
        credential: Credential,
        *,
        management_security_group: str | None = None,
        client_security_group: str | None = None,
    ) -> None: ...

    def configure_network_manager(
        self,
        rest_name: str,
        mac_pool_start: str,
        mac_pool_end: str,
        certificate: RestCertificate,
        credential: Credential,
    ) -> None: ...

    def configure_load_balancer_manager(
        self,
        rest_name: str,
        private_vip_prefix: str,
        public_vip_prefix: str,
        credential: Credential,
    ) -> None: ...

    def add_pa_subnet(
        self,
        rest_name: str,
        prefix: str,
        vlan_id: int,
        gateway: str,
        pool_start: str,
        pool_end: str,
        credential: Credential,
    ) -> None: ...

    def configure_idns(
        self,
        rest_name: str,
        ip_address: str,
        zone: str,
        idns_credential: Credential,
        credential: Credential,
    ) -> None: ...

    def add_host(
        self,
        rest_name: str,
        host: str,
        pa_subnet: str,
        certificate: RestCertificate,
        switch_name: str,
        credential: Credential,
    ) -> None: ...

    def add_mux(
        self,
        rest_name: str,
        mux: MuxNode,
        local_asn: int,
        routers: Sequence[Router],
        certificate: RestCertificate,
        credential: Credential,
    ) -> None: ...

    def add_gateway_pool(
        self,
        rest_name: str,
        pool_name: str,
        capacity: int,
        gre_subnet: str,
        redundant_count: int,
        credential: Credential,
    ) -> None: ...

    def add_gateway(
        self,
        rest_name: str,
        gateway: GatewayNode,
        pool_name: str,
        pa_subnet: str,
        local_asn: int,
        routers: Sequence[Router],
        certificate: RestCertificate,
        credential: Credential,
    ) -> None: ...


class HealthChecker(Protocol):
    def check(self, rest_name: str, credential: Credential) -> HealthReport: ...


def _certificate_expr(certificate: RestCertificate) -> Raw:
    path = "Cert:\\LocalMachine\\Root\\" + certificate.thumbprint
    return Raw(f"(Get-Item {quote(path)})")


def _router_table(routers: Sequence[Router]) -> list[dict[str, object]]:
    return [
        {"RouterASN": router.asn, "RouterIPAddress": router.ip_address}
        for router in routers
    ]


def _as_list(value: object) -> list[Mapping[str, object]]:
    if value is None:
        return []
    if isinstance(value, Mapping):
        return [value]
    if isinstance(value, list):
        return [item for item in value if isinstance(item, Mapping)]
    raise RemoteOperationFailed(
        "certificate lookup", None, f"unexpected output {value!r}"
    )


class _ManagementSession:
    """Runs SDNExpress cmdlets on the management host."""

    def __init__(
        self, agent: RemoteAgent, management_host: str, credential: Credential
    ) -> None:
        self.agent = agent
        self.management_host = management_host
        self.credential = credential

    def _run(self, operation: str, body: Script) -> object:
        prepared = script(
            Command("Import-Module", {"Name": SDN_MODULE}),
            *body.statements,
            result=body.result,
        )
        return self.agent.invoke(
            self.management_host, self.credential, prepared, operation=operation
        )

    def _call(self, operation: str, command: Command) -> object:
        return self._run(operation, script(command))


class PowerShellVMCreator(_ManagementSession):
    def create(self, request: VMRequest) -> None:
        domain, _, username = request.domain_join.username.rpartition("\\")
        nics = [
            {
                "Name": nic.name,
                "MacAddress": nic.mac_address,
                "IPAddress": nic.ip_address or "",
                "Gateway": nic.gateway or "",
                "DNS": list(nic.dns),
                "VLANID": nic.vlan_id or 0,
                "IsMuxPA": nic.is_pa,
            }
            for nic in request.interfaces
        ]
        command = Command(
            "New-SDNExpressVM",
            {
                "ComputerName": request.host_name,
                "VMLocation": request.vm_location,
                "VMName": request.vm_name,
                "VHDSrcPath": request.vhd_path,
                "VHDName": request.vhd_file,
                "VMMemory": request.memory,
                "VMProcessorCount": request.processor_count,
                "SwitchName": request.switch_name,
                "Nics": nics,
                "JoinDomain": request.join_domain,
                "DomainJoinCredential": request.domain_join,
                "DomainAdminDomain": domain or request.join_domain,
                "DomainAdminUserName": username,
                "LocalAdminCredential": request.local_admin,
                "ProductKey": request.product_key,
                "Locale": request.locale,
                "TimeZone": request.time_zone,
                "Roles": [request.role],
            },
        )
        self._call(f"create VM {request.vm_name}", command)


class PowerShellCertificateStore(_ManagementSession):
    def rest_thumbprint(
        self, computer: str, credential: Credential, rest_name: str
    ) -> str | None:
        body = script(
            Raw(
                "$thumbprint = Get-ChildItem 'Cert:\\LocalMachine\\My' | "
                f"Where-Object {{ $_.Subject -eq {quote('CN=' + rest_name)} }} | "
                "Select-Object -First 1 -ExpandProperty Thumbprint"
            ),
            result="$thumbprint",
        )
        value = self.agent.invoke(
            computer, credential, body, operation="read REST certificate thumbprint"
        )
        if value is None:
            return None
        return str(value).strip() or None

    def trusted_roots(
        self, *, thumbprint: str | None = None, subject: str | None = None
    ) -> list[RestCertificate]:
        filters = []
        if thumbprint is not None:
            filters.append(f"$_.Thumbprint -eq {quote(thumbprint.upper())}")
        if subject is not None:
            filters.append(f"$_.Subject -eq {quote(subject)}")
        where = " -and ".join(filters) or "$true"
        body = script(
            Raw(
                "$certs = @(Get-ChildItem 'Cert:\\LocalMachine\\Root' | "
                f"Where-Object {{ {where} }} | "
                "Select-Object Thumbprint, Subject)"
            ),
            result="$certs",
        )
        output = self.agent.invoke(
            self.management_host,
            self.credential,
            body,
            operation="trusted root certificate lookup",
        )
        return [
            RestCertificate(str(entry.get("Thumbprint")), str(entry.get("Subject")))
            for entry in _as_list(output)
        ]


class PlaceholderCertificateStore:
    """Certificate store used for dry runs, where nothing is really deployed."""

    def rest_thumbprint(
        self, computer: str, credential: Credential, rest_name: str
    ) -> str | None:
        return "DRYRUN"

    def trusted_roots(
        self, *, thumbprint: str | None = None, subject: str | None = None
    ) -> list[RestCertificate]:
        return [RestCertificate(thumbprint or "DRYRUN", subject or "CN=dry-run")]


class PowerShellControllerManager(_ManagementSession):
    def create_cluster(
        self,
        rest_name: str,
        nodes: Sequence[ControllerNode],
        credential: Credential,
        *,
        management_security_group: str | None = None,
        client_security_group: str | None = None,
    ) -> None:
        command = Command(
            "New-SDNExpressNetworkController",
            {
                "ComputerNames": [node.computer_name for node in nodes],
                "RESTName": rest_name,
                "ManagementSecurityGroupName": management_security_group,
                "ClientSecurityGroupName": client_security_group,
                "Credential": credential,
            },
        )
        self._call("create network controller cluster", command)

    def configure_network_manager(
        self,
        rest_name: str,
        mac_pool_start: str,
        mac_pool_end: str,
        certificate: RestCertificate,
        credential: Credential,
    ) -> None:
        command = Command(
            "New-SDNExpressVirtualNetworkManagerConfiguration",
            {
                "RestName": rest_name,
                "MacAddressPoolStart": mac_pool_start,
                "MacAddressPoolEnd": mac_pool_end,
                "NCHostCert": _certificate_expr(certificate),
                "NCUsername": credential.username,
                "Credential": credential,
            },
        )
        self._call("configure virtual network manager", command)

    def configure_load_balancer_manager(
        self,
        rest_name: str,
        private_vip_prefix: str,
        public_vip_prefix: str,
        credential: Credential,
    ) -> None:
        command = Command(
            "New-SDNExpressLoadBalancerManagerConfiguration",
            {
                "RestName": rest_name,
                "PrivateVIPPrefix": private_vip_prefix,
                "PublicVIPPrefix": public_vip_prefix,
                "Credential": credential,
            },
        )
        self._call("configure load balancer manager", command)

    def add_pa_subnet(
        self,
        rest_name: str,
        prefix: str,
        vlan_id: int,
        gateway: str,
        pool_start: str,
        pool_end: str,
        credential: Credential,
    ) -> None:
        command = Command(
            "Add-SDNExpressVirtualNetworkPASubnet",
            {
                "RestName": rest_name,
                "AddressPrefix": prefix,
                "VLANID": vlan_id,
                "DefaultGateways": [gateway],
                "IPPoolStart": pool_start,
                "IPPoolEnd": pool_end,
                "Credential": credential,
            },
        )
        self._call("register PA subnet", command)

    def configure_idns(
        self,
        rest_name: str,
        ip_address: str,
        zone: str,
        idns_credential: Credential,
        credential: Credential,
    ) -> None:
        command = Command(
            "New-SDNExpressiDNSConfiguration",
            {
                "RestName": rest_name,
                "IPAddress": ip_address,
                "ZoneName": zone,
                "iDNSCredential": idns_credential,
                "Credential": credential,
            },
        )
        self._call("configure iDNS", command)

    def add_host(
        self,
        rest_name: str,
        host: str,
        pa_subnet: str,
        certificate: RestCertificate,
        switch_name: str,
        credential: Credential,
    ) -> None:
        command = Command(
            "Add-SDNExpressHost",
            {
                "ComputerName": host,
                "RestName": rest_name,
                "HostPASubnetPrefix": pa_subnet,
                "NCHostCert": _certificate_expr(certificate),
                "VirtualSwitchName": switch_name,
                "Credential": credential,
            },
        )
        self._call(f"register host {host}", command)

    def add_mux(
        self,
        rest_name: str,
        mux: MuxNode,
        local_asn: int,
        routers: Sequence[Router],
        certificate: RestCertificate,
        credential: Credential,
    ) -> None:
        command = Command(
            "Add-SDNExpressMux",
            {
                "ComputerName": mux.computer_name,
                "PAMacAddress": mux.pa_mac_address,
                "LocalPeerIP": mux.pa_ip_address,
                "MuxASN": local_asn,
                "Routers": _router_table(routers),
                "RestName": rest_name,
                "NCHostCert": _certificate_expr(certificate),
                "Credential": credential,
            },
        )
        self._call(f"register MUX {mux.computer_name}", command)

    def add_gateway_pool(
        self,
        rest_name: str,
        pool_name: str,
        capacity: int,
        gre_subnet: str,
        redundant_count: int,
        credential: Credential,
    ) -> None:
        command = Command(
            "New-SDNExpressGatewayPool",
            {
                "IsTypeAll": True,
                "PoolName": pool_name,
                "Capacity": capacity,
                "GreSubnetAddressPrefix": gre_subnet,
                "RedundantCount": redundant_count,
                "RestName": rest_name,
                "Credential": credential,
            },
        )
        self._call(f"create gateway pool {pool_name}", command)

    def add_gateway(
        self,
        rest_name: str,
        gateway: GatewayNode,
        pool_name: str,
        pa_subnet: str,
        local_asn: int,
        routers: Sequence[Router],
        certificate: RestCertificate,
        credential: Credential,
    ) -> None:
        command = Command(
            "Add-SDNExpressGateway",
            {
                "RestName": rest_name,
                "ComputerName": gateway.computer_name,
                "HostName": gateway.host_name,
                "NCHostCert": _certificate_expr(certificate),
                "PoolName": pool_name,
                "FrontEndLogicalNetworkName": "HNVPA",
                "FrontEndAddressPrefix": pa_subnet,
                "FrontEndIp": gateway.front_end_ip,
                "FrontEndMac": gateway.front_end_mac,
                "BackEndMac": gateway.back_end_mac,
                "LocalASN": local_asn,
                "Routers": _router_table(routers),
                "Credential": credential,
            },
        )
        self._call(f"register gateway {gateway.computer_name}", command)


class PowerShellHealthChecker(_ManagementSession):
    def check(self, rest_name: str, credential: Credential) -> HealthReport:
        body = script(
            Command(
                "Test-SDNExpressHealth",
                {"RestName": rest_name, "Credential": credential},
                assign_to="report",
            ),
            result="$report",
        )
        output = self._run("network controller health check", body)
        if output is None:
            return HealthReport(
                passed=False, details="Test-SDNExpressHealth produced no output."
            )
        if isinstance(output, bool):
            return HealthReport(passed=output)
        if isinstance(output, Mapping):
            return HealthReport(
                passed=bool(output.get("Passed")),
                details=str(output.get("Details") or ""),
            )
        return HealthReport(passed=False, details=str(output))


class PlaceholderHealthChecker:
    """Health checker used for dry runs; there is no controller to ask."""

    def check(self, rest_name: str, credential: Credential) -> HealthReport:
        return HealthReport(passed=True, details="dry run")

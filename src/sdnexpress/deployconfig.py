"""Deployment configuration: the declarative description of one SDN stack.

The configuration is a mapping with PascalCase keys. It can come from a YAML
(or JSON) file, from an already-loaded mapping, or from an interactive
builder. ``ScriptVersion`` is checked before anything else is looked at.
"""

from __future__ import annotations

import dataclasses
import re
from ipaddress import ip_address, ip_network
from pathlib import Path
from typing import Any, Callable, Mapping

import click
import yaml

from sdnexpress.config import load_nested_yaml
from sdnexpress.errors import ConfigurationInvalid, ConfigurationVersionMismatch

SUPPORTED_SCRIPT_VERSION = "2.0"

GIB = 1 << 30
DEFAULT_VM_PROCESSOR_COUNT = 8
DEFAULT_VM_MEMORY = 8 * GIB
DEFAULT_REDUNDANT_COUNT = 1

ConfigBuilder = Callable[[], "Mapping[str, Any] | None"]

_MEMORY_UNITS = {"": 1, "KB": 1 << 10, "MB": 1 << 20, "GB": 1 << 30, "TB": 1 << 40}
_MEMORY_RE = re.compile(r"^\s*(\d+)\s*([KMGT]B)?\s*$", re.IGNORECASE)


@dataclasses.dataclass(frozen=True)
class ControllerNode:
    computer_name: str
    host_name: str
    management_ip: str
    mac_address: str


@dataclasses.dataclass(frozen=True)
class MuxNode:
    computer_name: str
    host_name: str
    management_ip: str
    mac_address: str
    pa_ip_address: str
    pa_mac_address: str


@dataclasses.dataclass(frozen=True)
class GatewayNode:
    computer_name: str
    host_name: str
    management_ip: str
    mac_address: str
    front_end_ip: str
    front_end_mac: str
    back_end_mac: str


@dataclasses.dataclass(frozen=True)
class Router:
    asn: int
    ip_address: str


@dataclasses.dataclass(frozen=True)
class IDnsSettings:
    ip_address: str
    mac_address: str
    admin_username: str
    admin_secure_password: str | None
    credential_username: str
    zone: str


@dataclasses.dataclass(frozen=True)
class DeploymentConfig:
    script_version: str
    rest_name: str
    hyperv_hosts: tuple[str, ...]
    switch_name: str
    nc_username: str
    nc_secure_password: str | None
    pa_subnet: str
    pa_vlan_id: int | None = None
    pa_gateway: str | None = None
    pa_pool_start: str | None = None
    pa_pool_end: str | None = None
    vhd_path: str | None = None
    vhd_file: str | None = None
    vm_location: str | None = None
    join_domain: str | None = None
    management_subnet: str | None = None
    management_gateway: str | None = None
    management_dns: tuple[str, ...] = ()
    management_vlan_id: int | None = None
    mac_pool_start: str | None = None
    mac_pool_end: str | None = None
    domain_join_username: str | None = None
    domain_join_secure_password: str | None = None
    local_admin_domain_user: str | None = None
    local_admin_secure_password: str | None = None
    ncs: tuple[ControllerNode, ...] = ()
    muxes: tuple[MuxNode, ...] = ()
    gateways: tuple[GatewayNode, ...] = ()
    sdn_asn: int | None = None
    routers: tuple[Router, ...] = ()
    private_vip_subnet: str | None = None
    public_vip_subnet: str | None = None
    pool_name: str | None = None
    gre_subnet: str | None = None
    capacity: int | None = None
    redundant_count: int | None = None
    vm_processor_count: int | None = None
    vm_memory: int | None = None
    management_security_group: str | None = None
    client_security_group: str | None = None
    product_key: str | None = None
    locale: str | None = None
    time_zone: str | None = None
    idns: IDnsSettings | None = None

    @property
    def creates_vms(self) -> bool:
        return bool(self.ncs or self.muxes or self.gateways)

    @property
    def management_prefix_length(self) -> int:
        if self.management_subnet is None:
            raise ConfigurationInvalid("ManagementSubnet is not configured.")
        return ip_network(self.management_subnet, strict=False).prefixlen

    @property
    def pa_prefix_length(self) -> int:
        return ip_network(self.pa_subnet, strict=False).prefixlen


def parse_memory(value: object) -> int:
    """Return a byte count from an integer or a ``<n>KB|MB|GB|TB`` literal."""
    if isinstance(value, bool):
        raise ValueError(f"invalid memory size {value!r}")
    if isinstance(value, int):
        if value <= 0:
            raise ValueError("memory size must be positive")
        return value
    if isinstance(value, str):
        match = _MEMORY_RE.match(value)
        if match:
            number = int(match.group(1))
            unit = (match.group(2) or "").upper()
            if number > 0:
                return number * _MEMORY_UNITS[unit]
    raise ValueError(f"invalid memory size {value!r}")


def check_version(data: Mapping[str, Any]) -> str:
    """Raise ConfigurationVersionMismatch unless ScriptVersion is supported."""
    found = data.get("ScriptVersion")
    if found is None or str(found).strip() != SUPPORTED_SCRIPT_VERSION:
        raise ConfigurationVersionMismatch(found, SUPPORTED_SCRIPT_VERSION)
    return SUPPORTED_SCRIPT_VERSION


class _Reader:
    """Collects every validation problem so they can be reported together."""

    def __init__(self, data: Mapping[str, Any]) -> None:
        self.data = data
        self.errors: list[str] = []

    def text(
        self,
        key: str,
        *,
        required: bool = False,
        source: Mapping[str, Any] | None = None,
        where: str = "",
    ) -> str | None:
        mapping = self.data if source is None else source
        value = mapping.get(key)
        if value is None or (isinstance(value, str) and not value.strip()):
            if required:
                self.errors.append(f"{where}{key} is required.")
            return None
        if isinstance(value, (dict, list)):
            self.errors.append(f"{where}{key} must be a scalar value.")
            return None
        return str(value).strip()

    def integer(
        self,
        key: str,
        *,
        required: bool = False,
        source: Mapping[str, Any] | None = None,
        where: str = "",
        positive: bool = False,
    ) -> int | None:
        mapping = self.data if source is None else source
        value = mapping.get(key)
        if value is None:
            if required:
                self.errors.append(f"{where}{key} is required.")
            return None
        if isinstance(value, bool):
            self.errors.append(f"{where}{key} must be an integer.")
            return None
        if isinstance(value, str) and value.strip().isdigit():
            value = int(value.strip(), 10)
        if not isinstance(value, int):
            self.errors.append(f"{where}{key} must be an integer.")
            return None
        if positive and value <= 0:
            self.errors.append(f"{where}{key} must be a positive integer, got {value}.")
            return None
        return value

    def text_list(self, key: str, *, required: bool = False) -> tuple[str, ...]:
        value = self.data.get(key)
        if value is None:
            if required:
                self.errors.append(f"{key} is required.")
            return ()
        if isinstance(value, str):
            value = [value]
        if not isinstance(value, list):
            self.errors.append(f"{key} must be a list.")
            return ()
        items = tuple(
            str(item).strip()
            for item in value
            if item is not None and str(item).strip()
        )
        if required and not items:
            self.errors.append(f"{key} must contain at least one entry.")
        return items

    def entries(self, key: str) -> list[Mapping[str, Any]]:
        value = self.data.get(key)
        if value is None:
            return []
        if not isinstance(value, list):
            self.errors.append(f"{key} must be a list.")
            return []
        entries: list[Mapping[str, Any]] = []
        for index, entry in enumerate(value):
            if not isinstance(entry, dict):
                self.errors.append(f"{key}[{index}] must be a mapping.")
                continue
            entries.append(entry)
        return entries

    def address(self, value: str | None, label: str) -> None:
        if value is None:
            return
        try:
            ip_address(value)
        except ValueError:
            self.errors.append(f"{label} is not a valid IP address: {value!r}.")

    def subnet(self, value: str | None, label: str) -> None:
        if value is None:
            return
        try:
            ip_network(value, strict=False)
        except ValueError:
            self.errors.append(f"{label} is not a valid subnet: {value!r}.")


def _parse_controllers(reader: _Reader) -> tuple[ControllerNode, ...]:
    nodes: list[ControllerNode] = []
    for index, entry in enumerate(reader.entries("NCs")):
        where = f"NCs[{index}]."
        values = [
            reader.text(key, required=True, source=entry, where=where)
            for key in ("ComputerName", "HostName", "ManagementIP", "MACAddress")
        ]
        reader.address(values[2], f"{where}ManagementIP")
        if all(values):
            nodes.append(ControllerNode(*values))  # type: ignore[arg-type]
    return tuple(nodes)


def _parse_muxes(reader: _Reader) -> tuple[MuxNode, ...]:
    nodes: list[MuxNode] = []
    keys = (
        "ComputerName",
        "HostName",
        "ManagementIP",
        "MACAddress",
        "PAIPAddress",
        "PAMACAddress",
    )
    for index, entry in enumerate(reader.entries("Muxes")):
        where = f"Muxes[{index}]."
        values = [
            reader.text(key, required=True, source=entry, where=where) for key in keys
        ]
        reader.address(values[2], f"{where}ManagementIP")
        reader.address(values[4], f"{where}PAIPAddress")
        if all(values):
            nodes.append(MuxNode(*values))  # type: ignore[arg-type]
    return tuple(nodes)


def _parse_gateways(reader: _Reader) -> tuple[GatewayNode, ...]:
    nodes: list[GatewayNode] = []
    keys = (
        "ComputerName",
        "HostName",
        "ManagementIP",
        "MACAddress",
        "FrontEndIp",
        "FrontEndMac",
        "BackEndMac",
    )
    for index, entry in enumerate(reader.entries("Gateways")):
        where = f"Gateways[{index}]."
        values = [
            reader.text(key, required=True, source=entry, where=where) for key in keys
        ]
        reader.address(values[2], f"{where}ManagementIP")
        reader.address(values[4], f"{where}FrontEndIp")
        if all(values):
            nodes.append(GatewayNode(*values))  # type: ignore[arg-type]
    return tuple(nodes)


def _parse_routers(reader: _Reader) -> tuple[Router, ...]:
    routers: list[Router] = []
    for index, entry in enumerate(reader.entries("Routers")):
        where = f"Routers[{index}]."
        asn = reader.integer("RouterASN", required=True, source=entry, where=where)
        address = reader.text("RouterIPAddress", required=True, source=entry, where=where)
        reader.address(address, f"{where}RouterIPAddress")
        if asn is not None and address is not None:
            routers.append(Router(asn=asn, ip_address=address))
    return tuple(routers)


def _parse_idns(reader: _Reader) -> IDnsSettings | None:
    if reader.data.get("iDNSIPAddress") is None:
        return None
    settings = IDnsSettings(
        ip_address=reader.text("iDNSIPAddress", required=True) or "",
        mac_address=reader.text("iDNSMacAddress", required=True) or "",
        admin_username=reader.text("iDNSAdminUsername", required=True) or "",
        admin_secure_password=reader.text("iDNSAdminSecurePassword"),
        credential_username=reader.text("iDNSCredentialUsername", required=True) or "",
        zone=reader.text("iDNSZone", required=True) or "",
    )
    reader.address(settings.ip_address, "iDNSIPAddress")
    return settings


def parse_config(data: Mapping[str, Any]) -> DeploymentConfig:
    """Version-check and validate a raw configuration mapping."""
    if not isinstance(data, Mapping):
        raise ConfigurationInvalid("Configuration must be a mapping of settings.")
    version = check_version(data)

    reader = _Reader(data)
    ncs = _parse_controllers(reader)
    muxes = _parse_muxes(reader)
    gateways = _parse_gateways(reader)
    creates_vms = bool(ncs or muxes or gateways)

    vm_memory: int | None = None
    if data.get("VMMemory") is not None:
        try:
            vm_memory = parse_memory(data["VMMemory"])
        except ValueError as exc:
            reader.errors.append(f"VMMemory: {exc}.")

    config = DeploymentConfig(
        script_version=version,
        rest_name=reader.text("RestName", required=True) or "",
        hyperv_hosts=reader.text_list("HyperVHosts", required=True),
        switch_name=reader.text("SwitchName", required=True) or "",
        nc_username=reader.text("NCUsername", required=True) or "",
        nc_secure_password=reader.text("NCSecurePassword"),
        pa_subnet=reader.text("PASubnet", required=True) or "",
        pa_vlan_id=reader.integer("PAVLANID", required=bool(ncs or muxes)),
        pa_gateway=reader.text("PAGateway", required=bool(ncs)),
        pa_pool_start=reader.text("PAPoolStart", required=bool(ncs)),
        pa_pool_end=reader.text("PAPoolEnd", required=bool(ncs)),
        vhd_path=reader.text("VHDPath", required=creates_vms),
        vhd_file=reader.text("VHDFile", required=creates_vms),
        vm_location=reader.text("VMLocation", required=creates_vms),
        join_domain=reader.text("JoinDomain", required=creates_vms),
        management_subnet=reader.text("ManagementSubnet", required=creates_vms),
        management_gateway=reader.text("ManagementGateway", required=creates_vms),
        management_dns=reader.text_list("ManagementDNS", required=creates_vms),
        management_vlan_id=reader.integer("ManagementVLANID"),
        mac_pool_start=reader.text("SDNMacPoolStart", required=bool(ncs)),
        mac_pool_end=reader.text("SDNMacPoolEnd", required=bool(ncs)),
        domain_join_username=reader.text("DomainJoinUsername", required=creates_vms),
        domain_join_secure_password=reader.text("DomainJoinSecurePassword"),
        local_admin_domain_user=reader.text("LocalAdminDomainUser", required=creates_vms),
        local_admin_secure_password=reader.text("LocalAdminSecurePassword"),
        ncs=ncs,
        muxes=muxes,
        gateways=gateways,
        sdn_asn=reader.integer(
            "SDNASN", required=bool(muxes or gateways), positive=True
        ),
        routers=_parse_routers(reader),
        private_vip_subnet=reader.text("PrivateVIPSubnet", required=bool(ncs)),
        public_vip_subnet=reader.text("PublicVIPSubnet", required=bool(ncs)),
        pool_name=reader.text("PoolName", required=bool(gateways)),
        gre_subnet=reader.text("GRESubnet", required=bool(gateways)),
        capacity=reader.integer("Capacity", required=bool(gateways), positive=True),
        redundant_count=reader.integer("RedundantCount"),
        vm_processor_count=reader.integer("VMProcessorCount", positive=True),
        vm_memory=vm_memory,
        management_security_group=reader.text("ManagementSecurityGroup"),
        client_security_group=reader.text("ClientSecurityGroup"),
        product_key=reader.text("ProductKey"),
        locale=reader.text("Locale"),
        time_zone=reader.text("TimeZone"),
        idns=_parse_idns(reader),
    )

    if (muxes or gateways) and not config.routers:
        reader.errors.append(
            "Routers must list at least one BGP peer when Muxes or Gateways are declared."
        )
    for label, value in (
        ("PASubnet", config.pa_subnet or None),
        ("ManagementSubnet", config.management_subnet),
        ("PrivateVIPSubnet", config.private_vip_subnet),
        ("PublicVIPSubnet", config.public_vip_subnet),
        ("GRESubnet", config.gre_subnet),
    ):
        reader.subnet(value, label)
    for label, value in (
        ("PAGateway", config.pa_gateway),
        ("PAPoolStart", config.pa_pool_start),
        ("PAPoolEnd", config.pa_pool_end),
        ("ManagementGateway", config.management_gateway),
    ):
        reader.address(value, label)

    if reader.errors:
        raise ConfigurationInvalid(
            "Configuration is invalid:\n"
            + "\n".join(f"- {line}" for line in reader.errors)
        )
    return config


def load_config_file(path: Path) -> dict[str, Any]:
    return load_nested_yaml(Path(path))


def resolve_config(
    path: Path | None = None,
    data: Mapping[str, Any] | None = None,
    builder: ConfigBuilder | None = None,
) -> DeploymentConfig | None:
    """
    Return the validated deployment configuration.

    Exactly one source is used: a file, an in-memory mapping, or the builder.
    None is returned when the builder reports that the user cancelled.
    """
    if path is not None and data is not None:
        raise click.UsageError(
            "Provide either a configuration file or a configuration object, not both."
        )
    if path is not None:
        raw: Mapping[str, Any] | None = load_config_file(path)
    elif data is not None:
        raw = data
    else:
        if builder is None:
            raise click.UsageError("No configuration source was provided.")
        raw = builder()
        if raw is None:
            return None
    return parse_config(raw)


SAMPLE_CONFIG = f"""\
# SDN Express deployment configuration.
# Secure passwords are tokens produced by `sdnexpress encrypt-secret`;
# leave them empty to be prompted at deployment time.
ScriptVersion: "{SUPPORTED_SCRIPT_VERSION}"

VHDPath: \\\\fileserver\\images
VHDFile: WindowsServer2022.vhdx
VMLocation: D:\\VMs
JoinDomain: contoso.com
SwitchName: sdnSwitch
# VMProcessorCount: 8
# VMMemory: 8GB

ManagementSubnet: 10.184.108.0/24
ManagementGateway: 10.184.108.1
ManagementDNS:
  - 10.184.108.2
ManagementVLANID: 7

SDNMacPoolStart: 00-1D-D8-B7-1C-00
SDNMacPoolEnd: 00-1D-D8-F4-1F-FF

DomainJoinUsername: contoso\\administrator
DomainJoinSecurePassword:
LocalAdminDomainUser: contoso\\administrator
LocalAdminSecurePassword:
NCUsername: contoso\\ncadmin
NCSecurePassword:

RestName: contoso-rest.contoso.com
NCs:
  - ComputerName: NC01
    HostName: HV01
    ManagementIP: 10.184.108.10
    MACAddress: 00-1D-D8-B7-1C-01

HyperVHosts:
  - HV01
  - HV02

PASubnet: 10.10.56.0/23
PAVLANID: 11
PAGateway: 10.10.56.1
PAPoolStart: 10.10.56.5
PAPoolEnd: 10.10.57.250

Muxes:
  - ComputerName: Mux01
    HostName: HV02
    ManagementIP: 10.184.108.20
    MACAddress: 00-1D-D8-B7-1C-02
    PAIPAddress: 10.10.56.4
    PAMACAddress: 00-1D-D8-B7-1C-03
SDNASN: 64628
Routers:
  - RouterASN: 64623
    RouterIPAddress: 10.10.56.1
PrivateVIPSubnet: 10.10.58.0/24
PublicVIPSubnet: 41.40.40.0/27

Gateways: []
PoolName: DefaultAll
GRESubnet: 192.168.0.0/24
Capacity: 10000
# RedundantCount: 1
"""


def edit_config() -> dict[str, Any] | None:
    """Let the operator fill in the template in $EDITOR; None when cancelled."""
    edited = click.edit(SAMPLE_CONFIG, extension=".yaml")
    if edited is None:
        return None
    try:
        data = yaml.safe_load(edited)
    except yaml.YAMLError as exc:
        raise ConfigurationInvalid(
            f"Edited configuration is not valid YAML: {exc}"
        ) from exc
    if not data:
        return None
    if not isinstance(data, dict):
        raise ConfigurationInvalid(
            "Edited configuration must be a mapping of settings."
        )
    return data

from __future__ import annotations

from typing import Any

import pytest

from fakes import CallLog, FakeAgent, FakeCertificates, FakeHealth
from sdnexpress import pipeline
from sdnexpress.collaborators import (
    HealthReport,
    PlaceholderCertificateStore,
    PlaceholderHealthChecker,
    PowerShellHealthChecker,
    RestCertificate,
)
from sdnexpress.credentials import ROLE_LOCAL_ADMIN, Credential, RunCredentials
from sdnexpress.deployconfig import GIB, parse_config
from sdnexpress.errors import (
    CertificateNotFound,
    ConfigurationVersionMismatch,
    CredentialPromptCancelled,
    DuplicateCertificate,
    HealthCheckFailed,
    ReadinessTimeout,
    RemoteOperationFailed,
)
from sdnexpress.pipeline import Collaborators, PipelineOptions
from sdnexpress.remote import DryRunAgent


def _prompt(role: str, default_username: str) -> Credential:
    return Credential(default_username, f"{role}-pw")


def _deploy(raw: dict[str, Any], fakes: Collaborators, **kwargs: Any):
    factory_calls: list[tuple] = []

    def factory(config, credentials):
        factory_calls.append((config, credentials))
        return fakes

    kwargs.setdefault("prompt", _prompt)
    result = pipeline.deploy(factory, data=raw, sleep=lambda _: None, **kwargs)
    return result, factory_calls


def test_scenario_a_controllers_and_muxes_without_gateways(
    raw_config: dict[str, Any], fakes: Collaborators, call_log: CallLog, state_home
) -> None:
    result, _ = _deploy(raw_config, fakes)

    names = call_log.names()
    assert names[:6] == [
        "enable network virtualization feature",
        "enable VFP switch extension",
        "start host agent",
    ] * 2
    assert names.count("create_vm") == 5
    assert names.count("add_host") == 2
    assert names.count("add_mux") == 2
    assert "add_gateway_pool" not in names
    assert "add_gateway" not in names
    assert names[-1] == "health"
    assert result is not None
    assert result.created_vms == ["NC01", "NC02", "NC03", "Mux01", "Mux02"]
    assert result.certificate_thumbprint == "ABC123"
    assert result.health == HealthReport(passed=True)
    assert {request.memory for request in fakes.vm_creator.requests} == {8 * GIB}
    assert {request.processor_count for request in fakes.vm_creator.requests} == {8}


def test_stage_order(
    raw_config: dict[str, Any], fakes: Collaborators, call_log: CallLog, state_home
) -> None:
    _deploy(raw_config, fakes)

    names = call_log.names()

    def first(name: str) -> int:
        return names.index(name)

    assert first("start host agent") < first("create_vm")
    assert max(i for i, n in enumerate(names) if n == "create_vm") < first("probe")
    assert first("create_cluster") < first("network_manager") < first("add_host")
    assert first("add_host") < first("add_mux") < first("health")


def test_registration_never_precedes_readiness(
    raw_config: dict[str, Any],
    gateways: list[dict[str, Any]],
    fakes: Collaborators,
    call_log: CallLog,
    state_home,
) -> None:
    raw_config["Gateways"] = gateways

    _deploy(raw_config, fakes)

    def position(entry: tuple) -> int:
        return call_log.index(entry)

    for node in ("NC01", "NC02", "NC03"):
        assert position(("probe", node)) < position(("create_cluster", "contoso-rest"))
    for mux in ("Mux01", "Mux02"):
        assert position(("probe", mux)) < position(("add_mux", "Mux01"))
    assert position(("probe", "GW01")) < position(("add_gateway", "GW01"))
    assert position(("add_gateway_pool", "DefaultAll")) < position(("add_gateway", "GW01"))


def test_scenario_b_existing_controller(
    raw_config: dict[str, Any], fakes: Collaborators, call_log: CallLog, state_home
) -> None:
    raw_config["NCs"] = []

    result, _ = _deploy(raw_config, fakes)

    names = call_log.names()
    assert "create_cluster" not in names
    assert "rest_thumbprint" not in names
    assert ("trusted_roots", "CN=contoso-rest") in call_log
    assert names.index("trusted_roots") < names.index("add_host")
    assert result is not None
    assert result.certificate_thumbprint == "ABC123"


@pytest.mark.parametrize("roots", [[], [RestCertificate("A", "CN=contoso-rest")] * 2])
def test_existing_controller_certificate_problems_abort_before_registration(
    raw_config: dict[str, Any],
    fakes: Collaborators,
    call_log: CallLog,
    roots: list[RestCertificate],
    state_home,
) -> None:
    raw_config["NCs"] = []
    fakes.certificates = FakeCertificates(call_log, roots=roots)

    with pytest.raises((CertificateNotFound, DuplicateCertificate)):
        _deploy(raw_config, fakes)

    names = call_log.names()
    assert "add_host" not in names
    assert "add_mux" not in names


def test_scenario_d_gateway_redundancy_defaults_to_one(
    raw_config: dict[str, Any],
    gateways: list[dict[str, Any]],
    fakes: Collaborators,
    state_home,
) -> None:
    raw_config["Gateways"] = gateways

    _deploy(raw_config, fakes)

    assert fakes.controller.pool_args == {
        "pool_name": "DefaultAll",
        "capacity": 10000,
        "gre_subnet": "192.168.0.0/24",
        "redundant_count": 1,
    }


def test_gateway_redundancy_from_config(
    raw_config: dict[str, Any],
    gateways: list[dict[str, Any]],
    fakes: Collaborators,
    state_home,
) -> None:
    raw_config["Gateways"] = gateways
    raw_config["RedundantCount"] = 2

    _deploy(raw_config, fakes)

    assert fakes.controller.pool_args["redundant_count"] == 2


def test_version_mismatch_has_no_side_effects(
    raw_config: dict[str, Any], fakes: Collaborators, call_log: CallLog
) -> None:
    raw_config["ScriptVersion"] = "1.0"
    prompted: list[str] = []

    def prompt(role: str, default_username: str) -> Credential:
        prompted.append(role)
        return Credential(default_username, "pw")

    with pytest.raises(ConfigurationVersionMismatch):
        _deploy(raw_config, fakes, prompt=prompt)

    assert call_log == []
    assert prompted == []


def test_prompt_cancel_stops_before_any_remote_call(
    raw_config: dict[str, Any], fakes: Collaborators, call_log: CallLog, state_home
) -> None:
    def prompt(role: str, default_username: str) -> Credential | None:
        if role == ROLE_LOCAL_ADMIN:
            return None
        return Credential(default_username, "pw")

    with pytest.raises(CredentialPromptCancelled):
        _deploy(raw_config, fakes, prompt=prompt)

    assert call_log == []


def test_builder_cancel_is_clean(fakes: Collaborators, call_log: CallLog) -> None:
    calls: list[object] = []

    result = pipeline.deploy(
        lambda config, credentials: calls.append(config) or fakes,
        builder=lambda: None,
        prompt=_prompt,
    )

    assert result is None
    assert calls == []
    assert call_log == []


def test_explicit_credentials_are_used(
    raw_config: dict[str, Any], fakes: Collaborators, state_home
) -> None:
    explicit = {
        "DomainJoin": Credential("contoso\\joiner", "a"),
        "NC": Credential("contoso\\nc", "b"),
        "LocalAdmin": Credential("admin", "c"),
    }

    def prompt(role: str, default_username: str) -> Credential:
        raise AssertionError("prompt should not be called")

    _, factory_calls = _deploy(
        raw_config, fakes, prompt=prompt, explicit_credentials=explicit
    )

    credentials: RunCredentials = factory_calls[0][1]
    assert credentials.domain_join.username == "contoso\\joiner"
    assert credentials.nc.password == "b"


def test_readiness_timeout_aborts_registration(
    raw_config: dict[str, Any], fakes: Collaborators, call_log: CallLog, state_home
) -> None:
    fakes.agent = FakeAgent(call_log, unready={"Mux02": 10_000})
    clock = iter(range(0, 100_000, 60))

    with pytest.raises(ReadinessTimeout) as exc_info:
        _deploy(
            raw_config,
            fakes,
            options=PipelineOptions(ready_timeout=300, ready_interval=60),
            clock=lambda: next(clock),
        )

    assert exc_info.value.pending == ["Mux02"]
    names = call_log.names()
    assert names.count("add_host") == 2
    assert "add_mux" not in names
    assert "health" not in names


def test_health_failure_raises(
    raw_config: dict[str, Any], fakes: Collaborators, call_log: CallLog, state_home
) -> None:
    fakes.health = FakeHealth(call_log, HealthReport(passed=False, details="Mux01 down"))

    with pytest.raises(HealthCheckFailed, match="Mux01 down"):
        _deploy(raw_config, fakes)


def test_skip_health_check(
    raw_config: dict[str, Any], fakes: Collaborators, call_log: CallLog, state_home
) -> None:
    result, _ = _deploy(
        raw_config, fakes, options=PipelineOptions(skip_health_check=True)
    )

    assert "health" not in call_log.names()
    assert result is not None
    assert result.health is None


def test_unexpected_collaborator_error_is_wrapped(
    raw_config: dict[str, Any], fakes: Collaborators, call_log: CallLog, state_home
) -> None:
    def broken_create(request):
        raise OSError("host unreachable")

    fakes.vm_creator.create = broken_create

    with pytest.raises(RemoteOperationFailed) as exc_info:
        _deploy(raw_config, fakes)

    assert exc_info.value.operation == "Creating VMs"
    assert isinstance(exc_info.value.__cause__, OSError)
    assert "create_cluster" not in call_log.names()


def test_run_pipeline_without_vms_skips_creation(
    raw_config: dict[str, Any],
    fakes: Collaborators,
    call_log: CallLog,
    run_credentials: RunCredentials,
) -> None:
    raw_config["NCs"] = []
    raw_config["Muxes"] = []
    config = parse_config(raw_config)

    result = pipeline.run_pipeline(config, run_credentials, fakes)

    assert result.created_vms == []
    assert "create_vm" not in call_log.names()
    assert call_log.names().count("add_host") == 2


def test_dry_run_collaborators_use_placeholders() -> None:
    agent = DryRunAgent()
    cred = Credential("contoso\\admin", "pw")

    dry = pipeline.powershell_collaborators(agent, "HV01", cred, dry_run=True)
    real = pipeline.powershell_collaborators(agent, "HV01", cred)

    assert isinstance(dry.health, PlaceholderHealthChecker)
    assert isinstance(dry.certificates, PlaceholderCertificateStore)
    assert isinstance(real.health, PowerShellHealthChecker)
    assert not real.health.check("contoso-rest", cred).passed

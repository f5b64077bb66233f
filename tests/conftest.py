from __future__ import annotations

import copy
from pathlib import Path
from typing import Any

import pytest

from fakes import (
    BASE_CONFIG,
    GATEWAYS,
    CallLog,
    FakeAgent,
    FakeCertificates,
    FakeController,
    FakeHealth,
    FakeVMCreator,
)
from sdnexpress.credentials import Credential, RunCredentials
from sdnexpress.pipeline import Collaborators


@pytest.fixture
def state_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    home = tmp_path / "state"
    monkeypatch.setenv("SDNEXPRESS_STATE_HOME", str(home))
    return home


@pytest.fixture
def raw_config() -> dict[str, Any]:
    return copy.deepcopy(BASE_CONFIG)


@pytest.fixture
def gateways() -> list[dict[str, Any]]:
    return copy.deepcopy(GATEWAYS)


@pytest.fixture
def run_credentials() -> RunCredentials:
    return RunCredentials(
        domain_join=Credential("contoso\\admin", "join-pw"),
        nc=Credential("contoso\\ncadmin", "nc-pw"),
        local_admin=Credential("contoso\\admin", "local-pw"),
    )


@pytest.fixture
def call_log() -> CallLog:
    return CallLog()


@pytest.fixture
def fakes(call_log: CallLog) -> Collaborators:
    return Collaborators(
        agent=FakeAgent(call_log),
        vm_creator=FakeVMCreator(call_log),
        controller=FakeController(call_log),
        certificates=FakeCertificates(call_log),
        health=FakeHealth(call_log),
    )

from __future__ import annotations

import click
import pytest

from fakes import CallLog, FakeAgent
from sdnexpress.credentials import Credential
from sdnexpress.errors import ReadinessTimeout
from sdnexpress.readiness import wait_until_ready

CRED = Credential("contoso\\admin", "pw")


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def test_returns_immediately_when_all_ready(call_log: CallLog) -> None:
    agent = FakeAgent(call_log)
    clock = FakeClock()

    wait_until_ready(agent, ["NC01", "NC02"], CRED, clock=clock, sleep=clock.sleep)

    assert call_log == [("probe", "NC01"), ("probe", "NC02")]
    assert clock.sleeps == []


def test_retries_failed_probes_until_ready(call_log: CallLog) -> None:
    agent = FakeAgent(call_log, unready={"NC02": 2})
    clock = FakeClock()

    wait_until_ready(
        agent, ["NC01", "NC02"], CRED, timeout=60, interval=5, clock=clock, sleep=clock.sleep
    )

    assert call_log.count(("probe", "NC01")) == 1
    assert call_log.count(("probe", "NC02")) == 1
    assert clock.sleeps == [5, 5]


def test_times_out_naming_pending_computers(call_log: CallLog) -> None:
    agent = FakeAgent(call_log, unready={"Mux02": 1000})
    clock = FakeClock()

    with pytest.raises(ReadinessTimeout) as exc_info:
        wait_until_ready(
            agent, ["Mux01", "Mux02"], CRED, timeout=30, interval=10, clock=clock, sleep=clock.sleep
        )

    assert exc_info.value.pending == ["Mux02"]
    assert clock.now == 30
    assert "Mux02" in exc_info.value.message


def test_last_sleep_is_clamped_to_deadline(call_log: CallLog) -> None:
    agent = FakeAgent(call_log, unready={"GW01": 1000})
    clock = FakeClock()

    with pytest.raises(ReadinessTimeout):
        wait_until_ready(
            agent, ["GW01"], CRED, timeout=25, interval=10, clock=clock, sleep=clock.sleep
        )

    assert clock.sleeps == [10, 10, 5]


def test_duplicate_names_probed_once(call_log: CallLog) -> None:
    agent = FakeAgent(call_log)

    wait_until_ready(agent, ["NC01", "NC01"], CRED, sleep=lambda _: None)

    assert call_log == [("probe", "NC01")]


@pytest.mark.parametrize(("timeout", "interval"), [(0, 10), (10, 0)])
def test_rejects_non_positive_bounds(call_log: CallLog, timeout: int, interval: int) -> None:
    with pytest.raises(click.ClickException):
        wait_until_ready(FakeAgent(call_log), ["NC01"], CRED, timeout=timeout, interval=interval)

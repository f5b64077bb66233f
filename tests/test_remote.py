from __future__ import annotations

import io
import socket

import paramiko
import pytest

from sdnexpress import remote
from sdnexpress.credentials import Credential
from sdnexpress.errors import RemoteOperationFailed
from sdnexpress.powershell import Command, encode, script

CRED = Credential("contoso\\admin", "hunter2")
BODY = script(Command("Start-Service", {"Name": "NCHostAgent"}))


class FakeChannel:
    def __init__(self, returncode: int) -> None:
        self.returncode = returncode

    def recv_exit_status(self) -> int:
        return self.returncode


class FakeStream(io.BytesIO):
    def __init__(self, data: bytes, returncode: int = 0) -> None:
        super().__init__(data)
        self.channel = FakeChannel(returncode)


class StalledStream(FakeStream):
    def read(self, *args: object) -> bytes:
        raise socket.timeout()


class FakeClient:
    def __init__(
        self,
        *,
        stdout: bytes = b"",
        stderr: bytes = b"",
        returncode: int = 0,
        connect_error: Exception | None = None,
        stalled: bool = False,
    ) -> None:
        self.stdout = stdout
        self.stderr = stderr
        self.returncode = returncode
        self.connect_error = connect_error
        self.stalled = stalled
        self.command_timeouts: list[float | None] = []
        self.connected: dict[str, object] = {}
        self.commands: list[str] = []
        self.closed = False

    def set_missing_host_key_policy(self, policy: object) -> None:
        self.policy = policy

    def connect(self, host: str, **kwargs: object) -> None:
        if self.connect_error is not None:
            raise self.connect_error
        self.connected = {"host": host, **kwargs}

    def exec_command(self, command: str, timeout: float | None = None):
        self.commands.append(command)
        self.command_timeouts.append(timeout)
        stream = StalledStream if self.stalled else FakeStream
        return (
            None,
            stream(self.stdout, self.returncode),
            FakeStream(self.stderr, self.returncode),
        )

    def close(self) -> None:
        self.closed = True


def test_invoke_runs_encoded_powershell(capsys: pytest.CaptureFixture[str]) -> None:
    client = FakeClient(stdout=b'{"Passed": true}\r\n')
    agent = remote.SSHPowerShellAgent(port=2222, client_factory=lambda: client)

    result = agent.invoke("HV01", CRED, BODY, operation="start host agent")

    assert result == {"Passed": True}
    assert client.connected["host"] == "HV01"
    assert client.connected["port"] == 2222
    assert client.connected["username"] == "contoso\\admin"
    assert client.connected["password"] == "hunter2"
    assert client.commands == [
        "powershell.exe -NoProfile -NonInteractive -EncodedCommand " + encode(BODY.render())
    ]
    assert client.closed
    out = capsys.readouterr().out
    assert "+ [HV01] Start-Service -Name 'NCHostAgent'" in out


def test_invoke_quiet_does_not_echo(capsys: pytest.CaptureFixture[str]) -> None:
    client = FakeClient()
    agent = remote.SSHPowerShellAgent(quiet=True, client_factory=lambda: client)

    assert agent.invoke("HV01", CRED, BODY, operation="op") is None
    assert capsys.readouterr().out == ""


def test_invoke_nonzero_exit_raises() -> None:
    client = FakeClient(stderr=b"Access is denied.\r\n", returncode=1)
    agent = remote.SSHPowerShellAgent(quiet=True, client_factory=lambda: client)

    with pytest.raises(RemoteOperationFailed) as exc_info:
        agent.invoke("HV02", CRED, BODY, operation="start host agent")

    assert exc_info.value.target == "HV02"
    assert "Access is denied." in exc_info.value.message
    assert client.closed


def test_invoke_connect_failure_raises() -> None:
    client = FakeClient(connect_error=paramiko.AuthenticationException("bad password"))
    agent = remote.SSHPowerShellAgent(quiet=True, client_factory=lambda: client)

    with pytest.raises(RemoteOperationFailed, match="unable to connect"):
        agent.invoke("HV01", CRED, BODY, operation="op")


@pytest.mark.parametrize(
    ("stdout", "expected"),
    [
        ("", None),
        ('"NC01"', "NC01"),
        ("WARNING: something\n[1, 2]", [1, 2]),
        ("plain text", "plain text"),
    ],
)
def test_parse_output(stdout: str, expected: object) -> None:
    assert remote.parse_output(stdout) == expected


def test_dry_run_agent_records_and_echoes(capsys: pytest.CaptureFixture[str]) -> None:
    agent = remote.DryRunAgent()

    assert agent.invoke("HV01", CRED, BODY, operation="start host agent") is None
    assert agent.calls == [("HV01", "start host agent")]
    assert "hunter2" not in capsys.readouterr().out


def test_invoke_bounds_command_output_wait() -> None:
    client = FakeClient(stalled=True)
    agent = remote.SSHPowerShellAgent(
        quiet=True, command_timeout=45, client_factory=lambda: client
    )

    with pytest.raises(RemoteOperationFailed, match="no response within 45s") as exc_info:
        agent.invoke("NC01", CRED, BODY, operation="readiness probe")

    assert client.command_timeouts == [45]
    assert exc_info.value.target == "NC01"
    assert client.closed

from __future__ import annotations

import click

__all__ = [
    "SDNExpressError",
    "ConfigurationVersionMismatch",
    "ConfigurationInvalid",
    "CredentialPromptCancelled",
    "CertificateNotFound",
    "DuplicateCertificate",
    "ReadinessTimeout",
    "RemoteOperationFailed",
    "HealthCheckFailed",
]


class SDNExpressError(click.ClickException):
    """Base class for every failure that aborts a deployment run."""


class ConfigurationVersionMismatch(SDNExpressError):
    def __init__(self, found: object, supported: str) -> None:
        super().__init__(
            f"Configuration ScriptVersion {found!r} does not match the "
            f"supported version {supported!r}."
        )
        self.found = found
        self.supported = supported


class ConfigurationInvalid(SDNExpressError):
    pass


class CredentialPromptCancelled(SDNExpressError):
    def __init__(self, role: str) -> None:
        super().__init__(f"Credential prompt for {role} was cancelled.")
        self.role = role


class CertificateNotFound(SDNExpressError):
    pass


class DuplicateCertificate(SDNExpressError):
    pass


class ReadinessTimeout(SDNExpressError):
    def __init__(self, pending: list[str], timeout: float) -> None:
        super().__init__(
            f"Timed out after {timeout:g}s waiting for "
            + ", ".join(pending)
            + " to respond to management requests."
        )
        self.pending = pending
        self.timeout = timeout


class RemoteOperationFailed(SDNExpressError):
    def __init__(self, operation: str, target: str | None, detail: str) -> None:
        where = f" on {target}" if target else ""
        super().__init__(f"{operation} failed{where}: {detail}")
        self.operation = operation
        self.target = target
        self.detail = detail


class HealthCheckFailed(SDNExpressError):
    pass

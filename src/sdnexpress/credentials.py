from __future__ import annotations

import dataclasses
from typing import Callable, Mapping

import click
from cryptography.fernet import Fernet, InvalidToken

from sdnexpress.deployconfig import DeploymentConfig
from sdnexpress.errors import CredentialPromptCancelled
from sdnexpress.state import get_state_file, write_private_file

KEY_FILENAME = "secret.key"

ROLE_DOMAIN_JOIN = "DomainJoin"
ROLE_NC = "NC"
ROLE_LOCAL_ADMIN = "LocalAdmin"
ROLE_IDNS_ADMIN = "iDNSAdmin"


@dataclasses.dataclass(frozen=True)
class Credential:
    username: str
    password: str = dataclasses.field(repr=False)


@dataclasses.dataclass(frozen=True)
class RunCredentials:
    domain_join: Credential
    nc: Credential
    local_admin: Credential
    idns_admin: Credential | None = None


class SecretUnavailable(Exception):
    """Stored secret cannot be decrypted by this user on this machine."""


Prompt = Callable[[str, str], "Credential | None"]


def _load_key(*, create: bool) -> bytes | None:
    path = get_state_file(KEY_FILENAME)
    if path.exists():
        return path.read_bytes().strip()
    if not create:
        return None
    key = Fernet.generate_key()
    write_private_file(KEY_FILENAME, key)
    return key


def encrypt_secret(plaintext: str) -> str:
    """Encrypt a secret with the invoking user's key, creating it on first use."""
    key = _load_key(create=True)
    return Fernet(key).encrypt(plaintext.encode("utf-8")).decode("ascii")


def decrypt_secret(token: str) -> str:
    key = _load_key(create=False)
    if key is None:
        raise SecretUnavailable("no secret key exists for this user on this machine")
    try:
        fernet = Fernet(key)
    except ValueError as exc:
        raise SecretUnavailable(f"secret key file is unusable: {exc}") from exc
    try:
        return fernet.decrypt(token.strip().encode("ascii")).decode("utf-8")
    except (InvalidToken, UnicodeError) as exc:
        raise SecretUnavailable(
            "secret was encrypted by another user or on another machine"
        ) from exc


def click_prompt(role: str, default_username: str) -> Credential | None:
    """Ask for a credential on the terminal; None when the operator aborts."""
    try:
        username = click.prompt(
            f"{role} username", default=default_username or None, type=str
        )
        password = click.prompt(f"{role} password for {username}", hide_input=True)
    except click.Abort:
        return None
    return Credential(username=username, password=password)


def resolve_secret(
    secure_text: str | None,
    explicit: Credential | None,
    prompt: Prompt,
    default_username: str,
    *,
    role: str,
) -> Credential:
    """
    Return the credential for a role.

    An explicit credential wins; otherwise the stored secret is decrypted;
    otherwise, or when decryption fails, the operator is prompted. Cancelling
    the prompt aborts the run.
    """
    if explicit is not None:
        return explicit

    if secure_text:
        try:
            return Credential(default_username, decrypt_secret(secure_text))
        except SecretUnavailable as exc:
            click.echo(
                f"Warning: stored {role} password is unavailable ({exc}).",
                err=True,
            )

    credential = prompt(role, default_username)
    if credential is None:
        raise CredentialPromptCancelled(role)
    return credential


def resolve_run_credentials(
    config: DeploymentConfig,
    prompt: Prompt = click_prompt,
    explicit: Mapping[str, Credential] | None = None,
) -> RunCredentials:
    explicit = explicit or {}
    domain_join = resolve_secret(
        config.domain_join_secure_password,
        explicit.get(ROLE_DOMAIN_JOIN),
        prompt,
        config.domain_join_username or "",
        role=ROLE_DOMAIN_JOIN,
    )
    nc = resolve_secret(
        config.nc_secure_password,
        explicit.get(ROLE_NC),
        prompt,
        config.nc_username,
        role=ROLE_NC,
    )
    local_admin = resolve_secret(
        config.local_admin_secure_password,
        explicit.get(ROLE_LOCAL_ADMIN),
        prompt,
        config.local_admin_domain_user or "",
        role=ROLE_LOCAL_ADMIN,
    )
    idns_admin = None
    if config.idns is not None:
        idns_admin = resolve_secret(
            config.idns.admin_secure_password,
            explicit.get(ROLE_IDNS_ADMIN),
            prompt,
            config.idns.admin_username,
            role=ROLE_IDNS_ADMIN,
        )
    return RunCredentials(
        domain_join=domain_join,
        nc=nc,
        local_admin=local_admin,
        idns_admin=idns_admin,
    )

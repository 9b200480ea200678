# Copyright (C) 2025 Antonio Paolillo. All rights reserved.
# SPDX-License-Identifier: MIT
"""
Registry, TLS and authentication settings forwarded to the build engine.
"""

import os
from dataclasses import dataclass
from typing import Mapping

from pybud.errors import SystemContextError
from pybud.request import RawBuildRequest

AUTH_FILE_ENV = "REGISTRY_AUTH_FILE"


@dataclass(frozen=True)
class Credentials:
    """Registry credentials from --creds."""

    username: str
    password: str = ""


@dataclass(frozen=True)
class SystemContext:
    """
    How the engine talks to registries.

    Attributes:
        tls_verify: Require HTTPS and verified certificates; None keeps the registry default.
        cert_dir: Directory holding client certificates.
        auth_file: Path of the authentication file.
        credentials: Explicit registry credentials.
        signature_policy_path: Signature policy file used when pulling.
        arch_choice: Architecture to pull base images for.
        os_choice: Operating system to pull base images for.
    """

    tls_verify: bool | None = None
    cert_dir: str = ""
    auth_file: str = ""
    credentials: Credentials | None = None
    signature_policy_path: str = ""
    arch_choice: str = ""
    os_choice: str = ""


def parse_credentials(creds: str) -> Credentials:
    """
    Parses a "username[:password]" string.

    Raises:
        SystemContextError: If the credentials or the username are empty.
    """
    if not creds:
        raise SystemContextError("credentials can't be empty")
    username, _, password = creds.partition(":")
    if not username:
        raise SystemContextError("username can't be empty")
    return Credentials(username=username, password=password)


def parse_system_context(
    request: RawBuildRequest,
    environ: Mapping[str, str] | None = None,
) -> SystemContext:
    """
    Builds the system context from the registry-related flags of a request.

    The authentication file defaults to $REGISTRY_AUTH_FILE. An authentication file given
    explicitly must exist.

    Parameters:
        request (RawBuildRequest): The raw request.
        environ (Mapping[str, str] | None): Environment; defaults to the request one.

    Returns:
        SystemContext: The parsed settings.

    Raises:
        SystemContextError: On empty credentials or a missing authentication file.
    """
    environ = request.environ if environ is None else environ

    auth_file = request.authfile or ""
    if auth_file and not os.path.exists(auth_file):
        raise SystemContextError(f"error checking authfile path {auth_file}: no such file")
    if not auth_file:
        auth_file = environ.get(AUTH_FILE_ENV, "")

    credentials = parse_credentials(request.creds) if request.creds is not None else None

    return SystemContext(
        tls_verify=request.tls_verify,
        cert_dir=request.cert_dir or "",
        auth_file=auth_file,
        credentials=credentials,
        signature_policy_path=request.signature_policy or "",
        arch_choice=request.arch or "",
        os_choice=request.os_ or "",
    )

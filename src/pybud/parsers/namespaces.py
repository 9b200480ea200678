# Copyright (C) 2025 Antonio Paolillo. All rights reserved.
# SPDX-License-Identifier: MIT
"""
Namespace, isolation and ID-mapping options of a build.

These helpers turn the raw --isolation, --ipc, --network, --pid, --uts,
--cgroupns and --userns* flags into the structured values the build engine
consumes. A namespace value is one of:

- "" / "container" / "private": a fresh namespace for the build container,
- "host": share the host's namespace,
- a path (optionally prefixed with "ns:"): join an existing namespace,
- "none" (network only): no network at all.
"""

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Mapping, Tuple

from pybud.errors import NamespaceParseError
from pybud.request import ISOLATION_ENV, RawBuildRequest

logger = logging.getLogger(__name__)

SUBUID_PATH = Path("/etc/subuid")
SUBGID_PATH = Path("/etc/subgid")


class Isolation(str, Enum):
    """How RUN instructions are isolated from the host."""

    OCI = "oci"
    OCI_ROOTLESS = "rootless"
    CHROOT = "chroot"


class NetworkPolicy(str, Enum):
    """Whether the build container gets a network."""

    DEFAULT = "default"
    DISABLED = "disabled"
    ENABLED = "enabled"


@dataclass(frozen=True)
class NamespaceOption:
    """
    Configuration of one namespace.

    Attributes:
        name: Namespace kind ("ipc", "network", "pid", "uts", "cgroup" or "user").
        host: Share the host's namespace.
        path: Join the namespace at this path.
    """

    name: str
    host: bool = False
    path: str = ""


@dataclass(frozen=True)
class IDMap:
    """A contiguous range of IDs mapped from the container to the host."""

    container_id: int
    host_id: int
    size: int


@dataclass(frozen=True)
class IDMappingOptions:
    """User namespace ID mappings; host mappings are used when the maps are empty."""

    host_uid_mapping: bool = True
    host_gid_mapping: bool = True
    uid_map: Tuple[IDMap, ...] = field(default_factory=tuple)
    gid_map: Tuple[IDMap, ...] = field(default_factory=tuple)


def _is_rootless() -> bool:
    return os.geteuid() != 0


def parse_isolation(
    value: str | None,
    environ: Mapping[str, str] | None = None,
    rootless: bool | None = None,
) -> Isolation:
    """
    Resolves the isolation mode.

    An unset or empty value falls back to $BUILDAH_ISOLATION, then to "oci" when running as root
    and "rootless" otherwise.

    Parameters:
        value (str | None): Value of --isolation.
        environ (Mapping[str, str] | None): Environment to read BUILDAH_ISOLATION from.
        rootless (bool | None): Whether the process runs rootless; detected when None.

    Returns:
        Isolation: The isolation mode.

    Raises:
        NamespaceParseError: If the isolation type is unknown.
    """
    environ = os.environ if environ is None else environ
    isolation = value or environ.get(ISOLATION_ENV, "")

    match isolation.lower():
        case "":
            if rootless is None:
                rootless = _is_rootless()
            return Isolation.OCI_ROOTLESS if rootless else Isolation.OCI
        case "oci" | "default":
            return Isolation.OCI
        case "rootless":
            return Isolation.OCI_ROOTLESS
        case "chroot":
            return Isolation.CHROOT
        case _:
            raise NamespaceParseError(f"unrecognized isolation type {isolation!r}")


def _namespace_path(name: str, how: str) -> str:
    path = how[3:] if how.startswith("ns:") else how
    if not os.path.exists(path):
        raise NamespaceParseError(f"error checking for {name} namespace: {path!r} does not exist")
    return path


def parse_namespace_options(
    request: RawBuildRequest,
) -> Tuple[Tuple[NamespaceOption, ...], NetworkPolicy]:
    """
    Parses the --ipc, --network, --pid, --uts and --cgroupns flags.

    Only explicitly set flags produce an option; the engine defaults apply to the others.

    Parameters:
        request (RawBuildRequest): The raw request.

    Returns:
        Tuple[Tuple[NamespaceOption, ...], NetworkPolicy]: The namespace options and the network
        policy.

    Raises:
        NamespaceParseError: If a namespace path does not exist or a value is invalid.
    """
    options: List[NamespaceOption] = []
    policy = NetworkPolicy.DEFAULT

    flags = (
        ("ipc", request.ipc),
        ("network", request.network),
        ("pid", request.pid),
        ("uts", request.uts),
    )
    for name, how in flags:
        if how is None:
            continue
        match how:
            case "" | "container" | "private":
                options.append(NamespaceOption(name=name))
            case "host":
                options.append(NamespaceOption(name=name, host=True))
            case "none" if name == "network":
                options.append(NamespaceOption(name=name))
                policy = NetworkPolicy.DISABLED
            case _:
                options.append(NamespaceOption(name=name, path=_namespace_path(name, how)))
                if name == "network":
                    policy = NetworkPolicy.ENABLED

    if request.cgroupns is not None:
        match request.cgroupns:
            case "" | "container" | "private":
                options.append(NamespaceOption(name="cgroup"))
            case "host":
                options.append(NamespaceOption(name="cgroup", host=True))
            case _:
                raise NamespaceParseError(
                    f"cgroupns type {request.cgroupns!r} is not supported, "
                    "expected 'host' or 'private'"
                )

    return tuple(options), policy


def parse_id_maps(specs: Tuple[str, ...], flag: str) -> Tuple[IDMap, ...]:
    """
    Parses ID map specifications of the form "container:host:size".

    Each specification may hold several comma-separated triples.

    Raises:
        NamespaceParseError: If a triple is malformed.
    """
    maps: List[IDMap] = []
    for spec in specs:
        for triple in spec.split(","):
            parts = triple.strip().split(":")
            if len(parts) != 3:
                raise NamespaceParseError(f"error parsing {flag} {triple!r}: expected c:h:s")
            try:
                container_id, host_id, size = (int(p) for p in parts)
            except ValueError as err:
                raise NamespaceParseError(f"error parsing {flag} {triple!r}: {err}") from err
            if container_id < 0 or host_id < 0 or size <= 0:
                raise NamespaceParseError(f"error parsing {flag} {triple!r}: invalid range")
            maps.append(IDMap(container_id=container_id, host_id=host_id, size=size))
    return tuple(maps)


def lookup_subordinate_ids(
    name: str,
    path: Path,
    log: logging.Logger | None = None,
) -> Tuple[IDMap, ...]:
    """
    Reads the subordinate ID ranges of `name` from an /etc/subuid-style file.

    Ranges are mapped one after the other starting at container ID 0.

    Raises:
        NamespaceParseError: If the file cannot be read or holds no range for `name`.
    """
    try:
        lines = path.read_text().splitlines()
    except OSError as err:
        raise NamespaceParseError(f"error reading {path}: {err}") from err

    maps: List[IDMap] = []
    next_container_id = 0
    for line in lines:
        parts = line.strip().split(":")
        if len(parts) != 3 or parts[0] != name:
            continue
        try:
            start, count = int(parts[1]), int(parts[2])
        except ValueError:
            (log or logger).warning("ignoring malformed entry in %s: %r", path, line)
            continue
        maps.append(IDMap(container_id=next_container_id, host_id=start, size=count))
        next_container_id += count

    if not maps:
        raise NamespaceParseError(f"no subordinate ID ranges found for {name!r} in {path}")
    return tuple(maps)


def parse_idmapping_options(
    request: RawBuildRequest,
    isolation: Isolation,
    subuid_path: Path | None = None,
    subgid_path: Path | None = None,
    log: logging.Logger | None = None,
) -> Tuple[Tuple[NamespaceOption, ...], IDMappingOptions]:
    """
    Parses the --userns, --userns-uid-map(-user) and --userns-gid-map(-group) flags.

    Without any of them the build shares the host's user namespace, unless it runs with rootless
    isolation, in which case the engine sets the namespace up itself. When only one of the UID
    and GID maps is given it is used for both.

    Parameters:
        request (RawBuildRequest): The raw request.
        isolation (Isolation): The resolved isolation mode.
        subuid_path (Path | None): File listing subordinate UIDs; /etc/subuid when None.
        subgid_path (Path | None): File listing subordinate GIDs; /etc/subgid when None.
        log (logging.Logger | None): Receives warnings about malformed entries.

    Returns:
        Tuple[Tuple[NamespaceOption, ...], IDMappingOptions]: The user namespace option(s) and the
        ID mappings.

    Raises:
        NamespaceParseError: On malformed maps, unknown users or conflicting flags.
    """
    uid_map = parse_id_maps(request.userns_uid_map, "--userns-uid-map")
    gid_map = parse_id_maps(request.userns_gid_map, "--userns-gid-map")

    if request.userns_uid_map_user:
        uid_map += lookup_subordinate_ids(
            request.userns_uid_map_user, subuid_path or SUBUID_PATH, log=log
        )
    if request.userns_gid_map_group:
        gid_map += lookup_subordinate_ids(
            request.userns_gid_map_group, subgid_path or SUBGID_PATH, log=log
        )

    if uid_map and not gid_map:
        gid_map = uid_map
    elif gid_map and not uid_map:
        uid_map = gid_map

    how = request.userns
    if how == "host":
        if uid_map:
            raise NamespaceParseError("can not specify ID mappings together with --userns=host")
        return (NamespaceOption(name="user", host=True),), IDMappingOptions()

    if how is not None and how not in ("", "container", "private"):
        path = _namespace_path("user", how)
        return (NamespaceOption(name="user", path=path),), IDMappingOptions()

    if not uid_map and how is None:
        if isolation is Isolation.OCI_ROOTLESS:
            return (), IDMappingOptions()
        return (NamespaceOption(name="user", host=True),), IDMappingOptions()

    mapping = IDMappingOptions(
        host_uid_mapping=not uid_map,
        host_gid_mapping=not gid_map,
        uid_map=uid_map,
        gid_map=gid_map,
    )
    return (NamespaceOption(name="user"),), mapping

# Copyright (C) 2025 Antonio Paolillo. All rights reserved.
# SPDX-License-Identifier: MIT
"""
Transient mounts for RUN instructions.

A `--volume` flag bind-mounts a host directory into every container the build
runs, without the content ending up in the image:

    --volume /host/dir:/container/dir[:opt,opt,...]

This module provides the `TransientMount` dataclass, which models one such
specification, and `parse_volume`, which validates the textual form. The
`to_flag()` method renders it back for the engine command line.
"""

import os
from dataclasses import dataclass, field
from typing import Iterable, Tuple

from pybud.errors import VolumeParseError

KNOWN_OPTIONS = frozenset(
    {
        "rw",
        "ro",
        "z",
        "Z",
        "O",
        "U",
        "bind",
        "rbind",
        "private",
        "rprivate",
        "shared",
        "rshared",
        "slave",
        "rslave",
        "dev",
        "nodev",
        "exec",
        "noexec",
        "suid",
        "nosuid",
    }
)

_EXCLUSIVE_GROUPS = (
    frozenset({"rw", "ro"}),
    frozenset({"z", "Z"}),
    frozenset({"bind", "rbind"}),
    frozenset({"private", "rprivate", "shared", "rshared", "slave", "rslave"}),
    frozenset({"dev", "nodev"}),
    frozenset({"exec", "noexec"}),
    frozenset({"suid", "nosuid"}),
)


@dataclass(frozen=True)
class TransientMount:
    """
    Represents a single bind mount applied to every RUN instruction of the build.

    Attributes:
        source (str):
            Absolute path of the directory on the host.

        destination (str):
            Absolute path inside the build container.

        options (tuple[str, ...]):
            Mount options, in the order they were given (for example `ro`, `z`).
    """

    source: str
    destination: str
    options: Tuple[str, ...] = field(default_factory=tuple)

    def to_flag(self) -> str:
        """
        Convert this mount specification into a `--volume=` flag.

        Returns:
            str: The full `--volume=...` expression. Example:

                "--volume=/srv/cache:/root/.cache:ro,z"
        """
        spec = f"{self.source}:{self.destination}"
        if self.options:
            spec += ":" + ",".join(self.options)
        return f"--volume={spec}"


def _validate_options(spec: str, options: Iterable[str]) -> Tuple[str, ...]:
    options = tuple(o for o in options if o)
    for option in options:
        if option not in KNOWN_OPTIONS:
            raise VolumeParseError(f"invalid option {option!r} in volume {spec!r}")
    for group in _EXCLUSIVE_GROUPS:
        if len(group.intersection(options)) > 1:
            raise VolumeParseError(
                f"only one of {', '.join(sorted(group))} may be given in volume {spec!r}"
            )
    return options


def parse_volume(spec: str) -> TransientMount:
    """
    Parses a `host:container[:options]` volume specification.

    Parameters:
        spec (str): The value of a --volume flag.

    Returns:
        TransientMount: The parsed mount.

    Raises:
        VolumeParseError: If the format, a path or an option is invalid.
    """
    parts = spec.split(":")
    if len(parts) not in (2, 3):
        raise VolumeParseError(
            f"incorrect volume format {spec!r}, should be host-dir:ctr-dir[:option]"
        )

    source, destination = parts[0], parts[1]
    options = _validate_options(spec, parts[2].split(",")) if len(parts) == 3 else ()

    if not os.path.isabs(source):
        raise VolumeParseError(f"invalid host path {source!r}, must be an absolute path")
    if not os.path.exists(source):
        raise VolumeParseError(f"invalid host path {source!r}, it does not exist")
    if not os.path.isabs(destination):
        raise VolumeParseError(f"invalid container path {destination!r}, must be an absolute path")

    return TransientMount(source=source, destination=destination, options=options)


def parse_volumes(specs: Iterable[str]) -> Tuple[TransientMount, ...]:
    """Parses several volume specifications, keeping their order."""
    return tuple(parse_volume(spec) for spec in specs)

# Copyright (C) 2025 Antonio Paolillo. All rights reserved.
# SPDX-License-Identifier: MIT
"""
Raw build request as typed by the user.

A `RawBuildRequest` is captured once per invocation and never mutated. Every
optional flag is tri-state: `None` (or an empty tuple for repeatable flags)
means the user did not touch it, anything else is an explicit value, even
when it happens to equal the default. This is what lets the compiler tell
"--layers=true" apart from "layers enabled by default".
"""

import os
from dataclasses import dataclass, field, fields
from typing import Dict, Tuple

LAYERS_ENV = "BUILDAH_LAYERS"
FORMAT_ENV = "BUILDAH_FORMAT"
ISOLATION_ENV = "BUILDAH_ISOLATION"

Strings = Tuple[str, ...]


def _current_environ() -> Dict[str, str]:
    return dict(os.environ)


# pylint: disable=too-many-instance-attributes
@dataclass(frozen=True)
class RawBuildRequest:
    """
    Flags, positional argument and environment of one build invocation.

    Attributes are named after their command-line flag (dashes replaced by
    underscores). `format_` and `os_` carry a trailing underscore to avoid
    shadowing builtins, `context` is the positional `[CONTEXT]` argument and
    `environ` is the process environment at capture time.
    """

    # context and containerfiles
    context: str | None = None
    files: Strings = ()

    # output
    tags: Strings = ()
    format_: str | None = None
    iidfile: str | None = None
    sign_by: str | None = None
    disable_compression: bool | None = None
    target: str | None = None

    # layers and squashing
    squash: bool | None = None
    squash_all: bool | None = None
    layers: bool | None = None
    force_rm: bool | None = None
    rm: bool | None = None
    no_cache: bool | None = None

    # pulling
    pull: bool | None = None
    pull_always: bool | None = None
    pull_never: bool | None = None

    # build content
    build_args: Strings = ()
    labels: Strings = ()
    annotations: Strings = ()
    arch: str | None = None
    os_: str | None = None

    # resources
    memory: str | None = None
    memory_swap: str | None = None
    cpu_period: int | None = None
    cpu_quota: int | None = None
    cpu_shares: int | None = None
    cpuset_cpus: str | None = None
    cpuset_mems: str | None = None
    shm_size: str | None = None
    ulimits: Strings = ()
    cgroup_parent: str | None = None

    # security and devices
    cap_add: Strings = ()
    cap_drop: Strings = ()
    devices: Strings = ()
    volumes: Strings = ()
    add_hosts: Strings = ()
    http_proxy: bool | None = None

    # namespaces and isolation
    isolation: str | None = None
    ipc: str | None = None
    network: str | None = None
    pid: str | None = None
    uts: str | None = None
    cgroupns: str | None = None
    userns: str | None = None
    userns_uid_map: Strings = ()
    userns_gid_map: Strings = ()
    userns_uid_map_user: str | None = None
    userns_gid_map_group: str | None = None
    cni_config_dir: str | None = None
    cni_plugin_path: str | None = None

    # runtime
    runtime_flags: Strings = ()

    # registries and signatures
    tls_verify: bool | None = None
    creds: str | None = None
    authfile: str | None = None
    cert_dir: str | None = None
    signature_policy: str | None = None
    blob_cache: str | None = None

    # output streams
    logfile: str | None = None
    quiet: bool | None = None

    environ: Dict[str, str] = field(default_factory=_current_environ, compare=False)

    def changed(self, name: str) -> bool:
        """
        Tells whether the user explicitly set the flag stored in attribute `name`.

        Raises:
            AttributeError: If `name` is not a flag of the request.
        """
        if name == "environ" or name not in _FLAG_NAMES:
            raise AttributeError(f"Unknown build flag: {name}")
        value = getattr(self, name)
        if isinstance(value, tuple):
            return bool(value)
        return value is not None


_FLAG_NAMES = frozenset(f.name for f in fields(RawBuildRequest))

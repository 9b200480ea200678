# Copyright (C) 2025 Antonio Paolillo. All rights reserved.
# SPDX-License-Identifier: MIT
"""
Process-wide configuration provider.

The configured OCI runtime, its global flags and the cgroup manager come from
`containers.conf`, the TOML file shared by the container tools. The first file
found among the following wins:

- the path in the `CONTAINERS_CONF` environment variable,
- `$XDG_CONFIG_HOME/containers/containers.conf` (or `~/.config/...`),
- `/etc/containers/containers.conf`,
- `/usr/share/containers/containers.conf`.

When none exists, built-in defaults are used. Setting `CONTAINER_HOST` marks the
process as talking to a remote service.
"""

import logging
import os
import shutil
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Tuple

logger = logging.getLogger(__name__)

SYSTEMD_CGROUP_MANAGER = "systemd"
CGROUPFS_CGROUP_MANAGER = "cgroupfs"

DEFAULT_RUNTIME = "runc"
DEFAULT_RUNTIME_PATHS: Dict[str, List[str]] = {
    "runc": [
        "/usr/bin/runc",
        "/usr/sbin/runc",
        "/usr/local/bin/runc",
        "/usr/local/sbin/runc",
        "/sbin/runc",
        "/bin/runc",
    ],
    "crun": [
        "/usr/bin/crun",
        "/usr/sbin/crun",
        "/usr/local/bin/crun",
        "/usr/local/sbin/crun",
        "/sbin/crun",
        "/bin/crun",
    ],
}

SYSTEM_CONFIG_PATHS = (
    Path("/etc/containers/containers.conf"),
    Path("/usr/share/containers/containers.conf"),
)


@dataclass(frozen=True)
class ProcessConfig:
    """
    Engine settings shared by every build of the process.

    Attributes:
        runtime_path: Path (or bare name) of the OCI runtime executable.
        runtime_flags: Global runtime flags, without their leading `--`.
        cgroup_manager: Either "systemd" or "cgroupfs".
        remote: Whether builds are forwarded to a remote service.
    """

    runtime_path: str = DEFAULT_RUNTIME
    runtime_flags: Tuple[str, ...] = ()
    cgroup_manager: str = SYSTEMD_CGROUP_MANAGER
    remote: bool = False

    @property
    def uses_systemd_cgroups(self) -> bool:
        """True when cgroups are managed through systemd."""
        return self.cgroup_manager == SYSTEMD_CGROUP_MANAGER


def _user_config_path(environ: Mapping[str, str]) -> Path:
    config_home = environ.get("XDG_CONFIG_HOME")
    if config_home:
        return Path(config_home) / "containers" / "containers.conf"
    home = Path(environ.get("HOME", str(Path.home())))
    return home / ".config" / "containers" / "containers.conf"


def find_config_file(environ: Mapping[str, str]) -> Path | None:
    """
    Locates the containers.conf file to use.

    Parameters:
        environ (Mapping[str, str]): The process environment.

    Returns:
        Path | None: The first existing candidate, or None.
    """
    override = environ.get("CONTAINERS_CONF")
    if override:
        return Path(override)

    candidates = (_user_config_path(environ),) + SYSTEM_CONFIG_PATHS
    for candidate in candidates:
        if candidate.is_file():
            return candidate
    return None


def _lookup_runtime_path(runtime: str, runtimes: Mapping[str, Any]) -> str:
    """
    Finds the executable of `runtime`: first existing path listed in `[engine.runtimes]` (or the
    built-in list), then a PATH lookup, then the bare name.
    """
    if os.sep in runtime:
        return runtime

    candidates = runtimes.get(runtime) or DEFAULT_RUNTIME_PATHS.get(runtime, [])
    for candidate in candidates:
        if Path(candidate).is_file():
            return str(candidate)

    which = shutil.which(runtime)
    return which if which else runtime


def parse_process_config(
    document: Mapping[str, Any],
    environ: Mapping[str, str] | None = None,
) -> ProcessConfig:
    """
    Builds a ProcessConfig from an already decoded containers.conf document.

    Parameters:
        document (Mapping[str, Any]): The decoded TOML document.
        environ (Mapping[str, str] | None): Environment used for the remote switch.

    Returns:
        ProcessConfig: The resulting configuration.

    Raises:
        ValueError: If a known key holds a value of the wrong type.
    """
    environ = os.environ if environ is None else environ
    engine = document.get("engine", {})

    runtime = engine.get("runtime", DEFAULT_RUNTIME)
    runtime_flags = engine.get("runtime_flags", [])
    cgroup_manager = engine.get("cgroup_manager", SYSTEMD_CGROUP_MANAGER)
    remote = engine.get("remote", False)

    if not isinstance(runtime, str):
        raise ValueError(f"engine.runtime must be a string, got {runtime!r}")
    if not isinstance(runtime_flags, list) or not all(isinstance(f, str) for f in runtime_flags):
        raise ValueError(f"engine.runtime_flags must be a list of strings, got {runtime_flags!r}")
    if cgroup_manager not in (SYSTEMD_CGROUP_MANAGER, CGROUPFS_CGROUP_MANAGER):
        raise ValueError(f"engine.cgroup_manager must be systemd or cgroupfs: {cgroup_manager!r}")

    return ProcessConfig(
        runtime_path=_lookup_runtime_path(runtime, engine.get("runtimes", {})),
        runtime_flags=tuple(runtime_flags),
        cgroup_manager=cgroup_manager,
        remote=bool(remote) or bool(environ.get("CONTAINER_HOST")),
    )


def load_process_config(environ: Mapping[str, str] | None = None) -> ProcessConfig:
    """
    Loads the process configuration from containers.conf.

    Parameters:
        environ (Mapping[str, str] | None): Environment to use; defaults to os.environ.

    Returns:
        ProcessConfig: The configuration, or defaults when no file is found.

    Raises:
        OSError: If the selected file cannot be read.
        ValueError: If the file is not valid TOML or holds invalid values.
    """
    environ = os.environ if environ is None else environ
    path = find_config_file(environ)
    if path is None:
        logger.debug("no containers.conf found, using defaults")
        return parse_process_config({}, environ=environ)

    logger.debug("loading process configuration from %s", path)
    with open(path, "rb") as config_file:
        document = tomllib.load(config_file)
    return parse_process_config(document, environ=environ)

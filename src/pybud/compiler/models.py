# Copyright (C) 2025 Antonio Paolillo. All rights reserved.
# SPDX-License-Identifier: MIT
"""
Values produced by the build request compiler.

`CompiledBuildConfig` is the only artifact handed to a build engine. It is
frozen: once compiled, nothing downstream can change how the build runs.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Protocol, Sequence, TextIO, Tuple

from pybud.mounts import TransientMount
from pybud.parsers.namespaces import (
    IDMappingOptions,
    Isolation,
    NamespaceOption,
    NetworkPolicy,
)
from pybud.parsers.system import SystemContext

OCI = "oci"
DOCKER = "docker"
OCI_V1_IMAGE_MANIFEST = "application/vnd.oci.image.manifest.v1+json"
DOCKER_V2_IMAGE_MANIFEST = "application/vnd.docker.distribution.manifest.v2+json"


class PullPolicy(str, Enum):
    """When the base image is pulled from its registry."""

    IF_MISSING = "missing"
    ALWAYS = "always"
    NEVER = "never"


class Compression(str, Enum):
    """Compression of the layers written by the build."""

    GZIP = "gzip"
    UNCOMPRESSED = "uncompressed"


@dataclass(frozen=True)
class StreamBindings:
    """
    Where the build writes its output.

    Attributes:
        out: Standard output of the build.
        err: Standard error of the build.
        report_writer: Progress reports (pull and commit messages).
        logger: Log sink of the invocation.
        logfile: Path of the log file the streams are bound to, if any.
    """

    out: TextIO
    err: TextIO
    report_writer: TextIO
    logger: logging.Logger
    logfile: Path | None = None


# pylint: disable=too-many-instance-attributes
@dataclass(frozen=True)
class CommonBuildOptions:
    """Resource limits and host settings applied to every container of the build."""

    add_host: Tuple[str, ...] = ()
    cpu_period: int = 0
    cpu_quota: int = 0
    cpu_shares: int = 0
    cpuset_cpus: str = ""
    cpuset_mems: str = ""
    cgroup_parent: str = ""
    http_proxy: bool = True
    memory: int = 0
    memory_swap: int = 0
    shm_size: str = ""
    ulimit: Tuple[str, ...] = ()
    volumes: Tuple[TransientMount, ...] = ()


# pylint: disable=too-many-instance-attributes
@dataclass(frozen=True)
class CompiledBuildConfig:
    """
    Fully resolved configuration of one build.

    `containerfiles` is never empty and `context_directory` is an existing
    directory. `output` is empty for an anonymous build.
    """

    containerfiles: Tuple[str, ...]
    context_directory: Path
    streams: StreamBindings

    output: str = ""
    additional_tags: Tuple[str, ...] = ()
    output_format: str = OCI_V1_IMAGE_MANIFEST
    compression: Compression = Compression.GZIP
    iidfile: str = ""
    sign_by: str = ""
    target: str = ""

    squash: bool = False
    layers: bool = True
    no_cache: bool = False
    remove_intermediate_ctrs: bool = True
    force_rm_intermediate_ctrs: bool = True
    quiet: bool = False

    pull_policy: PullPolicy = PullPolicy.IF_MISSING
    args: Dict[str, str] = field(default_factory=dict)
    labels: Tuple[str, ...] = ()
    annotations: Tuple[str, ...] = ()
    architecture: str = ""
    os: str = ""

    common_build_opts: CommonBuildOptions = field(default_factory=CommonBuildOptions)
    add_capabilities: Tuple[str, ...] = ()
    drop_capabilities: Tuple[str, ...] = ()
    devices: Tuple[str, ...] = ()
    transient_mounts: Tuple[TransientMount, ...] = ()

    isolation: Isolation = Isolation.OCI
    namespace_options: Tuple[NamespaceOption, ...] = ()
    configure_network: NetworkPolicy = NetworkPolicy.DEFAULT
    idmapping_options: IDMappingOptions = field(default_factory=IDMappingOptions)
    cni_config_dir: str = ""
    cni_plugin_path: str = ""

    runtime: str = ""
    runtime_args: Tuple[str, ...] = ()

    system_context: SystemContext = field(default_factory=SystemContext)
    signature_policy_path: str = ""
    blob_directory: str = ""

    @property
    def logger(self) -> logging.Logger:
        """Log sink of the invocation."""
        return self.streams.logger


class BuildEngine(Protocol):
    """An image build engine able to execute a compiled configuration."""

    def build(self, containerfiles: Sequence[str], config: CompiledBuildConfig) -> str:
        """
        Builds the image described by `config`.

        Returns:
            str: The identifier of the built image.
        """

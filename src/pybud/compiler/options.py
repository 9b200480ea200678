# Copyright (C) 2025 Antonio Paolillo. All rights reserved.
# SPDX-License-Identifier: MIT
"""
Compilation of the scalar and structured options of a build request.

Everything here is deterministic given the request, the resolved context and
the process configuration, except `bound_streams`, which may create the log
file.
"""

import logging
import os
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterable, Iterator, Mapping, Tuple

from pybud.compiler.conflicts import (
    resolve_force_rm,
    resolve_http_proxy,
    resolve_layering,
    resolve_rm,
)
from pybud.compiler.contexts import ResolvedContext
from pybud.compiler.models import (
    DOCKER,
    DOCKER_V2_IMAGE_MANIFEST,
    OCI,
    OCI_V1_IMAGE_MANIFEST,
    CommonBuildOptions,
    CompiledBuildConfig,
    Compression,
    PullPolicy,
    StreamBindings,
)
from pybud.config import ProcessConfig
from pybud.errors import FormatError
from pybud.logs import invocation_logger, release_logger
from pybud.mounts import parse_volumes
from pybud.parsers.namespaces import (
    parse_idmapping_options,
    parse_isolation,
    parse_namespace_options,
)
from pybud.parsers.system import parse_system_context
from pybud.parsers.units import parse_ram_bytes
from pybud.request import FORMAT_ENV, RawBuildRequest

logger = logging.getLogger(__name__)

LOGFILE_MODE = 0o600
SYSTEMD_CGROUP_FLAG = "--systemd-cgroup"


def resolve_output(request: RawBuildRequest) -> Tuple[str, Tuple[str, ...]]:
    """
    Splits --tag values into the output reference and the additional tags.

    Returns:
        Tuple[str, Tuple[str, ...]]: The first tag and the remaining ones, or ("", ()) for an
        anonymous build.
    """
    if not request.changed("tags"):
        return "", ()
    return request.tags[0], request.tags[1:]


def resolve_pull_policy(request: RawBuildRequest) -> PullPolicy:
    """
    Resolves --pull, --pull-always and --pull-never into a pull policy.

    --pull-never resolves to the same policy as the default.
    """
    policy = PullPolicy.IF_MISSING
    if request.changed("pull") and request.pull:
        policy = PullPolicy.ALWAYS
    if request.pull_always:
        policy = PullPolicy.ALWAYS
    if request.pull_never:
        policy = PullPolicy.IF_MISSING
    return policy


def parse_build_args(build_args: Iterable[str]) -> Dict[str, str]:
    """
    Turns --build-arg values into a mapping, in declaration order.

    "KEY=VALUE" sets KEY (the last occurrence wins) and a bare "KEY" removes it.
    """
    args: Dict[str, str] = {}
    for arg in build_args:
        key, sep, value = arg.partition("=")
        if sep:
            args[key] = value
        else:
            args.pop(key, None)
    return args


def parse_memory_limits(request: RawBuildRequest) -> Tuple[int, int]:
    """
    Parses --memory and --memory-swap; unset limits are 0.

    Raises:
        SizeParseError: If a quantity is malformed.
    """
    memory = parse_ram_bytes(request.memory) if request.memory is not None else 0
    memory_swap = parse_ram_bytes(request.memory_swap) if request.memory_swap is not None else 0
    return memory, memory_swap


def resolve_format(format_: str | None, environ: Mapping[str, str]) -> str:
    """
    Maps the --format value to a manifest media type.

    The value is lower-cased and matched by prefix against "oci" and "docker". An unset value
    falls back to $BUILDAH_FORMAT, then to "oci".

    Raises:
        FormatError: If the value matches neither family.
    """
    if format_ is None:
        format_ = environ.get(FORMAT_ENV) or OCI
    format_ = format_.lower()

    if format_.startswith(OCI):
        return OCI_V1_IMAGE_MANIFEST
    if format_.startswith(DOCKER):
        return DOCKER_V2_IMAGE_MANIFEST
    raise FormatError(f"unrecognized image type {format_!r}")


def resolve_compression(request: RawBuildRequest) -> Compression:
    if request.disable_compression:
        return Compression.UNCOMPRESSED
    return Compression.GZIP


def resolve_runtime_args(
    runtime_flags: Iterable[str],
    process_config: ProcessConfig,
) -> Tuple[str, ...]:
    """
    Builds the global arguments of the OCI runtime.

    User flags come first, then the configured ones, then --systemd-cgroup when cgroups are
    managed by systemd. A later flag overrides an earlier one in the runtime.
    """
    args = [f"--{flag}" for flag in runtime_flags]
    args += [f"--{flag}" for flag in process_config.runtime_flags]
    if process_config.uses_systemd_cgroups:
        args.append(SYSTEMD_CGROUP_FLAG)
    return tuple(args)


@contextmanager
def bound_streams(logfile: str | None) -> Iterator[StreamBindings]:
    """
    Binds the build output streams for the duration of a `with` block.

    Without a log file, the build writes to the process standard output and error, progress
    reports going to standard error. With a log file, the file is created (or truncated) with
    owner-only permissions and receives all three streams as well as the invocation logs. It is
    closed when the block exits.

    Parameters:
        logfile (str | None): Path given with --logfile, None when unset.

    Yields:
        StreamBindings: The streams and log sink of the invocation.

    Raises:
        OSError: If the log file cannot be opened.
    """
    if logfile is None:
        yield StreamBindings(
            out=sys.stdout,
            err=sys.stderr,
            report_writer=sys.stderr,
            logger=logging.getLogger("pybud.build"),
        )
        return

    fd = os.open(logfile, os.O_CREAT | os.O_TRUNC | os.O_WRONLY, LOGFILE_MODE)
    with os.fdopen(fd, "w") as stream:
        sink = invocation_logger(stream)
        try:
            yield StreamBindings(
                out=stream,
                err=stream,
                report_writer=stream,
                logger=sink,
                logfile=Path(logfile),
            )
        finally:
            release_logger(sink)


def compile_options(
    request: RawBuildRequest,
    context: ResolvedContext,
    containerfiles: Tuple[str, ...],
    process_config: ProcessConfig,
    streams: StreamBindings,
) -> CompiledBuildConfig:
    """
    Assembles the compiled configuration of a build.

    Parameters:
        request (RawBuildRequest): A request already accepted by `check_conflicts`.
        context (ResolvedContext): The resolved build context.
        containerfiles (Tuple[str, ...]): The non-empty list of containerfiles.
        process_config (ProcessConfig): Process-wide engine settings.
        streams (StreamBindings): Output streams of the build.

    Returns:
        CompiledBuildConfig: The configuration to hand to the engine.

    Raises:
        SizeParseError: On a malformed memory quantity.
        NamespaceParseError: On a malformed namespace, isolation or ID-mapping option.
        SystemContextError: On malformed registry settings.
        VolumeParseError: On a malformed volume.
        FormatError: On an unknown image format.
    """
    output, additional_tags = resolve_output(request)
    layering = resolve_layering(request)
    memory, memory_swap = parse_memory_limits(request)

    namespace_options, network_policy = parse_namespace_options(request)
    isolation = parse_isolation(request.isolation, environ=request.environ)
    userns_options, idmapping_options = parse_idmapping_options(
        request, isolation, log=streams.logger
    )
    system_context = parse_system_context(request)
    output_format = resolve_format(request.format_, request.environ)
    volumes = parse_volumes(request.volumes)

    common = CommonBuildOptions(
        add_host=request.add_hosts,
        cpu_period=request.cpu_period or 0,
        cpu_quota=request.cpu_quota or 0,
        cpu_shares=request.cpu_shares or 0,
        cpuset_cpus=request.cpuset_cpus or "",
        cpuset_mems=request.cpuset_mems or "",
        cgroup_parent=request.cgroup_parent or "",
        http_proxy=resolve_http_proxy(request, process_config),
        memory=memory,
        memory_swap=memory_swap,
        shm_size=request.shm_size or "",
        ulimit=request.ulimits,
        volumes=volumes,
    )

    streams.logger.debug(
        "compiled build of %s in %s (squash=%s, layers=%s)",
        containerfiles[0],
        context.directory,
        layering.squash,
        layering.layers,
    )

    return CompiledBuildConfig(
        containerfiles=containerfiles,
        context_directory=context.directory,
        streams=streams,
        output=output,
        additional_tags=additional_tags,
        output_format=output_format,
        compression=resolve_compression(request),
        iidfile=request.iidfile or "",
        sign_by=request.sign_by or "",
        target=request.target or "",
        squash=layering.squash,
        layers=layering.layers,
        no_cache=bool(request.no_cache),
        remove_intermediate_ctrs=resolve_rm(request),
        force_rm_intermediate_ctrs=resolve_force_rm(request),
        quiet=bool(request.quiet),
        pull_policy=resolve_pull_policy(request),
        args=parse_build_args(request.build_args),
        labels=request.labels,
        annotations=request.annotations,
        architecture=request.arch or "",
        os=request.os_ or "",
        common_build_opts=common,
        add_capabilities=request.cap_add,
        drop_capabilities=request.cap_drop,
        devices=request.devices,
        transient_mounts=volumes,
        isolation=isolation,
        namespace_options=namespace_options + userns_options,
        configure_network=network_policy,
        idmapping_options=idmapping_options,
        cni_config_dir=request.cni_config_dir or "",
        cni_plugin_path=request.cni_plugin_path or "",
        runtime=process_config.runtime_path,
        runtime_args=resolve_runtime_args(request.runtime_flags, process_config),
        system_context=system_context,
        signature_policy_path=request.signature_policy or "",
        blob_directory=request.blob_cache or "",
    )

# Copyright (C) 2025 Antonio Paolillo. All rights reserved.
# SPDX-License-Identifier: MIT

"""
This module provides build engines executing a compiled build configuration.
The `BuildahBudEngine` translates a `CompiledBuildConfig` into a `buildah bud` command line, runs
it, and can also save that command as a standalone shell script.
"""

import tempfile
from pathlib import Path
from typing import List, Sequence

from pybud.compiler.models import (
    DOCKER_V2_IMAGE_MANIFEST,
    BuildEngine,
    CompiledBuildConfig,
    Compression,
    PullPolicy,
)
from pybud.parsers.namespaces import NetworkPolicy
from pybud.sysutils import PathType, mkdir_for_path, shell_out

__all__ = ["BuildEngine", "BuildahBudEngine"]

_PULL_FLAGS = {
    PullPolicy.IF_MISSING: "--pull=missing",
    PullPolicy.ALWAYS: "--pull=always",
    PullPolicy.NEVER: "--pull=never",
}


def _bool_str(value: bool) -> str:
    return "true" if value else "false"


def _namespace_args(config: CompiledBuildConfig) -> List[str]:
    """
    Renders namespace and ID-mapping options as buildah flags.
    """
    flag_names = {
        "ipc": "--ipc",
        "network": "--network",
        "pid": "--pid",
        "uts": "--uts",
        "cgroup": "--cgroupns",
        "user": "--userns",
    }
    args = []
    for option in config.namespace_options:
        if option.host:
            how = "host"
        elif option.path:
            how = option.path
        elif option.name == "network" and config.configure_network is NetworkPolicy.DISABLED:
            how = "none"
        else:
            how = "private"
        args.append(f"{flag_names[option.name]}={how}")

    mapping = config.idmapping_options
    args += [f"--userns-uid-map={m.container_id}:{m.host_id}:{m.size}" for m in mapping.uid_map]
    args += [f"--userns-gid-map={m.container_id}:{m.host_id}:{m.size}" for m in mapping.gid_map]
    return args


def _system_context_args(config: CompiledBuildConfig) -> List[str]:
    """
    Renders registry settings as buildah flags.
    """
    system = config.system_context
    args = []
    if system.tls_verify is not None:
        args.append(f"--tls-verify={_bool_str(system.tls_verify)}")
    if system.cert_dir:
        args.append(f"--cert-dir={system.cert_dir}")
    if system.auth_file:
        args.append(f"--authfile={system.auth_file}")
    if system.credentials is not None:
        creds = system.credentials.username
        if system.credentials.password:
            creds += f":{system.credentials.password}"
        args.append(f"--creds={creds}")
    if config.signature_policy_path:
        args.append(f"--signature-policy={config.signature_policy_path}")
    return args


class BuildahBudEngine:
    """
    A build engine delegating to the `buildah bud` command.
    """

    def __init__(self, executable: str = "buildah") -> None:
        """
        Initializes the engine.

        Parameters:
            executable (str): Name or path of the buildah executable.
        """
        self._executable = executable

    # pylint: disable=too-many-branches
    def get_build_command(
        self,
        containerfiles: Sequence[str],
        config: CompiledBuildConfig,
    ) -> List[str]:
        """
        Constructs the buildah command building `config`.

        Parameters:
            containerfiles (Sequence[str]): Containerfiles, the primary one first.
            config (CompiledBuildConfig): The compiled configuration.

        Returns:
            List[str]: The complete command as a list of strings, the context directory last.
        """
        common = config.common_build_opts

        file_args = [f"--file={f}" for f in containerfiles]
        tags = [config.output] if config.output else []
        tag_args = [f"--tag={t}" for t in tags + list(config.additional_tags)]

        fmt = "docker" if config.output_format == DOCKER_V2_IMAGE_MANIFEST else "oci"
        output_args = [
            f"--format={fmt}",
            f"--layers={_bool_str(config.layers)}",
            f"--rm={_bool_str(config.remove_intermediate_ctrs)}",
            f"--force-rm={_bool_str(config.force_rm_intermediate_ctrs)}",
            _PULL_FLAGS[config.pull_policy],
            f"--isolation={config.isolation.value}",
        ]
        if config.squash:
            output_args.append("--squash")
        if config.no_cache:
            output_args.append("--no-cache")
        if config.quiet:
            output_args.append("--quiet")
        if config.compression is Compression.UNCOMPRESSED:
            output_args.append("--disable-compression")
        if config.iidfile:
            output_args.append(f"--iidfile={config.iidfile}")
        if config.sign_by:
            output_args.append(f"--sign-by={config.sign_by}")
        if config.target:
            output_args.append(f"--target={config.target}")
        if config.architecture:
            output_args.append(f"--arch={config.architecture}")
        if config.os:
            output_args.append(f"--os={config.os}")
        if config.blob_directory:
            output_args.append(f"--blob-cache={config.blob_directory}")

        content_args = (
            [f"--build-arg={k}={v}" for k, v in config.args.items()]
            + [f"--label={label}" for label in config.labels]
            + [f"--annotation={annotation}" for annotation in config.annotations]
        )

        resource_args = [f"--http-proxy={_bool_str(common.http_proxy)}"]
        if common.memory:
            resource_args.append(f"--memory={common.memory}")
        if common.memory_swap:
            resource_args.append(f"--memory-swap={common.memory_swap}")
        if common.cpu_period:
            resource_args.append(f"--cpu-period={common.cpu_period}")
        if common.cpu_quota:
            resource_args.append(f"--cpu-quota={common.cpu_quota}")
        if common.cpu_shares:
            resource_args.append(f"--cpu-shares={common.cpu_shares}")
        if common.cpuset_cpus:
            resource_args.append(f"--cpuset-cpus={common.cpuset_cpus}")
        if common.cpuset_mems:
            resource_args.append(f"--cpuset-mems={common.cpuset_mems}")
        if common.cgroup_parent:
            resource_args.append(f"--cgroup-parent={common.cgroup_parent}")
        if common.shm_size:
            resource_args.append(f"--shm-size={common.shm_size}")
        resource_args += [f"--ulimit={u}" for u in common.ulimit]
        resource_args += [f"--add-host={h}" for h in common.add_host]
        resource_args += [m.to_flag() for m in config.transient_mounts]

        security_args = (
            [f"--cap-add={c}" for c in config.add_capabilities]
            + [f"--cap-drop={c}" for c in config.drop_capabilities]
            + [f"--device={d}" for d in config.devices]
        )

        runtime_args = [f"--runtime={config.runtime}"] if config.runtime else []
        runtime_args += [f"--runtime-flag={a.removeprefix('--')}" for a in config.runtime_args]
        if config.cni_config_dir:
            runtime_args.append(f"--cni-config-dir={config.cni_config_dir}")
        if config.cni_plugin_path:
            runtime_args.append(f"--cni-plugin-path={config.cni_plugin_path}")

        command = (
            [self._executable, "bud"]
            + file_args
            + tag_args
            + output_args
            + content_args
            + resource_args
            + security_args
            + _namespace_args(config)
            + runtime_args
            + _system_context_args(config)
            + [f"{config.context_directory}"]
        )

        return command

    def generate_build_script(
        self,
        containerfiles: Sequence[str],
        config: CompiledBuildConfig,
        output_path: PathType,
    ) -> None:
        """
        Generates a shell script executing the build of `config`.

        Parameters:
            containerfiles (Sequence[str]): Containerfiles, the primary one first.
            config (CompiledBuildConfig): The compiled configuration.
            output_path (PathType): The path where the build script should be saved.
        """
        command = self.get_build_command(containerfiles=containerfiles, config=config)
        command_lst = (
            [f"{command[0]} {command[1]} \\"]
            + [f"    {c} \\" for c in command[2:-1]]
            + [f"    {command[-1]}"]
        )

        lines = [
            "#!/bin/sh",
            "set -ex",
            "",
        ] + command_lst

        file_content = "\n".join(lines) + "\n"

        mkdir_for_path(path=output_path)
        with open(output_path, "w") as script_file:
            script_file.write(file_content)

    def build(self, containerfiles: Sequence[str], config: CompiledBuildConfig) -> str:
        """
        Builds the image and returns its identifier.

        The image ID is read back from the --iidfile of the configuration, or from a temporary one
        when none was requested.

        Raises:
            subprocess.CalledProcessError: If buildah fails.
        """
        with tempfile.TemporaryDirectory(prefix="pybud-iid-") as temp_dir:
            command = self.get_build_command(containerfiles=containerfiles, config=config)
            iidfile = Path(config.iidfile) if config.iidfile else Path(temp_dir) / "iid"
            if not config.iidfile:
                command.insert(-1, f"--iidfile={iidfile}")

            shell_out(
                command=command,
                current_dir=config.context_directory,
                output_is_log=True,
                stdout=config.streams.out,
                stderr=config.streams.err,
                log=config.logger,
            )

            image_id = iidfile.read_text().strip() if iidfile.exists() else ""

        config.logger.info("built image %s", image_id or "<unknown>")
        return image_id

# Copyright (C) 2025 Antonio Paolillo. All rights reserved.
# SPDX-License-Identifier: MIT
"""
CLI interface for pybud.

This module provides a command-line interface compiling build requests and
running them with buildah. It exposes two subcommands:

- `build`: compiles the flags, positional context and environment into a build
  configuration, then builds the image (or only prints or saves the engine
  command with `--dry-run` / `--script`).
- `scaffold`: generates a starter Python script that reproduces the same build
  request through the pybud API, so the user can customize it further.

A flag counts as set only when it appears on the command line: a value equal
to the default is still an explicit choice (for example `--layers` together
with `--squash` is rejected even though layers are on by default).
"""

import shlex
import subprocess
from dataclasses import fields
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import black
import click
import isort
from click.core import ParameterSource

from pybud.compiler import build as run_build
from pybud.compiler import compile_build
from pybud.engines import BuildahBudEngine
from pybud.errors import BuildRequestError
from pybud.logs import setup_logging
from pybud.request import RawBuildRequest

# Make "-h" behave like "--help"
CONTEXT_SETTINGS = {"help_option_names": ["-h", "--help"]}

_EXPLICIT_SOURCES = (ParameterSource.COMMANDLINE, ParameterSource.ENVIRONMENT)

_REQUEST_OPTIONS: List[Callable[[Callable[..., Any]], Callable[..., Any]]] = [
    click.option("--file", "-f", "files", multiple=True, help="Containerfile ('-' for stdin)"),
    click.option("--tag", "-t", "tags", multiple=True, help="Name of the resulting image"),
    click.option("--format", "format_", help="Manifest type: oci (default) or docker"),
    click.option("--iidfile", help="Write the image ID to this file"),
    click.option("--sign-by", help="Sign the image with this GPG key fingerprint"),
    click.option("--disable-compression", "-D", is_flag=True, help="Do not compress layers"),
    click.option("--target", help="Build stage to stop at"),
    click.option("--squash", is_flag=True, help="Squash newly built layers into one"),
    click.option("--squash-all", is_flag=True, help="Squash all layers into a single layer"),
    click.option("--layers/--no-layers", default=True, help="Cache intermediate layers"),
    click.option("--force-rm/--no-force-rm", default=True, help="Remove intermediate containers"),
    click.option("--rm/--no-rm", default=True, help="Remove intermediate containers on success"),
    click.option("--no-cache", is_flag=True, help="Do not use existing cached images"),
    click.option("--pull/--no-pull", default=True, help="Always pull the base image"),
    click.option("--pull-always", is_flag=True, help="Always pull the base image"),
    click.option("--pull-never", is_flag=True, help="Never pull the base image"),
    click.option("--build-arg", "build_args", multiple=True, help="Build argument KEY=VALUE"),
    click.option("--label", "labels", multiple=True, help="Image label KEY=VALUE"),
    click.option("--annotation", "annotations", multiple=True, help="Image annotation KEY=VALUE"),
    click.option("--arch", help="Architecture of the image"),
    click.option("--os", "os_", help="Operating system of the image"),
    click.option("--memory", "-m", help="Memory limit (e.g. 512m, 2g)"),
    click.option("--memory-swap", help="Memory plus swap limit (e.g. 1g)"),
    click.option("--cpu-period", type=int, help="CPU CFS period in microseconds"),
    click.option("--cpu-quota", type=int, help="CPU CFS quota in microseconds"),
    click.option("--cpu-shares", "-c", type=int, help="CPU shares (relative weight)"),
    click.option("--cpuset-cpus", help="CPUs in which to allow execution (0-3, 0,1)"),
    click.option("--cpuset-mems", help="Memory nodes in which to allow execution"),
    click.option("--shm-size", help="Size of /dev/shm"),
    click.option("--ulimit", "ulimits", multiple=True, help="Ulimit option type=soft[:hard]"),
    click.option("--cgroup-parent", help="Parent cgroup of the build containers"),
    click.option("--cap-add", multiple=True, help="Add a capability"),
    click.option("--cap-drop", multiple=True, help="Drop a capability"),
    click.option("--device", "devices", multiple=True, help="Expose a host device"),
    click.option("--volume", "-v", "volumes", multiple=True, help="Bind mount host:ctr[:opts]"),
    click.option("--add-host", "add_hosts", multiple=True, help="Add a host:ip mapping"),
    click.option("--http-proxy/--no-http-proxy", default=True, help="Pass through proxy variables"),
    click.option("--isolation", help="Isolation: oci, rootless or chroot"),
    click.option("--ipc", help="IPC namespace: host, private or a path"),
    click.option("--network", "--net", "network", help="Network: host, none, private or a path"),
    click.option("--pid", help="PID namespace: host, private or a path"),
    click.option("--uts", help="UTS namespace: host, private or a path"),
    click.option("--cgroupns", help="Cgroup namespace: host or private"),
    click.option("--userns", help="User namespace: host, container or a path"),
    click.option("--userns-uid-map", multiple=True, help="UID map container:host:size"),
    click.option("--userns-gid-map", multiple=True, help="GID map container:host:size"),
    click.option("--userns-uid-map-user", help="Map UIDs from /etc/subuid entries of this user"),
    click.option("--userns-gid-map-group", help="Map GIDs from /etc/subgid entries of this group"),
    click.option("--cni-config-dir", help="Directory of CNI configuration files"),
    click.option("--cni-plugin-path", help="Path of CNI plugins"),
    click.option("--runtime-flag", "runtime_flags", multiple=True, help="Global runtime flag"),
    click.option("--tls-verify/--no-tls-verify", default=True, help="Verify registry certificates"),
    click.option("--creds", help="Registry credentials username[:password]"),
    click.option("--authfile", help="Path of the authentication file"),
    click.option("--cert-dir", help="Directory of registry certificates"),
    click.option("--signature-policy", hidden=True, help="Signature policy file"),
    click.option("--blob-cache", hidden=True, help="Directory caching layer blobs"),
    click.option("--logfile", help="Log build output to this file"),
    click.option("--quiet", "-q", is_flag=True, help="Less build output"),
]

_REQUEST_PARAMS = frozenset(
    [
        "context",
        "files",
        "tags",
        "format_",
        "iidfile",
        "sign_by",
        "disable_compression",
        "target",
        "squash",
        "squash_all",
        "layers",
        "force_rm",
        "rm",
        "no_cache",
        "pull",
        "pull_always",
        "pull_never",
        "build_args",
        "labels",
        "annotations",
        "arch",
        "os_",
        "memory",
        "memory_swap",
        "cpu_period",
        "cpu_quota",
        "cpu_shares",
        "cpuset_cpus",
        "cpuset_mems",
        "shm_size",
        "ulimits",
        "cgroup_parent",
        "cap_add",
        "cap_drop",
        "devices",
        "volumes",
        "add_hosts",
        "http_proxy",
        "isolation",
        "ipc",
        "network",
        "pid",
        "uts",
        "cgroupns",
        "userns",
        "userns_uid_map",
        "userns_gid_map",
        "userns_uid_map_user",
        "userns_gid_map_group",
        "cni_config_dir",
        "cni_plugin_path",
        "runtime_flags",
        "tls_verify",
        "creds",
        "authfile",
        "cert_dir",
        "signature_policy",
        "blob_cache",
        "logfile",
        "quiet",
    ]
)


def request_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """
    Decorate a command with the positional context and every build request flag.
    """
    for option in reversed(_REQUEST_OPTIONS):
        func = option(func)
    return click.argument("context", required=False)(func)


def request_from_params(ctx: click.Context, params: Dict[str, Any]) -> RawBuildRequest:
    """
    Capture the build request typed on the command line.

    Only parameters set on the command line (or through their environment variable) are kept;
    the others are left unset in the request.

    Args:
        ctx: The click context of the running command.
        params: The parameters received by the command.

    Returns:
        The raw build request.
    """
    values: Dict[str, Any] = {}
    for name, value in params.items():
        if name not in _REQUEST_PARAMS:
            continue
        if isinstance(value, tuple):
            values[name] = value
        elif ctx.get_parameter_source(name) in _EXPLICIT_SOURCES:
            values[name] = value
    return RawBuildRequest(**values)


@click.group(context_settings=CONTEXT_SETTINGS)
@click.version_option(
    package_name="pybud",
    prog_name="pybud",
    message="%(prog)s %(version)s",
)
@click.option("--debug", is_flag=True, help="Enable debug logging")
def cli(debug: bool) -> None:
    """pybud: compile container build requests and build them with buildah."""
    setup_logging(debug=debug)


@cli.command()
@request_options
@click.option("--dry-run", is_flag=True, help="Print the buildah command instead of running it")
@click.option("--script", type=click.Path(), help="Write the buildah command to a shell script")
@click.pass_context
def build(ctx: click.Context, dry_run: bool, script: Optional[str], **params: Any) -> None:
    """
    Build an image using instructions from Containerfiles.

    CONTEXT is a directory, or a URL or git repository fetched into a temporary
    directory. Without CONTEXT, the directory of the first local --file is used.
    """
    request = request_from_params(ctx, params)
    engine = BuildahBudEngine()

    try:
        if dry_run or script:
            with compile_build(request) as config:
                if script:
                    engine.generate_build_script(
                        containerfiles=config.containerfiles,
                        config=config,
                        output_path=script,
                    )
                    click.echo(f"Build script written to {script}")
                else:
                    command = engine.get_build_command(config.containerfiles, config)
                    click.echo(shlex.join(command))
            return

        image_id = run_build(request, engine=engine)
    except (BuildRequestError, ValueError, OSError) as err:
        raise click.ClickException(str(err)) from err
    except subprocess.CalledProcessError as err:
        raise click.ClickException(f"build failed: {err}") from err

    click.echo(image_id)


def render_scaffold(request: RawBuildRequest, changed: List[str]) -> str:
    """
    Generate a Python script reproducing `request` through the pybud API.

    Args:
        request: The captured request.
        changed: Names of the request attributes to spell out, in order.

    Returns:
        The script, formatted with isort and black.
    """
    lines: List[str] = [
        "#!/usr/bin/env python3",
        '"""',
        "Build an image with pybud.",
        "",
        "Steps:",
        "1) Describe the build request.",
        "2) Compile it and run the build engine.",
        '"""',
        "",
        "from pybud.request import RawBuildRequest",
        "from pybud.engines import BuildahBudEngine",
        "from pybud.compiler import build",
        "",
        "",
        "def main() -> None:",
        '    """Compile the build request and build the image with buildah."""',
        "    request = RawBuildRequest(",
    ]
    lines.extend(f"        {name}={getattr(request, name)!r}," for name in changed)
    lines.append("    )")
    lines.append("    image_id = build(request, engine=BuildahBudEngine())")
    lines.append("    print(image_id)")
    lines.append("")
    lines.append("")
    lines.append('if __name__ == "__main__":')
    lines.append("    main()")

    content: str = "\n".join(lines) + "\n"

    content = isort.code(content, config=isort.Config(profile="black", line_length=100))
    content = black.format_str(
        content,
        mode=black.Mode(line_length=100, target_versions={black.TargetVersion.PY311}),
    )
    return content


@cli.command()
@request_options
@click.option("--output", type=click.Path(), help="Write scaffold to file (stdout if omitted)")
@click.pass_context
def scaffold(ctx: click.Context, output: Optional[str], **params: Any) -> None:
    """
    Generate a starter pybud script instead of building.

    The generated script holds the same build request as the given flags and
    builds it with buildah. It can be saved to a file (via --output) or printed
    to stdout.
    """
    request = request_from_params(ctx, params)
    changed = [
        f.name for f in fields(RawBuildRequest) if f.name in params and request.changed(f.name)
    ]

    content = render_scaffold(request=request, changed=changed)

    if output:
        Path(output).write_text(content)
        click.echo(f"Scaffold written to {output}")
    else:
        click.echo(content)


def main() -> None:
    """Entry point for the pybud CLI when installed as a script."""
    cli()


if __name__ == "__main__":
    main()

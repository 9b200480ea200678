# Copyright (C) 2025 Antonio Paolillo. All rights reserved.
# SPDX-License-Identifier: MIT
"""
The build request compiler.

Compiling a request runs three stages, strictly in this order:

1. the option conflict resolver rejects incompatible flags, before any side effect,
2. the context resolver finds (or fetches) the build context and the containerfiles,
3. the option compiler parses every remaining value into a `CompiledBuildConfig`.

Compilation acquires resources that must outlive it: a temporary directory for
a remote context and the log file. `compile_build` is therefore a context
manager; they are released when its block exits, after the engine ran.
"""

import logging
from contextlib import ExitStack, contextmanager
from typing import Iterator

from pybud.compiler.conflicts import check_conflicts
from pybud.compiler.contexts import (
    discover_containerfiles,
    normalize_containerfiles,
    resolved_context,
)
from pybud.compiler.models import BuildEngine, CompiledBuildConfig
from pybud.compiler.options import bound_streams, compile_options
from pybud.config import ProcessConfig, load_process_config
from pybud.remote import DefaultRemoteFetcher, RemoteContextFetcher
from pybud.request import RawBuildRequest

logger = logging.getLogger(__name__)


@contextmanager
def compile_build(
    request: RawBuildRequest,
    process_config: ProcessConfig | None = None,
    fetcher: RemoteContextFetcher | None = None,
) -> Iterator[CompiledBuildConfig]:
    """
    Compiles a build request for the duration of a `with` block.

    Parameters:
        request (RawBuildRequest): The raw request.
        process_config (ProcessConfig | None): Engine settings; loaded from containers.conf when
                                               None.
        fetcher (RemoteContextFetcher | None): Fetcher for remote contexts; git/HTTP when None.

    Yields:
        CompiledBuildConfig: The compiled configuration, valid until the block exits.

    Raises:
        BuildRequestError: If the request is invalid.
        OSError: If the log file cannot be opened.
    """
    check_conflicts(request)

    if process_config is None:
        process_config = load_process_config(request.environ)
    if fetcher is None:
        fetcher = DefaultRemoteFetcher()

    declared = normalize_containerfiles(request.files)

    with ExitStack() as stack:
        context = stack.enter_context(
            resolved_context(request.context, declared, fetcher=fetcher, log=logger)
        )
        containerfiles = discover_containerfiles(context.directory, declared)
        streams = stack.enter_context(bound_streams(request.logfile))

        yield compile_options(
            request=request,
            context=context,
            containerfiles=containerfiles,
            process_config=process_config,
            streams=streams,
        )


def build(
    request: RawBuildRequest,
    engine: BuildEngine,
    process_config: ProcessConfig | None = None,
    fetcher: RemoteContextFetcher | None = None,
) -> str:
    """
    Compiles a request and runs it with `engine`.

    Every resource acquired during compilation is released once the engine returns or fails.

    Returns:
        str: The identifier of the built image, as reported by the engine.
    """
    with compile_build(request, process_config=process_config, fetcher=fetcher) as config:
        return engine.build(config.containerfiles, config)

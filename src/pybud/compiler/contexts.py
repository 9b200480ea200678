# Copyright (C) 2025 Antonio Paolillo. All rights reserved.
# SPDX-License-Identifier: MIT
"""
Resolution of the build context and of the containerfiles to build.

The build context is the directory whose content instructions like COPY can
read. It comes from, in order:

- the positional `[CONTEXT]` argument, either a local path or a remote
  reference fetched into a temporary directory,
- otherwise the directory holding the first local `--file`.

When no `--file` is given, the containerfile is discovered in the context
directory: `Containerfile` when present, `Dockerfile` otherwise. The fallback
is not checked; a missing file is reported by the engine at build time.

A temporary directory created for a remote context is removed when the
`resolved_context` scope exits, whatever happens inside it.
"""

import logging
import shutil
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator, Tuple

from pybud.errors import ContextError
from pybud.remote import FetchedContext, RemoteContextFetcher, is_remote_reference
from pybud.sysutils import absolute_path, file_exists, is_dir

logger = logging.getLogger(__name__)

STDIN_PATH = "/dev/stdin"
PRIMARY_CONTAINERFILE = "Containerfile"
FALLBACK_CONTAINERFILE = "Dockerfile"


@dataclass(frozen=True)
class ResolvedContext:
    """
    A build context directory ready to be used.

    Attributes:
        directory: Existing directory used as build context.
        temp_dir: Temporary directory to remove after the build, if one was created.
    """

    directory: Path
    temp_dir: Path | None = None


def normalize_containerfiles(files: Iterable[str]) -> Tuple[str, ...]:
    """
    Maps "-" to the standard input pseudo-path, keeping every other entry and the order as is.

    No existence check is performed.
    """
    return tuple(STDIN_PATH if f == "-" else f for f in files)


def _absolute(path: str, what: str) -> Path:
    try:
        return absolute_path(path)
    except OSError as err:
        raise ContextError(f"error determining path to {what} {path!r}: {err}") from err


def locate_context_directory(
    context: str | None,
    containerfiles: Tuple[str, ...],
    fetched: FetchedContext | None,
) -> Path:
    """
    Determines the context directory, without checking it.

    Parameters:
        context (str | None): The positional context argument.
        containerfiles (Tuple[str, ...]): Normalized declared containerfiles.
        fetched (FetchedContext | None): The remote context fetched for `context`, if remote.

    Returns:
        Path: The absolute context directory.

    Raises:
        ContextError: If no context can be determined.
    """
    if fetched is not None:
        return fetched.directory

    if context is not None:
        return _absolute(context, "directory")

    for containerfile in containerfiles:
        if is_remote_reference(containerfile):
            continue
        return _absolute(containerfile, "file").parent

    raise ContextError("no context directory and no Containerfile specified")


def discover_containerfiles(
    directory: Path,
    containerfiles: Tuple[str, ...],
) -> Tuple[str, ...]:
    """
    Returns the declared containerfiles, or the default one found in `directory`.

    Parameters:
        directory (Path): The resolved context directory.
        containerfiles (Tuple[str, ...]): Normalized declared containerfiles.

    Returns:
        Tuple[str, ...]: A non-empty list of containerfiles, the first one being the primary.
    """
    if containerfiles:
        return containerfiles

    primary = directory / PRIMARY_CONTAINERFILE
    if file_exists(primary):
        return (str(primary),)
    return (str(directory / FALLBACK_CONTAINERFILE),)


def remove_temp_dir(temp_dir: Path, log: logging.Logger | None = None) -> None:
    """Removes a temporary context directory; failures are only logged."""
    try:
        shutil.rmtree(temp_dir)
    except OSError as err:
        (log or logger).warning("error removing temporary directory %r: %s", str(temp_dir), err)


@contextmanager
def resolved_context(
    context: str | None,
    containerfiles: Tuple[str, ...],
    fetcher: RemoteContextFetcher,
    log: logging.Logger | None = None,
) -> Iterator[ResolvedContext]:
    """
    Resolves the build context for the duration of a `with` block.

    Parameters:
        context (str | None): The positional context argument.
        containerfiles (Tuple[str, ...]): Normalized declared containerfiles.
        fetcher (RemoteContextFetcher): Used when `context` is a remote reference.
        log (logging.Logger | None): Receives cleanup warnings.

    Yields:
        ResolvedContext: The resolved context.

    Raises:
        RemoteContextError: If fetching a remote context fails.
        ContextError: If no context is found or it is not a directory.
    """
    fetched = fetcher.fetch(context) if context is not None else None
    try:
        directory = locate_context_directory(context, containerfiles, fetched)
        if not is_dir(directory):
            raise ContextError(f"context must be a directory: {str(directory)!r}")
        yield ResolvedContext(
            directory=directory,
            temp_dir=fetched.temp_dir if fetched is not None else None,
        )
    finally:
        if fetched is not None:
            remove_temp_dir(fetched.temp_dir, log=log)

# Copyright (C) 2024 Antonio Paolillo. All rights reserved.
# SPDX-License-Identifier: MIT

"""
This module provides system-level utilities for the pybud package.
It includes functions for executing external commands, resolving host paths and probing the
filesystem.
These utilities are used by the context resolver, the remote fetcher and the build engines.
"""

import io
import logging
import os
import shlex
import subprocess
from pathlib import Path
from typing import Dict, List, TextIO

PathType = str | Path
Environment = Dict[str, str] | None

logger = logging.getLogger(__name__)


def _print_cmd(
    command: List[str],
    environment: Environment,
    log: logging.Logger,
) -> None:
    """
    Helper function to log the command line statement that will be executed, including the
    environment variables.

    Parameters:
        command (List[str]): The command to be executed as a list of strings.
        environment (Environment): A dictionary of environment variables to be set before executing
                                   the command.
        log (logging.Logger): The logger receiving the command line.
    """
    if environment:
        printed_env = " ".join([f"{k}={v}" for k, v in environment.items()]) + " "
    else:
        printed_env = ""
    printed_cmd = " ".join(command)
    full_printed_cmd = printed_env + printed_cmd
    log.info("[%s]", full_printed_cmd)


def _subprocess_stream(stream: TextIO | None) -> TextIO | None:
    """
    Returns the stream if it is backed by a real file descriptor, None otherwise (in which case
    the child process inherits the parent's descriptor).
    """
    if stream is None:
        return None
    try:
        stream.fileno()
    except (AttributeError, OSError, io.UnsupportedOperation):
        return None
    return stream


def shell_out(
    command: List[str] | str,
    current_dir: PathType | None = None,
    environment: Environment = None,
    output_is_log: bool = False,
    stdout: TextIO | None = None,
    stderr: TextIO | None = None,
    log: logging.Logger | None = None,
) -> str:
    """
    Executes a shell command and optionally logs the output.
    Returns the output from the command if not logging.

    Parameters:
        command (List[str] | str): The command to execute, either as a string or a list of strings.
        current_dir (PathType | None): The directory in which to execute the command.
        environment (Environment): Environment variables to set for the command.
        output_is_log (bool): If True, forwards the output to `stdout`/`stderr` and returns an
                              empty string.
        stdout (TextIO | None): Destination of the command's standard output when logging.
        stderr (TextIO | None): Destination of the command's standard error when logging.
        log (logging.Logger | None): Logger used to echo the command; defaults to this module's.

    Returns:
        str: The output from the command execution if output_is_log is False;
             otherwise, an empty string.

    Raises:
        subprocess.CalledProcessError: If the command exits with a non-zero status.
    """
    if isinstance(command, str):
        command = shlex.split(command)
    _print_cmd(command=command, environment=environment, log=log or logger)
    if output_is_log:
        subprocess.check_call(
            command,
            text=True,
            cwd=current_dir,
            env=environment,
            stdout=_subprocess_stream(stdout),
            stderr=_subprocess_stream(stderr),
        )
        result = ""
    else:
        output = subprocess.check_output(command, text=True, cwd=current_dir, env=environment)
        result = output.strip()
    return result


def mkdir(path: PathType) -> None:
    """
    Creates a directory at the specified path if it does not already exist.

    Parameters:
        path (PathType): The path where the directory should be created.
    """
    if not os.path.exists(path):
        os.makedirs(path)


def mkdir_for_path(path: PathType) -> None:
    """
    Ensures that the parent directory for a given path exists, creating it if necessary.

    Parameters:
        path (PathType): The path for which the parent directory needs verification or creation.

    Raises:
        ValueError: If the parent path exists and is not a directory.
    """
    path = Path(path)
    if path.is_dir():
        return

    parent_path = path.parent
    if parent_path.is_dir():
        return
    if parent_path.is_file():
        raise ValueError(f'Error, parent path is not a directory: "{parent_path}"')

    mkdir(path=parent_path)


def absolute_path(path: PathType) -> Path:
    """
    Makes a path absolute against the current working directory without resolving symlinks,
    and normalizes `.` and `..` components lexically.

    Parameters:
        path (PathType): The path to make absolute.

    Returns:
        Path: The absolute, normalized path.
    """
    return Path(os.path.abspath(path))


def is_dir(path: PathType) -> bool:
    """Tells whether `path` exists and is a directory (symlinks followed)."""
    return Path(path).is_dir()


def file_exists(path: PathType) -> bool:
    """Tells whether anything exists at `path`."""
    return os.path.lexists(path)

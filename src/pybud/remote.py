# Copyright (C) 2025 Antonio Paolillo. All rights reserved.
# SPDX-License-Identifier: MIT
"""
Fetching of remote build contexts.

A build context given as a URL or a VCS reference is fetched into a fresh
temporary directory before the build:

- `git://...`, `github.com/...` and URLs whose path ends in `.git` are cloned
  with git into `<tmp>/git`. A `#ref` fragment selects the branch or tag.
- other `http://` and `https://` URLs are downloaded into `<tmp>/context`. A tar
  archive (optionally compressed) is extracted there; any other payload is
  saved as `<tmp>/context/Dockerfile`.

The caller owns the temporary directory and must delete it after the build.
"""

import io
import logging
import shutil
import subprocess
import tarfile
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol
from urllib.parse import urlsplit

import requests

from pybud.errors import RemoteContextError
from pybud.sysutils import PathType, shell_out

logger = logging.getLogger(__name__)

REMOTE_PREFIXES = ("http://", "https://", "git://", "github.com/")
TEMP_DIR_PREFIX = "buildah"
DOWNLOAD_TIMEOUT = 60


def is_remote_reference(reference: str) -> bool:
    """Tells whether `reference` looks like a URL or VCS reference rather than a local path."""
    return reference.startswith(REMOTE_PREFIXES)


def _is_git_reference(reference: str) -> bool:
    if reference.startswith(("git://", "github.com/")):
        return True
    return urlsplit(reference).path.endswith(".git")


@dataclass(frozen=True)
class FetchedContext:
    """
    A remote context materialized on disk.

    Attributes:
        temp_dir: Temporary directory to delete once the build is over.
        sub_dir: Directory, relative to temp_dir, holding the fetched content.
    """

    temp_dir: Path
    sub_dir: str

    @property
    def directory(self) -> Path:
        """The directory to use as build context."""
        return self.temp_dir / self.sub_dir


class RemoteContextFetcher(Protocol):
    """Anything able to materialize a remote build context."""

    def fetch(self, reference: str) -> FetchedContext | None:
        """
        Fetches `reference` into a new temporary directory.

        Returns None when the reference is not remote, in which case nothing was created.
        """


class DefaultRemoteFetcher:
    """
    Fetches remote contexts with git and HTTP(S).

    The fetch is a single synchronous attempt without retries.
    """

    def __init__(self, temp_root: PathType | None = None) -> None:
        """
        Parameters:
            temp_root (PathType | None): Directory in which temporary directories are created;
                                         the system default when None.
        """
        self._temp_root = temp_root

    def fetch(self, reference: str) -> FetchedContext | None:
        if not is_remote_reference(reference):
            return None

        temp_dir = Path(tempfile.mkdtemp(prefix=TEMP_DIR_PREFIX, dir=self._temp_root))
        try:
            if _is_git_reference(reference):
                sub_dir = "git"
                self._clone(reference=reference, destination=temp_dir / sub_dir)
            else:
                sub_dir = "context"
                self._download(url=reference, destination=temp_dir / sub_dir)
        except (
            OSError,
            subprocess.CalledProcessError,
            requests.RequestException,
            tarfile.TarError,
        ) as err:
            shutil.rmtree(temp_dir, ignore_errors=True)
            raise RemoteContextError(
                f"error prepping temporary context directory for {reference!r}: {err}"
            ) from err

        logger.debug("fetched %s into %s", reference, temp_dir / sub_dir)
        return FetchedContext(temp_dir=temp_dir, sub_dir=sub_dir)

    def _clone(self, reference: str, destination: Path) -> None:
        url, _, ref = reference.partition("#")
        if url.startswith("github.com/"):
            url = f"https://{url}"

        command = ["git", "clone", "--recurse-submodules"]
        if ref:
            command += ["--branch", ref]
        command += [url, str(destination)]
        shell_out(command=command, output_is_log=False)

    def _download(self, url: str, destination: Path) -> None:
        response = requests.get(url, timeout=DOWNLOAD_TIMEOUT)
        response.raise_for_status()
        payload = response.content

        destination.mkdir(parents=True)
        try:
            with tarfile.open(fileobj=io.BytesIO(payload), mode="r:*") as archive:
                archive.extractall(destination, filter="data")
        except tarfile.ReadError:
            (destination / "Dockerfile").write_bytes(payload)

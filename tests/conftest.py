# Copyright (C) 2025 Antonio Paolillo. All rights reserved.
# SPDX-License-Identifier: MIT
"""
Pytest configuration for pybud tests.

Registers custom markers:
- integration: requires buildah
- slow: long build/pull

Provides fixtures shared by the unit tests: a local build context directory,
a fixed process configuration and a recording remote fetcher.
"""

import tempfile
from pathlib import Path
from typing import List

import pytest

from pybud.config import CGROUPFS_CGROUP_MANAGER, ProcessConfig
from pybud.remote import FetchedContext, is_remote_reference


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers so --strict-markers doesn’t error."""
    config.addinivalue_line("markers", "integration: requires buildah")
    config.addinivalue_line("markers", "slow: long build/pull")


class RecordingFetcher:
    """
    Remote fetcher test double.

    Remote references are "fetched" into a real temporary directory holding a
    Containerfile, so tests can check the directory is removed afterwards.
    Set `create_sub_dir` to False to simulate a fetch producing no directory.
    """

    def __init__(self, temp_root: Path, create_sub_dir: bool = True) -> None:
        self.temp_root = temp_root
        self.create_sub_dir = create_sub_dir
        self.calls: List[str] = []
        self.fetched: List[FetchedContext] = []

    def fetch(self, reference: str) -> FetchedContext | None:
        self.calls.append(reference)
        if not is_remote_reference(reference):
            return None
        temp_dir = Path(tempfile.mkdtemp(prefix="buildah", dir=self.temp_root))
        if self.create_sub_dir:
            (temp_dir / "git").mkdir()
            (temp_dir / "git" / "Containerfile").write_text("FROM scratch\n")
        fetched = FetchedContext(temp_dir=temp_dir, sub_dir="git")
        self.fetched.append(fetched)
        return fetched


@pytest.fixture
def context_dir(tmp_path: Path) -> Path:
    """A local build context holding a Containerfile."""
    ctx = tmp_path / "ctx"
    ctx.mkdir()
    (ctx / "Containerfile").write_text("FROM alpine:3.20\nRUN echo pybud_ok\n")
    return ctx


@pytest.fixture
def process_config() -> ProcessConfig:
    """A process configuration independent from the host's containers.conf."""
    return ProcessConfig(
        runtime_path="/usr/bin/crun",
        runtime_flags=("debug",),
        cgroup_manager=CGROUPFS_CGROUP_MANAGER,
    )


@pytest.fixture
def fetcher(tmp_path: Path) -> RecordingFetcher:
    """A remote fetcher creating its temporary directories under tmp_path."""
    root = tmp_path / "remote"
    root.mkdir()
    return RecordingFetcher(temp_root=root)

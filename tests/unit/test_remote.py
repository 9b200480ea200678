# Copyright (C) 2025 Antonio Paolillo. All rights reserved.
# SPDX-License-Identifier: MIT
"""
Unit tests for the remote context fetcher.

git and HTTP are replaced by test doubles: `shell_out` is patched to record the
clone command and `requests.get` to return canned payloads.
"""

import io
import subprocess
import tarfile
import tomllib
from pathlib import Path
from typing import List

import pytest
import requests

import pybud.remote
from pybud.errors import RemoteContextError
from pybud.remote import DefaultRemoteFetcher, is_remote_reference


class FakeResponse:
    def __init__(self, content: bytes, status: int = 200) -> None:
        self.content = content
        self.status = status

    def raise_for_status(self) -> None:
        if self.status >= 400:
            raise requests.HTTPError(f"{self.status} Client Error")


def _tar_payload(files: dict) -> bytes:
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as archive:
        for name, content in files.items():
            data = content.encode()
            info = tarfile.TarInfo(name)
            info.size = len(data)
            archive.addfile(info, io.BytesIO(data))
    return buffer.getvalue()


@pytest.fixture
def temp_root(tmp_path: Path) -> Path:
    root = tmp_path / "tmp"
    root.mkdir()
    return root


@pytest.fixture
def clones(monkeypatch: pytest.MonkeyPatch) -> List[list]:
    """Records git commands and creates the clone destination."""
    commands: List[list] = []

    def fake_shell_out(command, **_kwargs):
        commands.append(command)
        Path(command[-1]).mkdir(parents=True)
        (Path(command[-1]) / "Containerfile").write_text("FROM scratch\n")

    monkeypatch.setattr(pybud.remote, "shell_out", fake_shell_out)
    return commands


@pytest.mark.parametrize(
    "reference, expected",
    [
        ("http://example.com/ctx.tar", True),
        ("https://example.com/ctx.tar", True),
        ("git://example.com/repo", True),
        ("github.com/containers/buildah", True),
        ("./ctx", False),
        ("/srv/ctx", False),
        ("example.com/ctx", False),
    ],
)
def test_is_remote_reference(reference: str, expected: bool) -> None:
    assert expected == is_remote_reference(reference)


def test_local_reference_is_not_fetched(temp_root: Path) -> None:
    assert DefaultRemoteFetcher(temp_root).fetch("./ctx") is None
    assert [] == list(temp_root.iterdir())


def test_git_clone_with_branch(temp_root: Path, clones: List[list]) -> None:
    fetched = DefaultRemoteFetcher(temp_root).fetch("https://example.com/repo.git#v1.2")

    assert "git" == fetched.sub_dir
    assert fetched.temp_dir.parent == temp_root
    assert fetched.temp_dir.name.startswith("buildah")
    assert [
        [
            "git",
            "clone",
            "--recurse-submodules",
            "--branch",
            "v1.2",
            "https://example.com/repo.git",
            str(fetched.directory),
        ]
    ] == clones


def test_github_shorthand_is_cloned_over_https(temp_root: Path, clones: List[list]) -> None:
    fetched = DefaultRemoteFetcher(temp_root).fetch("github.com/containers/buildah")
    assert "https://github.com/containers/buildah" == clones[0][-2]
    assert (fetched.directory / "Containerfile").is_file()


def test_failed_clone_removes_temp_dir(temp_root: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    def failing_shell_out(command, **_kwargs):
        raise subprocess.CalledProcessError(128, command)

    monkeypatch.setattr(pybud.remote, "shell_out", failing_shell_out)
    with pytest.raises(RemoteContextError, match="error prepping temporary context directory"):
        DefaultRemoteFetcher(temp_root).fetch("git://example.com/repo")
    assert [] == list(temp_root.iterdir())


def test_tar_archive_is_extracted(temp_root: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    payload = _tar_payload({"Containerfile": "FROM scratch\n", "src/app.py": "print(1)\n"})
    monkeypatch.setattr(requests, "get", lambda url, **_kw: FakeResponse(payload))

    fetched = DefaultRemoteFetcher(temp_root).fetch("https://example.com/ctx.tar.gz")

    assert "context" == fetched.sub_dir
    assert "FROM scratch\n" == (fetched.directory / "Containerfile").read_text()
    assert (fetched.directory / "src" / "app.py").is_file()


def test_plain_payload_becomes_dockerfile(temp_root: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(requests, "get", lambda url, **_kw: FakeResponse(b"FROM alpine\n"))

    fetched = DefaultRemoteFetcher(temp_root).fetch("http://example.com/Containerfile")

    assert b"FROM alpine\n" == (fetched.directory / "Dockerfile").read_bytes()


def test_http_error_removes_temp_dir(temp_root: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(requests, "get", lambda url, **_kw: FakeResponse(b"", status=404))

    with pytest.raises(RemoteContextError, match="404"):
        DefaultRemoteFetcher(temp_root).fetch("https://example.com/missing.tar")
    assert [] == list(temp_root.iterdir())


def test_minimum_python_supports_extraction_filters() -> None:
    """`extractall(filter="data")` needs Python 3.11.4, which the package must require."""
    pyproject = Path(__file__).parents[2] / "pyproject.toml"
    with open(pyproject, "rb") as config_file:
        requires_python = tomllib.load(config_file)["project"]["requires-python"]
    assert ">=3.11.4" == requires_python

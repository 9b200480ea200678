# Copyright (C) 2025 Antonio Paolillo. All rights reserved.
# SPDX-License-Identifier: MIT
"""Unit tests for the containers.conf loader."""

from pathlib import Path

import pytest

from pybud.config import (
    CGROUPFS_CGROUP_MANAGER,
    ProcessConfig,
    find_config_file,
    load_process_config,
    parse_process_config,
)


def test_defaults_without_document() -> None:
    config = parse_process_config({}, environ={})
    assert () == config.runtime_flags
    assert config.uses_systemd_cgroups
    assert config.remote is False


def test_engine_table_is_read(tmp_path: Path) -> None:
    runtime = tmp_path / "my-runtime"
    runtime.touch()
    document = {
        "engine": {
            "runtime": "mine",
            "runtimes": {"mine": [str(tmp_path / "missing"), str(runtime)]},
            "runtime_flags": ["debug", "log-format=json"],
            "cgroup_manager": "cgroupfs",
        }
    }
    expected = ProcessConfig(
        runtime_path=str(runtime),
        runtime_flags=("debug", "log-format=json"),
        cgroup_manager=CGROUPFS_CGROUP_MANAGER,
    )
    assert expected == parse_process_config(document, environ={})


def test_runtime_path_is_kept_as_is() -> None:
    document = {"engine": {"runtime": "/opt/bin/crun"}}
    assert "/opt/bin/crun" == parse_process_config(document, environ={}).runtime_path


def test_container_host_marks_remote() -> None:
    assert parse_process_config({}, environ={"CONTAINER_HOST": "tcp://h:1"}).remote is True
    assert parse_process_config({"engine": {"remote": True}}, environ={}).remote is True


@pytest.mark.parametrize(
    "engine",
    [
        {"runtime": 3},
        {"runtime_flags": "debug"},
        {"runtime_flags": [1]},
        {"cgroup_manager": "none"},
    ],
)
def test_invalid_values_are_rejected(engine: dict) -> None:
    with pytest.raises(ValueError, match="engine"):
        parse_process_config({"engine": engine}, environ={})


def test_containers_conf_override(tmp_path: Path) -> None:
    conf = tmp_path / "containers.conf"
    conf.write_text('[engine]\nruntime = "/usr/bin/crun"\nruntime_flags = ["debug"]\n')
    config = load_process_config({"CONTAINERS_CONF": str(conf)})
    assert "/usr/bin/crun" == config.runtime_path
    assert ("debug",) == config.runtime_flags


def test_user_config_is_found(tmp_path: Path) -> None:
    conf = tmp_path / "containers" / "containers.conf"
    conf.parent.mkdir()
    conf.write_text('[engine]\ncgroup_manager = "cgroupfs"\n')
    environ = {"XDG_CONFIG_HOME": str(tmp_path)}
    assert conf == find_config_file(environ)
    assert not load_process_config(environ).uses_systemd_cgroups


def test_invalid_toml_is_a_value_error(tmp_path: Path) -> None:
    conf = tmp_path / "containers.conf"
    conf.write_text("[engine\n")
    with pytest.raises(ValueError):
        load_process_config({"CONTAINERS_CONF": str(conf)})

# Copyright (C) 2025 Antonio Paolillo. All rights reserved.
# SPDX-License-Identifier: MIT
"""Unit tests for the option parsers: sizes, namespaces, ID maps, registries and volumes."""

from pathlib import Path

import pytest

from pybud.errors import (
    NamespaceParseError,
    ParseError,
    SizeParseError,
    SystemContextError,
    VolumeParseError,
)
from pybud.mounts import TransientMount, parse_volume, parse_volumes
from pybud.parsers.namespaces import (
    IDMap,
    IDMappingOptions,
    Isolation,
    NamespaceOption,
    NetworkPolicy,
    lookup_subordinate_ids,
    parse_id_maps,
    parse_idmapping_options,
    parse_isolation,
    parse_namespace_options,
)
from pybud.parsers.system import Credentials, parse_credentials, parse_system_context
from pybud.parsers.units import GiB, KiB, MiB, parse_ram_bytes
from pybud.request import RawBuildRequest


@pytest.mark.parametrize(
    "size, expected",
    [
        ("1048576", 1048576),
        ("512m", 512 * MiB),
        ("512M", 512 * MiB),
        ("512MiB", 512 * MiB),
        ("512mb", 512 * MiB),
        ("2g", 2 * GiB),
        ("1.5k", int(1.5 * KiB)),
        ("4 k", 4 * KiB),
        ("10b", 10),
    ],
)
def test_parse_ram_bytes(size: str, expected: int) -> None:
    assert expected == parse_ram_bytes(size)


@pytest.mark.parametrize("size", ["512x", "", "m", "-1m", "1.2.3g", "12 34"])
def test_parse_ram_bytes_rejects_garbage(size: str) -> None:
    with pytest.raises(SizeParseError, match="invalid size"):
        parse_ram_bytes(size)


def test_parse_errors_are_value_errors() -> None:
    with pytest.raises(ValueError):
        parse_ram_bytes("512x")
    assert issubclass(SizeParseError, ParseError)


@pytest.mark.parametrize(
    "value, expected",
    [
        ("oci", Isolation.OCI),
        ("OCI", Isolation.OCI),
        ("default", Isolation.OCI),
        ("rootless", Isolation.OCI_ROOTLESS),
        ("chroot", Isolation.CHROOT),
    ],
)
def test_parse_isolation(value: str, expected: Isolation) -> None:
    assert expected == parse_isolation(value, environ={})


def test_isolation_defaults() -> None:
    """Unset isolation comes from BUILDAH_ISOLATION, then from the process privileges."""
    assert Isolation.CHROOT == parse_isolation(None, environ={"BUILDAH_ISOLATION": "chroot"})
    assert Isolation.OCI == parse_isolation("oci", environ={"BUILDAH_ISOLATION": "chroot"})
    assert Isolation.OCI == parse_isolation(None, environ={}, rootless=False)
    assert Isolation.OCI_ROOTLESS == parse_isolation("", environ={}, rootless=True)


def test_unknown_isolation_is_rejected() -> None:
    with pytest.raises(NamespaceParseError, match="unrecognized isolation type 'vm'"):
        parse_isolation("vm", environ={})


def test_unset_namespaces_produce_no_option() -> None:
    assert ((), NetworkPolicy.DEFAULT) == parse_namespace_options(RawBuildRequest(environ={}))


def test_namespace_options(tmp_path: Path) -> None:
    netns = tmp_path / "netns"
    netns.touch()
    request = RawBuildRequest(
        ipc="host",
        network=f"ns:{netns}",
        pid="private",
        uts="container",
        cgroupns="host",
        environ={},
    )
    options, policy = parse_namespace_options(request)
    assert (
        NamespaceOption(name="ipc", host=True),
        NamespaceOption(name="network", path=str(netns)),
        NamespaceOption(name="pid"),
        NamespaceOption(name="uts"),
        NamespaceOption(name="cgroup", host=True),
    ) == options
    assert NetworkPolicy.ENABLED == policy


def test_network_none_disables_networking() -> None:
    options, policy = parse_namespace_options(RawBuildRequest(network="none", environ={}))
    assert (NamespaceOption(name="network"),) == options
    assert NetworkPolicy.DISABLED == policy


def test_missing_namespace_path_is_rejected(tmp_path: Path) -> None:
    with pytest.raises(NamespaceParseError, match="does not exist"):
        parse_namespace_options(RawBuildRequest(ipc=str(tmp_path / "nope"), environ={}))


def test_cgroupns_accepts_host_or_private_only() -> None:
    with pytest.raises(NamespaceParseError, match="not supported"):
        parse_namespace_options(RawBuildRequest(cgroupns="/proc/1/ns/cgroup", environ={}))


def test_parse_id_maps() -> None:
    assert (IDMap(0, 100000, 65536), IDMap(65536, 1000, 1)) == parse_id_maps(
        ("0:100000:65536", "65536:1000:1"), "--userns-uid-map"
    )
    assert (IDMap(0, 1, 2), IDMap(2, 3, 4)) == parse_id_maps(("0:1:2,2:3:4",), "--flag")


@pytest.mark.parametrize("spec", ["0:1", "a:b:c", "0:1:0", "-1:0:1"])
def test_malformed_id_map_is_rejected(spec: str) -> None:
    with pytest.raises(NamespaceParseError, match="--userns-uid-map"):
        parse_id_maps((spec,), "--userns-uid-map")


def test_lookup_subordinate_ids(tmp_path: Path) -> None:
    subuid = tmp_path / "subuid"
    subuid.write_text("alice:100000:65536\nbob:200000:1000\nalice:300000:10\nalice:bad:1\n")
    assert (IDMap(0, 100000, 65536), IDMap(65536, 300000, 10)) == lookup_subordinate_ids(
        "alice", subuid
    )


def test_lookup_unknown_user_is_rejected(tmp_path: Path) -> None:
    subuid = tmp_path / "subuid"
    subuid.write_text("alice:100000:65536\n")
    with pytest.raises(NamespaceParseError, match="'carol'"):
        lookup_subordinate_ids("carol", subuid)


def test_default_user_namespace() -> None:
    request = RawBuildRequest(environ={})
    assert ((NamespaceOption(name="user", host=True),), IDMappingOptions()) == (
        parse_idmapping_options(request, Isolation.OCI)
    )
    assert ((), IDMappingOptions()) == parse_idmapping_options(request, Isolation.OCI_ROOTLESS)


def test_uid_map_is_reused_for_gids() -> None:
    request = RawBuildRequest(userns_uid_map=("0:100000:65536",), environ={})
    options, mapping = parse_idmapping_options(request, Isolation.OCI)
    assert (NamespaceOption(name="user"),) == options
    assert (IDMap(0, 100000, 65536),) == mapping.uid_map == mapping.gid_map
    assert mapping.host_uid_mapping is False
    assert mapping.host_gid_mapping is False


def test_maps_from_subordinate_files(tmp_path: Path) -> None:
    subuid = tmp_path / "subuid"
    subgid = tmp_path / "subgid"
    subuid.write_text("builder:100000:65536\n")
    subgid.write_text("builders:200000:65536\n")
    request = RawBuildRequest(
        userns_uid_map_user="builder", userns_gid_map_group="builders", environ={}
    )
    _, mapping = parse_idmapping_options(request, Isolation.OCI, subuid, subgid)
    assert (IDMap(0, 100000, 65536),) == mapping.uid_map
    assert (IDMap(0, 200000, 65536),) == mapping.gid_map


def test_host_userns_rejects_maps() -> None:
    request = RawBuildRequest(userns="host", userns_uid_map=("0:0:1",), environ={})
    with pytest.raises(NamespaceParseError, match="--userns=host"):
        parse_idmapping_options(request, Isolation.OCI)


def test_parse_credentials() -> None:
    assert Credentials("user", "p:w") == parse_credentials("user:p:w")
    assert Credentials("user") == parse_credentials("user")


@pytest.mark.parametrize(
    "creds, message", [("", "credentials can't be empty"), (":pw", "username can't be empty")]
)
def test_bad_credentials_are_rejected(creds: str, message: str) -> None:
    with pytest.raises(SystemContextError, match=message):
        parse_credentials(creds)


def test_system_context(tmp_path: Path) -> None:
    auth = tmp_path / "auth.json"
    auth.write_text("{}")
    request = RawBuildRequest(
        tls_verify=False,
        authfile=str(auth),
        cert_dir="/etc/certs",
        arch="arm64",
        os_="linux",
        environ={"REGISTRY_AUTH_FILE": "/ignored.json"},
    )
    context = parse_system_context(request)
    assert context.tls_verify is False
    assert str(auth) == context.auth_file
    assert "/etc/certs" == context.cert_dir
    assert ("arm64", "linux") == (context.arch_choice, context.os_choice)
    assert context.credentials is None


def test_system_context_defaults() -> None:
    context = parse_system_context(RawBuildRequest(environ={"REGISTRY_AUTH_FILE": "/a.json"}))
    assert context.tls_verify is None
    assert "/a.json" == context.auth_file


def test_missing_authfile_is_rejected(tmp_path: Path) -> None:
    request = RawBuildRequest(authfile=str(tmp_path / "auth.json"), environ={})
    with pytest.raises(SystemContextError, match="authfile"):
        parse_system_context(request)


def test_parse_volume(tmp_path: Path) -> None:
    mount = parse_volume(f"{tmp_path}:/cache:ro,z")
    assert TransientMount(str(tmp_path), "/cache", ("ro", "z")) == mount
    assert f"--volume={tmp_path}:/cache:ro,z" == mount.to_flag()
    assert f"--volume={tmp_path}:/cache" == parse_volume(f"{tmp_path}:/cache").to_flag()


@pytest.mark.parametrize(
    "spec, message",
    [
        ("/only-one-part", "incorrect volume format"),
        ("relative:/cache", "must be an absolute path"),
        ("{tmp}:relative", "must be an absolute path"),
        ("{tmp}/missing:/cache", "does not exist"),
        ("{tmp}:/cache:bogus", "invalid option"),
        ("{tmp}:/cache:ro,rw", "only one of"),
    ],
)
def test_bad_volumes_are_rejected(tmp_path: Path, spec: str, message: str) -> None:
    with pytest.raises(VolumeParseError, match=message):
        parse_volumes([spec.format(tmp=tmp_path)])

# Copyright (C) 2025 Antonio Paolillo. All rights reserved.
# SPDX-License-Identifier: MIT
"""
Mutually exclusive and environment-dependent options.

Three historically incompatible ways of controlling layers coexist:

- `--layers`: keep every intermediate layer (cache friendly),
- `--squash`: collapse the layers created by this build into one, keeping the
  base image layers,
- `--squash-all`: collapse everything, base image included, into one layer.

The engine only knows two booleans, `squash` and `layers`. Collapsing the new
layers is what the engine does when `layers` is off, so `--squash` compiles to
squash=False, layers=False while `--squash-all` compiles to squash=True,
layers=False.
"""

from dataclasses import dataclass
from typing import Mapping

from pybud.config import ProcessConfig
from pybud.errors import OptionConflictError
from pybud.request import LAYERS_ENV, RawBuildRequest

BASELINE_LAYERS = True


@dataclass(frozen=True)
class Layering:
    """The `squash` and `layers` values handed to the engine."""

    squash: bool
    layers: bool


def check_conflicts(request: RawBuildRequest) -> None:
    """
    Rejects requests that set more than one of --squash, --squash-all and --layers.

    Must run before anything touches the filesystem or the network.

    Raises:
        OptionConflictError: If two or more of those flags were explicitly given.
    """
    explicit = [name for name in ("squash", "squash_all", "layers") if request.changed(name)]
    if len(explicit) > 1:
        raise OptionConflictError(
            "cannot specify --squash, --squash-all and --layers options together"
        )


def default_layers(environ: Mapping[str, str]) -> bool:
    """
    Default of --layers: disabled when $BUILDAH_LAYERS is "0" or "false" (any case),
    enabled otherwise.
    """
    value = environ.get(LAYERS_ENV, "")
    if value.lower() in ("false", "0"):
        return False
    return BASELINE_LAYERS


def resolve_layers(request: RawBuildRequest) -> bool:
    """An explicit --layers wins over the environment default."""
    if request.layers is not None:
        return request.layers
    return default_layers(request.environ)


def apply_squash_rules(request: RawBuildRequest, layering: Layering) -> Layering:
    """
    Translates --squash and --squash-all into engine booleans.

    The rules only ever assign constants, so applying them twice is harmless.
    """
    if request.changed("squash") and request.squash:
        layering = Layering(squash=False, layers=False)
    if request.changed("squash_all"):
        layering = Layering(squash=True, layers=False)
    return layering


def resolve_layering(request: RawBuildRequest) -> Layering:
    """
    Computes the final `squash` and `layers` values of a request.

    Parameters:
        request (RawBuildRequest): A request already accepted by `check_conflicts`.

    Returns:
        Layering: The engine booleans.
    """
    layering = Layering(squash=bool(request.squash), layers=resolve_layers(request))
    return apply_squash_rules(request, layering)


def resolve_http_proxy(request: RawBuildRequest, process_config: ProcessConfig) -> bool:
    """
    Whether proxy environment variables are passed to the build containers.

    Defaults to True, except when the process talks to a remote service, whose
    proxy settings are unrelated to the local ones.
    """
    if request.http_proxy is not None:
        return request.http_proxy
    return not process_config.remote


def resolve_force_rm(request: RawBuildRequest) -> bool:
    """--force-rm defaults to True."""
    return True if request.force_rm is None else request.force_rm


def resolve_rm(request: RawBuildRequest) -> bool:
    """--rm defaults to True."""
    return True if request.rm is None else request.rm

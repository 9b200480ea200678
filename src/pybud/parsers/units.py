# Copyright (C) 2025 Antonio Paolillo. All rights reserved.
# SPDX-License-Identifier: MIT
"""
Human-readable byte quantities, as accepted by --memory and --memory-swap.

Quantities use binary multipliers: "512m" is 512 * 1024 * 1024 bytes. The unit
letter may be followed by an optional "i" and an optional "b" ("512MiB",
"512mb"), is case-insensitive, and a single space may separate it from the
number. Fractions are allowed and truncated to whole bytes.
"""

import re

from pybud.errors import SizeParseError

KiB = 1024
MiB = 1024 * KiB
GiB = 1024 * MiB
TiB = 1024 * GiB
PiB = 1024 * TiB

_MULTIPLIERS = {
    "": 1,
    "k": KiB,
    "m": MiB,
    "g": GiB,
    "t": TiB,
    "p": PiB,
}

_SIZE_RE = re.compile(r"^(\d+(?:\.\d+)*) ?([kmgtp])?i?b?$", re.IGNORECASE)


def parse_ram_bytes(size: str) -> int:
    """
    Parses a human-readable memory quantity into a number of bytes.

    Parameters:
        size (str): The quantity, e.g. "512m", "2g", "1.5GiB" or "1048576".

    Returns:
        int: The quantity in bytes.

    Raises:
        SizeParseError: If `size` is not a valid quantity.
    """
    match = _SIZE_RE.match(size)
    if match is None:
        raise SizeParseError(f"invalid size: '{size}'")

    number, unit = match.groups()
    try:
        value = float(number)
    except ValueError as err:
        raise SizeParseError(f"invalid size: '{size}'") from err

    return int(value * _MULTIPLIERS[(unit or "").lower()])

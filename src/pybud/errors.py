# Copyright (C) 2025 Antonio Paolillo. All rights reserved.
# SPDX-License-Identifier: MIT
"""
Exceptions raised while compiling a build request.

Every error is terminal: compilation either yields a complete configuration or
raises one of these. Validation and parse errors also derive from ValueError so
that callers treating bad input generically keep working.
"""


class BuildRequestError(Exception):
    """Base exception for all build request compilation errors."""


class ValidationError(BuildRequestError, ValueError):
    """The request is well-formed but not acceptable as a whole."""


class OptionConflictError(ValidationError):
    """Mutually exclusive options were given together."""


class ContextError(ValidationError):
    """No usable build context directory could be determined."""


class FormatError(ValidationError):
    """The requested output image format is unknown."""


class ParseError(BuildRequestError, ValueError):
    """A single flag value could not be parsed."""


class SizeParseError(ParseError):
    """A human-readable byte quantity is malformed."""


class NamespaceParseError(ParseError):
    """A namespace, isolation or ID-mapping option is malformed."""


class VolumeParseError(ParseError):
    """A volume specification is malformed."""


class SystemContextError(ParseError):
    """A registry, TLS or credential option is malformed."""


class RemoteContextError(BuildRequestError):
    """Fetching a remote build context failed."""

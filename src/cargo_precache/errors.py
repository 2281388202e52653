# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Exception hierarchy for cargo-precache.

Every error raised by the library derives from PrecacheError so the CLI can
turn it into a non-zero exit with a readable message. Messages always name the
file or directory that caused the failure.
"""


class PrecacheError(Exception):
    """Base class for all unrecoverable cargo-precache errors."""

    pass


class MetadataError(PrecacheError):
    """Raised when dependency-resolution metadata cannot be obtained or parsed."""

    pass


class FingerprintParseError(PrecacheError):
    """Raised when a fingerprint record is malformed.

    Fatal for the whole run: the dependency graph is only correct when every
    record on disk has been loaded.
    """

    pass


class DepInfoParseError(PrecacheError):
    """Raised when a dependency-info (.d) file has no parsable first line."""

    pass


class CacheReadError(PrecacheError):
    """Raised when a required cache directory or file cannot be read."""

    pass

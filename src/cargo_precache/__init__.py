# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Prune Cargo's global cache and target directory down to what is still in use."""

from .config import Config, ConfigurationError
from .deletion import DryRunDeleter, QuarantineDeleter
from .errors import (
    CacheReadError,
    DepInfoParseError,
    FingerprintParseError,
    MetadataError,
    PrecacheError,
)
from .fingerprint import Fingerprint, FingerprintUnit, load_fingerprint_units
from .inventory import CacheInventory
from .metadata import Metadata, MetadataCommand, PackageOrigin, load_metadata
from .stable_hash import HOST_PLATFORM, HashPlatform, RustHasher, siphash24
from .staleness_resolver import FingerprintGraph, StalenessReport, propagate_staleness
from .sweep import SweepResult, clear_cargo_cache, clear_target

__version__ = "0.1.0"

__all__ = [
    "Config",
    "ConfigurationError",
    "DryRunDeleter",
    "QuarantineDeleter",
    "PrecacheError",
    "MetadataError",
    "FingerprintParseError",
    "DepInfoParseError",
    "CacheReadError",
    "Fingerprint",
    "FingerprintUnit",
    "load_fingerprint_units",
    "CacheInventory",
    "Metadata",
    "MetadataCommand",
    "PackageOrigin",
    "load_metadata",
    "HOST_PLATFORM",
    "HashPlatform",
    "RustHasher",
    "siphash24",
    "FingerprintGraph",
    "StalenessReport",
    "propagate_staleness",
    "SweepResult",
    "clear_cargo_cache",
    "clear_target",
]

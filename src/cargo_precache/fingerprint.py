# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Fingerprint records and their loader.

Cargo writes one fingerprint record per compilation unit into
``<build root>/.fingerprint/<name>-<metadata hash>/*.json``. A record lists
the hashes of the records it depends on, but never their directories, so the
dependency graph can only be rebuilt by recomputing each record's hash
(see stable_hash.py) and joining on it.

This module defines:
- DepFingerprint: one dependency entry of a record
- Precalculated / CheckDepInfo / RerunIfChanged / RerunIfEnvChanged: the
  local rebuild triggers
- Fingerprint: a parsed record with its canonical hash
- FingerprintUnit: a record together with where it was loaded from
- load_fingerprint_units(): read every unit under a .fingerprint directory
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from cargo_precache.depinfo import extract_meta_hash
from cargo_precache.errors import CacheReadError, FingerprintParseError
from cargo_precache.stable_hash import HOST_PLATFORM, HashPlatform, RustHasher

logger = logging.getLogger(__name__)

_U64_MAX = 0xFFFFFFFFFFFFFFFF


def _u64(data: Dict[str, Any], key: str) -> int:
    value = data[key]
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= _U64_MAX:
        raise ValueError(f"'{key}' must be an unsigned 64-bit integer, got {value!r}")
    return value


def _str(value: Any, what: str) -> str:
    if not isinstance(value, str):
        raise ValueError(f"{what} must be a string, got {value!r}")
    return value


def _str_list(value: Any, what: str) -> List[str]:
    if not isinstance(value, list):
        raise ValueError(f"{what} must be a list, got {value!r}")
    return [_str(item, f"{what} item") for item in value]


@dataclass(frozen=True)
class DepFingerprint:
    """One dependency entry: ``[pkg_id, name, public, fingerprint]``."""

    pkg_id: int
    name: str
    public: bool
    fingerprint: int

    @classmethod
    def from_json(cls, entry: Any) -> "DepFingerprint":
        if not isinstance(entry, list) or len(entry) != 4:
            raise ValueError(f"dependency entry must be a 4-element list, got {entry!r}")
        pkg_id, name, public, fingerprint = entry
        if not isinstance(public, bool):
            raise ValueError(f"dependency 'public' flag must be a bool, got {public!r}")
        fields = {"pkg_id": pkg_id, "fingerprint": fingerprint}
        return cls(
            pkg_id=_u64(fields, "pkg_id"),
            name=_str(name, "dependency name"),
            public=public,
            fingerprint=_u64(fields, "fingerprint"),
        )

    def hash_into(self, hasher: RustHasher) -> None:
        hasher.write_u64(self.pkg_id)
        hasher.write_str(self.name)
        hasher.write_bool(self.public)
        hasher.write_u64(self.fingerprint)


@dataclass(frozen=True)
class Precalculated:
    """Precomputed freshness token (usually a package version)."""

    DISCRIMINANT = 0

    value: str

    def hash_into(self, hasher: RustHasher) -> None:
        hasher.write_discriminant(self.DISCRIMINANT)
        hasher.write_str(self.value)


@dataclass(frozen=True)
class CheckDepInfo:
    """Rebuild when any file listed in a dep-info file changes."""

    DISCRIMINANT = 1

    dep_info: str

    def hash_into(self, hasher: RustHasher) -> None:
        hasher.write_discriminant(self.DISCRIMINANT)
        hasher.write_path(self.dep_info)


@dataclass(frozen=True)
class RerunIfChanged:
    """Build-script trigger on changed paths."""

    DISCRIMINANT = 2

    output: str
    paths: List[str] = field(default_factory=list)

    def hash_into(self, hasher: RustHasher) -> None:
        hasher.write_discriminant(self.DISCRIMINANT)
        hasher.write_path(self.output)
        hasher.write_path_seq(self.paths)


@dataclass(frozen=True)
class RerunIfEnvChanged:
    """Build-script trigger on a changed environment variable."""

    DISCRIMINANT = 3

    var: str
    val: Optional[str] = None

    def hash_into(self, hasher: RustHasher) -> None:
        hasher.write_discriminant(self.DISCRIMINANT)
        hasher.write_str(self.var)
        hasher.write_option_str(self.val)


LocalFingerprint = Union[Precalculated, CheckDepInfo, RerunIfChanged, RerunIfEnvChanged]


def parse_local(entry: Any) -> LocalFingerprint:
    """Parse one externally tagged ``local`` entry, e.g. ``{"CheckDepInfo": {...}}``."""
    if not isinstance(entry, dict) or len(entry) != 1:
        raise ValueError(f"local entry must be a single-key object, got {entry!r}")
    (tag, body), = entry.items()

    if tag == "Precalculated":
        return Precalculated(value=_str(body, "Precalculated"))
    if not isinstance(body, dict):
        raise ValueError(f"{tag} body must be an object, got {body!r}")
    if tag == "CheckDepInfo":
        return CheckDepInfo(dep_info=_str(body.get("dep_info"), "CheckDepInfo.dep_info"))
    if tag == "RerunIfChanged":
        return RerunIfChanged(
            output=_str(body.get("output"), "RerunIfChanged.output"),
            paths=_str_list(body.get("paths", []), "RerunIfChanged.paths"),
        )
    if tag == "RerunIfEnvChanged":
        val = body.get("val")
        return RerunIfEnvChanged(
            var=_str(body.get("var"), "RerunIfEnvChanged.var"),
            val=None if val is None else _str(val, "RerunIfEnvChanged.val"),
        )
    raise ValueError(f"unknown local fingerprint kind '{tag}'")


@dataclass(frozen=True)
class Fingerprint:
    """A parsed fingerprint record.

    Only the fields that take part in the canonical hash are kept; any other
    member of the JSON object is ignored.
    """

    rustc: int
    features: str
    target: int
    profile: int
    path: int
    deps: List[DepFingerprint]
    local: List[LocalFingerprint]
    rustflags: List[str]
    metadata: int
    config: int

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Fingerprint":
        """Build a record from decoded JSON.

        Raises:
            ValueError: If a field is missing or has the wrong type.
        """
        if not isinstance(data, dict):
            raise ValueError(f"fingerprint must be a JSON object, got {type(data).__name__}")
        try:
            deps = data["deps"]
            local = data["local"]
            if not isinstance(deps, list):
                raise ValueError("'deps' must be a list")
            if not isinstance(local, list):
                raise ValueError("'local' must be a list")
            return cls(
                rustc=_u64(data, "rustc"),
                features=_str(data["features"], "'features'"),
                target=_u64(data, "target"),
                profile=_u64(data, "profile"),
                path=_u64(data, "path"),
                deps=[DepFingerprint.from_json(dep) for dep in deps],
                local=[parse_local(entry) for entry in local],
                rustflags=_str_list(data["rustflags"], "'rustflags'"),
                metadata=_u64(data, "metadata"),
                config=_u64(data, "config"),
            )
        except KeyError as e:
            raise ValueError(f"missing field {e}") from e

    def get_hash(self, platform: HashPlatform = HOST_PLATFORM) -> int:
        """Compute the canonical hash Cargo stores for this record.

        Dependents refer to this record by exactly this value.
        """
        hasher = RustHasher(platform)
        # Fields in Cargo's tuple order, which differs from declaration order.
        hasher.write_u64(self.rustc)
        hasher.write_str(self.features)
        hasher.write_u64(self.target)
        hasher.write_u64(self.path)
        hasher.write_u64(self.profile)
        hasher.write_len(len(self.local))
        for entry in self.local:
            entry.hash_into(hasher)
        hasher.write_u64(self.metadata)
        hasher.write_u64(self.config)
        hasher.write_str_seq(self.rustflags)

        hasher.write_usize(len(self.deps))
        for dep in self.deps:
            dep.hash_into(hasher)
        return hasher.finish()


@dataclass
class FingerprintUnit:
    """A fingerprint record and the unit directory it was loaded from."""

    meta_hash: str
    unit_dir: Path
    record_path: Path
    fingerprint: Fingerprint


def parse_fingerprint_file(record_path: Path) -> Fingerprint:
    """Read and parse one fingerprint JSON file.

    Raises:
        FingerprintParseError: If the file is not a valid fingerprint record.
        CacheReadError: If the file cannot be read.
    """
    try:
        data = record_path.read_bytes()
    except OSError as e:
        raise CacheReadError(f"Cannot read fingerprint {record_path}: {e}") from e
    try:
        return Fingerprint.from_dict(json.loads(data.decode("utf-8")))
    except ValueError as e:
        # UnicodeDecodeError and json.JSONDecodeError are ValueError subclasses
        raise FingerprintParseError(f"Malformed fingerprint {record_path}: {e}") from e


def load_fingerprint_units(fingerprint_dir: Path) -> List[FingerprintUnit]:
    """Load one record per unit directory under fingerprint_dir.

    Each unit directory may hold several JSON files; the first in sorted name
    order is the record. Unit directories without any JSON file are skipped.

    Raises:
        CacheReadError: If fingerprint_dir cannot be listed.
        FingerprintParseError: If any record is malformed.
    """
    try:
        unit_dirs = sorted(p for p in fingerprint_dir.iterdir() if p.is_dir())
    except OSError as e:
        raise CacheReadError(f"Cannot list fingerprint directory {fingerprint_dir}: {e}") from e

    units: List[FingerprintUnit] = []
    for unit_dir in unit_dirs:
        try:
            records = sorted(p for p in unit_dir.iterdir() if p.suffix == ".json")
        except OSError as e:
            raise CacheReadError(f"Cannot list unit directory {unit_dir}: {e}") from e
        if not records:
            logger.debug(f"No fingerprint record in {unit_dir}, skipping")
            continue

        record_path = records[0]
        units.append(
            FingerprintUnit(
                meta_hash=extract_meta_hash(unit_dir.name),
                unit_dir=unit_dir,
                record_path=record_path,
                fingerprint=parse_fingerprint_file(record_path),
            )
        )

    logger.debug(f"Loaded {len(units)} fingerprint records from {fingerprint_dir}")
    return units

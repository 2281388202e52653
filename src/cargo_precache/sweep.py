# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Walk the caches and hand every unused entry to a delete callback.

Two independent sweeps:
- clear_cargo_cache(): the global cache under ``$CARGO_HOME``
- clear_target(): one profile directory of a project's target directory

Neither sweep removes anything itself; deciding and deleting are kept apart
so the same walk serves dry runs and real runs.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Set, Tuple

from cargo_precache.depinfo import meta_hash_of, read_first_dep
from cargo_precache.errors import CacheReadError
from cargo_precache.fingerprint import load_fingerprint_units
from cargo_precache.inventory import CacheInventory
from cargo_precache.metadata import Metadata, default_cargo_home
from cargo_precache.stable_hash import HOST_PLATFORM, HashPlatform
from cargo_precache.staleness_resolver import FingerprintGraph, StalenessReport, StaleReason

logger = logging.getLogger(__name__)

DeleteFn = Callable[[Path], None]

DEFAULT_PROFILE = "debug"
DEFAULT_LOCK_FILE = ".cargo-lock"


@dataclass
class SweepResult:
    """What a sweep decided.

    Attributes:
        deleted: Paths handed to the delete callback, in order.
        outdated: Metadata hashes whose source is no longer resolved.
        feature_mismatch: Metadata hashes seeded by a feature change.
        stale: Every deletable metadata hash (seeds and their dependents).
    """

    deleted: List[Path] = field(default_factory=list)
    outdated: Set[str] = field(default_factory=set)
    feature_mismatch: Set[str] = field(default_factory=set)
    stale: Set[str] = field(default_factory=set)
    report: Optional[StalenessReport] = None


def _list_dir(path: Path) -> List[Path]:
    try:
        return sorted(path.iterdir())
    except OSError as e:
        raise CacheReadError(f"Error reading directory {path}: {e}") from e


def _crate_key(entry: Path) -> Optional[str]:
    return entry.stem if entry.suffix == ".crate" else None


def _dir_key(entry: Path) -> Optional[str]:
    return entry.name


def _sweep_cache_root(
    root: Path,
    table: Dict[str, Dict[str, str]],
    delete: DeleteFn,
    result: SweepResult,
    child_key: Callable[[Path], Optional[str]] = _dir_key,
) -> None:
    """Delete entries of a two-level cache root that the inventory does not hold.

    A top-level entry missing from table is deleted whole. Otherwise each
    child whose key is missing from the matching set is deleted; children
    with no key are left alone.
    """
    if not root.exists():
        logger.debug(f"Cache root {root} does not exist, nothing to do")
        return

    for entry in _list_dir(root):
        current = table.get(entry.name)
        if current is None:
            result.deleted.append(entry)
            delete(entry)
            continue
        for child in _list_dir(entry):
            key = child_key(child)
            if key is not None and key not in current:
                result.deleted.append(child)
                delete(child)


def clear_cargo_cache(
    metadata: Metadata,
    delete: DeleteFn,
    cargo_home: Optional[Path] = None,
    prune_archives: bool = True,
) -> SweepResult:
    """Delete global-cache entries not used by the current resolution.

    Swept roots are ``git/checkouts`` and ``registry/src``, plus
    ``registry/cache`` archives when prune_archives is set. ``git/db`` is
    never touched. Missing roots are skipped.

    Raises:
        CacheReadError: If an existing cache directory cannot be listed.
    """
    cargo_home = Path(cargo_home) if cargo_home is not None else default_cargo_home()
    inventory = CacheInventory.from_metadata(metadata)
    result = SweepResult()

    logger.info(f"Sweeping global cache {cargo_home}")
    _sweep_cache_root(cargo_home / "git" / "checkouts", inventory.git, delete, result)
    _sweep_cache_root(cargo_home / "registry" / "src", inventory.registry, delete, result)
    if prune_archives:
        _sweep_cache_root(
            cargo_home / "registry" / "cache",
            inventory.registry,
            delete,
            result,
            child_key=_crate_key,
        )

    logger.info(f"Global cache sweep selected {len(result.deleted)} entries")
    return result


def _dep_info_files(deps_dir: Path, build_dir: Path) -> List[Path]:
    files = [p for p in _list_dir(deps_dir) if p.suffix == ".d"]
    for unit_dir in _list_dir(build_dir):
        if unit_dir.is_dir():
            files.extend(p for p in _list_dir(unit_dir) if p.suffix == ".d")
    return files


def classify_dep_info(
    dep_files: List[Path], inventory: CacheInventory, cargo_home: Path
) -> Tuple[Set[str], Dict[str, str]]:
    """Sort dep-info files into outdated and current metadata hashes.

    Returns:
        (outdated hashes, metadata hash -> current feature string). Current
        hashes without a recorded feature string are left out of the map.
    """
    outdated: Set[str] = set()
    current_features: Dict[str, str] = {}
    for dep_file in dep_files:
        meta_hash = meta_hash_of(dep_file)
        first = read_first_dep(dep_file)
        package_id = inventory.resolve(Path(first), cargo_home) if first else None
        if package_id is None:
            outdated.add(meta_hash)
            continue
        features = inventory.features_for(package_id)
        if features is not None:
            current_features[meta_hash] = features
    return outdated, current_features


def clear_target(
    metadata: Metadata,
    delete: DeleteFn,
    cargo_home: Optional[Path] = None,
    profile: str = DEFAULT_PROFILE,
    lock_file_name: str = DEFAULT_LOCK_FILE,
    platform: HashPlatform = HOST_PLATFORM,
) -> SweepResult:
    """Delete build outputs that are stale for the current resolution.

    Units built from sources outside the current inventory (including local
    workspace crates) are outdated. Units whose features changed are stale
    too, and so is every unit depending on a stale unit.

    Raises:
        CacheReadError: If build/, deps/ or .fingerprint/ is missing or unreadable.
        DepInfoParseError: If a dep-info file has no parsable first line.
        FingerprintParseError: If a fingerprint record is malformed.
    """
    cargo_home = Path(cargo_home) if cargo_home is not None else default_cargo_home()
    build_root = metadata.target_directory / profile
    result = SweepResult()

    if not build_root.is_dir():
        logger.info(f"Build root {build_root} does not exist, nothing to do")
        return result

    build_dir = build_root / "build"
    deps_dir = build_root / "deps"
    fingerprint_dir = build_root / ".fingerprint"
    for required in (build_dir, deps_dir, fingerprint_dir):
        if not required.is_dir():
            raise CacheReadError(f"Required directory {required} is missing")

    logger.info(f"Sweeping build root {build_root}")
    for entry in _list_dir(build_root):
        if entry.is_file() and entry.name != lock_file_name:
            result.deleted.append(entry)
            delete(entry)

    inventory = CacheInventory.from_metadata(metadata)
    outdated, current_features = classify_dep_info(
        _dep_info_files(deps_dir, build_dir), inventory, cargo_home
    )

    graph = FingerprintGraph(load_fingerprint_units(fingerprint_dir), platform)
    report = graph.resolve(outdated, current_features)
    stale = report.deletable
    for unit in report.marked_units:
        logger.debug(f"Stale unit {unit.unit_dir.name}: {report.reasons[unit.meta_hash]}")

    for directory in (build_dir, deps_dir, fingerprint_dir):
        for entry in _list_dir(directory):
            if meta_hash_of(entry) in stale:
                result.deleted.append(entry)
                delete(entry)

    result.outdated = outdated
    result.feature_mismatch = report.hashes_with_reason(StaleReason.FEATURE_MISMATCH)
    result.stale = stale
    result.report = report
    logger.info(
        f"Target sweep: {len(outdated)} outdated, {len(result.feature_mismatch)} feature "
        f"changes, {len(stale)} stale metadata hashes, {len(result.deleted)} entries selected"
    )
    return result

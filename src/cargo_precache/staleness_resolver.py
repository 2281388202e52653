# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Staleness resolver for build units in a Cargo target directory.

Fingerprint records only reference their dependencies by hash, so the graph
is rebuilt in three steps:

Algorithm Overview:
1. Compute the canonical hash of every loaded record and index nodes by it
2. Resolve each record's dependency hashes; record B listed by A gives the
   reverse edge B -> A. Hashes that match nothing give no edge
3. Seed nodes whose metadata hash is outdated (source no longer resolved) or
   whose stored feature string differs from the current one
4. Mark every node reachable from a seed over reverse edges

The result is the set of metadata hashes owning at least one marked node.
Units sharing a metadata hash (a build script compile and its library, for
example) are therefore always deleted together.

Example Scenarios:
- Version bump: A -> B(old). B's source is gone, so B is seeded and A is
  marked through the reverse edge.
- Nested: A -> B -> C(old). C, B and A are marked; an unrelated sibling D of
  A is not.
- Feature change: B's feature string differs. B is seeded via the feature
  path and A is marked as a stale dependent.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Hashable, Iterable, List, Mapping, Optional, Set, TypeVar

from cargo_precache.errors import FingerprintParseError
from cargo_precache.fingerprint import FingerprintUnit
from cargo_precache.stable_hash import HOST_PLATFORM, HashPlatform, UnsupportedPathError

logger = logging.getLogger(__name__)

NodeT = TypeVar("NodeT", bound=Hashable)


class StaleReason:
    """Why a metadata hash ended up in the deletable set.

    Design: class constants rather than Enum so values serialize as strings.
    """

    OUTDATED_SOURCE = "outdated-source"  # source no longer maps to a resolved package
    FEATURE_MISMATCH = "feature-mismatch"  # activated features changed
    STALE_DEPENDENCY = "stale-dependency"  # depends on a stale unit


def propagate_staleness(
    reverse_edges: Mapping[NodeT, Iterable[NodeT]], seeds: Iterable[NodeT]
) -> Set[NodeT]:
    """Mark every node reachable from seeds over reverse edges.

    Worklist marking: pop a node, skip it if already marked, else mark it and
    push its dependents. Each node is marked at most once, so the loop ends on
    any finite graph, cycles included. The result does not depend on the
    order of seeds or edges.

    Args:
        reverse_edges: node -> nodes that depend on it.
        seeds: Nodes known to be stale.

    Returns:
        Set of marked nodes (seeds included).
    """
    marked: Set[NodeT] = set()
    worklist: List[NodeT] = list(seeds)
    while worklist:
        node = worklist.pop()
        if node in marked:
            continue
        marked.add(node)
        worklist.extend(reverse_edges.get(node, ()))
    return marked


@dataclass
class StalenessReport:
    """Outcome of one staleness resolution.

    Attributes:
        reasons: metadata hash -> StaleReason for every deletable hash.
        marked_units: Units that were marked, in load order.
    """

    reasons: Dict[str, str] = field(default_factory=dict)
    marked_units: List[FingerprintUnit] = field(default_factory=list)

    @property
    def deletable(self) -> Set[str]:
        return set(self.reasons)

    def hashes_with_reason(self, reason: str) -> Set[str]:
        return {meta_hash for meta_hash, r in self.reasons.items() if r == reason}


class FingerprintGraph:
    """Reverse-dependency graph over loaded fingerprint units.

    Nodes are indexes into ``units``. Several units may share one canonical
    hash; a dependency on that hash links to all of them.

    Usage:
        graph = FingerprintGraph(load_fingerprint_units(fingerprint_dir))
        report = graph.resolve(outdated_hashes, current_features)
    """

    def __init__(self, units: List[FingerprintUnit], platform: HashPlatform = HOST_PLATFORM):
        self.units = units
        self.platform = platform
        self.hashes: List[int] = []
        self.by_hash: Dict[int, List[int]] = {}
        self.reverse_edges: Dict[int, List[int]] = {}
        self._build()

    def _build(self) -> None:
        for index, unit in enumerate(self.units):
            try:
                value = unit.fingerprint.get_hash(self.platform)
            except UnsupportedPathError as e:
                raise FingerprintParseError(
                    f"Cannot hash fingerprint {unit.record_path}: {e}"
                ) from e
            self.hashes.append(value)
            self.by_hash.setdefault(value, []).append(index)

        dangling = 0
        for index, unit in enumerate(self.units):
            for dep in unit.fingerprint.deps:
                targets = self.by_hash.get(dep.fingerprint)
                if not targets:
                    dangling += 1
                    continue
                for target in targets:
                    self.reverse_edges.setdefault(target, []).append(index)

        logger.debug(
            f"Fingerprint graph: {len(self.units)} nodes, "
            f"{sum(len(v) for v in self.reverse_edges.values())} edges, "
            f"{dangling} unresolved dependency hashes"
        )

    def find_seeds(
        self, outdated: Set[str], current_features: Mapping[str, str]
    ) -> Dict[int, str]:
        """Return node index -> StaleReason for every directly stale node."""
        seeds: Dict[int, str] = {}
        for index, unit in enumerate(self.units):
            if unit.meta_hash in outdated:
                seeds[index] = StaleReason.OUTDATED_SOURCE
                continue
            current: Optional[str] = current_features.get(unit.meta_hash)
            if current is not None and current != unit.fingerprint.features:
                logger.debug(
                    f"Feature change for {unit.unit_dir.name}: "
                    f"{unit.fingerprint.features} -> {current}"
                )
                seeds[index] = StaleReason.FEATURE_MISMATCH
        return seeds

    def resolve(self, outdated: Set[str], current_features: Mapping[str, str]) -> StalenessReport:
        """Seed and propagate staleness.

        Args:
            outdated: Metadata hashes whose sources are no longer resolved.
            current_features: metadata hash -> current feature string.

        Returns:
            StalenessReport covering every marked unit.
        """
        seeds = self.find_seeds(outdated, current_features)
        marked = propagate_staleness(self.reverse_edges, seeds)

        report = StalenessReport()
        # Seed reasons win over the propagated one when units share a hash.
        for index in sorted(marked):
            unit = self.units[index]
            report.marked_units.append(unit)
            reason = seeds.get(index, StaleReason.STALE_DEPENDENCY)
            previous = report.reasons.get(unit.meta_hash)
            if previous is None or previous == StaleReason.STALE_DEPENDENCY:
                report.reasons[unit.meta_hash] = reason

        logger.debug(
            f"{len(seeds)} seed units, {len(marked)} marked units, "
            f"{len(report.reasons)} deletable metadata hashes"
        )
        return report

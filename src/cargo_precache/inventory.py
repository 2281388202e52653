# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Index of global-cache directories that the current resolution still uses.

Cargo unpacks registry packages into
``$CARGO_HOME/registry/src/<registry>/<name>-<version>/`` and checks out git
dependencies into ``$CARGO_HOME/git/checkouts/<repo>/<rev>/``. The directory
names are recovered from each package's manifest path, so the index can be
matched against directory listings without knowing how Cargo derives them.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, Optional, Tuple

from cargo_precache.metadata import Metadata, PackageOrigin, SourceKind

logger = logging.getLogger(__name__)


def _origin_dirs(package: PackageOrigin) -> Optional[Tuple[str, str]]:
    """(grandparent name, parent name) of the manifest, or None if too shallow."""
    parent = package.manifest_path.parent
    outer, inner = parent.parent.name, parent.name
    if not outer or not inner:
        return None
    return outer, inner


@dataclass
class CacheInventory:
    """Directory names of currently resolved packages.

    Attributes:
        registry: registry dir name -> {package dir name -> package id}
        git: repository dir name -> {revision dir name -> package id}
        package_features: package id -> current feature string
    """

    registry: Dict[str, Dict[str, str]] = field(default_factory=dict)
    git: Dict[str, Dict[str, str]] = field(default_factory=dict)
    package_features: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_packages(
        cls,
        packages: Iterable[PackageOrigin],
        package_features: Optional[Dict[str, str]] = None,
    ) -> "CacheInventory":
        inventory = cls(package_features=dict(package_features or {}))
        for package in packages:
            kind = package.kind
            if kind == SourceKind.LOCAL:
                continue
            dirs = _origin_dirs(package)
            if dirs is None:
                logger.debug(
                    f"Manifest path too shallow for {package.id}: {package.manifest_path}"
                )
                continue
            outer, inner = dirs
            table = inventory.registry if kind == SourceKind.REGISTRY else inventory.git
            table.setdefault(outer, {})[inner] = package.id

        logger.debug(
            f"Inventory: {sum(len(v) for v in inventory.registry.values())} registry packages, "
            f"{sum(len(v) for v in inventory.git.values())} git checkouts"
        )
        return inventory

    @classmethod
    def from_metadata(cls, metadata: Metadata) -> "CacheInventory":
        return cls.from_packages(metadata.packages, metadata.package_features)

    def resolve(self, path: Path, cargo_home: Path) -> Optional[str]:
        """Map a source path inside the global cache to a current package id.

        Recognized layouts are ``git/<any>/<repo>/<rev>/...`` and
        ``registry/<any>/<registry>/<package>/...`` relative to cargo_home.

        Returns:
            The package id, or None if the path is outside the cache or
            belongs to a package that is no longer resolved.
        """
        try:
            relative = Path(path).relative_to(cargo_home)
        except ValueError:
            return None

        parts = relative.parts
        if len(parts) < 4:
            return None
        top, _, outer, inner = parts[:4]
        if top == "git":
            table = self.git
        elif top == "registry":
            table = self.registry
        else:
            return None
        return table.get(outer, {}).get(inner)

    def features_for(self, package_id: str) -> Optional[str]:
        """Current feature string of a package, if the resolve graph recorded one."""
        return self.package_features.get(package_id)

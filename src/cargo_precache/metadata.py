# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Typed view over ``cargo metadata --format-version 1`` output.

Only the parts needed to decide what is still in use are kept:
- PackageOrigin: id, source and manifest path of each resolved package
- Metadata: all origins, the target directory and per-package feature strings
- MetadataCommand: runs cargo to produce the metadata
- load_metadata(): reads metadata previously saved to a file
"""

import json
import logging
import os
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from cargo_precache.errors import MetadataError

logger = logging.getLogger(__name__)


class SourceKind:
    """Where a package's sources live.

    Design: class constants rather than Enum so values print as plain strings.
    """

    REGISTRY = "registry"  # registry+https://... or sparse+https://...
    GIT = "git"  # git+https://...
    LOCAL = "local"  # path dependency or workspace member


def build_feature_string(features: List[str]) -> str:
    """Serialize a feature list the way Cargo stores it in fingerprints.

    ``["a", "b"]`` becomes ``'["a", "b"]'``; an empty list becomes ``'[]'``.
    """
    return "[" + ", ".join(f'"{feature}"' for feature in features) + "]"


def default_cargo_home() -> Path:
    """``$CARGO_HOME`` if set, else ``~/.cargo``."""
    cargo_home = os.environ.get("CARGO_HOME")
    if cargo_home:
        return Path(cargo_home)
    return Path.home() / ".cargo"


@dataclass(frozen=True)
class PackageOrigin:
    """One resolved package and where its sources come from."""

    id: str
    source: Optional[str]
    manifest_path: Path

    @property
    def kind(self) -> str:
        if self.source is None:
            return SourceKind.LOCAL
        if self.source.startswith("registry+") or self.source.startswith("sparse+"):
            return SourceKind.REGISTRY
        if self.source.startswith("git+"):
            return SourceKind.GIT
        return SourceKind.LOCAL

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PackageOrigin":
        source = data.get("source")
        if source is not None and not isinstance(source, str):
            raise ValueError(f"'source' must be a string or null, got {source!r}")
        if not isinstance(data.get("id"), str) or not isinstance(data.get("manifest_path"), str):
            raise ValueError("'id' and 'manifest_path' must be strings")
        return cls(id=data["id"], source=source, manifest_path=Path(data["manifest_path"]))


@dataclass
class Metadata:
    """Dependency-resolution output for one workspace.

    Attributes:
        packages: Every resolved package, local ones included.
        target_directory: Root of the build output.
        package_features: package id -> feature string of its activated
            features. Empty when the metadata carries no resolve graph.
    """

    packages: List[PackageOrigin]
    target_directory: Path
    package_features: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Metadata":
        """Build from decoded ``cargo metadata`` JSON.

        Package entries that cannot be understood are skipped; they simply
        contribute nothing to the inventory.

        Raises:
            MetadataError: If the top-level structure is unusable.
        """
        if not isinstance(data, dict):
            raise MetadataError("Metadata must be a JSON object")
        raw_packages = data.get("packages")
        if not isinstance(raw_packages, list):
            raise MetadataError("Metadata has no 'packages' list")
        target_directory = data.get("target_directory")
        if not isinstance(target_directory, str):
            raise MetadataError("Metadata has no 'target_directory'")

        packages: List[PackageOrigin] = []
        for raw in raw_packages:
            if not isinstance(raw, dict):
                logger.debug(f"Skipping non-object package entry: {raw!r}")
                continue
            try:
                packages.append(PackageOrigin.from_dict(raw))
            except ValueError as e:
                logger.debug(f"Skipping package entry {raw.get('id')!r}: {e}")

        package_features: Dict[str, str] = {}
        resolve = data.get("resolve")
        if isinstance(resolve, dict):
            for node in resolve.get("nodes") or []:
                if not isinstance(node, dict) or not isinstance(node.get("id"), str):
                    continue
                package_features[node["id"]] = build_feature_string(node.get("features") or [])

        return cls(
            packages=packages,
            target_directory=Path(target_directory),
            package_features=package_features,
        )


def parse_metadata(text: Union[str, bytes], origin: str = "cargo metadata") -> Metadata:
    """Parse metadata JSON text.

    Raises:
        MetadataError: If the text is not valid metadata.
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise MetadataError(f"Error parsing metadata from {origin}: {e}") from e
    return Metadata.from_dict(data)


def load_metadata(path: Path) -> Metadata:
    """Read metadata previously saved with ``cargo metadata --format-version 1 > file``."""
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as e:
        raise MetadataError(f"Cannot read metadata file {path}: {e}") from e
    return parse_metadata(text, origin=str(path))


class MetadataCommand:
    """Builder for a ``cargo metadata`` invocation.

    Usage:
        metadata = MetadataCommand().manifest_path("Cargo.toml").all_features(True).exec()
    """

    def __init__(self, cargo: Optional[str] = None):
        self.cargo = cargo or os.environ.get("CARGO") or "cargo"
        self.args: List[str] = ["metadata", "--format-version", "1"]
        self.cwd: Optional[Path] = None

    def current_dir(self, path: Optional[Path]) -> "MetadataCommand":
        self.cwd = path
        return self

    def manifest_path(self, path: Optional[Union[str, Path]]) -> "MetadataCommand":
        if path is not None:
            self.args.extend(["--manifest-path", str(path)])
        return self

    def features(self, features: Optional[str]) -> "MetadataCommand":
        if features is not None:
            self.args.extend(["--features", features])
        return self

    def filter_platform(self, platform: Optional[str]) -> "MetadataCommand":
        if platform is not None:
            self.args.extend(["--filter-platform", platform])
        return self

    def all_features(self, enabled: bool) -> "MetadataCommand":
        if enabled:
            self.args.append("--all-features")
        return self

    def no_default_features(self, enabled: bool) -> "MetadataCommand":
        if enabled:
            self.args.append("--no-default-features")
        return self

    @property
    def command(self) -> List[str]:
        return [self.cargo] + self.args

    def exec(self) -> Metadata:
        """Run cargo and parse its output.

        Raises:
            MetadataError: If cargo cannot be started, exits non-zero or
                prints unparseable output.
        """
        logger.debug(f"Running {' '.join(self.command)}")
        try:
            result = subprocess.run(
                self.command,
                cwd=self.cwd,
                stdin=subprocess.DEVNULL,
                capture_output=True,
                text=True,
                check=True,
            )
        except FileNotFoundError as e:
            raise MetadataError(f"Error running cargo metadata: {self.cargo} not found") from e
        except subprocess.CalledProcessError as e:
            raise MetadataError(
                f"cargo metadata failed: exit code {e.returncode}: {(e.stderr or '').strip()}"
            ) from e
        except OSError as e:
            raise MetadataError(f"Error running cargo metadata: {e}") from e
        return parse_metadata(result.stdout)

# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Shared fixtures for cargo-precache tests.

Builds small but realistic on-disk layouts:
- a cargo home with unpacked registry packages and git checkouts
- a target directory with deps/, build/ and .fingerprint/ entries whose
  fingerprint records reference each other by canonical hash
- cargo metadata JSON describing which packages are currently resolved
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import pytest

from cargo_precache.fingerprint import Fingerprint
from cargo_precache.metadata import Metadata

REGISTRY = "github.com-1ecc6299db9ec823"
REGISTRY_SOURCE = "registry+https://github.com/rust-lang/crates.io-index"
GIT_SOURCE = "git+https://github.com/example/repo#"


def make_record(
    meta_hash: str = "0000000000000000",
    features: str = "[]",
    deps: Sequence[Tuple[str, int]] = (),
    local: Optional[List[Dict[str, Any]]] = None,
    **overrides: Any,
) -> Dict[str, Any]:
    """Fingerprint JSON as Cargo writes it.

    Args:
        meta_hash: Hex metadata hash; also used as the record's metadata field
            so distinct units get distinct canonical hashes.
        features: Stored feature string.
        deps: (name, canonical hash) of each dependency.
        local: Local triggers; defaults to one CheckDepInfo entry.
    """
    record: Dict[str, Any] = {
        "rustc": 5115962679530443550,
        "features": features,
        "target": 16343417806311904822,
        "profile": 16668067249205866872,
        "path": 16210749786564134395,
        "deps": [[index, name, False, value] for index, (name, value) in enumerate(deps)],
        "local": local
        if local is not None
        else [{"CheckDepInfo": {"dep_info": f"debug/.fingerprint/{meta_hash}/dep-lib"}}],
        "rustflags": [],
        "metadata": int(meta_hash, 16),
        "config": 0,
    }
    record.update(overrides)
    return record


def record_hash(record: Dict[str, Any]) -> int:
    return Fingerprint.from_dict(record).get_hash()


@dataclass
class Package:
    """A package as it appears in cargo metadata."""

    id: str
    source: Optional[str]
    root: Path
    features: Tuple[str, ...] = ()

    @property
    def manifest_path(self) -> Path:
        return self.root / "Cargo.toml"

    @property
    def lib_rs(self) -> Path:
        return self.root / "src" / "lib.rs"

    @property
    def build_rs(self) -> Path:
        return self.root / "build.rs"


class CargoHome:
    """Fake $CARGO_HOME with registry sources, archives and git checkouts."""

    def __init__(self, root: Path):
        self.root = root
        self.root.mkdir(parents=True, exist_ok=True)

    def registry_package(
        self, name: str, version: str, registry: str = REGISTRY, create: bool = True
    ) -> Package:
        root = self.root / "registry" / "src" / registry / f"{name}-{version}"
        if create:
            (root / "src").mkdir(parents=True, exist_ok=True)
            (root / "Cargo.toml").write_text(f'[package]\nname = "{name}"\n')
            (root / "src" / "lib.rs").write_text("")
            archive_dir = self.root / "registry" / "cache" / registry
            archive_dir.mkdir(parents=True, exist_ok=True)
            (archive_dir / f"{name}-{version}.crate").write_bytes(b"crate")
        return Package(
            id=f"{name} {version} ({REGISTRY_SOURCE})",
            source=REGISTRY_SOURCE,
            root=root,
        )

    def git_checkout(self, repo: str, rev: str, name: str, create: bool = True) -> Package:
        root = self.root / "git" / "checkouts" / repo / rev
        if create:
            (root / "src").mkdir(parents=True, exist_ok=True)
            (root / "Cargo.toml").write_text(f'[package]\nname = "{name}"\n')
            (root / "src" / "lib.rs").write_text("")
        return Package(
            id=f"{name} 0.1.0 ({GIT_SOURCE}{rev})",
            source=GIT_SOURCE + rev,
            root=root,
        )


class TargetBuilder:
    """Fake ``target/<profile>`` populated one compilation unit at a time."""

    def __init__(self, target_dir: Path, profile: str = "debug"):
        self.target_dir = target_dir
        self.build_root = target_dir / profile
        self.build_dir = self.build_root / "build"
        self.deps_dir = self.build_root / "deps"
        self.fingerprint_dir = self.build_root / ".fingerprint"
        for directory in (self.build_dir, self.deps_dir, self.fingerprint_dir):
            directory.mkdir(parents=True, exist_ok=True)
        (self.build_root / ".cargo-lock").write_text("")

    def _write_dep_info(self, dep_file: Path, sources: Iterable[Path]) -> None:
        escaped = [str(p).replace(" ", "\\ ") for p in sources]
        lines = [f"{dep_file.with_suffix('')}: {' '.join(escaped)}", ""]
        lines.extend(f"{p}:" for p in escaped)
        dep_file.write_text("\n".join(lines) + "\n")

    def _write_fingerprint(
        self,
        unit_name: str,
        meta_hash: str,
        record_file: str,
        features: str,
        deps: Sequence[Tuple[str, int]],
    ) -> int:
        unit_dir = self.fingerprint_dir / f"{unit_name}-{meta_hash}"
        unit_dir.mkdir(parents=True, exist_ok=True)
        record = make_record(meta_hash, features=features, deps=deps)
        (unit_dir / record_file).write_text(json.dumps(record))
        (unit_dir / f"dep-{record_file[:-5]}").write_bytes(b"")
        return record_hash(record)

    def add_lib(
        self,
        name: str,
        meta_hash: str,
        source: Path,
        features: str = "[]",
        deps: Sequence[Tuple[str, int]] = (),
    ) -> int:
        """Add a compiled library unit; returns its canonical hash."""
        crate = name.replace("-", "_")
        self._write_dep_info(self.deps_dir / f"{crate}-{meta_hash}.d", [source])
        (self.deps_dir / f"lib{crate}-{meta_hash}.rlib").write_bytes(b"rlib")
        (self.deps_dir / f"lib{crate}-{meta_hash}.rmeta").write_bytes(b"rmeta")
        return self._write_fingerprint(name, meta_hash, f"lib-{crate}.json", features, deps)

    def add_build_script(
        self,
        name: str,
        compile_hash: str,
        run_hash: str,
        source: Path,
        features: str = "[]",
        deps: Sequence[Tuple[str, int]] = (),
    ) -> int:
        """Add a build script's compile and run units; returns the run unit's hash."""
        compile_dir = self.build_dir / f"{name}-{compile_hash}"
        compile_dir.mkdir(parents=True, exist_ok=True)
        self._write_dep_info(compile_dir / f"build_script_build-{compile_hash}.d", [source])
        (compile_dir / "build-script-build").write_bytes(b"bin")
        compile_fp = self._write_fingerprint(
            name, compile_hash, "build-script-build-script-build.json", features, deps
        )

        run_dir = self.build_dir / f"{name}-{run_hash}"
        (run_dir / "out").mkdir(parents=True, exist_ok=True)
        (run_dir / "output").write_text("cargo:rustc-cfg=has_feature\n")
        return self._write_fingerprint(
            name,
            run_hash,
            "run-build-script-build-script-build.json",
            features,
            [("build_script_build", compile_fp)],
        )

    def add_bin(
        self, name: str, meta_hash: str, source: Path, deps: Sequence[Tuple[str, int]] = ()
    ) -> int:
        """Add a binary unit of a local package; also writes its top-level executable."""
        self._write_dep_info(self.deps_dir / f"{name}-{meta_hash}.d", [source])
        (self.deps_dir / f"{name}-{meta_hash}").write_bytes(b"exe")
        (self.build_root / name).write_bytes(b"exe")
        (self.build_root / f"{name}.d").write_text(f"{self.build_root / name}: {source}\n")
        return self._write_fingerprint(name, meta_hash, f"bin-{name}.json", "[]", deps)

    def entries(self) -> List[str]:
        """Relative paths of every entry in build/, deps/ and .fingerprint/."""
        names = []
        for directory in (self.build_dir, self.deps_dir, self.fingerprint_dir):
            names.extend(
                f"{directory.name}/{p.name}" for p in sorted(directory.iterdir())
            )
        return names


def metadata_dict(
    target_directory: Path, packages: Sequence[Package], local: Sequence[Package] = ()
) -> Dict[str, Any]:
    """``cargo metadata`` output listing packages as currently resolved."""
    all_packages = list(packages) + list(local)
    return {
        "packages": [
            {"id": p.id, "source": p.source, "manifest_path": str(p.manifest_path)}
            for p in all_packages
        ],
        "target_directory": str(target_directory),
        "resolve": {
            "nodes": [{"id": p.id, "features": list(p.features)} for p in all_packages]
        },
        "version": 1,
    }


def make_metadata(
    target_directory: Path, packages: Sequence[Package], local: Sequence[Package] = ()
) -> Metadata:
    return Metadata.from_dict(metadata_dict(target_directory, packages, local))


@pytest.fixture
def cargo_home(tmp_path: Path) -> CargoHome:
    """Empty fake cargo home."""
    return CargoHome(tmp_path / "cargo_home")


@pytest.fixture
def project(tmp_path: Path) -> Package:
    """Local workspace package named ``app``."""
    root = tmp_path / "app"
    (root / "src").mkdir(parents=True)
    (root / "Cargo.toml").write_text('[package]\nname = "app"\n')
    (root / "src" / "main.rs").write_text("fn main() {}\n")
    return Package(id=f"app 0.1.0 (path+file://{root})", source=None, root=root)


@pytest.fixture
def target(tmp_path: Path) -> TargetBuilder:
    """Empty fake target directory with the debug profile laid out."""
    return TargetBuilder(tmp_path / "app" / "target")


@pytest.fixture
def restore_root_logger():
    """setup_logging replaces root handlers; put the originals back afterwards."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)

# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Command-line front end: ``cargo-precache {cargo-cache,target}``."""

import argparse
import logging
from pathlib import Path
from typing import List, Optional, Union

from cargo_precache.config import Config, ConfigurationError
from cargo_precache.deletion import DryRunDeleter, QuarantineDeleter
from cargo_precache.errors import PrecacheError
from cargo_precache.logging_setup import setup_logging
from cargo_precache.metadata import Metadata, MetadataCommand, default_cargo_home, load_metadata
from cargo_precache.sweep import SweepResult, clear_cargo_cache, clear_target

logger = logging.getLogger(__name__)

MODE_CARGO_CACHE = "cargo-cache"
MODE_TARGET = "target"


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Returns:
        Parsed arguments namespace.
    """
    parser = argparse.ArgumentParser(
        prog="cargo-precache",
        description=(
            "Remove entries from Cargo's caches that the current dependency "
            "resolution no longer uses, so CI caches stay small."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "mode",
        choices=[MODE_CARGO_CACHE, MODE_TARGET],
        help=(
            f"{MODE_CARGO_CACHE}: clear the global cargo cache; "
            f"{MODE_TARGET}: clear the project's target directory"
        ),
    )
    parser.add_argument("--manifest-path", type=Path, default=None, help="Path to Cargo.toml")
    parser.add_argument(
        "--features", type=str, default=None, help="Comma separated list of features to activate"
    )
    parser.add_argument(
        "--filter-platform",
        type=str,
        default=None,
        help="Only include dependencies matching the given target-triple",
    )
    parser.add_argument(
        "--all-features", action="store_true", help="Activate all available features"
    )
    parser.add_argument(
        "--no-default-features", action="store_true", help="Do not activate the `default` feature"
    )
    parser.add_argument(
        "--metadata-file",
        type=Path,
        default=None,
        help="Read `cargo metadata --format-version 1` output from a file instead of running cargo",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Do not make any changes, but print the paths that would be deleted",
    )
    parser.add_argument(
        "--temp",
        type=str,
        default=None,
        help="Directory to move deleted directories into. Default: temp_dir, $TEMP or $TMPDIR",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Configuration file. Default: ./.cargo_precache.yml",
    )
    parser.add_argument(
        "--cargo-home",
        type=Path,
        default=None,
        help="Cargo home directory. Default: $CARGO_HOME or ~/.cargo",
    )
    parser.add_argument(
        "--profile", type=str, default=None, help="Build profile directory. Default: debug"
    )
    parser.add_argument(
        "--log-dir", type=Path, default=None, help="Also write JSON-lines logs to this directory"
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def _load_metadata(args: argparse.Namespace) -> Metadata:
    if args.metadata_file is not None:
        return load_metadata(args.metadata_file)
    return (
        MetadataCommand()
        .manifest_path(args.manifest_path)
        .features(args.features)
        .filter_platform(args.filter_platform)
        .all_features(args.all_features)
        .no_default_features(args.no_default_features)
        .exec()
    )


def run(args: argparse.Namespace, config: Config) -> SweepResult:
    """Run one sweep as described by parsed arguments and configuration.

    Raises:
        PrecacheError: On any unrecoverable cache or metadata error.
        ConfigurationError: If a live run has no temp directory.
    """
    cargo_home: Path
    if args.cargo_home is not None:
        cargo_home = args.cargo_home
    elif config.cargo_home:
        cargo_home = Path(config.cargo_home)
    else:
        cargo_home = default_cargo_home()

    # Resolve the temp root before running cargo so a misconfigured live run fails fast.
    temp_root = None if args.dry_run else config.get_temp_root(args.temp)

    metadata = _load_metadata(args)

    deleter: Union[DryRunDeleter, QuarantineDeleter]
    if temp_root is None:
        deleter = DryRunDeleter()
    else:
        deleter = QuarantineDeleter(temp_root)
        logger.info(f"Moving deleted directories into {deleter.holding_dir}")

    if args.mode == MODE_CARGO_CACHE:
        result = clear_cargo_cache(
            metadata, deleter, cargo_home=cargo_home, prune_archives=config.prune_archives
        )
    else:
        result = clear_target(
            metadata,
            deleter,
            cargo_home=cargo_home,
            profile=args.profile or config.profile,
            lock_file_name=config.lock_file_name,
        )

    if isinstance(deleter, QuarantineDeleter):
        if deleter.failures:
            logger.warning(f"{len(deleter.failures)} entries could not be removed")
        if config.purge_quarantine:
            deleter.purge()
    return result


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point.

    Returns:
        Process exit status: 0 on success, 1 on any unrecoverable error.
    """
    args = parse_args(argv)
    setup_logging(log_dir=args.log_dir, log_level=logging.DEBUG if args.verbose else logging.INFO)

    try:
        config = Config(args.config)
        run(args, config)
    except (PrecacheError, ConfigurationError) as e:
        logger.error(str(e))
        return 1
    except OSError as e:
        logger.error(f"Unexpected filesystem error: {e}")
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

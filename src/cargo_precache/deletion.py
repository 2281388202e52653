# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Delete callbacks handed to the sweeps.

- DryRunDeleter: prints each path and changes nothing.
- QuarantineDeleter: unlinks files and moves directories into a holding area
  under a temp root, so a sweep never waits on a large recursive delete and
  never leaves a half-deleted directory behind. The holding area can be
  purged afterwards.

Per-item failures are logged and collected; they never abort the sweep.
"""

import logging
import os
import shutil
import stat
import sys
import time
from pathlib import Path
from typing import List, Optional, Tuple

logger = logging.getLogger(__name__)

_IS_WINDOWS = os.name == "nt"


class DryRunDeleter:
    """Report paths instead of deleting them."""

    def __init__(self, stream=None):
        self.stream = stream
        self.paths: List[Path] = []

    def __call__(self, path: Path) -> None:
        self.paths.append(path)
        print(path, file=self.stream or sys.stdout)


class QuarantineDeleter:
    """Remove paths by unlinking files and relocating directories.

    Directories are renamed into ``<temp_root>/<timestamp ns>/<counter>``.
    The rename must stay on one filesystem; a cross-device rename fails for
    that item only.

    Usage:
        deleter = QuarantineDeleter(Path("/tmp"))
        clear_target(metadata, deleter)
        deleter.purge()
    """

    def __init__(self, temp_root: Path):
        self.temp_root = Path(temp_root)
        self.holding_dir = self.temp_root / str(time.time_ns())
        self.holding_dir.mkdir(parents=True, exist_ok=True)
        self.removed: List[Path] = []
        self.failures: List[Tuple[Path, OSError]] = []
        self._counter = 0

    def __call__(self, path: Path) -> None:
        path = Path(path)
        try:
            if path.is_dir() and not path.is_symlink():
                self._relocate(path)
            elif os.path.lexists(path):
                self._unlink(path)
            else:
                logger.debug(f"{path} is already gone")
                return
        except FileNotFoundError:
            logger.debug(f"{path} disappeared before removal")
            return
        except OSError as e:
            logger.error(f"Failed to remove {path}: {e}")
            self.failures.append((path, e))
            return
        self.removed.append(path)

    def _unlink(self, path: Path) -> None:
        try:
            path.unlink()
        except PermissionError:
            if not _IS_WINDOWS:
                raise
            # Read-only files cannot be unlinked on Windows.
            os.chmod(path, stat.S_IWRITE)
            path.unlink()

    def _next_slot(self) -> Path:
        slot = self.holding_dir / str(self._counter)
        self._counter += 1
        return slot

    def _relocate(self, path: Path) -> None:
        slot = self._next_slot()
        if not _IS_WINDOWS:
            # rename() onto an existing empty directory is only allowed on POSIX
            slot.mkdir()
        try:
            os.rename(path, slot)
        except OSError:
            if slot.is_dir():
                slot.rmdir()
            raise
        logger.debug(f"Moved {path} to {slot}")

    def purge(self) -> Optional[Path]:
        """Remove the holding area, logging anything that cannot be removed.

        Returns:
            The holding directory if anything was left behind, else None.
        """
        if not self.holding_dir.exists():
            return None

        left_behind = False
        for slot in sorted(self.holding_dir.iterdir()):
            try:
                shutil.rmtree(slot)
            except OSError as e:
                left_behind = True
                logger.error(f"Failed to purge {slot}: {e}")

        if left_behind:
            return self.holding_dir
        try:
            self.holding_dir.rmdir()
        except OSError as e:
            logger.error(f"Failed to remove holding area {self.holding_dir}: {e}")
            return self.holding_dir
        logger.debug(f"Purged holding area {self.holding_dir}")
        return None

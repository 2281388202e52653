# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Tests for the dry-run and quarantine delete callbacks."""

import errno
import io
import os
from pathlib import Path
from unittest.mock import patch

import pytest

from cargo_precache.deletion import DryRunDeleter, QuarantineDeleter


class TestDryRunDeleter:
    """Dry runs only report."""

    def test_prints_and_records(self, tmp_path, capsys):
        victim = tmp_path / "file"
        victim.write_text("x")
        deleter = DryRunDeleter()

        deleter(victim)

        assert capsys.readouterr().out == f"{victim}\n"
        assert deleter.paths == [victim]
        assert victim.exists()

    def test_custom_stream(self, tmp_path):
        stream = io.StringIO()
        DryRunDeleter(stream)(tmp_path / "a")
        assert stream.getvalue() == f"{tmp_path / 'a'}\n"


class TestQuarantineDeleter:
    """Real removal by unlinking and relocation."""

    @pytest.fixture
    def deleter(self, tmp_path) -> QuarantineDeleter:
        return QuarantineDeleter(tmp_path / "temp")

    def test_holding_area_created(self, deleter, tmp_path):
        assert deleter.holding_dir.is_dir()
        assert deleter.holding_dir.parent == tmp_path / "temp"
        assert deleter.holding_dir.name.isdigit()

    def test_file_unlinked(self, deleter, tmp_path):
        victim = tmp_path / "libfoo-1.rlib"
        victim.write_bytes(b"")

        deleter(victim)

        assert not victim.exists()
        assert deleter.removed == [victim]
        assert list(deleter.holding_dir.iterdir()) == []

    def test_directory_relocated(self, deleter, tmp_path):
        victim = tmp_path / "serde-1.0.0"
        (victim / "src").mkdir(parents=True)
        (victim / "src" / "lib.rs").write_text("")
        second = tmp_path / "log-0.4.11"
        second.mkdir()

        deleter(victim)
        deleter(second)

        assert not victim.exists()
        assert not second.exists()
        assert (deleter.holding_dir / "0" / "src" / "lib.rs").exists()
        assert (deleter.holding_dir / "1").is_dir()

    def test_symlink_to_directory_unlinked(self, deleter, tmp_path):
        real = tmp_path / "real"
        real.mkdir()
        link = tmp_path / "link"
        try:
            link.symlink_to(real, target_is_directory=True)
        except OSError:
            pytest.skip("symlinks not available")

        deleter(link)

        assert not os.path.lexists(link)
        assert real.is_dir()

    def test_missing_path_is_success(self, deleter, tmp_path):
        deleter(tmp_path / "already-gone")
        assert deleter.failures == []
        assert deleter.removed == []

    def test_cross_device_rename_reported_not_raised(self, deleter, tmp_path):
        victim = tmp_path / "big-dir"
        victim.mkdir()
        cross_device = OSError(errno.EXDEV, "Invalid cross-device link")

        with patch("cargo_precache.deletion.os.rename", side_effect=cross_device):
            deleter(victim)

        assert victim.is_dir()
        assert deleter.failures == [(victim, cross_device)]
        assert list(deleter.holding_dir.iterdir()) == []

    def test_failure_does_not_stop_later_items(self, deleter, tmp_path):
        first = tmp_path / "first"
        first.mkdir()
        second = tmp_path / "second.rlib"
        second.write_bytes(b"")

        with patch("cargo_precache.deletion.os.rename", side_effect=PermissionError("denied")):
            deleter(first)
        deleter(second)

        assert len(deleter.failures) == 1
        assert deleter.removed == [second]

    def test_failure_is_logged(self, deleter, tmp_path, caplog):
        victim = tmp_path / "dir"
        victim.mkdir()
        with patch("cargo_precache.deletion.os.rename", side_effect=OSError("boom")):
            deleter(victim)
        assert any("Failed to remove" in r.message for r in caplog.records)

    def test_read_only_file_on_windows(self, deleter, tmp_path):
        victim = tmp_path / "readonly"
        victim.write_bytes(b"")
        calls = []
        real_unlink = Path.unlink

        def flaky_unlink(self, *args, **kwargs):
            calls.append(self)
            if len(calls) == 1:
                raise PermissionError("read-only")
            return real_unlink(self, *args, **kwargs)

        with patch("cargo_precache.deletion._IS_WINDOWS", True), patch.object(
            Path, "unlink", flaky_unlink
        ), patch("cargo_precache.deletion.os.chmod") as chmod:
            deleter._unlink(victim)

        assert len(calls) == 2
        chmod.assert_called_once()
        assert not victim.exists()

    def test_permission_error_on_posix_is_reported(self, deleter, tmp_path):
        victim = tmp_path / "protected"
        victim.write_bytes(b"")
        with patch("cargo_precache.deletion._IS_WINDOWS", False), patch.object(
            Path, "unlink", side_effect=PermissionError("denied")
        ):
            deleter(victim)
        assert deleter.failures and deleter.failures[0][0] == victim

    def test_purge_removes_holding_area(self, deleter, tmp_path):
        victim = tmp_path / "dir"
        (victim / "nested").mkdir(parents=True)
        deleter(victim)

        assert deleter.purge() is None
        assert not deleter.holding_dir.exists()

    def test_purge_reports_leftovers(self, deleter, tmp_path):
        victim = tmp_path / "dir"
        victim.mkdir()
        deleter(victim)

        with patch("cargo_precache.deletion.shutil.rmtree", side_effect=OSError("busy")):
            assert deleter.purge() == deleter.holding_dir
        assert deleter.holding_dir.exists()

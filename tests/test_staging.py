from __future__ import annotations

import os
import shutil
import time

import pytest

from jpeg2avif.storage.staging import StagingArea


def test_job_dir_is_removed_after_use(staging: StagingArea) -> None:
    with staging.job_dir("job-1") as path:
        with open(os.path.join(path, "original.jpg"), "wb") as fh:
            fh.write(b"x")
        assert os.path.isdir(path)
    assert not os.path.exists(path)


def test_job_dir_is_removed_on_error(staging: StagingArea) -> None:
    with pytest.raises(RuntimeError):
        with staging.job_dir("job-2") as path:
            raise RuntimeError("stage failed")
    assert not os.path.exists(path)


def test_cleanup_expired_only_removes_stale_dirs(staging: StagingArea) -> None:
    stale = os.path.join(staging.base_dir, "stale-job")
    fresh = os.path.join(staging.base_dir, "fresh-job")
    os.makedirs(stale)
    os.makedirs(fresh)
    three_hours_ago = time.time() - 3 * 3600
    os.utime(stale, (three_hours_ago, three_hours_ago))

    assert staging.cleanup_expired() == 1
    assert not os.path.exists(stale)
    assert os.path.isdir(fresh)


def test_job_dir_survives_a_late_writer(staging: StagingArea, monkeypatch: pytest.MonkeyPatch) -> None:
    real_rmtree = shutil.rmtree
    calls = []

    def racing_rmtree(path, ignore_errors=False):
        calls.append(path)
        real_rmtree(path, ignore_errors=ignore_errors)
        if len(calls) == 1:
            # A still-running metadata thread drops its temp file after the sweep
            os.makedirs(path, exist_ok=True)
            with open(os.path.join(path, "variant.avif_exiftool_tmp"), "wb") as fh:
                fh.write(b"x")

    monkeypatch.setattr(shutil, "rmtree", racing_rmtree)

    with staging.job_dir("job-3") as path:
        pass

    assert len(calls) == 2
    assert not os.path.exists(path)

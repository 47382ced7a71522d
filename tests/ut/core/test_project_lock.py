"""项目级咨询锁测试"""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from modkit.core.exceptions import ProjectLockedError
from modkit.utils.project_lock import ProjectLock


class TestProjectLock:
    def test_acquire_release(self, tmp_path: Path) -> None:
        lock = ProjectLock(tmp_path / ".modkit.pid")
        with lock:
            assert lock.held
            assert (tmp_path / ".modkit.pid").read_text(encoding="utf-8") == str(os.getpid())
        assert not lock.held
        assert not (tmp_path / ".modkit.pid").exists()

    def test_second_holder_fails_fast(self, tmp_path: Path) -> None:
        with ProjectLock(tmp_path / ".modkit.pid"):
            with pytest.raises(ProjectLockedError, match="其他进程"):
                ProjectLock(tmp_path / ".modkit.pid").acquire()

    def test_not_reentrant(self, tmp_path: Path) -> None:
        lock = ProjectLock(tmp_path / ".modkit.pid")
        with lock:
            with pytest.raises(ProjectLockedError):
                lock.acquire()

    def test_stale_lock_reclaimed(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        path = tmp_path / ".modkit.pid"
        path.write_text("999999", encoding="utf-8")
        monkeypatch.setattr("modkit.utils.project_lock._pid_alive", lambda pid: False)
        with ProjectLock(path) as lock:
            assert lock.held
            assert path.read_text(encoding="utf-8") == str(os.getpid())

    def test_unreadable_owner_treated_as_held(self, tmp_path: Path) -> None:
        path = tmp_path / ".modkit.pid"
        path.write_text("", encoding="utf-8")
        with pytest.raises(ProjectLockedError):
            ProjectLock(path).acquire()

    def test_release_when_not_held_is_noop(self, tmp_path: Path) -> None:
        ProjectLock(tmp_path / ".modkit.pid").release()

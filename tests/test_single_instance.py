import os

import psutil
import pytest

from posbridge.single_instance import SingleInstance, check_single_instance


def test_acquire_writes_pid_and_release_removes_it(tmp_path):
    lock = SingleInstance(str(tmp_path / "locks"), "posbridge")
    assert lock.acquire() is True
    with open(lock.lock_path, encoding="utf-8") as handle:
        assert handle.read() == str(os.getpid())

    lock.release()
    assert not os.path.exists(lock.lock_path)


def test_live_process_holds_lock(tmp_path):
    lock_path = tmp_path / "posbridge.pid"
    lock_path.write_text(str(os.getppid()), encoding="utf-8")

    assert SingleInstance(str(tmp_path)).acquire() is False
    with pytest.raises(SystemExit):
        check_single_instance(str(tmp_path))


def test_stale_lock_taken_over(tmp_path, monkeypatch):
    lock_path = tmp_path / "posbridge.pid"
    lock_path.write_text("424242", encoding="utf-8")

    def no_such_process(pid):
        raise psutil.NoSuchProcess(pid)

    monkeypatch.setattr(psutil, "Process", no_such_process)
    monkeypatch.setattr(psutil, "pid_exists", lambda pid: False)

    lock = SingleInstance(str(tmp_path))
    assert lock.acquire() is True
    assert lock_path.read_text(encoding="utf-8") == str(os.getpid())


def test_release_leaves_foreign_lock(tmp_path):
    lock = SingleInstance(str(tmp_path))
    assert lock.acquire() is True
    with open(lock.lock_path, "w", encoding="utf-8") as handle:
        handle.write("1")

    lock.release()
    assert os.path.exists(lock.lock_path)

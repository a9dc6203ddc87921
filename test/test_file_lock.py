# test/test_file_lock.py

"""
Tests for storage/file_lock.py

We care about the lock-file contract:
- the marker `<target>.lock` exists exactly while the lock is held
- a second acquirer waits, then times out with LockTimeoutError
- release is idempotent and only removes our own marker
- stale markers are reaped only when reaping is enabled
- ownership is per thread, also on a shared FileLock
"""

import os
import threading
import time

import pytest

from storage.file_lock import FileLock, LockTimeoutError


def _lock_path(tmp_path):
    return tmp_path / "flags.json.lock"


def _hold_in_thread(tmp_path, seconds):
    """Take the lock on a background thread and keep it for `seconds`."""
    acquired = threading.Event()

    def run():
        with FileLock(tmp_path / "flags.json"):
            acquired.set()
            time.sleep(seconds)

    holder = threading.Thread(target=run)
    holder.start()
    acquired.wait()
    return holder


# --------- acquire / release ---------


def test_acquire_creates_marker_with_pid(tmp_path):
    lock = FileLock(tmp_path / "flags.json")
    lock.acquire()

    marker = _lock_path(tmp_path)
    assert marker.exists()
    assert marker.read_text().startswith(f"{os.getpid()}:")
    assert lock.is_held

    assert lock.release() is True
    assert not marker.exists()
    assert not lock.is_held


def test_release_is_idempotent(tmp_path):
    lock = FileLock(tmp_path / "flags.json")
    lock.acquire()

    assert lock.release() is True
    # Second release: marker already gone, no error.
    assert lock.release() is False


def test_context_manager_releases_on_exception(tmp_path):
    lock = FileLock(tmp_path / "flags.json")

    with pytest.raises(ValueError, match="boom"):
        with lock:
            assert _lock_path(tmp_path).exists()
            raise ValueError("boom")

    assert not _lock_path(tmp_path).exists()


def test_release_does_not_remove_someone_elses_marker(tmp_path):
    holder = FileLock(tmp_path / "flags.json")
    other = FileLock(tmp_path / "flags.json")
    holder.acquire()

    assert other.release() is False
    assert _lock_path(tmp_path).exists()

    assert holder.release() is True


# --------- contention ---------


def test_acquire_times_out_while_marker_is_held(tmp_path):
    """
    Marker held for 1s, waiter has a 300ms timeout: the waiter must fail
    with LockTimeoutError after roughly its own timeout, not the hold time.
    """
    holder = _hold_in_thread(tmp_path, 1.0)

    waiter = FileLock(tmp_path / "flags.json", timeout_ms=300)
    start = time.monotonic()
    try:
        with pytest.raises(LockTimeoutError):
            waiter.acquire()
        elapsed = time.monotonic() - start
    finally:
        holder.join()

    assert 0.3 <= elapsed < 1.0
    assert not waiter.is_held


def test_acquire_waits_until_release(tmp_path):
    holder = _hold_in_thread(tmp_path, 0.3)

    waiter = FileLock(tmp_path / "flags.json", timeout_ms=3000)
    start = time.monotonic()
    waiter.acquire()
    elapsed = time.monotonic() - start
    holder.join()

    assert elapsed >= 0.2
    assert waiter.is_held
    waiter.release()


def test_lock_is_not_reentrant(tmp_path):
    lock = FileLock(tmp_path / "flags.json", timeout_ms=200)
    lock.acquire()

    with pytest.raises(LockTimeoutError):
        lock.acquire()


def test_timeout_error_is_a_timeout_error(tmp_path):
    holder = FileLock(tmp_path / "flags.json")
    holder.acquire()

    waiter = FileLock(tmp_path / "flags.json", timeout_ms=0, poll_interval_ms=10)
    with pytest.raises(TimeoutError) as exc_info:
        waiter.acquire()

    assert exc_info.value.lock_path == _lock_path(tmp_path)
    holder.release()


# --------- stale markers ---------


def _write_old_marker(tmp_path, age_seconds):
    marker = _lock_path(tmp_path)
    marker.write_text("99999:crashed")
    old = time.time() - age_seconds
    os.utime(marker, (old, old))
    return marker


def test_stale_marker_is_reaped_when_enabled(tmp_path):
    _write_old_marker(tmp_path, age_seconds=120)

    lock = FileLock(tmp_path / "flags.json", timeout_ms=200, stale_after_ms=60_000)
    lock.acquire()

    assert lock.is_held
    assert not _lock_path(tmp_path).read_text().startswith("99999:")
    lock.release()


def test_fresh_marker_is_not_reaped(tmp_path):
    _write_old_marker(tmp_path, age_seconds=1)

    lock = FileLock(tmp_path / "flags.json", timeout_ms=200, stale_after_ms=60_000)
    with pytest.raises(LockTimeoutError):
        lock.acquire()

    assert _lock_path(tmp_path).read_text() == "99999:crashed"


def test_stale_marker_is_kept_when_reaping_disabled(tmp_path):
    _write_old_marker(tmp_path, age_seconds=120)

    lock = FileLock(tmp_path / "flags.json", timeout_ms=200)
    with pytest.raises(LockTimeoutError):
        lock.acquire()


# --------- shared instance across threads ---------


def test_shared_lock_tracks_ownership_per_thread(tmp_path):
    """
    One FileLock used by two threads. The main thread's marker goes stale
    and the worker reaps it and takes the lock. The main thread's late
    release must not remove the worker's marker.
    """
    lock = FileLock(tmp_path / "flags.json", timeout_ms=1000, poll_interval_ms=10, stale_after_ms=60_000)
    lock.acquire()
    old = time.time() - 120
    os.utime(_lock_path(tmp_path), (old, old))

    taken = threading.Event()
    done = threading.Event()
    results = {}

    def worker():
        lock.acquire()
        results["worker_held"] = lock.is_held
        taken.set()
        done.wait(5)
        results["worker_release"] = lock.release()

    t = threading.Thread(target=worker)
    t.start()
    assert taken.wait(5)

    worker_marker = _lock_path(tmp_path).read_text()
    assert lock.is_held  # still true for the main thread's own view
    assert lock.release() is False
    assert _lock_path(tmp_path).read_text() == worker_marker

    done.set()
    t.join()

    assert results == {"worker_held": True, "worker_release": True}
    assert not _lock_path(tmp_path).exists()


def test_is_held_is_per_thread(tmp_path):
    lock = FileLock(tmp_path / "flags.json")
    lock.acquire()
    seen = []

    t = threading.Thread(target=lambda: seen.append(lock.is_held))
    t.start()
    t.join()

    assert seen == [False]
    assert lock.is_held
    lock.release()

"""
Single instance enforcement for POS Bridge.

This module ensures only one bridge (or printer server) runs per data
directory using a PID lock file. A lock file left behind by a crashed
process is detected with psutil and taken over.
"""

import os
import sys
import logging
from typing import Optional

import psutil

logger = logging.getLogger(__name__)


class SingleInstance:
    """
    Ensures only one instance of the application runs.
    Uses a PID lock file checked against the live process table.
    """

    def __init__(self, lock_dir: str, app_name: str = "posbridge"):
        """
        Initialize the single instance manager.

        Args:
            lock_dir: Directory holding the lock file (created if absent)
            app_name: Unique name for the lock file
        """
        self.lock_dir = lock_dir
        self.lock_path = os.path.join(lock_dir, f"{app_name}.pid")
        self.acquired = False

    def _read_pid(self) -> Optional[int]:
        try:
            with open(self.lock_path, 'r', encoding='utf-8') as handle:
                return int(handle.read().strip())
        except (OSError, ValueError):
            return None

    def _is_running(self, pid: int) -> bool:
        if pid == os.getpid():
            return False
        try:
            proc = psutil.Process(pid)
            return proc.is_running() and proc.status() != psutil.STATUS_ZOMBIE
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            return psutil.pid_exists(pid)

    def acquire(self) -> bool:
        """
        Try to acquire the single instance lock.

        Returns:
            bool: True if this is the only instance, False if another exists
        """
        os.makedirs(self.lock_dir, exist_ok=True)

        pid = self._read_pid()
        if pid is not None and self._is_running(pid):
            logger.error(f"Another instance is already running (pid {pid}, lock {self.lock_path})")
            return False
        if pid is not None:
            logger.warning(f"Removing stale lock file from pid {pid}")

        with open(self.lock_path, 'w', encoding='utf-8') as handle:
            handle.write(str(os.getpid()))

        self.acquired = True
        logger.info("Successfully acquired single instance lock")
        return True

    def release(self):
        """Remove the lock file on shutdown if this process owns it."""
        if not self.acquired:
            return
        try:
            if self._read_pid() == os.getpid():
                os.remove(self.lock_path)
                logger.info("Released single instance lock")
        except OSError as e:
            logger.error(f"Error releasing lock file: {e}")
        self.acquired = False


def check_single_instance(lock_dir: str, app_name: str = "posbridge") -> SingleInstance:
    """
    Check if another instance is running and exit if so.

    Args:
        lock_dir: Directory holding the lock file
        app_name: Unique name for the application

    Returns:
        SingleInstance: Instance lock (release on shutdown)

    Raises:
        SystemExit: If another instance is already running
    """
    instance_lock = SingleInstance(lock_dir, app_name)

    if not instance_lock.acquire():
        print("=" * 60)
        print("ERROR: Another instance is already running!")
        print("=" * 60)
        print(f"Lock file: {instance_lock.lock_path}")
        print("Please stop the existing instance before starting a new one.")
        sys.exit(1)

    return instance_lock

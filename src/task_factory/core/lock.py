"""Process-wide run lock: a pid file whose owner must still be alive to count."""

import atexit
import logging
import os
import signal
import tempfile
from pathlib import Path

logger = logging.getLogger(__name__)


def is_pid_alive(pid: int | None) -> bool:
    """Check if a process is still running."""
    if pid is None or pid <= 0:
        return False
    try:
        os.kill(pid, 0)
        return True
    except ProcessLookupError:
        return False
    except PermissionError:
        return True  # Process exists but we can't signal it


class RunLock:
    """Pid-file lock guarding the single active run."""

    def __init__(self, pid_file: Path):
        self.pid_file = Path(pid_file)
        self.held = False

    def holder(self) -> int | None:
        """Pid recorded in the lock file, if the file is readable."""
        try:
            return int(self.pid_file.read_text().strip())
        except (FileNotFoundError, ValueError):
            return None

    def acquire(self) -> bool:
        """Take the lock, returning False if another live process holds it.

        The pid file is written in full to a temporary file and then hard-linked
        into place, so creation is atomic and a reader never sees a partial pid.
        A stale file is removed and creation retried once.
        """
        self.pid_file.parent.mkdir(parents=True, exist_ok=True)
        for _ in range(2):
            if self._create():
                self.held = True
                atexit.register(self.release)
                return True
            old_pid = self.holder()
            if old_pid == os.getpid():
                self.held = True
                return True
            if old_pid is not None and is_pid_alive(old_pid):
                logger.warning("another instance is running (pid %s)", old_pid)
                return False
            logger.info("removing stale lock from pid %s", old_pid)
            self.pid_file.unlink(missing_ok=True)
        logger.warning("could not take %s", self.pid_file)
        return False

    def _create(self) -> bool:
        fd, tmp = tempfile.mkstemp(dir=self.pid_file.parent, prefix=".lock-")
        try:
            with os.fdopen(fd, "w") as f:
                f.write(f"{os.getpid()}\n")
            os.link(tmp, self.pid_file)
            return True
        except FileExistsError:
            return False
        finally:
            os.unlink(tmp)

    def release(self) -> None:
        if not self.held:
            return
        if self.holder() == os.getpid():
            try:
                self.pid_file.unlink(missing_ok=True)
            except OSError:
                logger.warning("could not remove %s", self.pid_file)
        self.held = False

    def install_signal_handlers(self) -> None:
        """Release the lock before exiting on SIGTERM."""

        def _handle_signal(signum, frame):
            self.release()
            logger.info("received signal %s, exiting", signum)
            raise SystemExit(128 + signum)

        signal.signal(signal.SIGTERM, _handle_signal)

    def __enter__(self) -> "RunLock":
        return self

    def __exit__(self, *exc) -> None:
        self.release()

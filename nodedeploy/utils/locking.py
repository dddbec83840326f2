"""Host-wide lock so two deployments never interleave on one machine."""

import fcntl
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from nodedeploy.exceptions import EnvironmentCheckError


@contextmanager
def deployment_lock(lock_path: Path) -> Iterator[Path]:
    """
    Hold an exclusive, non-blocking flock for the duration of the block.

    Raises:
        EnvironmentCheckError: If another nodedeploy process holds the lock
    """
    lock_path = Path(lock_path)
    lock_path.parent.mkdir(parents=True, exist_ok=True)

    with open(lock_path, "a+") as lock_file:
        try:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            raise EnvironmentCheckError(
                "Another nodedeploy operation is already running on this host",
                context=f"Lock file: {lock_path}",
            )

        lock_file.seek(0)
        lock_file.truncate()
        lock_file.write(f"{os.getpid()}\n")
        lock_file.flush()
        try:
            yield lock_path
        finally:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)

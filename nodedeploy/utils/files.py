"""File helpers: atomic writes with explicit modes and temp file tracking."""

import os
import stat
import tempfile
from pathlib import Path
from typing import List, Optional

from nodedeploy.constants import SECRET_FILE_MODE


def write_file(path: Path, content: str, mode: int = SECRET_FILE_MODE) -> Path:
    """
    Write ``content`` to ``path`` atomically with the given permissions.

    The file is written next to its destination, chmodded, then renamed into
    place, so readers never see a partial file or a too-open mode.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.")
    try:
        with os.fdopen(fd, "w") as f:
            f.write(content)
        os.chmod(tmp_name, mode)
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise

    return path


def file_mode(path: Path) -> int:
    """Permission bits of ``path``."""
    return stat.S_IMODE(Path(path).stat().st_mode)


class TempFileRegistry:
    """Remembers temp files so every exit path can remove them."""

    def __init__(self, temp_dir: Optional[Path] = None):
        self.temp_dir = Path(temp_dir) if temp_dir else Path(tempfile.gettempdir())
        self.paths: List[Path] = []

    def new_path(self, name: str) -> Path:
        """Reserve a unique temp path and register it."""
        self.temp_dir.mkdir(parents=True, exist_ok=True)
        path = self.temp_dir / f"{name}.{os.getpid()}.{len(self.paths)}"
        self.register(path)
        return path

    def register(self, path: Path) -> Path:
        self.paths.append(Path(path))
        return path

    def cleanup(self) -> List[Path]:
        """Delete every registered file that still exists."""
        removed = []
        for path in self.paths:
            if path.exists():
                path.unlink()
                removed.append(path)
        self.paths = []
        return removed

"""Low-level helpers for reading and replacing files."""

import os
from pathlib import Path
from tempfile import mkstemp


def atomic_write(path: Path, data: bytes) -> None:
    """Replaces the file at ``path`` with ``data``.

    The data is written to a temporary file in the same directory, which is then renamed over the target,
    so readers see either the old contents or the new contents and never a partial write.
    """
    path = Path(path)
    fd, tmp = mkstemp(prefix=f'.{path.name}.', suffix='.tmp', dir=str(path.parent))
    try:
        with os.fdopen(fd, 'wb') as file:
            file.write(data)
        os.replace(tmp, str(path))
    except BaseException:
        if os.path.exists(tmp):
            os.remove(tmp)
        raise


def atomic_write_text(path: Path, text: str) -> None:
    atomic_write(path, text.encode('utf-8'))


def read_text(path: Path) -> str:
    """Reads a UTF-8 file without translating line endings."""
    with open(path, 'r', encoding='utf-8', newline='') as file:
        return file.read()

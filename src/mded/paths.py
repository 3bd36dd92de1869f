"""Confines user-supplied names to a base directory."""

import os.path
from pathlib import Path
from typing import Union

from mded.errors import ValidationError

FORBIDDEN_TOKENS = [
    ('..', "Path contains invalid traversal pattern '..'"),
    ('/', "Path contains invalid separator '/'"),
    ('\\', "Path contains invalid separator '\\'"),
]


def _is_within(path: Path, base: Path) -> bool:
    return path == base or base in path.parents


def validate_path(base_dir: Union[str, Path], relative_path: str) -> Path:
    """Returns the path for ``relative_path`` inside ``base_dir``, or raises :exc:`ValidationError`.

    Names containing ``..``, ``/`` or ``\\`` are rejected before the filesystem is consulted.

    If the joined path exists, both it and ``base_dir`` are resolved (following symlinks) and the resolved
    target must lie inside the resolved base; the resolved path is returned. A path that does not exist yet
    cannot be resolved, so it is only checked textually against ``base_dir`` and returned unresolved.
    """
    for token, message in FORBIDDEN_TOKENS:
        if token in relative_path:
            raise ValidationError(message)

    base_dir = Path(base_dir)
    full_path = base_dir / relative_path

    if os.path.exists(full_path):
        canonical_base = Path(os.path.realpath(base_dir))
        resolved = Path(os.path.realpath(full_path))
        if not _is_within(resolved, canonical_base):
            raise ValidationError('Path resolves outside of base directory')
        return resolved

    if not _is_within(full_path, base_dir):
        raise ValidationError('Path resolves outside of base directory')
    return full_path

"""Defines the records passed in and out of the stores.

The most important classes are :class:`NoteInfo` and :class:`Config`.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional


@dataclass
class FolderInfo:
    """A folder shown in the folder list.

    The virtual "All Notes" folder has an empty :attr:`path`; real folders use their directory name.
    """

    name: str
    path: str

    def as_json(self) -> dict:
        return {'name': self.name, 'path': self.path}


@dataclass
class NoteInfo:
    """Details about a note file, gathered from its contents and filesystem metadata."""

    id: str
    """The filename without the ``.md`` extension."""

    title: str
    """Taken from the note's contents; falls back to the id."""

    modified: datetime

    created: datetime
    """The file's birth time where the platform reports one, otherwise the same as :attr:`modified`."""

    folder: str
    """Name of the containing folder, or the empty string for notes in the notes root."""

    pinned: bool = False

    def as_json(self) -> dict:
        """Returns a dict representing the instance, suitable for serializing as json."""
        return {
            'id': self.id,
            'title': self.title,
            'modified': self.modified.isoformat(),
            'created': self.created.isoformat(),
            'folder': self.folder,
            'pinned': self.pinned,
        }


@dataclass
class WindowBounds:
    """Size and optional position of a window, in physical pixels."""

    width: int = 1200
    height: int = 800
    x: Optional[int] = None
    y: Optional[int] = None

    def as_json(self) -> dict:
        return {'width': self.width, 'height': self.height, 'x': self.x, 'y': self.y}


def _minimal_mode_bounds() -> WindowBounds:
    return WindowBounds(width=400, height=300)


@dataclass
class Config:
    """Application configuration. Every field always has a value; see :mod:`mded.settings` for loading."""

    global_shortcut: str = 'CommandOrControl+Shift+N'
    clipboard_shortcut: str = 'CommandOrControl+Alt+V'
    quick_note_shortcut: str = 'CommandOrControl+Alt+N'
    window_bounds: WindowBounds = field(default_factory=WindowBounds)
    last_note_id: Optional[str] = None
    last_folder: Optional[str] = None
    pinned_notes: List[str] = field(default_factory=list)
    minimal_mode_bounds: WindowBounds = field(default_factory=_minimal_mode_bounds)
    window_opacity: float = 1.0
    """Always within [0.3, 1.0]."""
    auto_start_on_boot: bool = False

    def as_json(self) -> dict:
        """Returns a dict in the layout of the configuration file."""
        return {
            'global_shortcut': self.global_shortcut,
            'clipboard_shortcut': self.clipboard_shortcut,
            'quick_note_shortcut': self.quick_note_shortcut,
            'window_bounds': self.window_bounds.as_json(),
            'last_note_id': self.last_note_id,
            'last_folder': self.last_folder,
            'pinned_notes': list(self.pinned_notes),
            'minimal_mode_bounds': self.minimal_mode_bounds.as_json(),
            'window_opacity': self.window_opacity,
            'auto_start_on_boot': self.auto_start_on_boot,
        }


@dataclass
class LastNote:
    note_id: Optional[str] = None
    folder: Optional[str] = None

    def as_json(self) -> dict:
        return {'noteId': self.note_id, 'folder': self.folder}


@dataclass
class ApiResult:
    """Uniform envelope for reporting the outcome of a command to a caller.

    Only :attr:`success` is always present; the other fields are filled in depending on the command.
    """

    success: bool
    error: Optional[str] = None
    content: Optional[str] = None
    note_id: Optional[str] = None
    folder: Optional[str] = None
    image_path: Optional[str] = None
    image_id: Optional[str] = None
    file_name: Optional[str] = None
    file_path: Optional[str] = None
    pinned: Optional[bool] = None
    opacity: Optional[float] = None

    @classmethod
    def ok(cls, **kwargs) -> ApiResult:
        return cls(success=True, **kwargs)

    @classmethod
    def failure(cls, message: str) -> ApiResult:
        return cls(success=False, error=message)

    def as_json(self) -> dict:
        """Returns a dict with camelCase keys, omitting fields that are None."""
        fields = {
            'success': self.success,
            'error': self.error,
            'content': self.content,
            'noteId': self.note_id,
            'folder': self.folder,
            'imagePath': self.image_path,
            'imageId': self.image_id,
            'fileName': self.file_name,
            'filePath': self.file_path,
            'pinned': self.pinned,
            'opacity': self.opacity,
        }
        return {k: v for k, v in fields.items() if v is not None}

"""Provides :class:`DocumentStore`, the directory-backed storage for notes, folders and screenshots."""

from __future__ import annotations
import base64
import binascii
from datetime import datetime, timedelta, timezone
import json
import logging
import os
import os.path
from pathlib import Path
import re
import shutil
from typing import Dict, List, Optional, Tuple
import uuid

import yaml

from mded.errors import ConflictError, DecodeError, NotFoundError, StorageError, ValidationError
from mded.files import atomic_write, atomic_write_text, read_text
from mded.models import FolderInfo, NoteInfo
from mded.paths import validate_path
from mded.settings import merge_config_with_defaults, serialize_config

logger = logging.getLogger(__name__)

ALL_NOTES = 'All Notes'
"""Name of the virtual folder that shows notes from every folder. Its path identifier is the empty string."""

TRASH = 'Trash'
PROTECTED_NAMES = frozenset([ALL_NOTES, TRASH])

NOTE_SUFFIX = '.md'
DEFAULT_NOTE_CONTENT = '# New Note\n\n'

YAML_META_RE = re.compile(r'(?ms)(\A---\r?\n(.*?)\r?\n(---|\.\.\.)\s*\r?\n)?(.*)')


def is_protected_name(name: str) -> bool:
    return name in PROTECTED_NAMES


def is_root_folder(folder: Optional[str]) -> bool:
    """True for every identifier that means the notes root: None, the empty string, and "All Notes"."""
    return folder is None or folder == '' or folder == ALL_NOTES


def extract_title(doc: str) -> Optional[str]:
    """Returns the title of a note, or None if it has none.

    If the note begins with a YAML metadata block containing a string ``title``, that is used. Otherwise the title
    is the first non-blank line after any metadata block, without its leading ``#`` characters.
    """
    match = YAML_META_RE.match(doc)
    body = doc
    if match.group(1):
        try:
            meta = yaml.safe_load(match.group(2))
        except yaml.YAMLError:
            meta = None
        if isinstance(meta, dict):
            title = meta.get('title')
            if isinstance(title, str) and title.strip():
                return title.strip()
            body = match.group(4)
    for line in body.splitlines():
        if line.strip():
            title = line.strip().lstrip('#').strip()
            return title or None
    return None


def _timestamp(seconds: float) -> datetime:
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


class DocumentStore:
    """Reads and writes notes stored as markdown files in a directory tree.

    The layout under :attr:`base_dir` is:

    * ``notes/`` - notes in the root, plus one level of folders containing more notes
    * ``assets/`` - saved screenshots
    * ``config.json`` - the application configuration (see :class:`mded.settings.ConfigStore`)
    * ``note-order.json`` - custom ordering of notes per folder

    Every folder name and note id passed in is checked with :func:`mded.paths.validate_path` before anything
    on disk is changed. The store keeps no state in memory, so separate instances pointed at the same directory
    see each other's changes.

    .. attribute:: base_dir
       :type: pathlib.Path
    """

    def __init__(self, base_dir):
        self.base_dir = Path(base_dir)
        self.notes_dir = self.base_dir / 'notes'
        self.assets_dir = self.base_dir / 'assets'
        self.config_file = self.base_dir / 'config.json'
        self.order_file = self.base_dir / 'note-order.json'

    def ensure_directories(self) -> None:
        """Creates the base, notes and assets directories if they are missing."""
        for path in (self.base_dir, self.notes_dir, self.assets_dir):
            try:
                path.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise StorageError(f'Failed to create directory {path}: {e}', e) from e

    # Folders

    def _validate_folder(self, name: str) -> Path:
        path = validate_path(self.notes_dir, name)
        if path == self.notes_dir or path == Path(os.path.realpath(self.notes_dir)):
            raise ValidationError(f"'{name}' is not a valid folder name")
        return path

    def _folder_dir(self, folder: Optional[str]) -> Path:
        if is_root_folder(folder):
            return self.notes_dir
        return self._validate_folder(folder)

    def _check_folder_name(self, name: str, protected_message: str) -> Path:
        if not name.strip():
            raise ValidationError('Folder name cannot be empty or whitespace only')
        if is_protected_name(name):
            raise ValidationError(protected_message.format(name))
        return self._validate_folder(name)

    def _subdirectories(self) -> List[Path]:
        try:
            with os.scandir(self.notes_dir) as entries:
                return [Path(entry.path) for entry in entries if entry.is_dir()]
        except OSError as e:
            raise StorageError(f'Failed to read notes directory: {e}', e) from e

    def list_folders(self) -> List[FolderInfo]:
        """Returns the virtual "All Notes" folder followed by every folder, in directory enumeration order."""
        folders = [FolderInfo(ALL_NOTES, '')]
        folders.extend(FolderInfo(path.name, path.name) for path in self._subdirectories())
        return folders

    def create_folder(self, name: str) -> None:
        path = self._check_folder_name(name, "'{}' is a protected folder name")
        if path.exists():
            raise ConflictError(f"Folder '{name}' already exists")
        try:
            path.mkdir()
        except FileExistsError as e:
            raise ConflictError(f"Folder '{name}' already exists", e) from e
        except OSError as e:
            raise StorageError(f"Failed to create folder '{name}': {e}", e) from e
        logger.debug('Created folder %s', path)

    def delete_folder(self, name: str) -> None:
        """Deletes a folder and every note in it."""
        path = self._check_folder_name(name, "Cannot delete protected folder '{}'")
        if not path.exists():
            raise NotFoundError(f"Folder '{name}' does not exist")
        if not path.is_dir():
            raise NotFoundError(f"'{name}' is not a folder")
        try:
            shutil.rmtree(path)
        except OSError as e:
            raise StorageError(f"Failed to delete folder '{name}': {e}", e) from e
        logger.debug('Deleted folder %s', path)

    def rename_folder(self, old_name: str, new_name: str) -> None:
        old_path = self._check_folder_name(old_name, "Cannot rename protected folder '{}'")
        new_path = self._check_folder_name(new_name, "Cannot rename to protected name '{}'")
        if not old_path.exists():
            raise NotFoundError(f"Folder '{old_name}' does not exist")
        if not old_path.is_dir():
            raise NotFoundError(f"'{old_name}' is not a folder")
        if new_path.exists():
            raise ConflictError(f"Folder '{new_name}' already exists")
        try:
            os.rename(old_path, new_path)
        except OSError as e:
            raise StorageError(f"Failed to rename folder '{old_name}' to '{new_name}': {e}", e) from e
        logger.debug('Renamed folder %s to %s', old_path, new_path)

    # Notes

    def _note_path(self, note_id: str, folder: Optional[str]) -> Path:
        if not note_id.strip():
            raise ValidationError('Note id cannot be empty or whitespace only')
        return validate_path(self._folder_dir(folder), note_id + NOTE_SUFFIX)

    def _note_info(self, path: Path, folder: str, pinned_notes: List[str]) -> Optional[NoteInfo]:
        """Returns None if the note was deleted after the folder was scanned."""
        note_id = path.name[:-len(NOTE_SUFFIX)]
        try:
            stat = path.stat()
        except FileNotFoundError:
            logger.debug('Note %s disappeared while listing', path)
            return None
        except OSError as e:
            raise StorageError(f"Failed to read metadata for '{path.name}': {e}", e) from e
        modified = _timestamp(stat.st_mtime)
        birthtime = getattr(stat, 'st_birthtime', None)
        created = _timestamp(birthtime) if birthtime else modified
        try:
            title = extract_title(read_text(path))
        except (OSError, UnicodeDecodeError):
            title = None
        return NoteInfo(id=note_id,
                        title=title or note_id,
                        modified=modified,
                        created=created,
                        folder=folder,
                        pinned=note_id in pinned_notes)

    def list_notes(self, folder: Optional[str] = None) -> List[NoteInfo]:
        """Returns info for the notes in a folder, or in every folder if ``folder`` is None, "" or "All Notes".

        Pinned notes come first; within the pinned and unpinned groups, the most recently modified notes come first.
        """
        if is_root_folder(folder):
            dirs = [(self.notes_dir, '')] + [(path, path.name) for path in self._subdirectories()]
        else:
            path = self._validate_folder(folder)
            if not path.is_dir():
                raise NotFoundError(f"Folder '{folder}' does not exist")
            dirs = [(path, folder)]

        pinned_notes = self._pinned_notes_for_listing()
        notes = []
        for dirpath, folder_name in dirs:
            try:
                with os.scandir(dirpath) as entries:
                    paths = [Path(e.path) for e in entries if e.name.endswith(NOTE_SUFFIX) and e.is_file()]
            except OSError as e:
                raise StorageError(f"Failed to read folder '{folder_name}': {e}", e) from e
            for path in paths:
                info = self._note_info(path, folder_name, pinned_notes)
                if info is not None:
                    notes.append(info)

        notes.sort(key=lambda n: (not n.pinned, -n.modified.timestamp(), n.id))
        return notes

    def read_note(self, note_id: str, folder: Optional[str] = None) -> str:
        path = self._note_path(note_id, folder)
        if not path.is_file():
            raise NotFoundError(f"Note '{note_id}' does not exist")
        try:
            return read_text(path)
        except (OSError, UnicodeDecodeError) as e:
            raise StorageError(f"Failed to read note '{note_id}': {e}", e) from e

    def save_note(self, note_id: str, content: str, folder: Optional[str] = None) -> None:
        """Replaces the whole content of a note, creating the note and its folder if needed."""
        path = self._note_path(note_id, folder)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            atomic_write_text(path, content)
        except OSError as e:
            raise StorageError(f"Failed to save note '{note_id}': {e}", e) from e
        logger.debug('Saved note %s', path)

    def create_note(self, folder: Optional[str] = None) -> Tuple[str, str]:
        """Creates a note with a generated id and default content. Returns the id and the note's absolute path."""
        note_id = f'note-{uuid.uuid4()}'
        path = self._note_path(note_id, folder)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            atomic_write_text(path, DEFAULT_NOTE_CONTENT)
        except OSError as e:
            raise StorageError(f'Failed to create note: {e}', e) from e
        logger.debug('Created note %s', path)
        return note_id, str(path.absolute())

    def delete_note(self, note_id: str, folder: Optional[str] = None) -> None:
        path = self._note_path(note_id, folder)
        if not path.is_file():
            raise NotFoundError(f"Note '{note_id}' does not exist")
        try:
            os.remove(path)
        except OSError as e:
            raise StorageError(f"Failed to delete note '{note_id}': {e}", e) from e
        logger.debug('Deleted note %s', path)

    def rename_note(self, note_id: str, new_name: str, folder: Optional[str] = None) -> str:
        """Renames a note within its folder and returns the new id."""
        old_path = self._note_path(note_id, folder)
        new_path = self._note_path(new_name, folder)
        if not old_path.is_file():
            raise NotFoundError(f"Note '{note_id}' does not exist")
        if new_path.exists():
            raise ConflictError(f"Note '{new_name}' already exists")
        try:
            os.rename(old_path, new_path)
        except OSError as e:
            raise StorageError(f"Failed to rename note '{note_id}' to '{new_name}': {e}", e) from e
        logger.debug('Renamed note %s to %s', old_path, new_path)
        return new_name

    def move_note(self, note_id: str, from_folder: str, to_folder: str) -> None:
        """Moves a note between folders, creating the destination folder if needed."""
        source = self._note_path(note_id, from_folder)
        target = self._note_path(note_id, to_folder)
        if not source.is_file():
            raise NotFoundError(f"Note '{note_id}' does not exist in folder '{from_folder}'")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f'Failed to create target folder: {e}', e) from e
        if target.exists():
            raise ConflictError(f"Note '{note_id}' already exists in folder '{to_folder}'")
        try:
            os.rename(source, target)
        except OSError as e:
            raise StorageError(f"Failed to move note '{note_id}': {e}", e) from e
        logger.debug('Moved note %s to %s', source, target)

    # Pins and ordering

    def _load_config_file(self):
        if not self.config_file.exists():
            return merge_config_with_defaults('')
        try:
            content = read_text(self.config_file)
        except (OSError, UnicodeDecodeError) as e:
            raise StorageError(f'Failed to read config file: {e}', e) from e
        return merge_config_with_defaults(content)

    def pinned_notes(self) -> List[str]:
        """Returns the ids of pinned notes, as persisted in the configuration file."""
        return self._load_config_file().pinned_notes

    def _pinned_notes_for_listing(self) -> List[str]:
        try:
            return self.pinned_notes()
        except DecodeError as e:
            logger.warning('Ignoring pinned notes in unparsable config file %s: %s', self.config_file, e.message)
            return []

    def _save_pinned_notes(self, pinned_notes: List[str]) -> None:
        try:
            config = self._load_config_file()
        except DecodeError:
            config = merge_config_with_defaults('')
        config.pinned_notes = pinned_notes
        try:
            atomic_write_text(self.config_file, serialize_config(config))
        except OSError as e:
            raise StorageError(f'Failed to write config file: {e}', e) from e

    def toggle_pin_note(self, note_id: str) -> bool:
        """Pins the note if it is unpinned and vice versa. Returns True if the note is now pinned.

        This reads and rewrites the configuration file without any locking, so two calls racing each other can
        lose one of the changes.
        """
        validate_path(self.notes_dir, note_id + NOTE_SUFFIX)
        pinned_notes = self._pinned_notes_for_listing()
        if note_id in pinned_notes:
            pinned_notes.remove(note_id)
            pinned = False
        else:
            pinned_notes.append(note_id)
            pinned = True
        self._save_pinned_notes(pinned_notes)
        return pinned

    def get_note_order(self) -> Dict[str, List[str]]:
        """Returns the custom note order, mapping folder names ("" for the root) to lists of note ids."""
        if not self.order_file.exists():
            return {}
        try:
            content = read_text(self.order_file)
        except (OSError, UnicodeDecodeError) as e:
            raise StorageError(f'Failed to read note order file: {e}', e) from e
        try:
            order = json.loads(content)
        except ValueError as e:
            raise StorageError(f'Failed to parse note order file: {e}', e) from e
        if not isinstance(order, dict):
            raise StorageError('Note order file does not contain a JSON object')
        return order

    def save_note_order(self, order: Dict[str, List[str]]) -> None:
        """Replaces the stored note order. The ids are not checked against existing notes."""
        try:
            atomic_write_text(self.order_file, json.dumps(order, indent=2))
        except OSError as e:
            raise StorageError(f'Failed to write note order file: {e}', e) from e

    # Assets and external files

    def get_assets_path(self) -> str:
        return str(self.assets_dir.absolute())

    def save_screenshot(self, base64_data: str) -> Tuple[str, str]:
        """Decodes base64 PNG data (optionally a ``data:`` URL) and saves it in the assets directory.

        Returns the image id, of the form ``screenshot-YYYYMMDDHHMMSSmmm``, and the absolute path of the file.
        """
        _, comma, payload = base64_data.partition(',')
        if not comma:
            payload = base64_data
        try:
            image_data = base64.b64decode(payload, validate=True)
        except binascii.Error as e:
            raise DecodeError(f'Failed to decode base64 image data: {e}', e) from e
        if not image_data:
            raise DecodeError('Image data is empty')

        try:
            self.assets_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f'Failed to create assets directory: {e}', e) from e

        now = datetime.now(timezone.utc)
        while True:
            image_id = f'screenshot-{now.strftime("%Y%m%d%H%M%S")}{now.microsecond // 1000:03d}'
            path = self.assets_dir / f'{image_id}.png'
            if not path.exists():
                break
            now += timedelta(milliseconds=1)

        try:
            atomic_write(path, image_data)
        except OSError as e:
            raise StorageError(f'Failed to save screenshot: {e}', e) from e
        logger.debug('Saved screenshot %s', path)
        return image_id, str(path.absolute())

    def read_external_file(self, file_path: str) -> Tuple[str, str, str]:
        """Reads a markdown file from anywhere on disk. Returns its content, file name, and resolved absolute path.

        Only the ``.md`` extension is checked; the file does not need to be inside the notes directory.
        """
        path = Path(file_path)
        if path.suffix != NOTE_SUFFIX:
            raise ValidationError('File must have .md extension')
        if not path.exists():
            raise NotFoundError(f'File does not exist: {file_path}')
        if not path.is_file():
            raise ValidationError(f'Path is not a file: {file_path}')
        try:
            content = read_text(path)
        except (OSError, UnicodeDecodeError) as e:
            raise StorageError(f'Failed to read file: {e}', e) from e
        return content, path.name, os.path.realpath(path)
